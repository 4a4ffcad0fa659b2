# matrixci_workflow.py
# Test matrix + MSRV check for a cargo workspace.
# The full pipeline (style + minimal-versions as well) lives in ci.yml;
# both are independent pipelines: `matrixci run matrixci_workflow.py ci.yml`
from __future__ import annotations

from matrixci import axis, job, matrix, pipeline, sh

RUST = ["stable", "beta", "nightly"]


def workflow():
    return pipeline(
        "CI (tests)",
        # Test job - one instance per toolchain
        job(
            "test",
            sh("Test workspace", "cargo +${{ matrix.rust }} test --workspace"),
            sh(
                "Test benches",
                "cargo +${{ matrix.rust }} test --benches",
                # benches need unstable features
                when=axis("rust") == "nightly",
            ),
            matrix=matrix("rust", RUST),
        ),

        # MSRV check - builds against the rust-version declared in Cargo.toml
        job(
            "msrv",
            sh("Check MSRV", "cargo hack --rust-version --no-dev-deps check --workspace"),
        ),
    )
