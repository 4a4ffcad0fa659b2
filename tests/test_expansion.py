"""Tests for matrix expansion."""

import pytest

from matrixci import axis, job, matrix, sh
from matrixci.errors import InvalidDefinition
from matrixci.expansion import bindings, expand, expand_all, instance_id, interpolate

RUST = ["stable", "beta", "nightly"]


class TestExpand:
    def test_no_axes_gives_single_instance(self):
        insts = expand(job("msrv", sh("Check", "cargo hack check")))
        assert len(insts) == 1
        assert insts[0].id == "msrv"
        assert dict(insts[0].binding) == {}

    def test_single_axis(self):
        insts = expand(job("test", sh("Test", "cargo test"), matrix=matrix("rust", RUST)))
        assert [i.id for i in insts] == ["test (stable)", "test (beta)", "test (nightly)"]
        assert [i.binding["rust"] for i in insts] == RUST

    def test_product_rightmost_axis_fastest(self):
        t = job("test", sh("Test", "true"), matrix=matrix(rust=RUST, os=["linux", "mac"]))
        insts = expand(t)
        assert len(insts) == 6
        assert len({i.id for i in insts}) == 6
        assert [dict(i.binding) for i in insts[:3]] == [
            {"rust": "stable", "os": "linux"},
            {"rust": "stable", "os": "mac"},
            {"rust": "beta", "os": "linux"},
        ]
        assert insts[1].id == "test (stable, mac)"

    def test_expansion_is_deterministic(self):
        t = job("test", sh("Test", "true"), matrix=matrix(rust=RUST, os=["linux", "mac"]))
        assert [i.id for i in expand(t)] == [i.id for i in expand(t)]

    def test_placeholders_substituted(self):
        t = job(
            "test",
            sh("Test", "cargo +${{ matrix.rust }} test", env={"TC": "${{matrix.rust}}"}),
            matrix=matrix("rust", RUST),
            env={"RUSTUP_TOOLCHAIN": "${{ matrix.rust }}"},
        )
        nightly = expand(t)[2]
        assert nightly.steps[0].run == "cargo +nightly test"
        assert nightly.steps[0].env["TC"] == "nightly"
        assert nightly.env["RUSTUP_TOOLCHAIN"] == "nightly"
        # the template itself is untouched
        assert t.steps[0].run == "cargo +${{ matrix.rust }} test"

    def test_step_condition_filters_steps(self):
        t = job(
            "test",
            sh("Test", "cargo test"),
            sh("Bench", "cargo test --benches", when=axis("rust") == "nightly"),
            matrix=matrix("rust", RUST),
        )
        steps = {i.id: [s.name for s in i.steps] for i in expand(t)}
        assert steps == {
            "test (stable)": ["Test"],
            "test (beta)": ["Test"],
            "test (nightly)": ["Test", "Bench"],
        }

    def test_job_condition_does_not_drop_instances(self):
        t = job("bench", sh("Bench", "true"), matrix=matrix("rust", RUST), when="matrix.rust == 'nightly'")
        # conditions are evaluated by the orchestrator, not at expansion
        assert len(expand(t)) == 3


class TestIncludeExclude:
    def test_exclude_removes_matching_bindings(self):
        m = matrix(rust=RUST, os=["linux", "windows"]).excluding(rust="nightly", os="windows")
        insts = expand(job("test", sh("Test", "true"), matrix=m))
        assert len(insts) == 5
        assert "test (nightly, windows)" not in {i.id for i in insts}

    def test_partial_exclude_removes_every_match(self):
        m = matrix(rust=RUST, os=["linux", "windows"]).excluding(os="windows")
        insts = expand(job("test", sh("Test", "true"), matrix=m))
        assert [i.id for i in insts] == ["test (stable, linux)", "test (beta, linux)", "test (nightly, linux)"]

    def test_include_appends_bindings(self):
        m = matrix("rust", ["stable"]).including(rust="1.70")
        insts = expand(job("test", sh("Test", "cargo +${{ matrix.rust }} test"), matrix=m))
        assert [i.id for i in insts] == ["test (stable)", "test (1.70)"]
        assert insts[1].steps[0].run == "cargo +1.70 test"

    def test_include_of_existing_binding_is_ignored(self):
        m = matrix("rust", RUST).including(rust="beta")
        assert len(bindings(job("test", sh("Test", "true"), matrix=m))) == 3


class TestExpandAll:
    def test_template_order_then_binding_order(self):
        insts = expand_all(
            [
                job("style", sh("Fmt", "cargo fmt --check")),
                job("test", sh("Test", "true"), matrix=matrix("rust", RUST)),
                job("msrv", sh("MSRV", "true")),
            ]
        )
        assert [i.id for i in insts] == [
            "style",
            "test (stable)",
            "test (beta)",
            "test (nightly)",
            "msrv",
        ]

    def test_clashing_instance_ids(self):
        with pytest.raises(InvalidDefinition) as exc:
            expand_all(
                [
                    job("t (a)", sh("s", "true")),
                    job("t", sh("s", "true"), matrix=matrix("x", ["a"])),
                ]
            )
        assert "t (a)" in exc.value.message


def test_instance_id_and_interpolate():
    assert instance_id("test", {}) == "test"
    assert instance_id("test", {"rust": "nightly", "os": "linux"}) == "test (nightly, linux)"
    assert interpolate("echo ${{ matrix.n }}-${{matrix.n}}", {"n": 2}) == "echo 2-2"


def test_package_root_exports_the_matrix_helper():
    import matrixci
    from matrixci.dsl import matrix as dsl_matrix

    assert matrixci.matrix is dsl_matrix
    insts = matrixci.expand(matrixci.job("t", matrixci.sh("s", "true"), matrix=matrixci.matrix("x", [1, 2])))
    assert [i.id for i in insts] == ["t (1)", "t (2)"]


def test_boolean_axis_values_render_lowercase():
    t = job("t", sh("s", "echo ${{ matrix.experimental }}"), matrix=matrix("experimental", [True, False]))
    insts = expand(t)
    assert [i.id for i in insts] == ["t (true)", "t (false)"]
    assert insts[0].steps[0].run == "echo true"
