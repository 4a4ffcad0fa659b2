from __future__ import annotations

import pytest

from matrixci.executor import CancelToken, JobExecutor
from matrixci.ui.console import Console, set_console


@pytest.fixture(autouse=True)
def console():
    """Quiet global console so test output stays readable."""
    c = Console(quiet=True)
    set_console(c)
    return c


@pytest.fixture
def token():
    return CancelToken()


@pytest.fixture
def executor(tmp_path, token, console):
    """Executor rooted in a throwaway repo dir, with short poll/grace times."""
    return JobExecutor(
        tmp_path,
        work_root=tmp_path / "work",
        cancel_token=token,
        console=console,
        poll_interval=0.02,
        terminate_grace=1.0,
    )


@pytest.fixture
def write_file(tmp_path):
    """Write a workflow file into tmp_path and return its path."""
    def _write(name: str, content: str):
        p = tmp_path / name
        p.write_text(content, encoding="utf-8")
        return p
    return _write
