"""Tests for loading pipelines from workflow files and YAML/JSON documents."""

import json
from pathlib import Path

import pytest

from matrixci.conditions import AxisEquals
from matrixci.errors import InvalidDefinition
from matrixci.loader import load_pipeline, load_pipelines
from matrixci.expansion import expand_all
from matrixci.model import Pipeline

REPO_ROOT = Path(__file__).resolve().parents[1]


class TestBundledDefinitions:
    def test_ci_yml(self):
        p = load_pipeline(REPO_ROOT / "ci.yml")
        assert p.name == "CI"
        assert [j.name for j in p.jobs] == ["style", "Test", "minimal-versions", "MSRV"]
        insts = expand_all(p.jobs)
        assert len(insts) == 6
        steps = {i.id: [s.run for s in i.steps] for i in insts}
        assert steps["Test (nightly)"] == [
            "cargo +nightly test --workspace",
            "cargo +nightly test --benches",
        ]
        assert steps["Test (stable)"] == ["cargo +stable test --workspace"]
        # `uses:` steps are provided by the host and dropped
        assert steps["style"] == ["cargo fmt --all --check"]

    def test_python_workflow(self):
        p = load_pipeline(REPO_ROOT / "matrixci_workflow.py")
        assert p.name == "CI (tests)"
        assert [j.name for j in p.jobs] == ["test", "msrv"]
        assert p.source == (REPO_ROOT / "matrixci_workflow.py").resolve()


class TestDocuments:
    def test_field_mapping(self, write_file):
        path = write_file(
            "pipe.yml",
            """
name: mapped
env:
  GLOBAL: 1
jobs:
  build:
    if: matrix.os == 'linux'
    working-directory: crates
    env:
      DEBUG: true
    strategy:
      fail-fast: false
      matrix:
        os: [linux, mac]
        exclude:
          - os: mac
        include:
          - os: bsd
    steps:
      - name: Build
        run: cargo build
        timeout-minutes: 2
        continue-on-error: true
        working-directory: other
      - run: cargo test
""",
        )
        p = load_pipeline(path)
        t = p.jobs[0]
        assert t.name == "build"
        assert t.condition == AxisEquals("os", "linux")
        assert t.axes["os"] == ("linux", "mac")
        assert [dict(e) for e in t.exclude] == [{"os": "mac"}]
        assert [dict(e) for e in t.include] == [{"os": "bsd"}]
        assert dict(t.env) == {"GLOBAL": "1", "DEBUG": "true"}

        build, test = t.steps
        assert build.timeout == 120
        assert build.continue_on_error
        assert build.cwd == "other"
        assert test.name == "cargo test"
        assert test.cwd == "crates"
        assert test.timeout is None

    def test_json_document(self, write_file):
        doc = {"jobs": {"lint": {"steps": [{"run": "ruff check ."}]}}}
        p = load_pipeline(write_file("lint.json", json.dumps(doc)))
        assert p.name == "lint"
        assert p.jobs[0].steps[0].run == "ruff check ."

    @pytest.mark.parametrize(
        "content",
        [
            "jobs: [1, 2]",
            "- just\n- a list\n",
            "jobs: {}",
            "jobs:\n  a:\n    steps: []\n",
            "jobs:\n  a:\n    steps:\n      - name: nothing\n",
            "jobs:\n  a:\n    steps:\n      - uses: actions/checkout@v4\n",
            "jobs:\n  a:\n    strategy:\n      matrix:\n        rust: stable\n    steps:\n      - run: echo\n",
            "jobs:\n  a:\n    if: matrix.rust == 'x'\n    steps:\n      - run: cargo test\n",
            "jobs:\n  a:\n    steps:\n      - run: cargo +${{ matrix.rust }} test\n",
            "jobs:\n  a:\n    steps:\n      - run: cargo test\n        timeout-minutes: 0\n",
            "jobs:\n  a:\n    steps:\n      - run: cargo test\n        if: matrix.rust ==\n",
            "jobs: [unclosed\n",
        ],
    )
    def test_invalid_documents(self, write_file, content):
        with pytest.raises(InvalidDefinition):
            load_pipeline(write_file("bad.yml", content))

    def test_schema_errors_are_reported(self, write_file):
        with pytest.raises(InvalidDefinition) as exc:
            load_pipeline(write_file("bad.yml", "jobs:\n  a:\n    steps: []\n"))
        assert "steps" in exc.value.details["errors"]

    def test_unsupported_suffix(self, write_file):
        with pytest.raises(InvalidDefinition):
            load_pipeline(write_file("ci.toml", "x = 1"))

    def test_missing_file(self, tmp_path):
        with pytest.raises(InvalidDefinition):
            load_pipeline(tmp_path / "nope.yml")


class TestPythonWorkflows:
    def test_jobs_list(self, write_file):
        path = write_file(
            "lint_workflow.py",
            "from matrixci import job, sh\n"
            "NAME = 'lint'\n"
            "JOBS = [job('ruff', sh('Ruff', 'ruff check .'))]\n",
        )
        p = load_pipeline(path)
        assert isinstance(p, Pipeline)
        assert p.name == "lint"
        assert [j.name for j in p.jobs] == ["ruff"]

    def test_workflow_function(self, write_file):
        path = write_file(
            "test_wf_workflow.py",
            "from matrixci import wf, job, sh, matrix\n"
            "def workflow():\n"
            "    return wf(job('test', sh('Test', 'true'), matrix=matrix('py', ['3.11', '3.12'])))\n",
        )
        p = load_pipeline(path)
        assert p.name == "test_wf_workflow"
        assert p.jobs[0].axes["py"] == ("3.11", "3.12")

    def test_wrong_return_type(self, write_file):
        path = write_file("bad_workflow.py", "def workflow():\n    return 'nope'\n")
        with pytest.raises(InvalidDefinition):
            load_pipeline(path)

    def test_invalid_job_in_file(self, write_file):
        path = write_file(
            "bad_workflow.py",
            "from matrixci import job, sh\n"
            "JOBS = [job('t', sh('T', 'cargo +${{ matrix.rust }} test'))]\n",
        )
        with pytest.raises(InvalidDefinition) as exc:
            load_pipeline(path)
        assert exc.value.details["file"].endswith("bad_workflow.py")

    def test_load_pipelines_keeps_order(self, write_file):
        a = write_file("a.yml", "jobs:\n  a:\n    steps:\n      - run: 'true'\n")
        b = write_file("b.yml", "jobs:\n  b:\n    steps:\n      - run: 'true'\n")
        assert [p.name for p in load_pipelines([b, a])] == ["b", "a"]

    @pytest.mark.parametrize(
        "source",
        [
            "def workflow(:\n    pass\n",
            "JOBS = [undefined_helper()]\n",
            "def workflow():\n    return len()\n",
            "import matrixci_no_such_module\n",
        ],
    )
    def test_errors_in_user_code_become_invalid_definition(self, write_file, source):
        path = write_file("broken_workflow.py", source)
        with pytest.raises(InvalidDefinition) as exc:
            load_pipeline(path)
        assert exc.value.details["file"].endswith("broken_workflow.py")
        assert exc.value.__cause__ is not None

    def test_bundled_workflow_expands(self):
        p = load_pipeline(REPO_ROOT / "matrixci_workflow.py")
        steps = {i.id: [s.name for s in i.steps] for i in expand_all(p.jobs)}
        assert steps == {
            "test (stable)": ["Test workspace"],
            "test (beta)": ["Test workspace"],
            "test (nightly)": ["Test workspace", "Test benches"],
            "msrv": ["Check MSRV"],
        }


def test_non_utf8_document(tmp_path):
    path = tmp_path / "latin1.yml"
    path.write_bytes("jobs:\n  a:\n    steps:\n      - run: echo caf\xe9\n".encode("latin-1"))
    with pytest.raises(InvalidDefinition) as exc:
        load_pipeline(path)
    assert exc.value.details["file"] == str(path.resolve())
