# loader.py
from __future__ import annotations

import json
import runpy
from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import ValidationError

from .conditions import parse_condition
from .errors import InvalidDefinition
from .model import JobTemplate, Pipeline, Step
from .schema import JobDoc, StepDoc, WorkflowDoc
from .ui.console import get_console

DOCUMENT_SUFFIXES = {".yml", ".yaml", ".json"}


# ----------------------------------------------------------------------
# Python workflow files
# ----------------------------------------------------------------------

def _run_user_code(wf_path: Path, fn, what: str) -> Any:
    try:
        return fn()
    except InvalidDefinition as e:
        # raised by JobTemplate validation while the file builds its jobs
        e.details.setdefault("file", str(wf_path))
        raise
    except Exception as e:
        raise InvalidDefinition(
            f"{what} failed: {type(e).__name__}: {e}",
            details={"file": str(wf_path)},
        ) from e


def load_workflow(path: str | Path) -> Pipeline:
    """
    Load a workflow from a python file path.

    The file must define either:
      - workflow() -> List[JobTemplate] | Pipeline
      - JOBS = [JobTemplate, ...]

    Any exception raised while executing the file or calling workflow()
    is reported as InvalidDefinition.
    """
    wf_path = Path(path).expanduser().resolve()
    module_name = f"matrixci_workflow_{wf_path.stem}"
    globals_dict = _run_user_code(
        wf_path,
        lambda: runpy.run_path(str(wf_path), run_name=module_name),
        f"loading {wf_path.name}",
    )

    jobs: Any = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        jobs = _run_user_code(wf_path, globals_dict["workflow"], "workflow()")
    elif "JOBS" in globals_dict:
        jobs = globals_dict["JOBS"]

    if isinstance(jobs, Pipeline):
        if jobs.source is None:
            jobs.source = wf_path
        return jobs

    if not isinstance(jobs, list) or not all(isinstance(j, JobTemplate) for j in jobs):
        raise InvalidDefinition(
            "Workflow must return/define a List[JobTemplate]. "
            "Define workflow() -> List[JobTemplate] or JOBS = [JobTemplate, ...].",
            details={"file": str(wf_path)},
        )

    name = globals_dict.get("NAME") or wf_path.stem
    return Pipeline(name=str(name), jobs=jobs, source=wf_path)


# ----------------------------------------------------------------------
# YAML / JSON documents
# ----------------------------------------------------------------------

def _read_document(path: Path) -> Dict[str, Any]:
    try:
        raw = path.read_text(encoding="utf-8")
        if path.suffix.lower() == ".json":
            data = json.loads(raw) if raw.strip() else {}
        else:
            data = yaml.safe_load(raw) if raw.strip() else {}
    except (OSError, UnicodeDecodeError, yaml.YAMLError, json.JSONDecodeError) as e:
        raise InvalidDefinition(f"cannot parse {path.name}: {e}", details={"file": str(path)}) from e

    if not isinstance(data, dict):
        raise InvalidDefinition(
            f"{path.name} must contain a mapping at the top level",
            details={"file": str(path)},
        )
    # YAML 1.1 reads the `on:` key as boolean True
    return {str(k): v for k, v in data.items()}


def _step_from_doc(doc: StepDoc, index: int, job_doc: JobDoc) -> Step:
    run = doc.run or ""
    name = doc.name or (run.strip().splitlines()[0] if run.strip() else f"step {index + 1}")
    return Step(
        name=name,
        run=run,
        continue_on_error=doc.continue_on_error,
        cwd=doc.working_directory or job_doc.working_directory,
        env=doc.env,
        when=parse_condition(doc.if_) if doc.if_ else None,
        timeout=doc.timeout_minutes * 60 if doc.timeout_minutes else None,
    )


def template_from_doc(key: str, doc: JobDoc, *, workflow_env: Dict[str, str] | None = None) -> JobTemplate:
    """Convert one validated `jobs.<key>` entry into a JobTemplate."""
    console = get_console()
    name = doc.name or key

    steps: List[Step] = []
    for i, s in enumerate(doc.steps):
        if s.run is None:
            # checkout / toolchain install actions are provided by the host
            console.print_debug(f"[{name}] ignoring action step: uses={s.uses}")
            continue
        try:
            steps.append(_step_from_doc(s, i, doc))
        except InvalidDefinition as e:
            e.job = name
            raise
    if not steps:
        raise InvalidDefinition("job has no 'run' steps", job=name)

    axes: Dict[str, list] = {}
    include: list = []
    exclude: list = []
    if doc.strategy and doc.strategy.matrix:
        axes = doc.strategy.matrix.axes
        include = doc.strategy.matrix.include
        exclude = doc.strategy.matrix.exclude

    env = dict(workflow_env or {})
    env.update(doc.env)

    try:
        condition = parse_condition(doc.if_) if doc.if_ else None
    except InvalidDefinition as e:
        e.job = name
        raise

    return JobTemplate(
        name=name,
        steps=tuple(steps),
        axes=axes,
        condition=condition,
        env=env,
        include=tuple(include),
        exclude=tuple(exclude),
    )


def load_document(path: str | Path) -> Pipeline:
    """Load a YAML or JSON pipeline document."""
    doc_path = Path(path).expanduser().resolve()
    data = _read_document(doc_path)
    try:
        doc = WorkflowDoc.model_validate(data)
    except ValidationError as e:
        problems = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        raise InvalidDefinition(
            f"{doc_path.name} does not match the pipeline schema",
            details={"file": str(doc_path), "errors": "; ".join(problems)},
        ) from e

    jobs = [template_from_doc(key, job_doc, workflow_env=doc.env) for key, job_doc in doc.jobs.items()]
    return Pipeline(name=doc.name or doc_path.stem, jobs=jobs, source=doc_path)


# ----------------------------------------------------------------------
# Entry point
# ----------------------------------------------------------------------

def load_pipeline(path: str | Path) -> Pipeline:
    """
    Load a pipeline definition from a .py workflow file or a .yml/.yaml/.json
    document. Raises InvalidDefinition for anything malformed.
    """
    p = Path(path).expanduser()
    if not p.exists():
        raise InvalidDefinition(f"Workflow file not found: {p}")
    suffix = p.suffix.lower()
    if suffix == ".py":
        return load_workflow(p)
    if suffix in DOCUMENT_SUFFIXES:
        return load_document(p)
    raise InvalidDefinition(
        f"Unsupported workflow file type: {p.name}",
        details={"supported": ".py, " + ", ".join(sorted(DOCUMENT_SUFFIXES))},
    )


def load_pipelines(paths: List[str | Path]) -> List[Pipeline]:
    return [load_pipeline(p) for p in paths]
