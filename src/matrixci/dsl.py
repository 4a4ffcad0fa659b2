# src/matrixci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .conditions import Condition, axis, parse_condition
from .model import JobTemplate, Pipeline, Step


def _condition(value: Condition | str | None) -> Optional[Condition]:
    if value is None or isinstance(value, Condition):
        return value
    return parse_condition(value)


# ---------------------------------------------------------------------
# Step helper
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    continue_on_error: bool = False,
    env: Optional[Dict[str, Any]] = None,
    when: Condition | str | None = None,
    timeout: float | None = None,
) -> Step:
    """Create a shell step. `when` may be a Condition or "matrix.x == 'y'"."""
    return Step(
        name=name,
        run=cmd,
        cwd=cwd,
        continue_on_error=continue_on_error,
        env={k: str(v) for k, v in (env or {}).items()},
        when=_condition(when),
        timeout=timeout,
    )


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    Axes for a job, plus optional include/exclude bindings.

    Example:
        job("test", sh("Test", "cargo +${{ matrix.rust }} test"),
            matrix=matrix(rust=["stable", "beta", "nightly"]))
    """
    def __init__(
        self,
        axes: Mapping[str, Iterable[Any]],
        include: Iterable[Mapping[str, Any]] = (),
        exclude: Iterable[Mapping[str, Any]] = (),
    ):
        self.axes = {k: list(v) for k, v in axes.items()}
        self.include = [dict(b) for b in include]
        self.exclude = [dict(b) for b in exclude]

    def including(self, **binding: Any) -> "Matrix":
        return Matrix(self.axes, self.include + [binding], self.exclude)

    def excluding(self, **binding: Any) -> "Matrix":
        return Matrix(self.axes, self.include, self.exclude + [binding])


def matrix(key: str | None = None, values: Iterable[Any] | None = None, **axes: Iterable[Any]) -> Matrix:
    """matrix("rust", [...]) for one axis, or matrix(rust=[...], os=[...]) for several."""
    all_axes: Dict[str, Iterable[Any]] = {}
    if key is not None:
        all_axes[key] = list(values or [])
    all_axes.update(axes)
    return Matrix(all_axes)


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    matrix: Matrix | None = None,
    axes: Optional[Mapping[str, Iterable[Any]]] = None,
    when: Condition | str | None = None,
    env: Optional[Dict[str, Any]] = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> JobTemplate:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    all_axes: Dict[str, Iterable[Any]] = {}
    include: list = []
    exclude: list = []
    if matrix is not None:
        all_axes.update(matrix.axes)
        include, exclude = matrix.include, matrix.exclude
    if axes:
        all_axes.update(axes)

    # JobTemplate validates (empty steps, empty axes, undeclared axes, ...)
    return JobTemplate(
        name=name,
        steps=tuple(steps_final),
        axes=all_axes,
        condition=_condition(when),
        env={k: str(v) for k, v in (env or {}).items()},
        include=tuple(include),
        exclude=tuple(exclude),
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._steps: list[Step] = []
        self._axes: dict[str, list] = {}
        self._include: list[dict] = []
        self._exclude: list[dict] = []
        self._env: dict[str, str] = {}
        self._when: Optional[Condition] = None
        self._cwd: str | None = None

    def define_step(
        self,
        name: str,
        run: str,
        cwd: str | None = None,
        *,
        continue_on_error: bool = False,
        when: Condition | str | None = None,
        timeout: float | None = None,
    ):
        self._steps.append(
            sh(name, run, cwd=cwd, continue_on_error=continue_on_error, when=when, timeout=timeout)
        )
        return self

    step = define_step

    def with_axis(self, name: str, *values: Any):
        self._axes[name] = list(values)
        return self

    def including(self, **binding: Any):
        self._include.append(binding)
        return self

    def excluding(self, **binding: Any):
        self._exclude.append(binding)
        return self

    def with_env(self, **env):
        # force values to str for env compatibility
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def when(self, condition: Condition | str):
        self._when = _condition(condition)
        return self

    def in_dir(self, cwd: str):
        self._cwd = cwd
        return self

    def build(self) -> JobTemplate:
        return job(
            self.name,
            steps_list=self._steps,
            matrix=Matrix(self._axes, self._include, self._exclude),
            when=self._when,
            env=self._env,
            cwd=self._cwd,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Workflow helpers (single-file story)
# ---------------------------------------------------------------------

def wf(*jobs: JobTemplate) -> List[JobTemplate]:
    """
    Workflow definition helper.

    Users can write:
        from matrixci import wf, job, sh

        def workflow():
            return wf(
                job(...),
                job(...),
            )

    Or use JOBS directly:
        JOBS = wf(job(...), job(...))
    """
    return list(jobs)


def pipeline(name: str, *jobs: JobTemplate) -> Pipeline:
    """Like wf(), but named: the name shows up in the run header and report."""
    return Pipeline(name=name, jobs=list(jobs))


__all__ = [
    "axis",
    "build",
    "job",
    "JobBuilder",
    "matrix",
    "Matrix",
    "pipeline",
    "sh",
    "wf",
]
