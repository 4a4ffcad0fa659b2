# model.py
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, List, Mapping, Optional, Tuple

from .conditions import Condition, validate_axes
from .errors import InvalidDefinition


# `${{ matrix.rust }}` inside commands and env values
PLACEHOLDER_RE = re.compile(r"\$\{\{\s*matrix\.([A-Za-z0-9_\-]+)\s*\}\}")


def _frozen(mapping: Optional[Mapping]) -> Mapping:
    return MappingProxyType(dict(mapping or {}))


def placeholders(text: str) -> set[str]:
    return set(PLACEHOLDER_RE.findall(text or ""))


# ---------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Step:
    """A single command (step) inside a CI job."""
    name: str
    run: str
    continue_on_error: bool = False
    cwd: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    # step-level condition, resolved per binding during expansion
    when: Optional[Condition] = None
    timeout: float | None = None  # seconds

    def __post_init__(self) -> None:
        object.__setattr__(self, "env", _frozen({k: str(v) for k, v in dict(self.env).items()}))

    @property
    def label(self) -> str:
        return self.name

    @property
    def command(self) -> str:
        return self.run


@dataclass(frozen=True)
class JobTemplate:
    """
    A CI job before matrix expansion: steps + axes + condition.

    Immutable once built. Validation runs on construction, so a JobTemplate
    that exists is a well-formed one.

    axes keep their declaration order; expansion varies the rightmost axis
    fastest. include/exclude are extra/removed bindings on top of the cross
    product.
    """
    name: str
    steps: Tuple[Step, ...]
    axes: Mapping[str, Tuple[Any, ...]] = field(default_factory=dict)
    condition: Optional[Condition] = None
    env: Mapping[str, str] = field(default_factory=dict)
    cwd: str | None = None
    include: Tuple[Mapping[str, Any], ...] = ()
    exclude: Tuple[Mapping[str, Any], ...] = ()

    def __post_init__(self) -> None:
        # normalise to immutable containers (callers may hand us lists/dicts)
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(
            self, "axes", _frozen({str(k): tuple(v) for k, v in dict(self.axes).items()})
        )
        object.__setattr__(self, "env", _frozen({k: str(v) for k, v in dict(self.env).items()}))
        object.__setattr__(self, "include", tuple(_frozen(b) for b in self.include))
        object.__setattr__(self, "exclude", tuple(_frozen(b) for b in self.exclude))
        self._validate()

    def _validate(self) -> None:
        if not self.name or not self.name.strip():
            raise InvalidDefinition("job name must not be empty")
        if not self.steps:
            raise InvalidDefinition("job must have at least one step", job=self.name)

        for s in self.steps:
            if not isinstance(s, Step):
                raise InvalidDefinition(f"expected Step, got {type(s).__name__}", job=self.name)
            if not s.run or not s.run.strip():
                raise InvalidDefinition(f"step '{s.name}' has an empty command", job=self.name)
            if s.timeout is not None and s.timeout <= 0:
                raise InvalidDefinition(f"step '{s.name}' timeout must be positive", job=self.name)

        for axis_name, values in self.axes.items():
            if not values:
                raise InvalidDefinition(f"axis '{axis_name}' has no values", job=self.name)
            seen: list = []
            for v in values:
                if v in seen:
                    raise InvalidDefinition(
                        f"axis '{axis_name}' lists value {v!r} twice", job=self.name
                    )
                seen.append(v)

        declared = list(self.axes)
        validate_axes(self.condition, declared, job=self.name)
        for s in self.steps:
            validate_axes(s.when, declared, job=self.name)

        texts = [s.run for s in self.steps]
        texts += [v for s in self.steps for v in s.env.values()]
        texts += list(self.env.values())
        used = set().union(*(placeholders(t) for t in texts))
        unknown = sorted(used - set(declared))
        if unknown:
            raise InvalidDefinition(
                f"placeholder references undeclared axis: {', '.join(unknown)}",
                job=self.name,
                details={"declared": declared},
            )

        for entry in self.include:
            if set(entry) != set(declared):
                raise InvalidDefinition(
                    "matrix include entry must bind every declared axis (and nothing else)",
                    job=self.name,
                    details={"entry": dict(entry), "declared": declared},
                )
        for entry in self.exclude:
            unknown = sorted(set(entry) - set(declared))
            if unknown or not entry:
                raise InvalidDefinition(
                    "matrix exclude entry names undeclared axes",
                    job=self.name,
                    details={"entry": dict(entry), "declared": declared},
                )


@dataclass
class Pipeline:
    """A named, ordered set of job templates (one CI document)."""
    name: str
    jobs: List[JobTemplate]
    source: Optional[Path] = None

    def __post_init__(self) -> None:
        names = [j.name for j in self.jobs]
        if len(set(names)) != len(names):
            dupes = sorted({n for n in names if names.count(n) > 1})
            raise InvalidDefinition(f"Duplicate job names found: {dupes}")


# ---------------------------------------------------------------------
# Expansion products
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class JobInstance:
    """
    One concrete job: a template bound to one value per axis.

    `steps` are the template steps that apply to this binding, with matrix
    placeholders already substituted. `env` is the template env after
    substitution (matrix exports are added by the executor).
    """
    template: JobTemplate
    binding: Mapping[str, Any]
    id: str
    steps: Tuple[Step, ...]
    env: Mapping[str, str] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.template.name

    @property
    def condition(self) -> Optional[Condition]:
        return self.template.condition


# ---------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------

class JobStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StepResult:
    step: Step
    exit_code: int
    duration: float
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass
class JobResult:
    instance: JobInstance
    status: JobStatus
    step_results: List[StepResult] = field(default_factory=list)
    # "condition" | "cancelled" | "step_failed" | "execution_error" | None
    reason: Optional[str] = None
    error: Optional[BaseException] = None
    duration: float = 0.0

    @property
    def id(self) -> str:
        return self.instance.id


@dataclass
class PipelineResult:
    name: str
    job_results: List[JobResult] = field(default_factory=list)
    cancelled: bool = False
    duration: float = 0.0

    @property
    def passed(self) -> List[JobResult]:
        return [r for r in self.job_results if r.status is JobStatus.PASSED]

    @property
    def failed(self) -> List[JobResult]:
        return [r for r in self.job_results if r.status is JobStatus.FAILED]

    @property
    def skipped(self) -> List[JobResult]:
        return [r for r in self.job_results if r.status is JobStatus.SKIPPED]

    @property
    def overall(self) -> JobStatus:
        # skipped jobs never affect the verdict; a cancelled run never passes
        if self.failed or self.cancelled:
            return JobStatus.FAILED
        return JobStatus.PASSED

    def exit_code(self) -> int:
        return 0 if self.overall is JobStatus.PASSED else 1

    def get(self, job_id: str) -> Optional[JobResult]:
        for r in self.job_results:
            if r.id == job_id:
                return r
        return None
