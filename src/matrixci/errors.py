# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


class MatrixCIError(Exception):
    """Base class for every error raised by matrixci."""


@dataclass(eq=False)
class InvalidDefinition(MatrixCIError):
    """
    Malformed pipeline definition, detected at load time.

    Fatal for the pipeline: nothing runs when a definition fails to load.
    """
    message: str
    job: str | None = None
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        head = f"[{self.job}] {self.message}" if self.job else self.message
        lines = [head]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


@dataclass(eq=False)
class ExecutionError(MatrixCIError):
    """
    A command could not be launched (missing cwd, missing shell, OS error).

    This is an infrastructure failure and is kept apart from a step that ran
    and exited non-zero.
    """
    job: str
    step: str | None
    message: str
    details: dict = field(default_factory=dict)
    # results of the steps that ran before the launch failure
    step_results: list = field(default_factory=list)

    def __str__(self) -> str:
        lines = [f"execution_error: {self.message}", f"job={self.job}"]
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


@dataclass(eq=False)
class StepFailure(MatrixCIError):
    job: str
    step: str
    cmd: str
    exit_code: int

    def __str__(self) -> str:
        return f"[{self.job}] step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


@dataclass(eq=False)
class Cancelled(MatrixCIError):
    job: str

    def __str__(self) -> str:
        return f"[{self.job}] cancelled"
