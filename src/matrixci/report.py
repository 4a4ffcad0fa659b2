# report.py
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Protocol

from .model import JobResult, PipelineResult
from .ui.console import Console, get_console


class Reporter(Protocol):
    """Consumes one PipelineResult per run."""

    def report(self, result: PipelineResult) -> None:
        ...


def job_result_to_dict(r: JobResult, *, output_limit: int = 4000) -> Dict[str, Any]:
    return {
        "id": r.id,
        "job": r.instance.name,
        "binding": dict(r.instance.binding),
        "status": r.status.value,
        "reason": r.reason,
        "error": str(r.error) if r.error else None,
        "duration": round(r.duration, 3),
        "steps": [
            {
                "name": s.step.name,
                "run": s.step.run,
                "exit_code": s.exit_code,
                "duration": round(s.duration, 3),
                "timed_out": s.timed_out,
                "continue_on_error": s.step.continue_on_error,
                # keep the tail: that is where failures show up
                "stdout": s.stdout[-output_limit:],
                "stderr": s.stderr[-output_limit:],
            }
            for s in r.step_results
        ],
    }


def result_to_dict(result: PipelineResult) -> Dict[str, Any]:
    return {
        "pipeline": result.name,
        "overall": result.overall.value,
        "cancelled": result.cancelled,
        "duration": round(result.duration, 3),
        "summary": {
            "passed": len(result.passed),
            "failed": len(result.failed),
            "skipped": len(result.skipped),
        },
        "jobs": [job_result_to_dict(r) for r in result.job_results],
    }


class ConsoleReporter:
    def __init__(self, console: Console | None = None):
        self.console = console or get_console()

    def report(self, result: PipelineResult) -> None:
        self.console.print_results(result)


class JsonReporter:
    """
    Writes every reported pipeline to one JSON file:
        {"overall": "passed" | "failed", "pipelines": [...]}
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._results: List[Dict[str, Any]] = []

    def report(self, result: PipelineResult) -> None:
        self._results.append(result_to_dict(result))
        overall = "failed" if any(r["overall"] == "failed" for r in self._results) else "passed"
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(
            json.dumps({"overall": overall, "pipelines": self._results}, indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        tmp.replace(self.path)


def exit_code(results: List[PipelineResult]) -> int:
    """0 if every pipeline passed, 1 otherwise."""
    return 0 if all(r.exit_code() == 0 for r in results) else 1
