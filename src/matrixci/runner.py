# runner.py
from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .conditions import evaluate
from .errors import Cancelled, ExecutionError
from .executor import CancelToken, JobExecutor
from .expansion import expand_all
from .model import JobInstance, JobResult, JobStatus, JobTemplate, Pipeline, PipelineResult
from .ui.console import Console, get_console

Definition = Union[Pipeline, Sequence[JobTemplate]]


def _as_pipeline(definition: Definition, name: str | None = None) -> Pipeline:
    if isinstance(definition, Pipeline):
        return definition
    return Pipeline(name=name or "pipeline", jobs=list(definition))


def plan(definition: Definition) -> List[Tuple[JobInstance, bool]]:
    """
    Expand every job and evaluate its condition, without running anything.

    Returns [(instance, will_run), ...] in expansion order.
    """
    pipeline = _as_pipeline(definition)
    return [(inst, evaluate(inst.condition, inst.binding)) for inst in expand_all(pipeline.jobs)]


class Orchestrator:
    """
    Expands a pipeline, runs its job instances concurrently and aggregates
    the results into one PipelineResult.

    - Jobs whose condition is false are SKIPPED without reaching the executor.
    - A failing job never stops the other jobs; the verdict is computed
      once every dispatched job has finished.
    - cancel() stops dispatch of jobs that have not started (SKIPPED,
      reason "cancelled") and terminates running commands (FAILED, reason
      "cancelled").
    """

    def __init__(
        self,
        *,
        repo_root: str | Path = ".",
        work_root: str | Path = ".matrixci/work",
        log_dir: str | Path | None = None,
        max_workers: int | None = None,
        cancel_token: CancelToken | None = None,
        console: Console | None = None,
        executor: JobExecutor | None = None,
        terminate_grace: float = 5.0,
        keep_workspace: bool = False,
    ):
        self.max_workers = max_workers
        self.cancel_token = cancel_token or CancelToken()
        self.console = console or get_console()
        self.executor = executor or JobExecutor(
            repo_root,
            work_root=work_root,
            log_dir=log_dir,
            cancel_token=self.cancel_token,
            console=self.console,
            terminate_grace=terminate_grace,
            keep_workspace=keep_workspace,
        )

    def cancel(self) -> None:
        self.cancel_token.cancel()

    def _run_one(self, inst: JobInstance) -> JobResult:
        if self.cancel_token.cancelled:
            self.console.print_job_skipped(inst.id, "cancelled")
            return JobResult(
                instance=inst, status=JobStatus.SKIPPED, reason="cancelled", error=Cancelled(inst.id)
            )
        try:
            return self.executor.run(inst)
        except ExecutionError as e:
            self.console.print_exception(e)
            return JobResult(
                instance=inst,
                status=JobStatus.FAILED,
                step_results=list(e.step_results),
                reason="execution_error",
                error=e,
            )

    def run(
        self,
        definition: Definition,
        *,
        name: str | None = None,
        on_result: Optional[Callable[[JobResult], None]] = None,
    ) -> PipelineResult:
        """
        Run every job of the pipeline and return the aggregated result.

        Raises InvalidDefinition (before anything runs) if expansion fails.
        on_result is called on the orchestrator thread for every finished
        or skipped job.
        """
        pipeline = _as_pipeline(definition, name)
        start = time.monotonic()
        instances = expand_all(pipeline.jobs)

        results: Dict[str, JobResult] = {}
        runnable: List[JobInstance] = []
        for inst in instances:
            if evaluate(inst.condition, inst.binding):
                runnable.append(inst)
                continue
            res = JobResult(instance=inst, status=JobStatus.SKIPPED, reason="condition")
            results[inst.id] = res
            self.console.print_job_skipped(inst.id, f"condition {inst.condition}")
            if on_result:
                on_result(res)

        if runnable:
            workers = self.max_workers or len(runnable)
            with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
                futures = {pool.submit(self._run_one, inst): inst for inst in runnable}

                # single collector: only this thread touches `results`
                for fut in as_completed(futures):
                    inst = futures[fut]
                    try:
                        res = fut.result()
                    except Exception as e:
                        self.console.print_exception(e)
                        res = JobResult(
                            instance=inst,
                            status=JobStatus.FAILED,
                            reason="execution_error",
                            error=e,
                        )
                    results[inst.id] = res
                    if res.status is not JobStatus.SKIPPED:
                        self.console.print_job_finished(res)
                    if on_result:
                        on_result(res)

        job_results = [results[inst.id] for inst in instances]
        return PipelineResult(
            name=pipeline.name,
            job_results=job_results,
            # a cancel that arrives after the last job finished changes nothing
            cancelled=any(r.reason == "cancelled" for r in job_results),
            duration=time.monotonic() - start,
        )


def run_pipeline(definition: Definition, **kwargs) -> PipelineResult:
    """Convenience: Orchestrator(**kwargs).run(definition)."""
    name = kwargs.pop("name", None)
    on_result = kwargs.pop("on_result", None)
    return Orchestrator(**kwargs).run(definition, name=name, on_result=on_result)


def run_pipelines(definitions: Iterable[Definition], **kwargs) -> List[PipelineResult]:
    """
    Run several pipeline definitions, each as its own independent run.

    They share a cancel token (if one is passed), nothing else.
    """
    token = kwargs.pop("cancel_token", None) or CancelToken()
    return [run_pipeline(d, cancel_token=token, **kwargs) for d in definitions]
