# executor.py
from __future__ import annotations

import hashlib
import os
import re
import shutil
import signal
import subprocess
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional, TextIO, Tuple

from .conditions import _text
from .errors import Cancelled, ExecutionError, StepFailure
from .model import JobInstance, JobResult, JobStatus, Step, StepResult
from .ui.console import Console, get_console

# shell convention (coreutils `timeout`)
TIMEOUT_EXIT_CODE = 124

# shell exit code for "command not found"
NOT_FOUND_EXIT_CODE = 127

TOOL_HINTS = {
    "cargo": "Install a Rust toolchain (rustup) or fix PATH.",
    "rustup": "Install rustup from https://rustup.rs or fix PATH.",
    "cargo-hack": "Install cargo-hack (cargo install cargo-hack).",
    "cargo-minimal-versions": "Install cargo-minimal-versions (cargo install cargo-minimal-versions).",
    "pytest": "Install pytest (e.g., pip install pytest).",
    "ruff": "Install ruff (e.g., pip install ruff).",
    "npm": "Install Node.js (includes npm) or fix PATH.",
    "docker": "Install Docker and ensure the daemon is running.",
}


def hint_for(cmd: str) -> Optional[str]:
    words = cmd.split()
    if not words:
        return None
    tool = words[0]
    # `cargo hack ...` is provided by the cargo-hack binary
    if tool == "cargo" and len(words) > 1 and f"cargo-{words[1]}" in TOOL_HINTS:
        return TOOL_HINTS[f"cargo-{words[1]}"]
    return TOOL_HINTS.get(tool, f"Install {tool} or fix PATH.")


def slug(text: str) -> str:
    """Filesystem-safe name for a job instance id: 'test (nightly)' -> 'test-nightly'."""
    s = re.sub(r"[^A-Za-z0-9_.-]+", "-", text).strip("-")
    return s or "job"


def job_key(instance_id: str) -> str:
    """
    Directory and log file name for a job instance: readable slug plus a
    short hash of the exact id, so "test (stable)" and "test-stable" differ.
    """
    digest = hashlib.sha1(instance_id.encode("utf-8")).hexdigest()[:8]
    return f"{slug(instance_id)}-{digest}"


def axis_env_name(axis: str) -> str:
    return "MATRIXCI_" + re.sub(r"[^A-Za-z0-9]+", "_", axis).upper()


class CancelToken:
    """Cooperative cancellation flag shared by the orchestrator and executors."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)


class JobExecutor:
    """
    Runs the steps of one job instance, in order, as fresh shell processes.

    Every instance gets its own scratch directory and its own environment
    dict, so concurrently running instances share nothing mutable.
    """

    def __init__(
        self,
        repo_root: str | Path = ".",
        *,
        work_root: str | Path = ".matrixci/work",
        log_dir: str | Path | None = None,
        cancel_token: CancelToken | None = None,
        console: Console | None = None,
        poll_interval: float = 0.1,
        terminate_grace: float = 5.0,
        keep_workspace: bool = False,
    ):
        self.repo_root = Path(repo_root).resolve()
        work = Path(work_root)
        self.work_root = work if work.is_absolute() else self.repo_root / work
        self.log_dir = Path(log_dir) if log_dir is not None else None
        self.cancel_token = cancel_token or CancelToken()
        self.console = console or get_console()
        self.poll_interval = poll_interval
        self.terminate_grace = terminate_grace
        self.keep_workspace = keep_workspace

    # ------------------------------------------------------------------
    # Workspace / environment
    # ------------------------------------------------------------------

    def _prepare_workspace(self, instance: JobInstance) -> Path:
        job_dir = self.work_root / job_key(instance.id)
        try:
            if job_dir.exists():
                shutil.rmtree(job_dir)
            job_dir.mkdir(parents=True)
        except OSError as e:
            raise ExecutionError(
                job=instance.id,
                step=None,
                message=f"could not create job workspace: {e}",
                details={"path": str(job_dir)},
            ) from e
        return job_dir

    def _job_env(self, instance: JobInstance, job_dir: Path) -> Dict[str, str]:
        env = os.environ.copy()
        env.update(instance.env)
        for axis_name, value in instance.binding.items():
            env[axis_env_name(axis_name)] = _text(value)
        env["MATRIXCI_JOB_ID"] = instance.id
        env["MATRIXCI_JOB_DIR"] = str(job_dir)
        env["TMPDIR"] = str(job_dir)
        return env

    def _open_log(self, instance: JobInstance) -> Optional[TextIO]:
        if self.log_dir is None:
            return None
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            return (self.log_dir / f"{job_key(instance.id)}.log").open("w", encoding="utf-8")
        except OSError as e:
            raise ExecutionError(
                job=instance.id,
                step=None,
                message=f"could not open job log: {e}",
                details={"log_dir": str(self.log_dir)},
            ) from e

    # ------------------------------------------------------------------
    # Process handling
    # ------------------------------------------------------------------

    @staticmethod
    def _signal(proc: subprocess.Popen, sig: int) -> None:
        try:
            if os.name == "posix":
                # the step runs in its own session; signal the whole group
                os.killpg(proc.pid, sig)
            else:
                proc.send_signal(sig)
        except (ProcessLookupError, PermissionError):
            pass

    def _terminate(self, proc: subprocess.Popen) -> Tuple[str, str]:
        self._signal(proc, signal.SIGTERM)
        try:
            return proc.communicate(timeout=self.terminate_grace)
        except subprocess.TimeoutExpired:
            self._signal(proc, getattr(signal, "SIGKILL", signal.SIGTERM))
            # could not be stopped promptly: wait it out
            return proc.communicate()

    def _run_step(
        self,
        instance: JobInstance,
        step: Step,
        env: Dict[str, str],
    ) -> StepResult:
        cwd = (self.repo_root / (step.cwd or instance.template.cwd or ".")).resolve()
        if not cwd.is_dir():
            raise ExecutionError(
                job=instance.id,
                step=step.name,
                message=f"step cwd not found: {cwd}",
            )

        step_env = dict(env)
        step_env.update(step.env)

        start = time.monotonic()
        try:
            proc = subprocess.Popen(
                step.run,
                shell=True,
                cwd=str(cwd),
                env=step_env,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                start_new_session=(os.name == "posix"),
            )
        except OSError as e:
            raise ExecutionError(
                job=instance.id,
                step=step.name,
                message=f"could not launch command: {e}",
                details={"cmd": step.run},
            ) from e

        deadline = start + step.timeout if step.timeout else None
        timed_out = False
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                if self.cancel_token.cancelled:
                    stdout, stderr = self._terminate(proc)
                    break
                if deadline is not None and time.monotonic() >= deadline:
                    timed_out = True
                    stdout, stderr = self._terminate(proc)
                    break

        exit_code = TIMEOUT_EXIT_CODE if timed_out else proc.returncode
        return StepResult(
            step=step,
            exit_code=exit_code,
            duration=time.monotonic() - start,
            stdout=stdout or "",
            stderr=stderr or "",
            timed_out=timed_out,
        )

    @staticmethod
    def _write_log(log: Optional[TextIO], res: StepResult) -> None:
        if log is None:
            return
        log.write(f"==> {res.step.name}\n$ {res.step.run}\n")
        if res.stdout:
            log.write(res.stdout if res.stdout.endswith("\n") else res.stdout + "\n")
        if res.stderr:
            log.write(res.stderr if res.stderr.endswith("\n") else res.stderr + "\n")
        tail = " (timed out)" if res.timed_out else ""
        log.write(f"<== exit={res.exit_code} duration={res.duration:.2f}s{tail}\n\n")
        log.flush()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self, instance: JobInstance) -> JobResult:
        """
        Execute one job instance.

        Returns a JobResult (PASSED or FAILED). A step that exits non-zero
        stops the job unless the step has continue_on_error. Raises
        ExecutionError when a command cannot be launched at all; the
        results of steps that already ran are attached to the error.
        """
        start = time.monotonic()
        results: List[StepResult] = []
        status, reason = JobStatus.PASSED, None
        error: Optional[Exception] = None
        console = self.console

        console.print_job_start(instance.id)
        job_dir = self._prepare_workspace(instance)
        env = self._job_env(instance, job_dir)
        log = None
        try:
            log = self._open_log(instance)
            for step in instance.steps:
                if self.cancel_token.cancelled:
                    status, reason, error = JobStatus.FAILED, "cancelled", Cancelled(instance.id)
                    break

                console.print_step(instance.id, step.name)
                res = self._run_step(instance, step, env)
                results.append(res)
                self._write_log(log, res)

                if res.ok:
                    continue
                if self.cancel_token.cancelled:
                    status, reason, error = JobStatus.FAILED, "cancelled", Cancelled(instance.id)
                    break

                hint = hint_for(step.run) if res.exit_code == NOT_FOUND_EXIT_CODE else None
                console.print_failure(
                    instance.id,
                    step.name,
                    reason=(res.stderr or res.stdout)[-4000:],
                    exit_code=res.exit_code,
                    hint=hint,
                    tolerated=step.continue_on_error,
                    timed_out=res.timed_out,
                )
                if step.continue_on_error:
                    continue
                status, reason = JobStatus.FAILED, "step_failed"
                error = StepFailure(job=instance.id, step=step.name, cmd=step.run, exit_code=res.exit_code)
                break
        except ExecutionError as e:
            e.step_results = results
            raise
        finally:
            if log is not None:
                log.close()
            if not self.keep_workspace:
                shutil.rmtree(job_dir, ignore_errors=True)

        return JobResult(
            instance=instance,
            status=status,
            step_results=results,
            reason=reason,
            error=error,
            duration=time.monotonic() - start,
        )
