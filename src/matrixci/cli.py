# cli.py
from __future__ import annotations

import signal
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Tuple

import click

from matrixci.errors import InvalidDefinition
from matrixci.executor import CancelToken
from matrixci.loader import load_pipelines
from matrixci.model import Pipeline
from matrixci.report import ConsoleReporter, JsonReporter, exit_code
from matrixci.runner import Orchestrator, plan
from matrixci.ui.console import Console, get_console, set_console

EXIT_INVALID_DEFINITION = 2
EXIT_INTERRUPTED = 130

DEFAULT_WORKFLOW = "matrixci_workflow.py"


def find_workflow_files(directory: Path = Path(".")) -> list[Path]:
    """
    Find all workflow files in a directory.

    Returns:
        List of Path objects for workflow files
    """
    workflow_files = []

    default_workflow = directory / DEFAULT_WORKFLOW
    if default_workflow.exists():
        workflow_files.append(default_workflow)

    for path in directory.glob("*_workflow.py"):
        if path != default_workflow:
            workflow_files.append(path)

    for name in ("matrixci.yml", "matrixci.yaml"):
        if (directory / name).exists():
            workflow_files.append(directory / name)

    return sorted(workflow_files)


def discover_workflows(workflow_args: tuple[str, ...]) -> list[Path]:
    """
    Resolve workflow files from arguments, or discover the default one.

    Raises:
        SystemExit: If a workflow cannot be found or discovery is ambiguous
    """
    console = get_console()

    if workflow_args:
        paths = []
        for arg in workflow_args:
            workflow_path = Path(arg)
            if not workflow_path.exists() and not workflow_path.suffix:
                workflow_path = Path(str(workflow_path) + ".py")
            if not workflow_path.exists():
                console.print_error(
                    "Workflow file not found",
                    f"Could not find workflow file: {arg}",
                    suggestion="Create a workflow file or specify a different path:\n  matrixci run my_workflow.py",
                )
                sys.exit(EXIT_INVALID_DEFINITION)
            paths.append(workflow_path)
        return paths

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=[
                "Looked for:",
                f"  {DEFAULT_WORKFLOW}",
                "  *_workflow.py",
                "  matrixci.yml / matrixci.yaml",
            ],
            suggestion="Create a workflow file, or pass one explicitly:\n  matrixci run ci.yml",
        )
        sys.exit(EXIT_INVALID_DEFINITION)

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which ones to run:",
            details=[file_list],
            suggestion=f"Specify workflows explicitly:\n  matrixci run {DEFAULT_WORKFLOW}",
        )
        sys.exit(EXIT_INVALID_DEFINITION)

    return workflow_files


def _load_or_exit(paths: list[Path]) -> List[Tuple[Pipeline, list]]:
    """
    Load and expand every pipeline up front, so a bad definition anywhere
    stops the run before any job starts.
    """
    console = get_console()
    try:
        return [(p, plan(p)) for p in load_pipelines(paths)]
    except InvalidDefinition as e:
        details = [f"job: {e.job}"] if e.job else []
        details += [f"{k}: {v}" for k, v in e.details.items()]
        console.print_error("Invalid pipeline definition", e.message, details=details or None)
        sys.exit(EXIT_INVALID_DEFINITION)


@contextmanager
def cancel_on_signals(token: CancelToken) -> Iterator[None]:
    """
    First SIGINT/SIGTERM: cooperative cancel (stop dispatch, terminate
    running commands). A second SIGINT interrupts immediately.

    The handler runs on the main thread, which may be inside Console._emit;
    it only flips the token and never prints.
    """
    previous = {}

    def _handler(signum, frame):
        if token.cancelled and signum == signal.SIGINT:
            raise KeyboardInterrupt
        token.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, _handler)
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.option("--quiet", "-q", is_flag=True, default=False, help="Only print failures and results")
@click.pass_context
def cli(ctx, debug, quiet):
    """matrixci: run matrix CI pipelines locally and report pass/fail."""
    console = Console(debug=debug, quiet=quiet)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.argument("workflows", nargs=-1)
@click.option(
    "--workers",
    default=None,
    type=click.IntRange(min=1),
    envvar="MATRIXCI_WORKERS",
    help="Maximum number of jobs running at once (default: unbounded)",
)
@click.option(
    "--work-dir",
    default=".matrixci/work",
    show_default=True,
    envvar="MATRIXCI_WORK_DIR",
    help="Root for per-job scratch directories",
)
@click.option(
    "--log-dir",
    default=None,
    envvar="MATRIXCI_LOG_DIR",
    help="Write one log file per job instance here",
)
@click.option(
    "--report",
    "report_path",
    default=None,
    envvar="MATRIXCI_REPORT",
    help="Write a JSON report of every pipeline to this file",
)
@click.option("--repo-root", default=".", show_default=True, help="Directory commands run in")
@click.option(
    "--terminate-grace",
    default=5.0,
    show_default=True,
    type=float,
    help="Seconds to wait after SIGTERM before killing a cancelled command",
)
@click.option("--keep-workspace", is_flag=True, default=False, help="Do not delete job scratch directories")
@click.pass_context
def run(ctx, workflows, workers, work_dir, log_dir, report_path, repo_root, terminate_grace, keep_workspace):
    """Run one or more pipeline definitions (.py, .yml, .yaml, .json).

    Each definition is an independent run; the exit code is 0 only if all
    of them pass.
    """
    console = get_console()
    paths = discover_workflows(workflows)
    pipelines = _load_or_exit(paths)

    token = CancelToken()
    reporters = [ConsoleReporter(console)]
    if report_path:
        reporters.append(JsonReporter(report_path))

    results = []
    try:
        with cancel_on_signals(token):
            for pipeline, planned in pipelines:
                orchestrator = Orchestrator(
                    repo_root=repo_root,
                    work_root=work_dir,
                    log_dir=log_dir,
                    max_workers=workers,
                    cancel_token=token,
                    console=console,
                    terminate_grace=terminate_grace,
                    keep_workspace=keep_workspace,
                )
                console.print_run_started(
                    pipeline=pipeline.name,
                    source=str(pipeline.source or "-"),
                    job_count=len(pipeline.jobs),
                    instance_count=len(planned),
                )
                result = orchestrator.run(pipeline)
                for reporter in reporters:
                    reporter.report(result)
                results.append(result)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(EXIT_INTERRUPTED)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    if token.cancelled:
        console.print_info("\nCancelled: remaining jobs were skipped")
        sys.exit(EXIT_INTERRUPTED)
    sys.exit(exit_code(results))


@cli.command(name="plan")
@click.argument("workflows", nargs=-1)
def plan_cmd(workflows):
    """Show the expanded job matrix and which jobs would be skipped."""
    console = get_console()
    paths = discover_workflows(workflows)

    for pipeline, planned in _load_or_exit(paths):
        console.print_header(f"{pipeline.name} ({pipeline.source or '-'})")
        console.print_plan(planned)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
