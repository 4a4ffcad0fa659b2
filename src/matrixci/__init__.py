from .conditions import axis, parse_condition
from .dsl import job, sh, matrix, wf, pipeline, JobBuilder, build
from .errors import InvalidDefinition, ExecutionError, StepFailure, Cancelled
from .executor import CancelToken, JobExecutor
from .loader import load_pipeline
from .expansion import expand, expand_all
from .model import JobTemplate, JobInstance, JobResult, JobStatus, Pipeline, PipelineResult, Step, StepResult
from .runner import Orchestrator, plan, run_pipeline, run_pipelines

__version__ = "0.2.0"

__all__ = [
    "axis",
    "parse_condition",
    "job",
    "sh",
    "matrix",
    "wf",
    "pipeline",
    "JobBuilder",
    "build",
    "InvalidDefinition",
    "ExecutionError",
    "StepFailure",
    "Cancelled",
    "CancelToken",
    "JobExecutor",
    "load_pipeline",
    "expand",
    "expand_all",
    "JobTemplate",
    "JobInstance",
    "JobResult",
    "JobStatus",
    "Pipeline",
    "PipelineResult",
    "Step",
    "StepResult",
    "Orchestrator",
    "plan",
    "run_pipeline",
    "run_pipelines",
]
