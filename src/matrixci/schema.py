"""
Document schema for YAML/JSON pipeline definitions.

The shape follows the GitHub Actions workflow files these pipelines were
first written as, restricted to the parts matrixci executes: jobs, steps
with `run:`, `strategy.matrix`, `if:`, `env:`, `continue-on-error:`,
`timeout-minutes:` and `working-directory:`. Keys matrixci does not use
(`on:`, `runs-on:`, `with:`, ...) are accepted and ignored.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Scalar = Union[str, int, float, bool]


def _stringify_env(value: Any) -> Any:
    if value is None:
        return {}
    if isinstance(value, dict):
        return {str(k): str(v).lower() if isinstance(v, bool) else str(v) for k, v in value.items()}
    return value


class StepDoc(BaseModel):
    """One entry of `jobs.<id>.steps`."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: Optional[str] = Field(None, description="Display name")
    run: Optional[str] = Field(None, description="Shell command")
    uses: Optional[str] = Field(None, description="Action reference (not executed)")
    if_: Optional[str] = Field(None, alias="if", description="Step condition")
    continue_on_error: bool = Field(False, alias="continue-on-error")
    working_directory: Optional[str] = Field(None, alias="working-directory")
    timeout_minutes: Optional[float] = Field(None, alias="timeout-minutes", gt=0)
    env: Dict[str, str] = Field(default_factory=dict)

    @field_validator("env", mode="before")
    @classmethod
    def coerce_env(cls, value: Any) -> Any:
        return _stringify_env(value)

    @model_validator(mode="after")
    def check_run_or_uses(self) -> "StepDoc":
        if self.run is None and self.uses is None:
            raise ValueError("step needs either 'run' or 'uses'")
        return self


class MatrixDoc(BaseModel):
    """`strategy.matrix`: every extra key is an axis."""
    model_config = ConfigDict(extra="allow")

    include: List[Dict[str, Scalar]] = Field(default_factory=list)
    exclude: List[Dict[str, Scalar]] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_axes(self) -> "MatrixDoc":
        for key, value in (self.model_extra or {}).items():
            if not isinstance(value, list):
                raise ValueError(f"matrix axis '{key}' must be a list of values")
            for v in value:
                if not isinstance(v, (str, int, float, bool)):
                    raise ValueError(f"matrix axis '{key}' values must be scalars")
        return self

    @property
    def axes(self) -> Dict[str, List[Scalar]]:
        return dict(self.model_extra or {})


class StrategyDoc(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    matrix: Optional[MatrixDoc] = None
    # accepted for compatibility; jobs never stop each other
    fail_fast: bool = Field(True, alias="fail-fast")


class JobDoc(BaseModel):
    """One entry of `jobs`."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: Optional[str] = None
    if_: Optional[str] = Field(None, alias="if")
    env: Dict[str, str] = Field(default_factory=dict)
    strategy: Optional[StrategyDoc] = None
    working_directory: Optional[str] = Field(None, alias="working-directory")
    steps: List[StepDoc] = Field(..., min_length=1)

    @field_validator("env", mode="before")
    @classmethod
    def coerce_env(cls, value: Any) -> Any:
        return _stringify_env(value)


class WorkflowDoc(BaseModel):
    """A whole pipeline document."""
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    env: Dict[str, str] = Field(default_factory=dict)
    jobs: Dict[str, JobDoc] = Field(..., min_length=1)

    @field_validator("env", mode="before")
    @classmethod
    def coerce_env(cls, value: Any) -> Any:
        return _stringify_env(value)
