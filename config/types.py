from typing import Dict, Any, Optional, Literal
from pydantic import BaseModel, Field, field_validator


class EngineSettings(BaseModel):
    """Resolved workflow engine settings"""

    default_concurrency_limit: int = Field(default=1, description="Concurrency limit for workflows that do not set one")
    default_mode: Literal["real", "mock"] = Field(default="real", description="Execution mode when a call does not pass one")
    step_timeout_seconds: float = Field(default=30.0, description="Per-step timeout; 0 disables")
    fail_on_step_failure: bool = Field(default=True, description="Whether a failed step fails the run")
    step_duration_warning_ms: float = Field(default=10000, description="Slow-step warning threshold")
    allow_overwrite: bool = Field(default=True, description="Whether re-registering a workflow id replaces it")
    definitions_path: Optional[str] = Field(default=None, description="Directory of workflow files loaded at startup")
    metrics_log_path: Optional[str] = Field(default=None, description="Directory for JSON-lines metrics; None keeps them in memory")
    trend_window: int = Field(default=5, description="Window size for performance trend analysis")

    @field_validator("default_concurrency_limit", "trend_window")
    @classmethod
    def validate_positive(cls, v):
        """Validate counts are positive."""
        if v < 1:
            raise ValueError("Value must be a positive integer")
        return v

    @field_validator("step_timeout_seconds", "step_duration_warning_ms")
    @classmethod
    def validate_non_negative(cls, v):
        """Validate durations are not negative."""
        if v < 0:
            raise ValueError("Durations cannot be negative")
        return v


class ExecutionOptions(BaseModel):
    """Per-call options for a workflow execution"""

    mode: Optional[Literal["real", "mock"]] = None
    concurrency_limit_override: Optional[int] = None
    fail_on_step_failure: Optional[bool] = None
    output_captures: Dict[str, str] = Field(default_factory=dict)
    step_timeout: Optional[float] = None
    test_run_id: Optional[str] = None

    @field_validator("concurrency_limit_override")
    @classmethod
    def validate_concurrency(cls, v):
        """Validate the override is a positive integer."""
        if v is not None and v < 1:
            raise ValueError("concurrency_limit_override must be a positive integer")
        return v

    @field_validator("step_timeout")
    @classmethod
    def validate_timeout(cls, v):
        """Validate the timeout is not negative."""
        if v is not None and v < 0:
            raise ValueError("step_timeout cannot be negative")
        return v

    @classmethod
    def from_value(cls, value: Any) -> "ExecutionOptions":
        """Accept None, a dict, or an ExecutionOptions instance."""
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        return cls(**value)
