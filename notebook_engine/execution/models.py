"""Data shapes shared by the execution layer"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel

from notebook_engine.exceptions import ExecutionError
from notebook_engine.execution.coercion import to_builtin

EXECUTION_ID_PATTERN = r"^[A-Za-z0-9_-]{1,64}$"


class CamelModel(BaseModel):
    """Base model serialised in camelCase and populated by either spelling"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=()
    )


class ProcessState(str, Enum):
    """Lifecycle of one external process invocation"""

    IDLE = "idle"
    SPAWNED = "spawned"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    SPAWN_FAILED = "spawn_failed"


@dataclass
class ProcessResult:
    """Captured streams and exit status of one interpreter run."""

    stdout: str
    stderr: str
    exit_code: int
    state: ProcessState
    duration_ms: int = 0
    failure: Optional[ExecutionError] = None

    @property
    def timed_out(self) -> bool:
        return self.state == ProcessState.TIMED_OUT

    @property
    def completed(self) -> bool:
        return self.state == ProcessState.COMPLETED


class DataContext(CamelModel):
    """Tabular rows handed to a cell"""

    rows: List[Dict[str, Any]] = Field(
        default_factory=list,
        validation_alias=AliasChoices("rows", "data"),
        description="Ordered rows, each a mapping of column to value"
    )
    columns: Optional[List[str]] = Field(
        None,
        description="Column names; inferred from the first row when omitted"
    )


class ExecutionRequest(CamelModel):
    """Request to run a cell of analysis code"""

    code: str = Field(..., description="Cell source")
    data_context: Optional[DataContext] = Field(None, description="Optional dataset exposed as `data`")
    execution_id: Optional[str] = Field(
        None,
        pattern=EXECUTION_ID_PATTERN,
        description="Caller-chosen id, used for cancellation"
    )
    timeout_ms: Optional[int] = Field(None, gt=0, description="Overrides the default timeout")


class ExecutionResult(CamelModel):
    """Uniform result envelope returned for every execution"""

    success: bool
    output: str = ""
    error: Optional[str] = None
    error_type: Optional[str] = None
    result: Any = None
    execution_time_ms: int = Field(default=0, ge=0)
    exit_code: Optional[int] = None
    execution_id: Optional[str] = None

    @field_serializer("result")
    def serialize_result(self, value: Any) -> Any:
        return to_builtin(value)
