"""Pydantic models for training, prediction, AutoML and the model catalog"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, ConfigDict, Field, field_validator, model_validator

from notebook_engine.execution.models import CamelModel


class TaskType(str, Enum):
    """Learning task"""
    CLASSIFICATION = "classification"
    REGRESSION = "regression"
    CLUSTERING = "clustering"

    @property
    def supervised(self) -> bool:
        return self != TaskType.CLUSTERING


AUTO_TASK_TYPE = "auto"


class OptimizeFor(str, Enum):
    """AutoML candidate selection preference"""
    ACCURACY = "accuracy"
    SPEED = "speed"
    BALANCED = "balanced"


class OpaqueBytes(CamelModel):
    """
    Serialized model bundle produced by the interpreter.

    ``data`` is base64 text that only the producing runtime can decode; the
    host stores and returns it untouched. The remaining fields record where
    it came from.
    """

    data: str = Field(..., min_length=1, description="Base64-encoded bundle")
    format: str = Field("joblib", description="Serialization format of the bundle")
    runtime: Optional[str] = Field(None, description="Producing runtime, e.g. 'python'")
    runtime_version: Optional[str] = None
    library_versions: Dict[str, str] = Field(default_factory=dict)

    @property
    def size(self) -> int:
        return len(self.data)


class FeatureImportance(CamelModel):
    feature: str
    importance: float


class TrainingRequest(CamelModel):
    """Request to train one model"""

    rows: List[Dict[str, Any]] = Field(
        ...,
        validation_alias=AliasChoices("rows", "data"),
        description="Training rows"
    )
    feature_columns: List[str] = Field(
        ...,
        validation_alias=AliasChoices("featureColumns", "feature_columns", "features"),
        description="Ordered feature names"
    )
    target_column: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("targetColumn", "target_column", "target"),
        description="Target column; absent for clustering"
    )
    task_type: TaskType
    algorithm: str
    hyperparameters: Dict[str, Any] = Field(default_factory=dict)
    cross_validation: bool = True
    test_fraction: Optional[float] = Field(
        None,
        gt=0.0,
        lt=1.0,
        validation_alias=AliasChoices("testFraction", "test_fraction", "testSize"),
        description="Held-out fraction; the configured default when omitted"
    )
    name: Optional[str] = Field(None, description="Display name for the stored model")

    @field_validator("target_column")
    @classmethod
    def blank_target_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v


class ModelRecord(CamelModel):
    """A trained model held by the registry. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    algorithm: str
    task_type: TaskType
    feature_columns: List[str] = Field(
        ...,
        validation_alias=AliasChoices("featureColumns", "feature_columns", "features")
    )
    target_column: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("targetColumn", "target_column", "target")
    )
    performance: Dict[str, float] = Field(default_factory=dict)
    feature_importance: Optional[List[FeatureImportance]] = None
    hyperparameters: Dict[str, Any] = Field(default_factory=dict)
    serialized_state: Optional[OpaqueBytes] = Field(
        None,
        validation_alias=AliasChoices("serializedState", "serialized_state", "serializedModel")
    )
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: int = Field(1, ge=1)

    @field_validator("serialized_state", mode="before")
    @classmethod
    def accept_bare_state(cls, v: Any) -> Any:
        """Older exports carry the bundle as a bare base64 string."""
        if isinstance(v, str):
            return {"data": v} if v else None
        return v

    @field_validator("performance", mode="before")
    @classmethod
    def drop_non_numeric_metrics(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {
                key: value for key, value in v.items()
                if isinstance(value, (int, float)) and not isinstance(value, bool)
            }
        return v


class ModelSummary(CamelModel):
    """Registry listing entry; omits the bundle"""

    id: str
    name: str
    algorithm: str
    task_type: TaskType
    feature_columns: List[str]
    target_column: Optional[str] = None
    performance: Dict[str, float] = Field(default_factory=dict)
    created_at: datetime
    version: int
    has_state: bool

    @classmethod
    def from_record(cls, record: ModelRecord) -> "ModelSummary":
        return cls(
            id=record.id,
            name=record.name,
            algorithm=record.algorithm,
            task_type=record.task_type,
            feature_columns=record.feature_columns,
            target_column=record.target_column,
            performance=record.performance,
            created_at=record.created_at,
            version=record.version,
            has_state=record.serialized_state is not None,
        )


class TrainingOutcome(CamelModel):
    """Result of one training call"""

    success: bool
    model_id: Optional[str] = None
    performance: Dict[str, float] = Field(default_factory=dict)
    feature_importance: Optional[List[FeatureImportance]] = None
    predictions: Optional[List[Any]] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    output: str = ""
    execution_time_ms: int = Field(0, ge=0)


class PredictionRequest(CamelModel):
    model_id: str
    rows: List[Dict[str, Any]] = Field(..., validation_alias=AliasChoices("rows", "data"))


class PredictionResult(CamelModel):
    model_id: str
    predictions: List[Any]
    execution_time_ms: int = Field(0, ge=0)


class AutoMLRequest(CamelModel):
    """Request to search the catalog for the best model"""

    rows: List[Dict[str, Any]] = Field(..., validation_alias=AliasChoices("rows", "data"))
    target_column: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("targetColumn", "target_column", "target")
    )
    task_type: Union[TaskType, Literal["auto"]] = Field(
        ...,
        description='"auto" infers the task from the target column'
    )
    feature_columns: Optional[List[str]] = Field(
        None,
        validation_alias=AliasChoices("featureColumns", "feature_columns", "features"),
        description="Defaults to every column except the target"
    )
    max_models: Optional[int] = Field(None, ge=1)
    max_time_seconds: Optional[float] = Field(
        None,
        gt=0,
        validation_alias=AliasChoices("maxTimeSeconds", "max_time_seconds", "maxTime")
    )
    optimize_for: OptimizeFor = OptimizeFor.ACCURACY
    metric: Optional[str] = Field(None, description="Scoring metric; task default when omitted")
    cross_validation: bool = False
    test_fraction: Optional[float] = Field(
        None,
        gt=0.0,
        lt=1.0,
        validation_alias=AliasChoices("testFraction", "test_fraction", "testSize")
    )
    name: Optional[str] = None

    @field_validator("target_column")
    @classmethod
    def blank_target_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v


class LeaderboardEntry(CamelModel):
    algorithm: str
    score: float
    hyperparameters: Dict[str, Any] = Field(default_factory=dict)
    performance: Dict[str, float] = Field(default_factory=dict)
    training_time_ms: int = Field(0, ge=0)


class FailedCandidate(CamelModel):
    algorithm: str
    error: str


class AutoMLResult(CamelModel):
    """Outcome of an AutoML run"""

    best_algorithm: str
    best_score: float
    metric: str
    leaderboard: List[LeaderboardEntry]
    feature_importance: Optional[List[FeatureImportance]] = None
    performance: Dict[str, float] = Field(default_factory=dict)
    model_id: str
    failed_candidates: List[FailedCandidate] = Field(default_factory=list)
    stopped_early: bool = False
    execution_time_ms: int = Field(0, ge=0)

    @model_validator(mode="after")
    def winner_leads_leaderboard(self) -> "AutoMLResult":
        if self.leaderboard and self.leaderboard[0].algorithm != self.best_algorithm:
            raise ValueError("best_algorithm must be the first leaderboard entry")
        return self


def new_model_id(algorithm: str) -> str:
    """Fresh registry id: algorithm, timestamp and a random suffix."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    return f"{algorithm}_{stamp}_{uuid.uuid4().hex[:8]}"
