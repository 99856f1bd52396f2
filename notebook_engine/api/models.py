"""Pydantic models for API request/response validation"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, Field, field_validator

from notebook_engine.execution.models import CamelModel
from notebook_engine.ml.models import ModelRecord, ModelSummary


class ErrorResponse(CamelModel):
    """Error response model"""
    error: str = Field(
        ...,
        description="Error type"
    )
    message: str = Field(
        ...,
        description="Error message"
    )
    details: Optional[Dict[str, Any]] = Field(
        None,
        description="Additional error details"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Error timestamp"
    )


class CancelResponse(CamelModel):
    """Result of a cancellation request"""
    execution_id: str
    cancelled: bool = Field(..., description="False when the execution was not running")


class PackageInstallRequest(CamelModel):
    """Request model for package installation"""
    package_name: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("packageName", "package_name", "package"),
        description="Requirement to install, e.g. 'seaborn' or 'numpy>=1.26'"
    )

    @field_validator("package_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("packageName cannot be empty")
        return v.strip()


class PackageInstallResponse(CamelModel):
    success: bool
    message: str


class PackageInfo(CamelModel):
    name: str
    version: str


class PackageListResponse(CamelModel):
    packages: List[PackageInfo] = Field(default_factory=list)


class ModelListResponse(CamelModel):
    models: List[ModelSummary] = Field(default_factory=list)
    total: int = 0


class ModelDetailResponse(CamelModel):
    """A model record without its bundle payload"""
    model: ModelSummary
    hyperparameters: Dict[str, Any] = Field(default_factory=dict)
    feature_importance: Optional[List[Dict[str, Any]]] = None
    state_format: Optional[str] = None
    state_size: Optional[int] = None

    @classmethod
    def from_record(cls, record: ModelRecord) -> "ModelDetailResponse":
        state = record.serialized_state
        return cls(
            model=ModelSummary.from_record(record),
            hyperparameters=record.hyperparameters,
            feature_importance=(
                [item.model_dump(by_alias=True) for item in record.feature_importance]
                if record.feature_importance else None
            ),
            state_format=state.format if state else None,
            state_size=state.size if state else None,
        )


class DeleteModelResponse(CamelModel):
    model_id: str
    success: bool
    message: str


class ExportModelResponse(CamelModel):
    model_id: str
    model_data: str = Field(..., description="JSON text accepted by the import endpoint")


class ImportModelRequest(CamelModel):
    model_data: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("modelData", "model_data"),
        description="Exported model JSON text"
    )


class ImportModelResponse(CamelModel):
    model_id: str
