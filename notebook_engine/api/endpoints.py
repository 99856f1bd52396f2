"""Execution, package and model endpoints"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, status

from notebook_engine.api.models import (
    CancelResponse,
    DeleteModelResponse,
    ExportModelResponse,
    ImportModelRequest,
    ImportModelResponse,
    ModelDetailResponse,
    ModelListResponse,
    PackageInfo,
    PackageInstallRequest,
    PackageInstallResponse,
    PackageListResponse,
)
from notebook_engine.execution.models import ExecutionRequest, ExecutionResult
from notebook_engine.integration import EngineIntegration, get_integration
from notebook_engine.ml.models import (
    AutoMLRequest,
    AutoMLResult,
    ModelSummary,
    PredictionRequest,
    PredictionResult,
    TaskType,
    TrainingOutcome,
    TrainingRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def get_engine() -> EngineIntegration:
    """Dependency returning the shared engine components"""
    return get_integration()


@router.post(
    "/python/execute",
    response_model=ExecutionResult,
    tags=["Execution"],
    summary="Run a cell of analysis code"
)
async def execute_code(
    request: ExecutionRequest,
    engine: EngineIntegration = Depends(get_engine)
) -> ExecutionResult:
    """
    Run user code out of process against the optional data context.

    Failures of the code itself, timeouts and cancellations are reported in
    the result body, not as HTTP errors.
    """
    return await engine.execution_service.execute(request)


@router.post(
    "/python/execute/{execution_id}/cancel",
    response_model=CancelResponse,
    tags=["Execution"],
    summary="Cancel a running execution"
)
async def cancel_execution(
    execution_id: str,
    engine: EngineIntegration = Depends(get_engine)
) -> CancelResponse:
    cancelled = engine.execution_service.cancel(execution_id)
    return CancelResponse(execution_id=execution_id, cancelled=cancelled)


@router.get(
    "/python/packages",
    response_model=PackageListResponse,
    tags=["Packages"],
    summary="List installed interpreter packages"
)
async def list_packages(engine: EngineIntegration = Depends(get_engine)) -> PackageListResponse:
    packages = await engine.package_manager.list_packages()
    return PackageListResponse(packages=[PackageInfo(**item) for item in packages])


@router.post(
    "/python/packages",
    response_model=PackageInstallResponse,
    tags=["Packages"],
    summary="Install a package into the interpreter environment"
)
async def install_package(
    request: PackageInstallRequest,
    engine: EngineIntegration = Depends(get_engine)
) -> PackageInstallResponse:
    name = request.package_name
    success = await engine.package_manager.install_package(name)
    message = f"Package {name} installed successfully" if success else f"Failed to install {name}"
    return PackageInstallResponse(success=success, message=message)


@router.post(
    "/ml/train",
    response_model=TrainingOutcome,
    tags=["Models"],
    summary="Train a model"
)
async def train_model(
    request: TrainingRequest,
    engine: EngineIntegration = Depends(get_engine)
) -> TrainingOutcome:
    """
    Train one model and register it when training succeeds.

    Invalid requests are rejected with 400 before anything runs.
    """
    return await engine.training_orchestrator.train_model(request)


@router.post(
    "/ml/predict",
    response_model=PredictionResult,
    tags=["Models"],
    summary="Predict with a stored model"
)
async def predict(
    request: PredictionRequest,
    engine: EngineIntegration = Depends(get_engine)
) -> PredictionResult:
    return await engine.training_orchestrator.predict(request.model_id, request.rows)


@router.post(
    "/ml/automl",
    response_model=AutoMLResult,
    tags=["Models"],
    summary="Search the catalog for the best model"
)
async def run_automl(
    request: AutoMLRequest,
    engine: EngineIntegration = Depends(get_engine)
) -> AutoMLResult:
    return await engine.automl_orchestrator.run_automl(request)


@router.get(
    "/ml/models",
    response_model=ModelListResponse,
    tags=["Models"],
    summary="List stored models"
)
async def list_models(
    task_type: Optional[TaskType] = None,
    algorithm: Optional[str] = None,
    engine: EngineIntegration = Depends(get_engine)
) -> ModelListResponse:
    records = engine.model_registry.list_models(task_type=task_type, algorithm=algorithm)
    return ModelListResponse(
        models=[ModelSummary.from_record(record) for record in records],
        total=len(records),
    )


@router.get(
    "/ml/models/{model_id}",
    response_model=ModelDetailResponse,
    tags=["Models"],
    summary="Get one stored model"
)
async def get_model(
    model_id: str,
    engine: EngineIntegration = Depends(get_engine)
) -> ModelDetailResponse:
    return ModelDetailResponse.from_record(engine.model_registry.require(model_id))


@router.delete(
    "/ml/models/{model_id}",
    response_model=DeleteModelResponse,
    tags=["Models"],
    summary="Delete a stored model"
)
async def delete_model(
    model_id: str,
    engine: EngineIntegration = Depends(get_engine)
) -> DeleteModelResponse:
    success = engine.model_registry.delete(model_id)
    return DeleteModelResponse(
        model_id=model_id,
        success=success,
        message="Model deleted successfully" if success else "Model not found",
    )


@router.get(
    "/ml/models/{model_id}/export",
    response_model=ExportModelResponse,
    tags=["Models"],
    summary="Export a stored model as JSON text"
)
async def export_model(
    model_id: str,
    engine: EngineIntegration = Depends(get_engine)
) -> ExportModelResponse:
    return ExportModelResponse(
        model_id=model_id,
        model_data=engine.model_registry.export_model(model_id),
    )


@router.post(
    "/ml/models/import",
    response_model=ImportModelResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Models"],
    summary="Import an exported model under a new id"
)
async def import_model(
    request: ImportModelRequest,
    engine: EngineIntegration = Depends(get_engine)
) -> ImportModelResponse:
    model_id = engine.model_registry.import_model(request.model_data)
    logger.info(f"Imported model as {model_id}")
    return ImportModelResponse(model_id=model_id)
