"""
Training and prediction orchestration.

Requests are validated before any script is built. A model record is built
and stored only after the interpreter run succeeded and its payload decoded
completely, so a failed run leaves the registry untouched.
"""

import time
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError as PydanticValidationError

from notebook_engine import exceptions
from notebook_engine.config import MLConfig
from notebook_engine.exceptions import DecodeError, ModelNotFoundError, ScriptError
from notebook_engine.execution.coercion import to_builtin
from notebook_engine.execution.models import ExecutionResult
from notebook_engine.execution.service import ExecutionService
from notebook_engine.execution.supervisor import CancellationToken
from notebook_engine.logging_config import get_logger
from notebook_engine.ml.catalog import get_algorithm
from notebook_engine.ml.model_registry import ModelRegistry
from notebook_engine.ml.models import (
    FeatureImportance,
    ModelRecord,
    OpaqueBytes,
    PredictionResult,
    TrainingOutcome,
    TrainingRequest,
    new_model_id,
)
from notebook_engine.ml.validation import RequestValidator
from notebook_engine.scripts.training import build_prediction_script, build_training_script

logger = get_logger(__name__)


def project_rows(
    rows: Sequence[Mapping[str, Any]],
    columns: Sequence[str]
) -> List[Dict[str, Any]]:
    """Copies of ``rows`` holding only ``columns``."""
    return [{name: row.get(name) for name in columns} for row in rows]


def parse_model_payload(
    payload: Any
) -> Tuple[Dict[str, float], Optional[List[FeatureImportance]], OpaqueBytes]:
    """
    Decode performance, feature importance and bundle from a training payload.

    Raises:
        DecodeError: If any of them is missing or malformed
    """
    if not isinstance(payload, dict):
        raise DecodeError("Training produced no result payload")

    performance = to_builtin(payload.get("performance") or {})
    if not isinstance(performance, dict):
        raise DecodeError("Training payload has malformed performance metrics")
    performance = {
        str(key): float(value) for key, value in performance.items()
        if isinstance(value, (int, float)) and not isinstance(value, bool)
    }

    try:
        importance = payload.get("featureImportance")
        importance = (
            [FeatureImportance.model_validate(item) for item in to_builtin(importance)]
            if importance else None
        )
        state = payload.get("serializedState")
        if not state:
            raise DecodeError("Training payload carries no serialized model state")
        state = OpaqueBytes.model_validate(state if isinstance(state, dict) else {"data": state})
    except (PydanticValidationError, TypeError) as e:
        raise DecodeError(f"Training payload could not be decoded: {e}")

    return performance, importance, state


def raise_for_failure(result: ExecutionResult, action: str) -> None:
    """Turn a failed execution into the matching engine exception."""
    if result.success:
        return
    error_class = getattr(exceptions, result.error_type or "", None)
    if not (isinstance(error_class, type) and issubclass(error_class, exceptions.EngineException)):
        error_class = ScriptError
    raise error_class(
        f"{action} failed: {result.error or 'unknown error'}",
        {"executionId": result.execution_id, "exitCode": result.exit_code}
    )


class TrainingOrchestrator:
    """Trains models out of process and replays them for prediction."""

    def __init__(
        self,
        service: ExecutionService,
        registry: ModelRegistry,
        config: Optional[MLConfig] = None,
        validator: Optional[RequestValidator] = None
    ):
        self.service = service
        self.registry = registry
        self.config = config or MLConfig()
        self.validator = validator or RequestValidator(self.config.min_training_rows)

    async def train_model(
        self,
        request: TrainingRequest,
        timeout_ms: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None,
        execution_id: Optional[str] = None
    ) -> TrainingOutcome:
        """
        Train one model and register it on success.

        Raises:
            ValidationError: If the request breaks an invariant (nothing is spawned)
        """
        self.validator.validate_training(request)
        spec = get_algorithm(request.task_type, request.algorithm)

        code = build_training_script(
            spec,
            features=request.feature_columns,
            target=request.target_column,
            hyperparameters=request.hyperparameters,
            test_fraction=request.test_fraction or self.config.default_test_fraction,
            random_state=self.config.random_state,
            cv_folds=self.config.cv_folds,
            cross_validation=request.cross_validation,
        )
        columns = list(request.feature_columns)
        if request.target_column:
            columns.append(request.target_column)

        logger.info(
            "training_started",
            algorithm=spec.name,
            task_type=spec.task_type.value,
            rows=len(request.rows),
            features=len(request.feature_columns),
        )
        result = await self.service.execute_training(
            code,
            rows=project_rows(request.rows, columns),
            columns=columns,
            timeout_ms=timeout_ms,
            cancel_token=cancel_token,
            execution_id=execution_id,
        )

        if not result.success:
            logger.warning("training_failed", algorithm=spec.name, error_type=result.error_type)
            return self._failed(result)

        try:
            performance, importance, state = parse_model_payload(result.result)
        except DecodeError as e:
            logger.warning("training_payload_undecodable", algorithm=spec.name, error=e.message)
            return self._failed(result, error=e.message, error_type="DecodeError")

        record = ModelRecord(
            id=new_model_id(spec.name),
            name=request.name or f"{spec.name}_{int(time.time() * 1000)}",
            algorithm=spec.name,
            task_type=spec.task_type,
            feature_columns=request.feature_columns,
            target_column=request.target_column,
            performance=performance,
            feature_importance=importance,
            hyperparameters=request.hyperparameters,
            serialized_state=state,
        )
        self.registry.put(record)
        logger.info("model_registered", model_id=record.id, algorithm=spec.name, performance=performance)

        predictions = result.result.get("predictions")
        return TrainingOutcome(
            success=True,
            model_id=record.id,
            performance=performance,
            feature_importance=importance,
            predictions=to_builtin(predictions) if predictions is not None else None,
            output=result.output,
            execution_time_ms=result.execution_time_ms,
        )

    async def predict(
        self,
        model_id: str,
        rows: Sequence[Mapping[str, Any]],
        timeout_ms: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None
    ) -> PredictionResult:
        """
        Predict with a stored model.

        Raises:
            ModelNotFoundError: If the model is unknown or has no stored bundle
            ValidationError: If the rows lack any of the model's features
            ScriptError: If the prediction script fails
            DecodeError: If the script returns no usable prediction list
        """
        record = self.registry.require(model_id)
        if record.serialized_state is None:
            raise ModelNotFoundError(
                f"Model {model_id} has no serialized state to predict with",
                {"modelId": model_id}
            )
        self.validator.validate_prediction(record.feature_columns, rows)

        result = await self.service.execute_training(
            build_prediction_script(record.feature_columns),
            rows=project_rows(rows, record.feature_columns),
            columns=record.feature_columns,
            extra={"bundle": record.serialized_state.data},
            timeout_ms=timeout_ms,
            cancel_token=cancel_token,
        )
        raise_for_failure(result, "Prediction")

        payload = result.result if isinstance(result.result, dict) else {}
        predictions = to_builtin(payload.get("predictions"))
        if not isinstance(predictions, list):
            raise DecodeError("Prediction script returned no prediction list", {"modelId": model_id})
        if len(predictions) != len(rows):
            raise DecodeError(
                f"Expected {len(rows)} predictions, got {len(predictions)}",
                {"modelId": model_id}
            )

        logger.info("prediction_finished", model_id=model_id, rows=len(rows))
        return PredictionResult(
            model_id=model_id,
            predictions=predictions,
            execution_time_ms=result.execution_time_ms,
        )

    def _failed(
        self,
        result: ExecutionResult,
        error: Optional[str] = None,
        error_type: Optional[str] = None
    ) -> TrainingOutcome:
        return TrainingOutcome(
            success=False,
            error=error or result.error,
            error_type=error_type or result.error_type,
            output=result.output,
            execution_time_ms=result.execution_time_ms,
        )
