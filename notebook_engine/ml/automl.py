"""
AutoML orchestration.

Chooses candidate algorithms for a task, runs them all in one interpreter
invocation under a time budget, and registers only the winner.
"""

import numbers
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError as PydanticValidationError

from notebook_engine.config import MLConfig
from notebook_engine.exceptions import DecodeError
from notebook_engine.execution.service import ExecutionService
from notebook_engine.execution.supervisor import CancellationToken
from notebook_engine.logging_config import get_logger
from notebook_engine.ml.catalog import (
    AUTOML_CANDIDATES,
    AlgorithmSpec,
    get_algorithm,
    get_metric,
    heuristic_hyperparameters,
)
from notebook_engine.ml.model_registry import ModelRegistry
from notebook_engine.ml.models import (
    AUTO_TASK_TYPE,
    AutoMLRequest,
    AutoMLResult,
    FailedCandidate,
    LeaderboardEntry,
    ModelRecord,
    OptimizeFor,
    TaskType,
    new_model_id,
)
from notebook_engine.ml.training import parse_model_payload, project_rows, raise_for_failure
from notebook_engine.ml.validation import RequestValidator
from notebook_engine.scripts.automl import build_automl_script, candidate_entry

logger = get_logger(__name__)


def infer_task_type(rows: Sequence[Mapping[str, Any]], target: Optional[str]) -> TaskType:
    """
    Task implied by the data for an ``"auto"`` request.

    No target means clustering. A target whose non-null values are all
    numbers means regression; anything else is classification.
    """
    if target is None:
        return TaskType.CLUSTERING
    values = [row.get(target) for row in rows if row.get(target) is not None]
    if values and all(isinstance(v, numbers.Real) and not isinstance(v, bool) for v in values):
        return TaskType.REGRESSION
    return TaskType.CLASSIFICATION


class AutoMLOrchestrator:
    """Runs a budgeted search over the algorithm catalog."""

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

    def select_candidates(
        self,
        task_type: TaskType,
        optimize_for: OptimizeFor = OptimizeFor.ACCURACY,
        max_models: Optional[int] = None,
        n_rows: int = 0
    ) -> List[Tuple[AlgorithmSpec, Dict[str, Any]]]:
        """
        Candidate algorithms in trial order, each with its constructor arguments.

        ``speed`` drops the expensive algorithms. The list is cut to
        ``max_models`` (default from config), never beyond the configured cap.
        """
        task_type = TaskType(task_type)
        specs = [get_algorithm(task_type, name) for name in AUTOML_CANDIDATES[task_type]]
        if optimize_for == OptimizeFor.SPEED:
            specs = [spec for spec in specs if not spec.expensive]

        limit = min(max_models or self.config.automl_default_models, self.config.automl_max_models)
        specs = specs[:limit]

        return [
            (spec, spec.parameters(heuristic_hyperparameters(spec, n_rows), self.config.random_state))
            for spec in specs
        ]

    def resolve_task_type(self, request: AutoMLRequest) -> AutoMLRequest:
        """Return the request with an ``"auto"`` task type replaced by the inferred one."""
        if request.task_type != AUTO_TASK_TYPE:
            return request
        task_type = infer_task_type(request.rows, request.target_column)
        logger.info("automl_task_type_inferred", task_type=task_type.value, target=request.target_column)
        return request.model_copy(update={"task_type": task_type})

    async def run_automl(
        self,
        request: AutoMLRequest,
        cancel_token: Optional[CancellationToken] = None,
        execution_id: Optional[str] = None
    ) -> AutoMLResult:
        """
        Search for the best model and register it.

        Raises:
            ValidationError: If the request breaks an invariant (nothing is spawned)
            ScriptError: If the run fails, including when every candidate failed
            TimeoutError: If the run exceeds its budget plus the grace period
            DecodeError: If the result payload cannot be decoded
        """
        request = self.resolve_task_type(request)
        features, target = self.validator.validate_automl(request)
        metric = get_metric(request.task_type, request.metric)
        candidates = self.select_candidates(
            request.task_type, request.optimize_for, request.max_models, len(request.rows)
        )
        budget = request.max_time_seconds or self.config.automl_time_budget_seconds
        timeout_ms = int(budget * 1000) + self.config.automl_timeout_grace_ms

        code = build_automl_script(
            request.task_type,
            [candidate_entry(spec, params) for spec, params in candidates],
            features=features,
            target=target,
            metric=metric,
            time_budget_seconds=budget,
            test_fraction=request.test_fraction or self.config.default_test_fraction,
            random_state=self.config.random_state,
            cv_folds=self.config.cv_folds,
            cross_validation=request.cross_validation,
        )
        columns = features + ([target] if target else [])

        logger.info(
            "automl_started",
            task_type=request.task_type.value,
            candidates=[spec.name for spec, _ in candidates],
            metric=metric.name,
            budget_seconds=budget,
        )
        result = await self.service.execute_training(
            code,
            rows=project_rows(request.rows, columns),
            columns=columns,
            timeout_ms=timeout_ms,
            cancel_token=cancel_token,
            execution_id=execution_id,
        )
        raise_for_failure(result, "AutoML")

        payload = result.result
        performance, importance, state = parse_model_payload(payload)
        try:
            leaderboard = [LeaderboardEntry.model_validate(item) for item in payload["leaderboard"]]
            failed = [FailedCandidate.model_validate(item) for item in payload.get("failedCandidates") or []]
            best_algorithm = str(payload["bestAlgorithm"])
            best_score = float(payload["bestScore"])
        except (KeyError, TypeError, ValueError, PydanticValidationError) as e:
            raise DecodeError(f"AutoML payload could not be decoded: {e}")

        for candidate in failed:
            logger.warning("automl_candidate_failed", algorithm=candidate.algorithm, error=candidate.error)

        winner = get_algorithm(request.task_type, best_algorithm)
        record = ModelRecord(
            id=new_model_id(winner.name),
            name=request.name or f"AutoML {winner.name.replace('_', ' ').upper()}",
            algorithm=winner.name,
            task_type=request.task_type,
            feature_columns=features,
            target_column=target,
            performance=performance,
            feature_importance=importance,
            hyperparameters=leaderboard[0].hyperparameters if leaderboard else {},
            serialized_state=state,
        )

        try:
            automl_result = AutoMLResult(
                best_algorithm=best_algorithm,
                best_score=best_score,
                metric=metric.name,
                leaderboard=leaderboard,
                feature_importance=importance,
                performance=performance,
                model_id=record.id,
                failed_candidates=failed,
                stopped_early=bool(payload.get("stoppedEarly")),
                execution_time_ms=result.execution_time_ms,
            )
        except PydanticValidationError as e:
            raise DecodeError(f"AutoML payload is inconsistent: {e}")

        self.registry.put(record)
        logger.info(
            "automl_finished",
            model_id=record.id,
            best_algorithm=best_algorithm,
            best_score=best_score,
            evaluated=len(leaderboard),
            failed=len(failed),
            stopped_early=automl_result.stopped_early,
        )
        return automl_result
