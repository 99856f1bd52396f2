"""Tests for AutoML orchestration"""

from unittest.mock import AsyncMock

import pytest

from notebook_engine.config import MLConfig
from notebook_engine.exceptions import DecodeError, ScriptError, ValidationError
from notebook_engine.execution.models import ExecutionResult
from notebook_engine.ml.automl import AutoMLOrchestrator, infer_task_type
from notebook_engine.ml.catalog import get_algorithm, get_metric
from notebook_engine.ml.models import AutoMLRequest, OptimizeFor, TaskType
from notebook_engine.scripts.automl import build_automl_script, candidate_entry

STATE = {"data": "c3RhdGU=", "format": "joblib", "runtime": "python"}


def payload(**overrides):
    values = {
        "bestAlgorithm": "random_forest",
        "bestScore": 0.9,
        "metric": "accuracy",
        "leaderboard": [
            {"algorithm": "random_forest", "score": 0.9, "hyperparameters": {"n_estimators": 10},
             "performance": {"accuracy": 0.9}, "trainingTimeMs": 12},
            {"algorithm": "knn", "score": 0.8, "hyperparameters": {}, "performance": {"accuracy": 0.8},
             "trainingTimeMs": 3},
        ],
        "performance": {"accuracy": 0.9},
        "featureImportance": None,
        "failedCandidates": [{"algorithm": "svm", "error": "ValueError: nope"}],
        "stoppedEarly": False,
        "serializedState": STATE,
    }
    values.update(overrides)
    return values


class TestCandidateSelection:
    """Test how candidates are chosen"""

    def test_default_count(self, automl):
        names = [spec.name for spec, _ in automl.select_candidates(TaskType.CLASSIFICATION)]

        assert names == ["random_forest", "logistic_regression", "decision_tree", "knn", "gradient_boosting"]

    def test_speed_drops_expensive(self, automl):
        candidates = automl.select_candidates(TaskType.REGRESSION, OptimizeFor.SPEED, max_models=10)

        assert [spec.name for spec, _ in candidates] == [
            "random_forest", "linear_regression", "decision_tree", "knn"
        ]
        assert not any(spec.expensive for spec, _ in candidates)

    def test_max_models_is_capped(self, service, registry):
        orchestrator = AutoMLOrchestrator(service, registry, MLConfig(automl_max_models=2))

        assert len(orchestrator.select_candidates(TaskType.CLASSIFICATION, max_models=7)) == 2

    def test_heuristic_parameters(self, automl):
        candidates = dict(
            (spec.name, params) for spec, params in automl.select_candidates(TaskType.CLASSIFICATION, n_rows=100)
        )

        assert candidates["random_forest"] == {"n_estimators": 10, "random_state": 42}
        assert candidates["decision_tree"] == {"max_depth": 3, "random_state": 42}
        assert candidates["knn"] == {"n_neighbors": 5}

    def test_clustering_candidates(self, automl):
        candidates = automl.select_candidates(TaskType.CLUSTERING, n_rows=50)

        assert [(spec.name, params.get("n_clusters", params.get("n_components"))) for spec, params in candidates] == [
            ("kmeans", 5), ("gaussian_mixture", 5)
        ]


class TestTaskTypeInference:
    """Test how an "auto" task type is resolved"""

    def test_no_target_is_clustering(self, cluster_rows):
        assert infer_task_type(cluster_rows, None) == TaskType.CLUSTERING

    def test_numeric_target_is_regression(self, linear_rows):
        assert infer_task_type(linear_rows, "y") == TaskType.REGRESSION

    def test_other_target_is_classification(self, classification_rows):
        assert infer_task_type(classification_rows, "label") == TaskType.CLASSIFICATION

    @pytest.mark.parametrize("values", [[True, False], [1, "2"], [None, None]])
    def test_mixed_or_empty_target_is_classification(self, values):
        assert infer_task_type([{"y": value} for value in values], "y") == TaskType.CLASSIFICATION

    def test_explicit_task_type_is_kept(self, automl, linear_rows):
        request = AutoMLRequest(rows=linear_rows, target_column="y", task_type=TaskType.CLASSIFICATION)

        assert automl.resolve_task_type(request) is request

    @pytest.mark.parametrize("target,expected", [
        (None, TaskType.CLUSTERING),
        ("y", TaskType.REGRESSION),
    ])
    def test_auto_request_is_resolved(self, automl, linear_rows, target, expected):
        request = AutoMLRequest.model_validate({"data": linear_rows, "targetColumn": target, "taskType": "auto"})

        assert automl.resolve_task_type(request).task_type == expected


class TestWithMockedService:
    """Test result handling without spawning"""

    @pytest.mark.asyncio
    async def test_registers_winner(self, automl, registry, classification_rows):
        automl.service.execute_training = AsyncMock(return_value=ExecutionResult(success=True, result=payload()))

        result = await automl.run_automl(AutoMLRequest(
            rows=classification_rows, target_column="label", task_type=TaskType.CLASSIFICATION, max_models=3
        ))

        assert result.best_algorithm == "random_forest"
        assert result.failed_candidates[0].algorithm == "svm"
        record = registry.require(result.model_id)
        assert record.name == "AutoML RANDOM FOREST"
        assert record.hyperparameters == {"n_estimators": 10}
        assert record.feature_columns == ["f1", "f2", "f3"]

        kwargs = automl.service.execute_training.call_args.kwargs
        assert kwargs["timeout_ms"] == 300 * 1000 + 30000

    @pytest.mark.asyncio
    async def test_auto_task_type(self, automl, registry, classification_rows):
        automl.service.execute_training = AsyncMock(return_value=ExecutionResult(success=True, result=payload()))

        result = await automl.run_automl(AutoMLRequest.model_validate({
            "data": classification_rows, "targetColumn": "label", "taskType": "auto", "maxModels": 2,
        }))

        assert registry.require(result.model_id).task_type == TaskType.CLASSIFICATION
        assert result.metric == "accuracy"

    @pytest.mark.asyncio
    async def test_failed_run_raises(self, automl, registry, classification_rows):
        automl.service.execute_training = AsyncMock(return_value=ExecutionResult(
            success=False, error="No candidate model could be trained.", error_type="RuntimeError"
        ))

        with pytest.raises(ScriptError):
            await automl.run_automl(AutoMLRequest(
                rows=classification_rows, target_column="label", task_type=TaskType.CLASSIFICATION
            ))

        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_inconsistent_payload(self, automl, registry, classification_rows):
        automl.service.execute_training = AsyncMock(return_value=ExecutionResult(
            success=True, result=payload(bestAlgorithm="knn")
        ))

        with pytest.raises(DecodeError):
            await automl.run_automl(AutoMLRequest(
                rows=classification_rows, target_column="label", task_type=TaskType.CLASSIFICATION
            ))

        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_validation_before_spawn(self, automl, classification_rows):
        automl.service.execute_training = AsyncMock()

        with pytest.raises(ValidationError):
            await automl.run_automl(AutoMLRequest(rows=classification_rows, task_type=TaskType.CLASSIFICATION))

        automl.service.execute_training.assert_not_called()


@pytest.mark.slow
class TestEndToEnd:
    """Run AutoML in the real interpreter"""

    @pytest.mark.asyncio
    async def test_classification(self, automl, registry, classification_rows):
        result = await automl.run_automl(AutoMLRequest.model_validate({
            "data": classification_rows,
            "targetColumn": "label",
            "taskType": "classification",
            "maxModels": 3,
            "maxTime": 60,
        }))

        assert 1 <= len(result.leaderboard) <= 3
        assert 0.0 <= result.best_score <= 1.0
        assert result.metric == "accuracy"
        assert result.leaderboard[0].algorithm == result.best_algorithm
        scores = [entry.score for entry in result.leaderboard]
        assert scores == sorted(scores, reverse=True)
        assert len(registry) == 1
        assert registry.require(result.model_id).algorithm == result.best_algorithm

    @pytest.mark.asyncio
    async def test_regression_lower_is_better(self, automl, linear_rows):
        result = await automl.run_automl(AutoMLRequest(
            rows=linear_rows,
            target_column="y",
            task_type=TaskType.REGRESSION,
            metric="rmse",
            optimize_for=OptimizeFor.SPEED,
            max_models=2,
        ))

        scores = [entry.score for entry in result.leaderboard]
        assert scores == sorted(scores)
        assert result.best_algorithm == "linear_regression"

    @pytest.mark.asyncio
    async def test_clustering_ignores_target(self, automl, registry, cluster_rows):
        result = await automl.run_automl(AutoMLRequest(
            rows=cluster_rows,
            target_column="group",
            feature_columns=["a", "b"],
            task_type=TaskType.CLUSTERING,
        ))

        record = registry.require(result.model_id)
        assert record.target_column is None
        assert result.metric == "silhouetteScore"

    @pytest.mark.asyncio
    async def test_failing_candidate_is_left_off_the_leaderboard(self, service, classification_rows):
        bogus = {"algorithm": "bogus", "module": "no_such_module", "className": "Nope", "params": {}}
        tree = get_algorithm(TaskType.CLASSIFICATION, "decision_tree")
        code = build_automl_script(
            TaskType.CLASSIFICATION,
            [bogus, candidate_entry(tree, {"max_depth": 3, "random_state": 42})],
            features=["f1", "f2", "f3"],
            target="label",
            metric=get_metric(TaskType.CLASSIFICATION),
            time_budget_seconds=60,
        )

        result = await service.execute_training(
            code, rows=classification_rows, columns=["f1", "f2", "f3", "label"]
        )

        assert result.success, result.error
        assert [entry["algorithm"] for entry in result.result["leaderboard"]] == ["decision_tree"]
        assert result.result["bestAlgorithm"] == "decision_tree"
        failed = result.result["failedCandidates"]
        assert [entry["algorithm"] for entry in failed] == ["bogus"]
        assert "ModuleNotFoundError" in failed[0]["error"]

    @pytest.mark.asyncio
    async def test_auto_regression(self, automl, registry, linear_rows):
        result = await automl.run_automl(AutoMLRequest.model_validate({
            "data": linear_rows, "targetColumn": "y", "taskType": "auto",
            "optimizeFor": "speed", "maxModels": 2,
        }))

        assert registry.require(result.model_id).task_type == TaskType.REGRESSION
        assert result.metric == "r2Score"

    @pytest.mark.asyncio
    async def test_exhausted_budget(self, automl, registry, classification_rows):
        with pytest.raises(ScriptError) as exc_info:
            await automl.run_automl(AutoMLRequest(
                rows=classification_rows,
                target_column="label",
                task_type=TaskType.CLASSIFICATION,
                max_time_seconds=1e-9,
            ))

        assert "Time budget exhausted" in exc_info.value.message
        assert len(registry) == 0
