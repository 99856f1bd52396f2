"""Tests for request validation"""

import pytest

from notebook_engine.exceptions import ValidationError
from notebook_engine.ml.models import AutoMLRequest, TaskType, TrainingRequest
from notebook_engine.ml.validation import RequestValidator


@pytest.fixture
def validator():
    return RequestValidator(min_training_rows=10)


@pytest.fixture
def rows():
    return [{"a": i, "b": i * 2, "y": i % 2} for i in range(12)]


def training_request(rows, **overrides):
    payload = {
        "rows": rows,
        "featureColumns": ["a", "b"],
        "targetColumn": "y",
        "taskType": "classification",
        "algorithm": "decision_tree",
    }
    payload.update(overrides)
    return TrainingRequest.model_validate(payload)


class TestTrainingValidation:
    """Test training request invariants"""

    def test_valid_request(self, validator, rows):
        validator.validate_training(training_request(rows))

    def test_too_few_rows(self, validator, rows):
        with pytest.raises(ValidationError) as exc_info:
            validator.validate_training(training_request(rows[:5]))

        assert exc_info.value.details == {"rows": 5, "minimum": 10}

    def test_heterogeneous_rows(self, validator, rows):
        rows[3] = {"a": 1, "y": 0}

        with pytest.raises(ValidationError) as exc_info:
            validator.validate_training(training_request(rows))

        assert exc_info.value.details["missing"] == ["b"]

    def test_unknown_algorithm(self, validator, rows):
        with pytest.raises(ValidationError):
            validator.validate_training(training_request(rows, algorithm="kmeans"))

    @pytest.mark.parametrize("features", [[], ["a", "a"], ["a", "missing"]])
    def test_bad_features(self, validator, rows, features):
        with pytest.raises(ValidationError):
            validator.validate_training(training_request(rows, featureColumns=features))

    def test_target_required_for_supervised(self, validator, rows):
        with pytest.raises(ValidationError):
            validator.validate_training(training_request(rows, targetColumn="  "))

    def test_target_rejected_for_clustering(self, validator, rows):
        with pytest.raises(ValidationError):
            validator.validate_training(training_request(rows, taskType="clustering", algorithm="kmeans"))

    def test_clustering_without_target(self, validator, rows):
        validator.validate_training(
            training_request(rows, taskType="clustering", algorithm="kmeans", targetColumn=None)
        )

    def test_target_cannot_be_a_feature(self, validator, rows):
        with pytest.raises(ValidationError):
            validator.validate_training(training_request(rows, featureColumns=["a", "y"]))

    def test_target_must_exist(self, validator, rows):
        with pytest.raises(ValidationError):
            validator.validate_training(training_request(rows, targetColumn="label"))

    def test_target_without_values(self, validator, rows):
        for row in rows:
            row["y"] = None

        with pytest.raises(ValidationError):
            validator.validate_training(training_request(rows))

    def test_bad_hyperparameter(self, validator, rows):
        with pytest.raises(ValidationError):
            validator.validate_training(training_request(rows, hyperparameters={"not valid": 1}))


class TestPredictionValidation:
    """Test host-side prediction checks"""

    def test_missing_feature(self, validator):
        with pytest.raises(ValidationError) as exc_info:
            validator.validate_prediction(["a", "b"], [{"a": 1}])

        assert exc_info.value.details["missing"] == ["b"]

    def test_no_rows(self, validator):
        with pytest.raises(ValidationError):
            validator.validate_prediction(["a"], [])

    def test_extra_columns_are_allowed(self, validator):
        validator.validate_prediction(["a"], [{"a": 1, "extra": 2}])


class TestAutoMLValidation:
    """Test AutoML column resolution"""

    def test_default_features_exclude_target(self, validator, rows):
        request = AutoMLRequest(rows=rows, target_column="y", task_type=TaskType.CLASSIFICATION)

        assert validator.validate_automl(request) == (["a", "b"], "y")

    def test_clustering_ignores_target(self, validator, rows):
        request = AutoMLRequest(rows=rows, target_column="y", task_type=TaskType.CLUSTERING)

        assert validator.validate_automl(request) == (["a", "b"], None)

    def test_target_required(self, validator, rows):
        request = AutoMLRequest(rows=rows, task_type=TaskType.REGRESSION)

        with pytest.raises(ValidationError):
            validator.validate_automl(request)

    def test_unknown_metric(self, validator, rows):
        request = AutoMLRequest(rows=rows, target_column="y", task_type=TaskType.REGRESSION, metric="accuracy")

        with pytest.raises(ValidationError):
            validator.validate_automl(request)
