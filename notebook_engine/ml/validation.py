"""Request validation run before any script is built or process spawned"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from notebook_engine.exceptions import ValidationError
from notebook_engine.execution.marshaling import check_homogeneous
from notebook_engine.ml.catalog import get_algorithm, get_metric
from notebook_engine.ml.models import AutoMLRequest, TrainingRequest
from notebook_engine.scripts.assembler import py_identifier, py_literal

logger = logging.getLogger(__name__)


class RequestValidator:
    """Checks training, prediction and AutoML requests against their invariants."""

    def __init__(self, min_training_rows: int = 10):
        self.min_training_rows = min_training_rows

    def validate_training(self, request: TrainingRequest) -> None:
        """
        Validate a training request.

        Raises:
            ValidationError: On the first violated invariant
        """
        columns = self._check_rows(request.rows)
        get_algorithm(request.task_type, request.algorithm)
        self._check_features(request.feature_columns, columns)

        target = request.target_column
        if request.task_type.supervised:
            if target is None:
                raise ValidationError(
                    f"targetColumn is required for {request.task_type.value}"
                )
            self._check_target(target, request.feature_columns, columns, request.rows)
        elif target is not None:
            raise ValidationError(
                "targetColumn must be omitted for clustering",
                {"targetColumn": target}
            )

        self.check_hyperparameters(request.hyperparameters)

    def validate_prediction(
        self,
        feature_columns: Sequence[str],
        rows: Sequence[Mapping[str, Any]]
    ) -> None:
        """Every model feature must be present in every row."""
        if not rows:
            raise ValidationError("At least one row is required for prediction")
        columns = check_homogeneous(rows)
        missing = [name for name in feature_columns if name not in columns]
        if missing:
            raise ValidationError(
                "Rows are missing model feature columns",
                {"missing": missing, "expected": list(feature_columns)}
            )

    def validate_automl(self, request: AutoMLRequest) -> Tuple[List[str], Optional[str]]:
        """
        Validate an AutoML request and resolve its columns.

        Returns:
            Feature columns and target column to use. For clustering the
            target is always None; a supplied one is ignored.
        """
        columns = self._check_rows(request.rows)
        get_metric(request.task_type, request.metric)

        target = request.target_column
        if request.task_type.supervised:
            if target is None:
                raise ValidationError(
                    f"targetColumn is required for {request.task_type.value}"
                )
        elif target is not None:
            logger.info(f"Ignoring target column '{target}' for clustering")
            target = None

        features = request.feature_columns
        if not features:
            exclude = request.target_column
            features = [name for name in columns if name != exclude]

        self._check_features(features, columns)
        if target is not None:
            self._check_target(target, features, columns, request.rows)

        return list(features), target

    def check_hyperparameters(self, hyperparameters: Mapping[str, Any]) -> Dict[str, Any]:
        """Names must be identifiers and values plain literals."""
        for name, value in (hyperparameters or {}).items():
            py_identifier(name)
            py_literal(value)
        return dict(hyperparameters or {})

    def _check_rows(self, rows: Sequence[Mapping[str, Any]]) -> List[str]:
        if len(rows) < self.min_training_rows:
            raise ValidationError(
                f"At least {self.min_training_rows} rows are required, got {len(rows)}",
                {"rows": len(rows), "minimum": self.min_training_rows}
            )
        return check_homogeneous(rows)

    def _check_features(self, features: Sequence[str], columns: Sequence[str]) -> None:
        if not features:
            raise ValidationError("At least one feature column is required")
        if len(set(features)) != len(features):
            raise ValidationError(
                "Feature columns must be distinct",
                {"featureColumns": list(features)}
            )
        unknown = [name for name in features if name not in columns]
        if unknown:
            raise ValidationError(
                "Feature columns not found in the dataset",
                {"unknown": unknown, "available": list(columns)}
            )

    def _check_target(
        self,
        target: str,
        features: Sequence[str],
        columns: Sequence[str],
        rows: Sequence[Mapping[str, Any]]
    ) -> None:
        if target in features:
            raise ValidationError(
                f"Target column '{target}' cannot also be a feature",
                {"targetColumn": target}
            )
        if target not in columns:
            raise ValidationError(
                f"Target column '{target}' not found in the dataset",
                {"available": list(columns)}
            )
        present = [row[target] for row in rows if row[target] is not None]
        if not present:
            raise ValidationError(f"Target column '{target}' has no values")
