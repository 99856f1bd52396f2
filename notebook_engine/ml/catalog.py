"""
Fixed algorithm catalog.

Algorithms are named capabilities of the external interpreter: the host only
knows which module and class implement each one, whether the estimator takes
a ``random_state``, and whether it is costly enough to skip when AutoML is
asked to optimize for speed.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Tuple

from notebook_engine.exceptions import ValidationError
from notebook_engine.ml.models import TaskType


@dataclass(frozen=True)
class AlgorithmSpec:
    """How the interpreter builds one estimator."""

    name: str
    task_type: TaskType
    module: str
    class_name: str
    random_state: bool = True
    expensive: bool = False
    defaults: Mapping[str, Any] = field(default_factory=dict)

    @property
    def import_line(self) -> str:
        return f"from {self.module} import {self.class_name}"

    def parameters(
        self,
        hyperparameters: Mapping[str, Any],
        random_state: int
    ) -> Dict[str, Any]:
        """Constructor keyword arguments: defaults, then caller values."""
        params: Dict[str, Any] = dict(self.defaults)
        if self.random_state:
            params["random_state"] = random_state
        params.update(hyperparameters or {})
        return params


@dataclass(frozen=True)
class MetricSpec:
    name: str
    higher_is_better: bool


def _spec(name, task_type, module, class_name, **kwargs) -> AlgorithmSpec:
    return AlgorithmSpec(name, task_type, module, class_name, **kwargs)


_C = TaskType.CLASSIFICATION
_R = TaskType.REGRESSION
_K = TaskType.CLUSTERING

CATALOG: Dict[TaskType, Dict[str, AlgorithmSpec]] = {
    _C: {
        "random_forest": _spec("random_forest", _C, "sklearn.ensemble", "RandomForestClassifier",
                               defaults={"n_estimators": 100}),
        "logistic_regression": _spec("logistic_regression", _C, "sklearn.linear_model",
                                     "LogisticRegression", defaults={"max_iter": 1000}),
        "gradient_boosting": _spec("gradient_boosting", _C, "sklearn.ensemble",
                                   "GradientBoostingClassifier", expensive=True),
        "decision_tree": _spec("decision_tree", _C, "sklearn.tree", "DecisionTreeClassifier"),
        "svm": _spec("svm", _C, "sklearn.svm", "SVC", expensive=True),
        "neural_network": _spec("neural_network", _C, "sklearn.neural_network", "MLPClassifier",
                                expensive=True, defaults={"max_iter": 500}),
        "knn": _spec("knn", _C, "sklearn.neighbors", "KNeighborsClassifier", random_state=False),
    },
    _R: {
        "random_forest": _spec("random_forest", _R, "sklearn.ensemble", "RandomForestRegressor",
                               defaults={"n_estimators": 100}),
        "linear_regression": _spec("linear_regression", _R, "sklearn.linear_model",
                                   "LinearRegression", random_state=False),
        "gradient_boosting": _spec("gradient_boosting", _R, "sklearn.ensemble",
                                   "GradientBoostingRegressor", expensive=True),
        "decision_tree": _spec("decision_tree", _R, "sklearn.tree", "DecisionTreeRegressor"),
        "svm": _spec("svm", _R, "sklearn.svm", "SVR", random_state=False, expensive=True),
        "neural_network": _spec("neural_network", _R, "sklearn.neural_network", "MLPRegressor",
                                expensive=True, defaults={"max_iter": 500}),
        "knn": _spec("knn", _R, "sklearn.neighbors", "KNeighborsRegressor", random_state=False),
    },
    _K: {
        "kmeans": _spec("kmeans", _K, "sklearn.cluster", "KMeans",
                        defaults={"n_clusters": 3, "n_init": 10}),
        "gaussian_mixture": _spec("gaussian_mixture", _K, "sklearn.mixture", "GaussianMixture",
                                  defaults={"n_components": 3}),
    },
}

# Order in which AutoML tries candidates
AUTOML_CANDIDATES: Dict[TaskType, List[str]] = {
    _C: ["random_forest", "logistic_regression", "decision_tree", "knn",
         "gradient_boosting", "svm", "neural_network"],
    _R: ["random_forest", "linear_regression", "decision_tree", "knn",
         "gradient_boosting", "svm", "neural_network"],
    _K: ["kmeans", "gaussian_mixture"],
}

SCORING_METRICS: Dict[TaskType, Dict[str, MetricSpec]] = {
    _C: {
        "accuracy": MetricSpec("accuracy", True),
        "f1Score": MetricSpec("f1Score", True),
        "precision": MetricSpec("precision", True),
        "recall": MetricSpec("recall", True),
    },
    _R: {
        "r2Score": MetricSpec("r2Score", True),
        "rmse": MetricSpec("rmse", False),
        "mse": MetricSpec("mse", False),
        "mae": MetricSpec("mae", False),
    },
    _K: {
        "silhouetteScore": MetricSpec("silhouetteScore", True),
    },
}

DEFAULT_METRIC: Dict[TaskType, str] = {
    _C: "accuracy",
    _R: "r2Score",
    _K: "silhouetteScore",
}


def get_algorithm(task_type: TaskType, name: str) -> AlgorithmSpec:
    """
    Look up an algorithm for a task type.

    Raises:
        ValidationError: If the algorithm is not in the catalog for that task
    """
    algorithms = CATALOG[TaskType(task_type)]
    try:
        return algorithms[name]
    except KeyError:
        raise ValidationError(
            f"Unknown algorithm '{name}' for {TaskType(task_type).value}",
            {"available": sorted(algorithms)}
        )


def get_metric(task_type: TaskType, name: str = None) -> MetricSpec:
    task_type = TaskType(task_type)
    name = name or DEFAULT_METRIC[task_type]
    metrics = SCORING_METRICS[task_type]
    if name not in metrics:
        raise ValidationError(
            f"Unknown metric '{name}' for {task_type.value}",
            {"available": sorted(metrics)}
        )
    return metrics[name]


def heuristic_hyperparameters(spec: AlgorithmSpec, n_rows: int) -> Dict[str, Any]:
    """Size-dependent hyperparameters AutoML uses for each candidate."""
    if spec.name == "decision_tree":
        return {"max_depth": 3 if n_rows < 500 else 5}
    if spec.name == "random_forest":
        return {"n_estimators": min(50, max(10, n_rows // 20))}
    if spec.name in ("kmeans", "gaussian_mixture"):
        k = min(10, max(2, int(math.floor(math.sqrt(n_rows / 2)))))
        key = "n_clusters" if spec.name == "kmeans" else "n_components"
        return {key: k}
    if spec.name == "knn":
        return {"n_neighbors": max(1, min(5, n_rows // 4))}
    return {}


def list_algorithms() -> List[Tuple[str, str]]:
    """(task type, algorithm) pairs across the whole catalog."""
    return [(task.value, name) for task, algorithms in CATALOG.items() for name in algorithms]
