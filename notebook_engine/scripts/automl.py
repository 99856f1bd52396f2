"""
AutoML cell builder.

One cell trains every candidate in a single interpreter run. Candidates are
imported by module path inside the loop, so an algorithm that fails to
import or fit is recorded as a failed candidate instead of aborting the run.
The wall-clock budget is checked between candidates; when it runs out the
loop stops and the candidates finished so far are ranked. Only the winner's
bundle is serialized.
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence

from notebook_engine.exceptions import ValidationError
from notebook_engine.ml.catalog import AlgorithmSpec, MetricSpec
from notebook_engine.ml.models import TaskType
from notebook_engine.scripts.assembler import ScriptAssembler, constants_block
from notebook_engine.scripts.training import COMMON_IMPORTS, HELPERS, training_constants

AUTOML_IMPORTS: List[str] = COMMON_IMPORTS + [
    "import importlib",
    "import time",
]

AUTOML_BODY = '''
_started = time.monotonic()
classification = TASK_TYPE == "classification"
if TASK_TYPE == "clustering":
    prepared = _prepare_unsupervised(data)
else:
    prepared = _prepare_supervised(data, classification)


def _better(score, best):
    return score > best if HIGHER_IS_BETTER else score < best


def _evaluate(model):
    if TASK_TYPE == "clustering":
        labels = model.fit_predict(prepared["X"])
        return _clustering_metrics(model, prepared["X"], labels)
    performance, _ = _fit_supervised(model, prepared, classification)
    if CROSS_VALIDATION:
        performance.update(_cross_validate(model, prepared, classification))
    return performance


leaderboard = []
failed = []
stopped_early = False
best = None

for candidate in CANDIDATES:
    if time.monotonic() - _started >= TIME_BUDGET_SECONDS:
        stopped_early = True
        break
    candidate_started = time.monotonic()
    try:
        estimator = getattr(importlib.import_module(candidate["module"]), candidate["className"])
        model = estimator(**candidate["params"])
        performance = _finite(_evaluate(model))
    except Exception as exc:
        failed.append({"algorithm": candidate["algorithm"], "error": f"{type(exc).__name__}: {exc}"})
        continue

    score = performance.get(METRIC)
    if score is None:
        failed.append({"algorithm": candidate["algorithm"], "error": f"Metric {METRIC} unavailable"})
        continue

    entry = {
        "algorithm": candidate["algorithm"],
        "score": score,
        "hyperparameters": candidate["params"],
        "performance": performance,
        "trainingTimeMs": int((time.monotonic() - candidate_started) * 1000),
    }
    leaderboard.append(entry)
    if best is None or _better(score, best["entry"]["score"]):
        best = {"entry": entry, "model": model}

if best is None:
    reasons = "; ".join(f"{item['algorithm']}: {item['error']}" for item in failed)
    raise RuntimeError("No candidate model could be trained. " + (reasons or "Time budget exhausted"))

leaderboard.sort(key=lambda item: item["score"], reverse=HIGHER_IS_BETTER)

set_result({
    "bestAlgorithm": best["entry"]["algorithm"],
    "bestScore": best["entry"]["score"],
    "metric": METRIC,
    "leaderboard": leaderboard,
    "performance": best["entry"]["performance"],
    "featureImportance": _feature_importance(best["model"], FEATURES),
    "failedCandidates": failed,
    "stoppedEarly": stopped_early,
    "serializedState": _serialize_bundle(best["model"], prepared),
})
'''


def candidate_entry(spec: AlgorithmSpec, params: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "algorithm": spec.name,
        "module": spec.module,
        "className": spec.class_name,
        "params": dict(params),
    }


def build_automl_script(
    task_type: TaskType,
    candidates: Sequence[Dict[str, Any]],
    features: List[str],
    target: Optional[str],
    metric: MetricSpec,
    time_budget_seconds: float,
    test_fraction: float = 0.2,
    random_state: int = 42,
    cv_folds: int = 5,
    cross_validation: bool = False
) -> str:
    """
    Build the AutoML cell.

    Args:
        task_type: Task shared by every candidate
        candidates: Entries from :func:`candidate_entry`, in trial order
        features: Feature columns
        target: Target column (None for clustering)
        metric: Scoring metric and its direction
        time_budget_seconds: Budget checked before each candidate starts

    Raises:
        ValidationError: If there are no candidates or a value has no literal form
    """
    if not candidates:
        raise ValidationError("AutoML needs at least one candidate algorithm")

    constants = training_constants(
        features, target, task_type, test_fraction, random_state, cv_folds, cross_validation
    )
    constants.update({
        "CANDIDATES": list(candidates),
        "METRIC": metric.name,
        "HIGHER_IS_BETTER": metric.higher_is_better,
        "TIME_BUDGET_SECONDS": float(time_budget_seconds),
    })

    return (
        ScriptAssembler()
        .add_imports(AUTOML_IMPORTS)
        .add_block(constants_block(constants).source)
        .add_block(HELPERS)
        .add_block(AUTOML_BODY)
        .build("<automl>")
    )
