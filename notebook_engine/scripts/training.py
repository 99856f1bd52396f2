"""
Training and prediction cell builders.

The builders emit cell source that runs inside the analysis wrapper, so the
cell sees ``data``, ``params`` and ``set_result``. Request values reach the
cell only as literals in a constants block; the serialized model bundle for
prediction travels through ``params`` and never appears in script text.

The fitted bundle is a dict of the estimator and every fitted preprocessing
stage (imputer, scaler, label encoder), dumped with joblib into memory and
base64 encoded together with the versions of the producing runtime.
"""

from typing import Any, Dict, List, Mapping

from notebook_engine.ml.catalog import AlgorithmSpec
from notebook_engine.ml.models import TaskType
from notebook_engine.scripts.assembler import ScriptAssembler, constants_block, render_call

COMMON_IMPORTS: List[str] = [
    "import base64",
    "import io",
    "import math",
    "import platform",
    "import joblib",
    "import sklearn",
    "from sklearn import metrics as skm",
    "from sklearn.base import clone",
    "from sklearn.impute import SimpleImputer",
    "from sklearn.model_selection import cross_val_score, train_test_split",
    "from sklearn.pipeline import make_pipeline",
    "from sklearn.preprocessing import LabelEncoder, StandardScaler",
]

# Functions shared by the training and AutoML cells. They read the module
# constants FEATURES, TARGET, TEST_FRACTION, RANDOM_STATE and CV_FOLDS.
HELPERS = '''
def _feature_frame(frame, features):
    missing = [name for name in features if name not in frame.columns]
    if missing:
        raise KeyError("Missing feature columns: " + ", ".join(str(name) for name in missing))
    return frame[list(features)].apply(pd.to_numeric, errors="coerce")


def _new_preprocessing():
    return SimpleImputer(strategy="mean", keep_empty_features=True), StandardScaler()


def _finite(values):
    return {
        key: float(value) for key, value in values.items()
        if value is not None and math.isfinite(float(value))
    }


def _split(X, y, classification):
    stratify = None
    if classification:
        classes, counts = np.unique(y, return_counts=True)
        n_test = int(math.ceil(len(y) * TEST_FRACTION))
        if counts.min() >= 2 and n_test >= len(classes) and len(y) - n_test >= len(classes):
            stratify = y
    return train_test_split(
        X, y, test_size=TEST_FRACTION, random_state=RANDOM_STATE, stratify=stratify
    )


def _prepare_supervised(frame, classification):
    frame = frame[frame[TARGET].notna()]
    X = _feature_frame(frame, FEATURES)
    label_encoder = None
    if classification:
        label_encoder = LabelEncoder()
        values = frame[TARGET].to_numpy()
        try:
            y = label_encoder.fit_transform(values)
        except TypeError:
            y = label_encoder.fit_transform(values.astype(str))
        if len(label_encoder.classes_) < 2:
            raise ValueError("Classification needs at least two target classes")
    else:
        y = pd.to_numeric(frame[TARGET], errors="coerce").to_numpy(dtype=float)
        keep = ~np.isnan(y)
        X, y = X[keep], y[keep]
    if len(y) < 2:
        raise ValueError("Not enough rows with a target value to train")

    X_train, X_test, y_train, y_test = _split(X, y, classification)
    imputer, scaler = _new_preprocessing()
    return {
        "X": X,
        "y": y,
        "X_train": scaler.fit_transform(imputer.fit_transform(X_train)),
        "X_test": scaler.transform(imputer.transform(X_test)),
        "y_train": y_train,
        "y_test": y_test,
        "imputer": imputer,
        "scaler": scaler,
        "label_encoder": label_encoder,
    }


def _prepare_unsupervised(frame):
    X = _feature_frame(frame, FEATURES)
    imputer, scaler = _new_preprocessing()
    return {
        "X": scaler.fit_transform(imputer.fit_transform(X)),
        "imputer": imputer,
        "scaler": scaler,
        "label_encoder": None,
    }


def _classification_metrics(y_true, y_pred):
    return {
        "accuracy": skm.accuracy_score(y_true, y_pred),
        "precision": skm.precision_score(y_true, y_pred, average="weighted", zero_division=0),
        "recall": skm.recall_score(y_true, y_pred, average="weighted", zero_division=0),
        "f1Score": skm.f1_score(y_true, y_pred, average="weighted", zero_division=0),
    }


def _regression_metrics(y_true, y_pred):
    mse = skm.mean_squared_error(y_true, y_pred)
    return {
        "mse": mse,
        "rmse": math.sqrt(mse),
        "mae": skm.mean_absolute_error(y_true, y_pred),
        "r2Score": skm.r2_score(y_true, y_pred),
    }


def _clustering_metrics(model, X, labels):
    n_clusters = int(len(np.unique(labels)))
    performance = {"nClusters": n_clusters}
    if 1 < n_clusters < len(X):
        performance["silhouetteScore"] = skm.silhouette_score(X, labels)
    if hasattr(model, "inertia_"):
        performance["inertia"] = model.inertia_
    return performance


def _cross_validate(model, prepared, classification):
    y = prepared["y"]
    folds = CV_FOLDS
    if classification:
        folds = min(folds, int(np.unique(y, return_counts=True)[1].min()))
    folds = min(folds, len(y))
    if folds < 2:
        return {}
    imputer, scaler = _new_preprocessing()
    pipeline = make_pipeline(imputer, scaler, clone(model))
    scores = cross_val_score(
        pipeline, prepared["X"], y, cv=folds,
        scoring="accuracy" if classification else "r2"
    )
    return {"cvMean": float(np.mean(scores)), "cvStd": float(np.std(scores))}


def _feature_importance(model, features):
    values = None
    if hasattr(model, "feature_importances_"):
        values = np.asarray(model.feature_importances_, dtype=float)
    elif hasattr(model, "coef_"):
        values = np.abs(np.asarray(model.coef_, dtype=float))
        if values.ndim > 1:
            values = values.reshape(-1, len(features)).mean(axis=0)
    if values is None or values.shape[0] != len(features):
        return None
    total = float(values.sum())
    if total > 0:
        values = values / total
    ranked = sorted(zip(features, values.tolist()), key=lambda item: item[1], reverse=True)
    return [{"feature": str(name), "importance": float(value)} for name, value in ranked]


def _fit_supervised(model, prepared, classification):
    model.fit(prepared["X_train"], prepared["y_train"])
    y_pred = model.predict(prepared["X_test"])
    if classification:
        performance = _classification_metrics(prepared["y_test"], y_pred)
    else:
        performance = _regression_metrics(prepared["y_test"], y_pred)
    return performance, y_pred


def _decode_labels(prepared, y_pred):
    if prepared["label_encoder"] is not None:
        return prepared["label_encoder"].inverse_transform(np.asarray(y_pred).astype(int))
    return y_pred


def _serialize_bundle(model, prepared):
    bundle = {
        "model": model,
        "imputer": prepared["imputer"],
        "scaler": prepared["scaler"],
        "labelEncoder": prepared["label_encoder"],
        "features": list(FEATURES),
        "target": TARGET,
        "taskType": TASK_TYPE,
    }
    buffer = io.BytesIO()
    joblib.dump(bundle, buffer)
    return {
        "data": base64.b64encode(buffer.getvalue()).decode("ascii"),
        "format": "joblib",
        "runtime": "python",
        "runtimeVersion": platform.python_version(),
        "libraryVersions": {
            "sklearn": sklearn.__version__,
            "joblib": joblib.__version__,
            "numpy": np.__version__,
            "pandas": pd.__version__,
        },
    }
'''

SUPERVISED_BODY = '''
classification = TASK_TYPE == "classification"
prepared = _prepare_supervised(data, classification)
performance, y_pred = _fit_supervised(model, prepared, classification)
if CROSS_VALIDATION:
    performance.update(_cross_validate(model, prepared, classification))

set_result({
    "performance": _finite(performance),
    "featureImportance": _feature_importance(model, FEATURES),
    "predictions": _decode_labels(prepared, y_pred),
    "serializedState": _serialize_bundle(model, prepared),
})
'''

CLUSTERING_BODY = '''
prepared = _prepare_unsupervised(data)
labels = model.fit_predict(prepared["X"])

set_result({
    "performance": _finite(_clustering_metrics(model, prepared["X"], labels)),
    "featureImportance": None,
    "predictions": labels,
    "serializedState": _serialize_bundle(model, prepared),
})
'''

PREDICTION_BODY = '''
import base64
import io

import joblib

state = params.get("bundle")
if not state:
    raise ValueError("No serialized model state was supplied")
bundle = joblib.load(io.BytesIO(base64.b64decode(state)))

features = list(bundle["features"])
if features != list(FEATURES):
    raise ValueError("Stored bundle does not match the model's feature columns")
missing = [name for name in features if name not in data.columns]
if missing:
    raise KeyError("Rows are missing model feature columns: " + ", ".join(missing))

X = data[features].apply(pd.to_numeric, errors="coerce")
X = bundle["scaler"].transform(bundle["imputer"].transform(X))
predictions = bundle["model"].predict(X)
if bundle.get("labelEncoder") is not None:
    predictions = bundle["labelEncoder"].inverse_transform(np.asarray(predictions).astype(int))

set_result({"predictions": predictions, "count": int(len(predictions))})
'''


def training_constants(
    features: List[str],
    target: Any,
    task_type: TaskType,
    test_fraction: float,
    random_state: int,
    cv_folds: int,
    cross_validation: bool
) -> Dict[str, Any]:
    return {
        "FEATURES": list(features),
        "TARGET": target,
        "TASK_TYPE": TaskType(task_type).value,
        "TEST_FRACTION": float(test_fraction),
        "RANDOM_STATE": int(random_state),
        "CV_FOLDS": int(cv_folds),
        "CROSS_VALIDATION": bool(cross_validation),
    }


def build_training_script(
    spec: AlgorithmSpec,
    features: List[str],
    target: Any,
    hyperparameters: Mapping[str, Any],
    test_fraction: float = 0.2,
    random_state: int = 42,
    cv_folds: int = 5,
    cross_validation: bool = True
) -> str:
    """
    Build the cell that trains one estimator.

    Supervised cells split, fit, score and optionally cross-validate; the
    clustering cell fits on every row and reports cluster assignments. Both
    publish ``performance``, ``featureImportance``, ``predictions`` and
    ``serializedState``.

    Raises:
        ValidationError: If a hyperparameter cannot be rendered as a literal
    """
    constants = training_constants(
        features, target, spec.task_type, test_fraction, random_state, cv_folds, cross_validation
    )
    construct = render_call(spec.class_name, spec.parameters(hyperparameters, random_state))
    body = CLUSTERING_BODY if spec.task_type == TaskType.CLUSTERING else SUPERVISED_BODY

    return (
        ScriptAssembler()
        .add_imports(COMMON_IMPORTS)
        .add_import(spec.import_line)
        .add_block(constants_block(constants).source)
        .add_block(HELPERS)
        .add_block(f"model = {construct.source}")
        .add_block(body)
        .build("<training>")
    )


def build_prediction_script(feature_columns: List[str]) -> str:
    """
    Build the cell that replays a stored bundle on new rows.

    The bundle is read from ``params["bundle"]``; its fitted imputer and
    scaler are applied before predicting, and class labels are decoded.
    """
    return (
        ScriptAssembler()
        .add_block(constants_block({"FEATURES": list(feature_columns)}).source)
        .add_block(PREDICTION_BODY)
        .build("<prediction>")
    )
