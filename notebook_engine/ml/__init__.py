"""
Model lifecycle: catalog, registry, training, prediction and AutoML.

The orchestrators live in ``notebook_engine.ml.training`` and
``notebook_engine.ml.automl``; they build scripts that import this package's
catalog, so they are not re-exported here.
"""
from notebook_engine.ml.model_registry import ModelRegistry
from notebook_engine.ml.models import ModelRecord, TaskType

__all__ = [
    "ModelRecord",
    "ModelRegistry",
    "TaskType",
]
