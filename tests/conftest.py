"""Shared fixtures: a real interpreter, per-test workspaces and synthetic datasets"""

import random
import sys

import pytest

from notebook_engine.config import ExecutionConfig, MLConfig, Settings
from notebook_engine.execution.service import ExecutionService
from notebook_engine.execution.supervisor import ProcessSupervisor
from notebook_engine.integration import EngineIntegration
from notebook_engine.ml.automl import AutoMLOrchestrator
from notebook_engine.ml.model_registry import ModelRegistry
from notebook_engine.ml.training import TrainingOrchestrator

TRAINING_TIMEOUT_MS = 120000


@pytest.fixture
def work_dir(tmp_path):
    """Workspace root for one test (created lazily by the supervisor)"""
    return tmp_path / "workspaces"


@pytest.fixture
def supervisor(work_dir):
    return ProcessSupervisor(interpreter=sys.executable, work_dir=work_dir)


@pytest.fixture
def service(supervisor):
    return ExecutionService(supervisor, default_timeout_ms=TRAINING_TIMEOUT_MS)


@pytest.fixture
def registry():
    return ModelRegistry()


@pytest.fixture
def ml_config():
    return MLConfig()


@pytest.fixture
def trainer(service, registry, ml_config):
    return TrainingOrchestrator(service, registry, ml_config)


@pytest.fixture
def automl(service, registry, ml_config):
    return AutoMLOrchestrator(service, registry, ml_config)


@pytest.fixture
def integration(tmp_path):
    """Engine components wired against the running interpreter"""
    settings = Settings(
        execution=ExecutionConfig(
            interpreter=sys.executable,
            work_dir=str(tmp_path / "workspaces"),
            timeout_ms=TRAINING_TIMEOUT_MS,
        ),
        ml=MLConfig(),
    )
    return EngineIntegration(settings=settings, registry=ModelRegistry())


@pytest.fixture
def linear_rows():
    """20 points on y = 2x + 1 with small noise"""
    rng = random.Random(7)
    return [
        {"x": float(i), "y": 2.0 * i + 1.0 + rng.uniform(-0.3, 0.3)}
        for i in range(20)
    ]


@pytest.fixture
def classification_rows():
    """100 balanced rows of two well separated classes"""
    rng = random.Random(11)
    rows = []
    for i in range(100):
        label = "yes" if i % 2 else "no"
        center = 3.0 if label == "yes" else -3.0
        rows.append({
            "f1": center + rng.gauss(0, 1),
            "f2": -center + rng.gauss(0, 1),
            "f3": rng.gauss(0, 1),
            "label": label,
        })
    return rows


@pytest.fixture
def cluster_rows():
    """40 rows in two blobs"""
    rng = random.Random(3)
    rows = []
    for i in range(40):
        center = 5.0 if i % 2 else -5.0
        rows.append({"a": center + rng.gauss(0, 0.5), "b": center + rng.gauss(0, 0.5), "group": i % 2})
    return rows


def workspace_entries(path):
    """Everything left under a workspace root (empty if it was never created)"""
    if not path.exists():
        return []
    return list(path.iterdir())
