"""Tests for configuration management"""

import pytest
from notebook_engine.config import APIConfig, ExecutionConfig, LoggingConfig, MLConfig, Settings


def test_settings_default_values():
    """Test that settings load with default values"""
    settings = Settings()

    assert settings.environment == "development"
    assert settings.debug is False
    assert settings.execution.timeout_ms == 30000
    assert settings.api.port == 8000


def test_execution_config():
    """Test execution configuration"""
    config = ExecutionConfig()

    assert config.interpreter == "python3"
    assert config.timeout_ms == 30000
    assert config.install_timeout_ms == 300000
    assert config.work_dir.endswith("notebook-engine")


def test_ml_config():
    """Test ML configuration"""
    config = MLConfig()

    assert config.min_training_rows == 10
    assert config.default_test_fraction == 0.2
    assert config.cv_folds == 5
    assert config.random_state == 42
    assert config.automl_default_models == 5
    assert config.registry_dir is None


def test_environment_override(monkeypatch):
    """Test env prefix overrides"""
    monkeypatch.setenv("EXEC_TIMEOUT_MS", "5000")
    monkeypatch.setenv("ML_MIN_TRAINING_ROWS", "25")

    assert ExecutionConfig().timeout_ms == 5000
    assert MLConfig().min_training_rows == 25


def test_invalid_values_rejected(monkeypatch):
    """Test that out-of-range values fail validation"""
    monkeypatch.setenv("ML_DEFAULT_TEST_FRACTION", "1.5")

    with pytest.raises(ValueError):
        MLConfig()


def test_api_and_logging_config():
    assert APIConfig().host == "0.0.0.0"
    assert LoggingConfig().format == "json"
