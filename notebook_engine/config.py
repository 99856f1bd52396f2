"""Configuration management using Pydantic settings"""

import tempfile
from pathlib import Path
from typing import List, Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_work_dir() -> str:
    return str(Path(tempfile.gettempdir()) / "notebook-engine")


class ExecutionConfig(BaseSettings):
    """External interpreter configuration"""

    interpreter: str = Field(default="python3", description="Interpreter binary used to run generated scripts")
    work_dir: str = Field(default_factory=_default_work_dir, description="Root directory for per-call workspaces")
    timeout_ms: int = Field(default=30000, gt=0, description="Default wall-clock timeout per execution in milliseconds")
    install_timeout_ms: int = Field(default=300000, gt=0, description="Timeout for package installation in milliseconds")
    max_output_chars: int = Field(default=1_000_000, gt=0, description="Maximum characters kept per captured stream")

    model_config = SettingsConfigDict(
        env_prefix="EXEC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


class MLConfig(BaseSettings):
    """Machine learning configuration"""

    min_training_rows: int = Field(default=10, ge=1, description="Minimum number of rows accepted for training")
    default_test_fraction: float = Field(default=0.2, gt=0.0, lt=1.0, description="Default held-out fraction")
    cv_folds: int = Field(default=5, ge=2, description="Folds used for cross-validation")
    random_state: int = Field(default=42, description="Random seed passed to estimators and splits")
    automl_default_models: int = Field(default=5, ge=1, description="Candidates tried when a request does not say")
    automl_max_models: int = Field(default=10, ge=1, description="Hard cap on AutoML candidates")
    automl_time_budget_seconds: int = Field(default=300, gt=0, description="Default AutoML time budget in seconds")
    automl_timeout_grace_ms: int = Field(default=30000, ge=0, description="Process timeout slack on top of the AutoML budget")
    registry_dir: Optional[str] = Field(default=None, description="Directory for registry snapshots (memory only if unset)")

    model_config = SettingsConfigDict(
        env_prefix="ML_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


class APIConfig(BaseSettings):
    """API configuration"""

    host: str = Field(default="0.0.0.0", description="API host")
    port: int = Field(default=8000, description="API port")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")

    model_config = SettingsConfigDict(
        env_prefix="API_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


class LoggingConfig(BaseSettings):
    """Logging configuration"""

    level: str = Field(default="INFO", description="Logging level")
    format: str = Field(default="json", description="Log format (json or text)")
    output: str = Field(default="stdout", description="Log output (stdout or file path)")

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


class Settings(BaseSettings):
    """Main application settings"""

    environment: str = Field(default="development", description="Environment (development, staging, production)")
    debug: bool = Field(default=False, description="Debug mode")

    # Sub-configurations
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    ml: MLConfig = Field(default_factory=MLConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


# Global settings instance
settings = Settings()
