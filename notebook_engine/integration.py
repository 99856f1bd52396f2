"""
Integration module - connects the engine components together.

The model registry is an explicit object handed to both orchestrators; the
module-level instance below only exists so the HTTP layer and the CLI share
one set of components.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from notebook_engine.config import Settings, settings as default_settings
from notebook_engine.execution.packages import PackageManager
from notebook_engine.execution.service import ExecutionService
from notebook_engine.execution.supervisor import ProcessSupervisor
from notebook_engine.ml.automl import AutoMLOrchestrator
from notebook_engine.ml.model_registry import ModelRegistry
from notebook_engine.ml.training import TrainingOrchestrator
from notebook_engine.ml.validation import RequestValidator

logger = logging.getLogger(__name__)


class EngineIntegration:
    """
    Main integration class that wires the execution and model components.

    Every component is built once, with dependencies passed in explicitly.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        registry: Optional[ModelRegistry] = None
    ):
        """
        Initialize the integration.

        Args:
            settings: Application settings (module defaults if None)
            registry: Model registry (created from settings if None)
        """
        self.settings = settings or default_settings

        self._init_execution_components()
        self._init_ml_components(registry)

        logger.info("Engine integration initialized successfully")

    def _init_execution_components(self):
        """Initialize supervisor, execution service and package manager"""
        execution = self.settings.execution
        self.supervisor = ProcessSupervisor(
            interpreter=execution.interpreter,
            work_dir=execution.work_dir,
            max_output_chars=execution.max_output_chars,
        )
        self.execution_service = ExecutionService(
            self.supervisor,
            default_timeout_ms=execution.timeout_ms,
        )
        self.package_manager = PackageManager(
            self.execution_service,
            install_timeout_ms=execution.install_timeout_ms,
        )
        logger.info(f"Execution components initialized (interpreter: {execution.interpreter})")

    def _init_ml_components(self, registry: Optional[ModelRegistry]):
        """Initialize registry and orchestrators"""
        ml = self.settings.ml
        self.model_registry = registry if registry is not None else ModelRegistry(ml.registry_dir)
        validator = RequestValidator(ml.min_training_rows)
        self.training_orchestrator = TrainingOrchestrator(
            self.execution_service, self.model_registry, ml, validator
        )
        self.automl_orchestrator = AutoMLOrchestrator(
            self.execution_service, self.model_registry, ml, validator
        )
        logger.info("ML components initialized")

    def health_check(self) -> Dict[str, Any]:
        """
        Report the status of each component.

        Returns:
            Dictionary with health status of each component
        """
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "overall_status": "healthy",
            "components": {
                "execution_service": {
                    "status": "healthy",
                    "interpreter": self.supervisor.interpreter,
                    "active_executions": len(self.execution_service.active_executions()),
                },
                "model_registry": {
                    "status": "healthy",
                    "models": len(self.model_registry),
                    "persistent": self.model_registry.registry_dir is not None,
                },
            },
        }

    def shutdown(self):
        """Cancel running executions"""
        logger.info("Shutting down engine integration")
        for execution_id in self.execution_service.active_executions():
            self.execution_service.cancel(execution_id)
        logger.info("Engine integration shutdown complete")


# Global integration instance (singleton pattern)
_integration_instance: Optional[EngineIntegration] = None


def get_integration(
    settings: Optional[Settings] = None,
    force_new: bool = False
) -> EngineIntegration:
    """
    Get or create the global integration instance.

    Args:
        settings: Settings to build with (only used on creation)
        force_new: Force creation of a new instance

    Returns:
        EngineIntegration instance
    """
    global _integration_instance

    if _integration_instance is None or force_new:
        _integration_instance = EngineIntegration(settings=settings)

    return _integration_instance


def reset_integration():
    """Reset the global integration instance"""
    global _integration_instance

    if _integration_instance:
        _integration_instance.shutdown()
        _integration_instance = None
