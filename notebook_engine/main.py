"""Main application entry point"""

import uvicorn

from notebook_engine.config import settings
from notebook_engine.logging_config import get_logger, setup_logging


def initialize_app() -> None:
    """Initialize logging and report the effective configuration"""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        environment=settings.environment,
        debug=settings.debug,
    )

    logger.info(
        "configuration_loaded",
        interpreter=settings.execution.interpreter,
        work_dir=settings.execution.work_dir,
        timeout_ms=settings.execution.timeout_ms,
        registry_dir=settings.ml.registry_dir,
        api_host=settings.api.host,
        api_port=settings.api.port,
        log_level=settings.logging.level,
        log_format=settings.logging.format,
    )


def run_api_server():
    """Run the FastAPI server"""
    initialize_app()

    logger = get_logger(__name__)
    logger.info(
        "starting_api_server",
        host=settings.api.host,
        port=settings.api.port
    )

    uvicorn.run(
        "notebook_engine.api.app:app",
        host=settings.api.host,
        port=settings.api.port,
        reload=settings.debug,
        log_level=settings.logging.level.lower()
    )


if __name__ == "__main__":
    run_api_server()
