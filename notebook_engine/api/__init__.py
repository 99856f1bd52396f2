"""API layer components for the notebook engine"""

from notebook_engine.api.app import app
from notebook_engine.api.models import ErrorResponse
from notebook_engine.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
)

__all__ = [
    'app',
    'ErrorResponse',
    'ErrorHandlingMiddleware',
    'RequestLoggingMiddleware',
]
