"""Base exception classes for notebook engine error handling"""


class EngineException(Exception):
    """Base exception for all notebook engine errors"""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(EngineException):
    """Raised when a request is malformed, before any process is spawned"""
    pass


class ConfigurationError(EngineException):
    """Raised when configuration is invalid or missing"""
    pass


class ExecutionError(EngineException):
    """Base class for failures of one external interpreter invocation"""
    pass


class SpawnError(ExecutionError):
    """Raised when the interpreter binary cannot be started"""
    pass


class TimeoutError(ExecutionError):
    """Raised when an execution exceeds its wall-clock budget"""
    pass


class ExecutionCancelledError(ExecutionError):
    """Raised when the caller cancels a running execution"""
    pass


class ScriptError(ExecutionError):
    """Raised when the external script itself fails"""
    pass


class DecodeError(EngineException):
    """Raised when the result envelope is missing or cannot be decoded"""
    pass


class NotFoundError(EngineException):
    """Raised when a requested resource does not exist"""
    pass


class ModelNotFoundError(NotFoundError):
    """Raised when a model is not found in the registry"""
    pass
