"""
Execution layer: process supervision, data marshaling and the execution service.
"""
from notebook_engine.execution.marshaling import DataMarshaler
from notebook_engine.execution.models import (
    DataContext,
    ExecutionRequest,
    ExecutionResult,
    ProcessResult,
    ProcessState,
)
from notebook_engine.execution.service import ExecutionService
from notebook_engine.execution.supervisor import CancellationToken, ProcessSupervisor, Workspace

__all__ = [
    "CancellationToken",
    "DataContext",
    "DataMarshaler",
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutionService",
    "ProcessResult",
    "ProcessState",
    "ProcessSupervisor",
    "Workspace",
]
