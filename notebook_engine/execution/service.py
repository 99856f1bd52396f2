"""
Execution service: the façade callers use to run code in the interpreter.

Each call builds a script, marshals inputs into a fresh workspace, runs the
interpreter under the supervisor, and decodes the envelope. Failures of any
kind come back in the result's ``success``/``error`` fields; nothing at this
boundary raises for an environmental or script failure.
"""

import asyncio
import time
import uuid
from typing import Any, Dict, List, Mapping, Optional, Sequence

from notebook_engine.exceptions import EngineException, ValidationError
from notebook_engine.execution.marshaling import DataMarshaler, check_homogeneous
from notebook_engine.execution.models import DataContext, ExecutionRequest, ExecutionResult
from notebook_engine.execution.supervisor import CancellationToken, ProcessSupervisor
from notebook_engine.logging_config import bind_execution, get_logger, unbind_execution
from notebook_engine.scripts.analysis import build_analysis_script

logger = get_logger(__name__)

DEFAULT_TIMEOUT_MS = 30000


class ExecutionService:
    """Runs analysis cells and generated training scripts out of process."""

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        marshaler: Optional[DataMarshaler] = None,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS
    ):
        """
        Initialize ExecutionService.

        Args:
            supervisor: Process supervisor used for every call
            marshaler: Data marshaler (a default one is created if None)
            default_timeout_ms: Timeout applied when a call does not give one
        """
        self.supervisor = supervisor
        self.marshaler = marshaler or DataMarshaler()
        self.default_timeout_ms = default_timeout_ms
        self._active: Dict[str, CancellationToken] = {}

    async def execute(
        self,
        request: ExecutionRequest,
        cancel_token: Optional[CancellationToken] = None
    ) -> ExecutionResult:
        """
        Run one analysis request.

        Empty code is rejected without spawning anything.
        """
        execution_id = request.execution_id or uuid.uuid4().hex
        context = request.data_context or DataContext()

        try:
            if not isinstance(request.code, str) or not request.code.strip():
                raise ValidationError("Code is required and must be a non-empty string")
            check_homogeneous(context.rows)
        except ValidationError as e:
            logger.info("execution_rejected", execution_id=execution_id, reason=e.message)
            return self._rejected(execution_id, e)

        return await self._run(
            execution_id,
            request.code,
            rows=context.rows,
            columns=context.columns,
            extra=None,
            timeout_ms=request.timeout_ms,
            cancel_token=cancel_token,
        )

    async def execute_analysis(
        self,
        code: str,
        data_context: Optional[DataContext] = None,
        timeout_ms: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None
    ) -> ExecutionResult:
        """Convenience wrapper around :meth:`execute` for a bare code string."""
        request = ExecutionRequest(code=code, data_context=data_context, timeout_ms=timeout_ms)
        return await self.execute(request, cancel_token=cancel_token)

    async def execute_training(
        self,
        code: str,
        rows: Sequence[Mapping[str, Any]],
        columns: Optional[Sequence[str]] = None,
        extra: Optional[Mapping[str, Any]] = None,
        timeout_ms: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None,
        execution_id: Optional[str] = None
    ) -> ExecutionResult:
        """
        Run a generated training, prediction or AutoML cell.

        ``extra`` reaches the script as ``params``; it is the channel for
        values that should not be inlined into script text, such as a
        serialized model bundle.
        """
        execution_id = execution_id or uuid.uuid4().hex
        return await self._run(
            execution_id,
            code,
            rows=rows,
            columns=columns,
            extra=extra,
            timeout_ms=timeout_ms,
            cancel_token=cancel_token,
        )

    def cancel(self, execution_id: str) -> bool:
        """Kill a running execution. Returns False if it is not running."""
        token = self._active.get(execution_id)
        if token is None:
            return False
        token.cancel()
        logger.info("execution_cancel_requested", execution_id=execution_id)
        return True

    def active_executions(self) -> List[str]:
        return list(self._active.keys())

    async def _run(
        self,
        execution_id: str,
        code: str,
        rows: Sequence[Mapping[str, Any]],
        columns: Optional[Sequence[str]],
        extra: Optional[Mapping[str, Any]],
        timeout_ms: Optional[int],
        cancel_token: Optional[CancellationToken]
    ) -> ExecutionResult:
        timeout_ms = timeout_ms or self.default_timeout_ms
        token = cancel_token or CancellationToken()
        if execution_id in self._active:
            return self._rejected(
                execution_id,
                ValidationError(f"Execution {execution_id} is already running")
            )
        self._active[execution_id] = token

        started = time.monotonic()
        bind_execution(execution_id)
        logger.info(
            "execution_started",
            rows=len(rows),
            timeout_ms=timeout_ms,
            interpreter=self.supervisor.interpreter,
        )

        try:
            with self.supervisor.workspace() as workspace:
                script = build_analysis_script(code, workspace.data_path, workspace.output_path)
                await asyncio.to_thread(
                    self.marshaler.write_context, workspace.data_path, rows, columns, extra
                )
                workspace.script_path.write_text(script, encoding="utf-8")

                process = await self.supervisor.run(
                    workspace.script_path,
                    workspace.directory,
                    timeout_ms,
                    cancel_token=token,
                )
                result = await asyncio.to_thread(
                    self.marshaler.read_result, workspace.output_path, process
                )
        except EngineException as e:
            result = ExecutionResult(
                success=False,
                error=e.message,
                error_type=type(e).__name__,
            )
        except (OSError, TypeError, ValueError) as e:
            logger.error("workspace_preparation_failed", error=str(e))
            result = ExecutionResult(
                success=False,
                error=f"Failed to prepare execution workspace: {e}",
                error_type="ExecutionError",
            )
        finally:
            self._active.pop(execution_id, None)

        result.execution_time_ms = max(0, int((time.monotonic() - started) * 1000))
        result.execution_id = execution_id

        logger.info(
            "execution_finished",
            success=result.success,
            error_type=result.error_type,
            exit_code=result.exit_code,
            execution_time_ms=result.execution_time_ms,
        )
        unbind_execution()
        return result

    def _rejected(self, execution_id: str, error: EngineException) -> ExecutionResult:
        return ExecutionResult(
            success=False,
            error=error.message,
            error_type=type(error).__name__,
            execution_time_ms=0,
            execution_id=execution_id,
        )
