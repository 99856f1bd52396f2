"""
Process supervision for external interpreter invocations.

A :class:`ProcessSupervisor` owns one run of the interpreter at a time:
it spawns ``<interpreter> <script>`` inside a per-call :class:`Workspace`,
accumulates stdout/stderr incrementally, enforces a hard wall-clock timeout,
honours a caller-held :class:`CancellationToken`, and never lets a spawn
failure escape as an exception. Workspaces are context managers whose
cleanup runs on every exit path and only logs its own failures.
"""

import asyncio
import logging
import shutil
import time
import uuid
from pathlib import Path
from typing import List, Optional, Sequence, Union

from notebook_engine.exceptions import (
    ExecutionCancelledError,
    SpawnError,
    TimeoutError,
)
from notebook_engine.execution.models import ProcessResult, ProcessState

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
CANCELLED_EXIT_CODE = 130
SPAWN_FAILED_EXIT_CODE = 1

_READ_CHUNK = 4096
_DRAIN_TIMEOUT_S = 2.0


class CancellationToken:
    """Handle a caller keeps to stop a running execution early."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class Workspace:
    """
    Per-invocation files: script, data and output, in their own directory.

    Use as a context manager; the directory and everything in it is removed
    on exit, whatever happened inside the block.
    """

    def __init__(self, root: Union[str, Path], workspace_id: Optional[str] = None):
        self.id = workspace_id or uuid.uuid4().hex
        self.root = Path(root)
        self.directory = self.root / f"run_{self.id}"
        self.script_path = self.directory / f"script_{self.id}.py"
        self.data_path = self.directory / f"data_{self.id}.json"
        self.output_path = self.directory / f"output_{self.id}.json"
        self.cleaned = False

    @property
    def files(self) -> List[Path]:
        return [self.script_path, self.data_path, self.output_path]

    def create(self) -> "Workspace":
        self.directory.mkdir(parents=True, exist_ok=False)
        return self

    def cleanup(self) -> None:
        """Remove the workspace; failures are logged, never raised."""
        for path in self.files:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Could not remove workspace file {path}: {e}")
        if self.directory.exists():
            try:
                shutil.rmtree(self.directory)
            except OSError as e:
                logger.warning(f"Could not remove workspace directory {self.directory}: {e}")
        self.cleaned = True

    def __enter__(self) -> "Workspace":
        return self.create()

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.cleanup()


class _StreamCollector:
    """Reads a pipe chunk by chunk so partial output survives a kill."""

    def __init__(self, stream: Optional[asyncio.StreamReader], limit: int):
        self.stream = stream
        self.limit = limit
        self._chunks: List[bytes] = []
        self._size = 0
        self.truncated = False

    async def collect(self) -> None:
        if self.stream is None:
            return
        while True:
            chunk = await self.stream.read(_READ_CHUNK)
            if not chunk:
                break
            if self._size >= self.limit:
                self.truncated = True
                continue
            self._chunks.append(chunk)
            self._size += len(chunk)

    def text(self) -> str:
        data = b"".join(self._chunks).decode("utf-8", errors="replace")
        if self.truncated or len(data) > self.limit:
            return data[:self.limit] + "\n... (output truncated)"
        return data


class ProcessSupervisor:
    """Spawns the external interpreter and supervises one run of it."""

    def __init__(
        self,
        interpreter: str = "python3",
        work_dir: Union[str, Path] = "/tmp/notebook-engine",
        max_output_chars: int = 1_000_000
    ):
        """
        Initialize ProcessSupervisor.

        Args:
            interpreter: Interpreter binary (name on PATH or absolute path)
            work_dir: Root under which per-call workspaces are created
            max_output_chars: Characters kept per captured stream
        """
        self.interpreter = interpreter
        self.work_dir = Path(work_dir)
        self.max_output_chars = max_output_chars

    def workspace(self, workspace_id: Optional[str] = None) -> Workspace:
        """Allocate (but do not yet create) a fresh workspace."""
        self.work_dir.mkdir(parents=True, exist_ok=True)
        return Workspace(self.work_dir, workspace_id)

    async def run(
        self,
        script_path: Union[str, Path],
        work_dir: Union[str, Path],
        timeout_ms: int,
        cancel_token: Optional[CancellationToken] = None,
        args: Sequence[str] = ()
    ) -> ProcessResult:
        """
        Run ``<interpreter> <script_path> [args]`` with ``work_dir`` as cwd.

        Never raises for process-level failures: spawn errors, timeouts and
        cancellations come back as a result with a synthetic exit code and
        the matching exception instance in ``failure``.
        """
        started = time.monotonic()
        state = ProcessState.IDLE

        try:
            process = await asyncio.create_subprocess_exec(
                self.interpreter,
                str(script_path),
                *args,
                cwd=str(work_dir),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (OSError, ValueError) as e:
            message = f"Failed to start interpreter '{self.interpreter}': {e}"
            logger.error(message)
            return ProcessResult(
                stdout="",
                stderr=message,
                exit_code=SPAWN_FAILED_EXIT_CODE,
                state=ProcessState.SPAWN_FAILED,
                duration_ms=_elapsed_ms(started),
                failure=SpawnError(message, {"interpreter": self.interpreter}),
            )

        state = ProcessState.SPAWNED
        logger.debug(f"Spawned pid {process.pid} for {script_path}")

        stdout = _StreamCollector(process.stdout, self.max_output_chars)
        stderr = _StreamCollector(process.stderr, self.max_output_chars)
        readers = [
            asyncio.ensure_future(stdout.collect()),
            asyncio.ensure_future(stderr.collect()),
        ]
        exit_waiter = asyncio.ensure_future(process.wait())
        cancel_waiter = asyncio.ensure_future(cancel_token.wait()) if cancel_token else None

        try:
            waiters = {exit_waiter} | ({cancel_waiter} if cancel_waiter else set())
            done, _ = await asyncio.wait(
                waiters,
                timeout=timeout_ms / 1000.0,
                return_when=asyncio.FIRST_COMPLETED
            )

            if exit_waiter in done:
                state = ProcessState.COMPLETED
            elif cancel_waiter is not None and cancel_waiter in done:
                state = ProcessState.CANCELLED
                logger.info(f"Cancelling pid {process.pid} on caller request")
                await _kill(process)
            else:
                state = ProcessState.TIMED_OUT
                logger.warning(f"pid {process.pid} exceeded {timeout_ms} ms, killing")
                await _kill(process)
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()
            if process.returncode is None:
                # Caller was cancelled or something raised while waiting
                await _kill(process)
            await _drain(readers)

        duration_ms = _elapsed_ms(started)

        if state == ProcessState.COMPLETED:
            exit_code = process.returncode
            failure = None
        elif state == ProcessState.CANCELLED:
            exit_code = CANCELLED_EXIT_CODE
            failure = ExecutionCancelledError(
                f"Execution cancelled after {duration_ms} ms",
                {"duration_ms": duration_ms}
            )
        else:
            exit_code = TIMEOUT_EXIT_CODE
            failure = TimeoutError(
                f"Execution timed out after {timeout_ms} ms",
                {"timeout_ms": timeout_ms}
            )

        return ProcessResult(
            stdout=stdout.text(),
            stderr=stderr.text(),
            exit_code=exit_code,
            state=state,
            duration_ms=duration_ms,
            failure=failure,
        )


async def _kill(process: asyncio.subprocess.Process) -> None:
    try:
        process.kill()
    except ProcessLookupError:
        pass
    await process.wait()


async def _drain(readers: List["asyncio.Future"]) -> None:
    """Wait briefly for the pipe readers; grandchildren may hold the pipes open."""
    done, pending = await asyncio.wait(readers, timeout=_DRAIN_TIMEOUT_S)
    for task in pending:
        task.cancel()
    for task in done:
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Stream reader failed: {task.exception()}")


def _elapsed_ms(started: float) -> int:
    return max(0, int((time.monotonic() - started) * 1000))
