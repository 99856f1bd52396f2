"""
Data marshaling across the interpreter boundary.

Rows go out as a JSON data file the generated script opens by path; results
come back as a JSON envelope ``{success, output, error, errorType, result}``.
A missing or unreadable envelope never masks the real outcome: the result
degrades to what the raw streams and exit code say.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from notebook_engine.exceptions import DecodeError, ValidationError
from notebook_engine.execution.coercion import decode_value, json_default
from notebook_engine.execution.models import ExecutionResult, ProcessResult, ProcessState

logger = logging.getLogger(__name__)


def infer_columns(rows: Sequence[Mapping[str, Any]]) -> List[str]:
    """Column names in first-seen order across all rows."""
    columns: List[str] = []
    seen = set()
    for row in rows:
        for key in row.keys():
            if key not in seen:
                seen.add(key)
                columns.append(key)
    return columns


def check_homogeneous(rows: Sequence[Mapping[str, Any]]) -> List[str]:
    """
    Ensure every row has the same column set.

    Returns:
        Column names in the order of the first row

    Raises:
        ValidationError: On a non-mapping row or a differing column set
    """
    if not rows:
        return []
    first = rows[0]
    if not isinstance(first, Mapping):
        raise ValidationError("Each row must be a mapping of column to value", {"row": 0})
    expected = set(first.keys())
    for index, row in enumerate(rows[1:], start=1):
        if not isinstance(row, Mapping):
            raise ValidationError("Each row must be a mapping of column to value", {"row": index})
        keys = set(row.keys())
        if keys != expected:
            raise ValidationError(
                f"Row {index} does not match the column set of row 0",
                {
                    "row": index,
                    "missing": sorted(expected - keys),
                    "unexpected": sorted(keys - expected),
                }
            )
    return list(first.keys())


class DataMarshaler:
    """Writes execution inputs and reads execution envelopes."""

    def write_context(
        self,
        path: Union[str, Path],
        rows: Optional[Sequence[Mapping[str, Any]]] = None,
        columns: Optional[Sequence[str]] = None,
        extra: Optional[Mapping[str, Any]] = None
    ) -> None:
        """
        Serialize rows and auxiliary parameters to ``path``.

        The caller's rows are only read, never modified.

        Args:
            path: Data file location inside the workspace
            rows: Tabular rows
            columns: Column names (inferred from the rows when omitted)
            extra: Scalar or JSON-like parameters exposed to the script as ``params``
        """
        rows = rows or []
        payload = {
            "data": rows,
            "columns": list(columns) if columns else infer_columns(rows),
            "params": dict(extra or {}),
        }
        with open(path, "w", encoding="utf-8") as f:
            json.dump(payload, f, default=json_default)

    def read_result(self, path: Union[str, Path], process: ProcessResult) -> ExecutionResult:
        """
        Build the execution result from the envelope at ``path``.

        Process-level failures (spawn, timeout, cancellation) always win over
        whatever the envelope says. A missing or malformed envelope falls back
        to the raw captured streams and the exit code.
        """
        if process.failure is not None and process.state != ProcessState.COMPLETED:
            return self._failed_process_result(process)

        try:
            envelope = self.load_envelope(path)
        except DecodeError as e:
            logger.warning(f"Falling back to raw process output: {e.message}")
            return self._fallback_result(process)

        success = bool(envelope.get("success"))
        error = envelope.get("error") or None
        error_type = envelope.get("errorType") if not success else None
        if not success and error_type is None:
            error_type = "ScriptError"
        if not success and not error:
            error = process.stderr or "Script reported failure without an error message"

        return ExecutionResult(
            success=success,
            output=str(envelope.get("output") or ""),
            error=error,
            error_type=error_type,
            result=decode_value(envelope.get("result")),
            exit_code=process.exit_code,
            execution_time_ms=process.duration_ms,
        )

    def load_envelope(self, path: Union[str, Path]) -> Dict[str, Any]:
        """Parse the envelope file or raise DecodeError."""
        try:
            with open(path, encoding="utf-8") as f:
                envelope = json.load(f)
        except FileNotFoundError:
            raise DecodeError("Result envelope was not written", {"path": str(path)})
        except (OSError, ValueError) as e:
            raise DecodeError(f"Result envelope could not be parsed: {e}", {"path": str(path)})

        if not isinstance(envelope, dict) or "success" not in envelope:
            raise DecodeError("Result envelope has an unexpected shape", {"path": str(path)})
        return envelope

    def _fallback_result(self, process: ProcessResult) -> ExecutionResult:
        success = process.exit_code == 0
        error = process.stderr or None
        if not success and not error:
            error = f"Interpreter exited with code {process.exit_code}"
        return ExecutionResult(
            success=success,
            output=process.stdout,
            error=error,
            error_type=None if success else "ScriptError",
            result=None,
            exit_code=process.exit_code,
            execution_time_ms=process.duration_ms,
        )

    def _failed_process_result(self, process: ProcessResult) -> ExecutionResult:
        message = process.failure.message
        if process.stderr and process.stderr != message:
            message = f"{message}\n{process.stderr}"
        return ExecutionResult(
            success=False,
            output=process.stdout,
            error=message,
            error_type=type(process.failure).__name__,
            result=None,
            exit_code=process.exit_code,
            execution_time_ms=process.duration_ms,
        )
