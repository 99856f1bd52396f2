"""Tests for data marshaling and value coercion"""

import copy
import json
import math
from datetime import date, datetime
from decimal import Decimal

import numpy as np
import pytest

from notebook_engine.exceptions import DecodeError, TimeoutError, ValidationError
from notebook_engine.execution.coercion import decode_value, json_default, to_builtin
from notebook_engine.execution.marshaling import DataMarshaler, check_homogeneous, infer_columns
from notebook_engine.execution.models import ProcessResult, ProcessState
from notebook_engine.execution.supervisor import TIMEOUT_EXIT_CODE


@pytest.fixture
def marshaler():
    return DataMarshaler()


def completed(exit_code=0, stdout="", stderr=""):
    return ProcessResult(stdout=stdout, stderr=stderr, exit_code=exit_code, state=ProcessState.COMPLETED, duration_ms=5)


def write_envelope(path, envelope):
    path.write_text(json.dumps(envelope), encoding="utf-8")
    return path


class TestWriteContext:
    """Test outbound data files"""

    def test_payload_shape(self, marshaler, tmp_path):
        rows = [{"a": 1, "b": "x"}, {"a": 2, "b": None}]
        path = tmp_path / "data.json"

        marshaler.write_context(path, rows, extra={"bundle": "abc"})

        payload = json.loads(path.read_text())
        assert payload == {"data": rows, "columns": ["a", "b"], "params": {"bundle": "abc"}}

    def test_rows_are_not_mutated(self, marshaler, tmp_path):
        rows = [{"when": date(2024, 1, 2), "n": np.int64(3), "v": np.array([1.5, 2.5])}]
        snapshot = copy.deepcopy(rows)

        marshaler.write_context(tmp_path / "data.json", rows)

        assert rows[0]["when"] == snapshot[0]["when"]
        assert isinstance(rows[0]["n"], np.int64)
        assert np.array_equal(rows[0]["v"], snapshot[0]["v"])

    def test_explicit_columns(self, marshaler, tmp_path):
        path = tmp_path / "data.json"

        marshaler.write_context(path, [{"a": 1, "b": 2}], columns=["b", "a"])

        assert json.loads(path.read_text())["columns"] == ["b", "a"]

    def test_empty(self, marshaler, tmp_path):
        path = tmp_path / "data.json"

        marshaler.write_context(path)

        assert json.loads(path.read_text()) == {"data": [], "columns": [], "params": {}}


class TestReadResult:
    """Test inbound envelopes and fallbacks"""

    def test_success_envelope(self, marshaler, tmp_path):
        path = write_envelope(tmp_path / "out.json", {
            "success": True, "output": "hi\n", "error": "", "errorType": None,
            "result": {"__ndarray__": [[1, 2], [3, 4]], "dtype": "int64", "shape": [2, 2]},
        })

        result = marshaler.read_result(path, completed())

        assert result.success
        assert result.output == "hi\n"
        assert result.error is None
        assert result.error_type is None
        assert result.result.shape == (2, 2)
        assert result.exit_code == 0

    def test_failure_envelope(self, marshaler, tmp_path):
        path = write_envelope(tmp_path / "out.json", {
            "success": False, "output": "", "error": "Traceback ...\nValueError: bad", "errorType": "ValueError",
            "result": None,
        })

        result = marshaler.read_result(path, completed())

        assert not result.success
        assert result.error_type == "ValueError"
        assert "ValueError: bad" in result.error

    def test_failure_without_type_is_script_error(self, marshaler, tmp_path):
        path = write_envelope(tmp_path / "out.json", {"success": False})

        result = marshaler.read_result(path, completed(stderr="oops"))

        assert result.error_type == "ScriptError"
        assert result.error == "oops"

    def test_missing_envelope_falls_back_to_streams(self, marshaler, tmp_path):
        result = marshaler.read_result(tmp_path / "missing.json", completed(exit_code=0, stdout="raw"))

        assert result.success
        assert result.output == "raw"
        assert result.result is None

    def test_malformed_envelope_with_silent_crash(self, marshaler, tmp_path):
        path = tmp_path / "out.json"
        path.write_text("{not json")

        result = marshaler.read_result(path, completed(exit_code=3))

        assert not result.success
        assert result.error == "Interpreter exited with code 3"
        assert result.error_type == "ScriptError"
        assert result.exit_code == 3

    def test_process_failure_wins_over_envelope(self, marshaler, tmp_path):
        path = write_envelope(tmp_path / "out.json", {"success": True, "result": 1})
        process = ProcessResult(
            stdout="partial", stderr="", exit_code=TIMEOUT_EXIT_CODE, state=ProcessState.TIMED_OUT,
            failure=TimeoutError("Execution timed out after 1000 ms"),
        )

        result = marshaler.read_result(path, process)

        assert not result.success
        assert result.error_type == "TimeoutError"
        assert result.output == "partial"
        assert result.exit_code == TIMEOUT_EXIT_CODE

    @pytest.mark.parametrize("content", ["[]", '{"output": "x"}'])
    def test_load_envelope_rejects_shapes(self, marshaler, tmp_path, content):
        path = tmp_path / "out.json"
        path.write_text(content)

        with pytest.raises(DecodeError):
            marshaler.load_envelope(path)


class TestRows:
    """Test row shape helpers"""

    def test_infer_columns_first_seen_order(self):
        assert infer_columns([{"b": 1}, {"a": 2, "b": 3}]) == ["b", "a"]

    def test_homogeneous(self):
        assert check_homogeneous([{"a": 1, "b": 2}, {"b": 3, "a": 4}]) == ["a", "b"]
        assert check_homogeneous([]) == []

    def test_heterogeneous(self):
        with pytest.raises(ValidationError) as exc_info:
            check_homogeneous([{"a": 1}, {"a": 1, "c": 2}])

        assert exc_info.value.details == {"row": 1, "missing": [], "unexpected": ["c"]}

    def test_non_mapping_row(self):
        with pytest.raises(ValidationError):
            check_homogeneous([{"a": 1}, [1]])


class TestCoercion:
    """Test value conversion helpers"""

    def test_decode_special_floats(self):
        decoded = decode_value({"a": {"__float__": "nan"}, "b": [{"__float__": "-inf"}]})

        assert math.isnan(decoded["a"])
        assert decoded["b"] == [float("-inf")]

    def test_decode_array_dtype(self):
        array = decode_value({"__ndarray__": [1.0, 2.0], "dtype": "float32", "shape": [2]})

        assert array.dtype == np.float32

    def test_decode_bad_dtype_keeps_lists(self):
        assert decode_value({"__ndarray__": [[1], [2, 3]], "dtype": "int64", "shape": [2]}) == [[1], [2, 3]]

    def test_to_builtin(self):
        value = {"arr": np.array([1, 2]), "n": np.float64(0.5), "bad": float("nan"), 3: (1, 2)}

        assert to_builtin(value) == {"arr": [1, 2], "n": 0.5, "bad": None, "3": [1, 2]}

    def test_json_default(self):
        assert json_default(np.int32(4)) == 4
        assert json_default(np.array([1, 2])) == [1, 2]
        assert json_default(datetime(2024, 1, 2, 3, 4)) == "2024-01-02T03:04:00"
        assert json_default(Decimal("1.5")) == 1.5
        assert sorted(json_default({2, 1})) == [1, 2]
