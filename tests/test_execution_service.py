"""Tests for the execution service, end to end against the running interpreter"""

import asyncio
import math
import sys

import numpy as np
import pytest
from pydantic import ValidationError as PydanticValidationError

from conftest import workspace_entries
from notebook_engine.execution.models import DataContext, ExecutionRequest
from notebook_engine.execution.service import ExecutionService
from notebook_engine.execution.supervisor import CANCELLED_EXIT_CODE, TIMEOUT_EXIT_CODE, ProcessSupervisor


class TestResults:
    """Test how cell results come back"""

    @pytest.mark.asyncio
    async def test_tail_expression_is_the_result(self, service):
        result = await service.execute_analysis("x = 20\nprint('computing')\nx + 22")

        assert result.success
        assert result.result == 42
        assert result.output == "computing\n"
        assert result.exit_code == 0
        assert result.error is None

    @pytest.mark.asyncio
    async def test_data_is_a_dataframe(self, service):
        context = DataContext(rows=[{"a": 1, "b": 2}, {"a": 3, "b": 4}])

        result = await service.execute_analysis(
            "set_result({'sum': int(data['a'].sum()), 'columns': columns, 'shape': list(data.shape)})",
            data_context=context,
        )

        assert result.success
        assert result.result == {"sum": 4, "columns": ["a", "b"], "shape": [2, 2]}

    @pytest.mark.asyncio
    async def test_set_result_wins_over_tail(self, service):
        result = await service.execute_analysis("set_result('explicit')\n'tail'")

        assert result.result == "explicit"

    @pytest.mark.asyncio
    async def test_no_result(self, service):
        result = await service.execute_analysis("x = 1")

        assert result.success
        assert result.result is None

    @pytest.mark.asyncio
    async def test_numeric_array_and_special_floats(self, service):
        result = await service.execute_analysis(
            "set_result({'arr': np.arange(6, dtype='float64').reshape(2, 3), 'nan': float('nan'), "
            "'frame': pd.DataFrame({'x': [1, 2]})})"
        )

        assert result.success
        assert isinstance(result.result["arr"], np.ndarray)
        assert result.result["arr"].shape == (2, 3)
        assert math.isnan(result.result["nan"])
        assert result.result["frame"] == [{"x": 1}, {"x": 2}]

    @pytest.mark.asyncio
    async def test_result_serializes_to_json_builtins(self, service):
        result = await service.execute_analysis("np.array([1.0, float('nan')])")

        dumped = result.model_dump(mode="json", by_alias=True)
        assert dumped["result"] == [1.0, None]
        assert "executionTimeMs" in dumped

    @pytest.mark.asyncio
    async def test_workspace_is_removed(self, service, work_dir):
        result = await service.execute_analysis("1 + 1")

        assert result.success
        assert workspace_entries(work_dir) == []

    @pytest.mark.asyncio
    async def test_execution_id_never_names_the_workspace(self, service, work_dir):
        result = await service.execute_training("set_result(1 + 1)", rows=[], execution_id="nb/cell-1")

        assert result.success, result.error
        assert result.result == 2
        assert result.execution_id == "nb/cell-1"
        assert workspace_entries(work_dir) == []

    @pytest.mark.parametrize("execution_id", ["nb/cell-1", "../escape", "", "x" * 65])
    def test_request_rejects_unsafe_execution_id(self, execution_id):
        with pytest.raises(PydanticValidationError):
            ExecutionRequest(code="1 + 1", execution_id=execution_id)


class TestFailures:
    """Test failure reporting"""

    @pytest.mark.asyncio
    async def test_exception_in_cell(self, service):
        result = await service.execute_analysis("print('before')\nraise ValueError('bad value')")

        assert not result.success
        assert result.error_type == "ValueError"
        assert "bad value" in result.error
        assert result.output == "before\n"

    @pytest.mark.asyncio
    async def test_syntax_error(self, service):
        result = await service.execute_analysis("def broken(:")

        assert not result.success
        assert result.error_type == "SyntaxError"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["", "   \n"])
    async def test_empty_code_never_spawns(self, service, work_dir, code):
        result = await service.execute(ExecutionRequest(code=code))

        assert not result.success
        assert result.error_type == "ValidationError"
        assert result.execution_time_ms == 0
        assert workspace_entries(work_dir) == []

    @pytest.mark.asyncio
    async def test_heterogeneous_rows(self, service, work_dir):
        context = DataContext(rows=[{"a": 1}, {"b": 2}])

        result = await service.execute_analysis("data", data_context=context)

        assert result.error_type == "ValidationError"
        assert workspace_entries(work_dir) == []

    @pytest.mark.asyncio
    async def test_unencodable_result(self, service):
        result = await service.execute_analysis("set_result(object())")

        assert result.success
        assert result.result.startswith("<object object")

    @pytest.mark.asyncio
    async def test_hard_exit_falls_back_to_exit_code(self, service):
        result = await service.execute_analysis("import os\nos._exit(3)")

        assert not result.success
        assert result.exit_code == 3
        assert result.error == "Interpreter exited with code 3"
        assert result.error_type == "ScriptError"

    @pytest.mark.asyncio
    async def test_spawn_failure(self, work_dir):
        service = ExecutionService(ProcessSupervisor(interpreter="/nonexistent/python", work_dir=work_dir))

        result = await service.execute_analysis("1")

        assert not result.success
        assert result.error_type == "SpawnError"
        assert workspace_entries(work_dir) == []


class TestTimeoutsAndCancellation:
    """Test process-level termination"""

    @pytest.mark.asyncio
    async def test_timeout(self, service, work_dir):
        result = await service.execute(ExecutionRequest(
            code="import time\nprint('tick', flush=True)\ntime.sleep(30)",
            timeout_ms=1000,
        ))

        assert not result.success
        assert result.error_type == "TimeoutError"
        assert "timed out" in result.error
        assert result.exit_code == TIMEOUT_EXIT_CODE
        assert 1000 <= result.execution_time_ms < 1000 + 2500
        assert workspace_entries(work_dir) == []

    @pytest.mark.asyncio
    async def test_cancel_by_id(self, service, work_dir):
        task = asyncio.ensure_future(service.execute(ExecutionRequest(
            code="import time\ntime.sleep(30)",
            execution_id="long-running",
        )))
        for _ in range(100):
            if "long-running" in service.active_executions():
                break
            await asyncio.sleep(0.05)
        await asyncio.sleep(0.5)

        assert service.cancel("long-running")
        result = await task

        assert result.error_type == "ExecutionCancelledError"
        assert result.exit_code == CANCELLED_EXIT_CODE
        assert result.execution_id == "long-running"
        assert service.active_executions() == []
        assert workspace_entries(work_dir) == []

    def test_cancel_unknown_id(self, service):
        assert service.cancel("nothing") is False

    @pytest.mark.asyncio
    async def test_concurrent_executions_are_isolated(self, service):
        results = await asyncio.gather(*[
            service.execute_analysis(f"value = {i}\nvalue * 10") for i in range(4)
        ])

        assert [result.result for result in results] == [0, 10, 20, 30]
        assert len({result.execution_id for result in results}) == 4


@pytest.mark.asyncio
async def test_training_channel_passes_params(service):
    result = await service.execute_training(
        "set_result(params['token'] + str(len(data)))",
        rows=[{"x": 1}, {"x": 2}],
        extra={"token": "n="},
    )

    assert result.result == "n=2"


def test_interpreter_is_configurable(work_dir):
    service = ExecutionService(ProcessSupervisor(interpreter=sys.executable, work_dir=work_dir), default_timeout_ms=500)

    assert service.supervisor.interpreter == sys.executable
    assert service.default_timeout_ms == 500
