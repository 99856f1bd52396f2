"""
Analysis script builder.

Wraps a cell of user code in a self-contained script that loads the
marshalled data file into a DataFrame, runs the cell with its output
captured, and writes a JSON result envelope to the output path. The whole
run sits inside one top-level handler, so a failing cell still produces a
well-formed envelope.
"""

from pathlib import Path
from typing import Union

from notebook_engine.exceptions import ValidationError
from notebook_engine.scripts.assembler import ScriptTemplate, check_syntax

CELL_FILENAME = "<cell>"

ANALYSIS_TEMPLATE = ScriptTemplate('''
import ast
import io
import json
import math
import sys
import traceback
import warnings
from contextlib import redirect_stderr, redirect_stdout

warnings.filterwarnings("ignore")

DATA_PATH = $data_path
OUTPUT_PATH = $output_path
CELL_SOURCE = $code

_UNSET = object()
_published = [_UNSET]


def set_result(value):
    """Publish ``value`` as the result of this cell."""
    _published[0] = value


def _encode(value):
    np = sys.modules.get("numpy")
    pd = sys.modules.get("pandas")
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isnan(value):
            return {"__float__": "nan"}
        if math.isinf(value):
            return {"__float__": "inf" if value > 0 else "-inf"}
        return value
    if pd is not None and isinstance(value, pd.DataFrame):
        return [_encode(record) for record in value.to_dict(orient="records")]
    if pd is not None and isinstance(value, pd.Series):
        return _encode(value.to_numpy())
    if np is not None and isinstance(value, np.ndarray):
        if value.dtype.kind in "biuf":
            return {
                "__ndarray__": _encode(value.tolist()),
                "dtype": str(value.dtype),
                "shape": list(value.shape),
            }
        return [_encode(item) for item in value.tolist()]
    if np is not None and isinstance(value, np.generic):
        return _encode(value.item())
    if isinstance(value, dict):
        return {str(key): _encode(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_encode(item) for item in value]
    return repr(value)


_stdout = io.StringIO()
_stderr = io.StringIO()
envelope = {"success": False, "output": "", "error": "", "errorType": None, "result": None}
_failure = ""

try:
    import numpy as np
    import pandas as pd

    with open(DATA_PATH, encoding="utf-8") as handle:
        context = json.load(handle)
    columns = context.get("columns") or []
    params = context.get("params") or {}
    data = pd.DataFrame(context.get("data") or [], columns=columns or None)

    tree = ast.parse(CELL_SOURCE, filename=$cell_filename, mode="exec")
    tail = None
    if tree.body and isinstance(tree.body[-1], ast.Expr):
        tail = ast.Expression(tree.body.pop().value)

    namespace = {
        "__name__": "__main__",
        "np": np,
        "pd": pd,
        "data": data,
        "columns": columns,
        "params": params,
        "context": context,
        "set_result": set_result,
    }

    with redirect_stdout(_stdout), redirect_stderr(_stderr):
        exec(compile(tree, $cell_filename, "exec"), namespace)
        if tail is not None:
            value = eval(compile(tail, $cell_filename, "eval"), namespace)
            if _published[0] is _UNSET:
                _published[0] = value

    envelope["success"] = True
except BaseException as exc:
    envelope["errorType"] = type(exc).__name__
    _failure = traceback.format_exc()

if envelope["success"] and _published[0] is not _UNSET:
    try:
        envelope["result"] = _encode(_published[0])
        json.dumps(envelope["result"], allow_nan=False)
    except Exception as exc:
        envelope["success"] = False
        envelope["result"] = None
        envelope["errorType"] = type(exc).__name__
        _failure = "Result could not be encoded: " + traceback.format_exc()

envelope["output"] = _stdout.getvalue()
envelope["error"] = _stderr.getvalue() + _failure

with open(OUTPUT_PATH, "w", encoding="utf-8") as handle:
    json.dump(envelope, handle, allow_nan=False)
''')


def build_analysis_script(
    code: str,
    data_path: Union[str, Path],
    output_path: Union[str, Path]
) -> str:
    """
    Build a complete script around one cell of user code.

    The cell sees ``data`` (a DataFrame), ``columns``, ``params``, ``context``,
    ``np``, ``pd`` and ``set_result``. Its result is whatever it passes to
    ``set_result``; failing that, the value of its final top-level expression.

    Args:
        code: Cell source
        data_path: Path of the marshalled data file
        output_path: Path the result envelope is written to

    Returns:
        Script text

    Raises:
        ValidationError: If the code is empty
    """
    if not isinstance(code, str) or not code.strip():
        raise ValidationError("Code is required and must be a non-empty string")

    script = ANALYSIS_TEMPLATE.render(
        code=code,
        data_path=str(data_path),
        output_path=str(output_path),
        cell_filename=CELL_FILENAME,
    )
    return check_syntax(script, "<analysis>")
