"""
Structured assembly of interpreter scripts.

Generated scripts are never built by concatenating request values into
source text. Templates expose ``$name`` placeholders, and each placeholder is
filled either with a value rendered by :func:`py_literal` (which only accepts
plain data and escapes it as a Python literal) or with a :class:`Fragment`
that the builders themselves produced. Every finished script is parsed with
:mod:`ast` before it leaves the builder.
"""

import ast
import keyword
import math
import string
import textwrap
from typing import Any, Dict, Iterable, List, Mapping, Optional

from notebook_engine.exceptions import ValidationError


class Fragment:
    """Trusted source text produced by a builder, inserted verbatim."""

    __slots__ = ("source",)

    def __init__(self, source: str):
        self.source = source

    def __repr__(self) -> str:
        return f"Fragment({self.source!r})"


def py_literal(value: Any) -> str:
    """
    Render a plain data value as Python source.

    Supports None, booleans, integers, floats (including non-finite values),
    strings, lists, tuples and dicts with string keys, recursively. NumPy
    scalars are unwrapped through ``item()``.

    Raises:
        ValidationError: If the value has no literal rendering
    """
    if value is None or isinstance(value, bool):
        return repr(value)
    if isinstance(value, int):
        return repr(value)
    if isinstance(value, float):
        if math.isnan(value):
            return "float('nan')"
        if math.isinf(value):
            return "float('inf')" if value > 0 else "float('-inf')"
        return repr(value)
    if isinstance(value, str):
        return repr(value)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(py_literal(item) for item in value) + "]"
    if isinstance(value, dict):
        parts = []
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValidationError(
                    f"Dictionary keys must be strings, got {type(key).__name__}",
                    {"key": repr(key)}
                )
            parts.append(f"{py_literal(key)}: {py_literal(item)}")
        return "{" + ", ".join(parts) + "}"
    if hasattr(value, "item") and callable(value.item):
        return py_literal(value.item())
    raise ValidationError(
        f"Cannot render value of type {type(value).__name__} as a script literal",
        {"value": repr(value)[:200]}
    )


def py_identifier(name: Any) -> str:
    """Return ``name`` if it is usable as a keyword argument name."""
    if not isinstance(name, str) or not name.isidentifier() or keyword.iskeyword(name):
        raise ValidationError(f"Invalid parameter name: {name!r}")
    return name


def render_call(callee: str, kwargs: Optional[Mapping[str, Any]] = None) -> Fragment:
    """Render ``callee(key=literal, ...)`` with validated names and literal values."""
    for part in callee.split("."):
        py_identifier(part)
    arguments = ", ".join(
        f"{py_identifier(key)}={py_literal(value)}" for key, value in (kwargs or {}).items()
    )
    return Fragment(f"{callee}({arguments})")


def constants_block(values: Mapping[str, Any]) -> Fragment:
    """Render ``NAME = literal`` assignments, one per line."""
    lines = [f"{py_identifier(name)} = {py_literal(value)}" for name, value in values.items()]
    return Fragment("\n".join(lines))


def check_syntax(source: str, filename: str = "<script>") -> str:
    """Parse ``source`` and return it unchanged, or raise ValidationError."""
    try:
        ast.parse(source, filename=filename)
    except SyntaxError as e:
        raise ValidationError(
            f"Generated script is not valid Python: {e.msg} (line {e.lineno})",
            {"line": e.lineno}
        )
    return source


class ScriptTemplate:
    """Parameter-substitution template whose values are rendered as literals."""

    def __init__(self, source: str):
        self._template = string.Template(textwrap.dedent(source).strip("\n"))

    @property
    def placeholders(self) -> List[str]:
        names = []
        for match in self._template.pattern.finditer(self._template.template):
            name = match.group("named") or match.group("braced")
            if name and name not in names:
                names.append(name)
        return names

    def render(self, **values: Any) -> str:
        rendered: Dict[str, str] = {}
        for name, value in values.items():
            rendered[name] = value.source if isinstance(value, Fragment) else py_literal(value)
        try:
            return self._template.substitute(rendered)
        except KeyError as e:
            raise ValidationError(f"Missing template value: {e.args[0]}")


class ScriptAssembler:
    """Collects import lines and code blocks into one script."""

    def __init__(self):
        self._imports: List[str] = []
        self._blocks: List[str] = []

    def add_import(self, line: str) -> "ScriptAssembler":
        if line not in self._imports:
            self._imports.append(line)
        return self

    def add_imports(self, lines: Iterable[str]) -> "ScriptAssembler":
        for line in lines:
            self.add_import(line)
        return self

    def add_block(self, block: str) -> "ScriptAssembler":
        self._blocks.append(block.strip("\n"))
        return self

    def build(self, filename: str = "<script>") -> str:
        sections = []
        if self._imports:
            sections.append("\n".join(self._imports))
        sections.extend(self._blocks)
        return check_syntax("\n\n".join(sections) + "\n", filename)
