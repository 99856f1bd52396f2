"""
Script builders for the external interpreter.
"""
from notebook_engine.scripts.analysis import build_analysis_script
from notebook_engine.scripts.assembler import Fragment, ScriptAssembler, ScriptTemplate, py_literal

__all__ = [
    "Fragment",
    "ScriptAssembler",
    "ScriptTemplate",
    "build_analysis_script",
    "py_literal",
]
