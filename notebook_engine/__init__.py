"""
Notebook execution engine.

Runs analysis code and model training in an external interpreter process,
marshals data and results across the process boundary, and manages the
trained-model artifacts it produces.
"""

__version__ = "1.0.0"
