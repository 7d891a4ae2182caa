"""
renderbench - Paired rendering benchmark harness.

Plan trials, measure frame pacing, validate the records.
"""

from renderbench.config import SuiteConfig, load_config
from renderbench.suite import Suite, SuiteResult, run_suite
from renderbench.validator import validate_paths

__version__ = "0.1.0"
__all__ = [
    "Suite",
    "SuiteConfig",
    "SuiteResult",
    "__version__",
    "load_config",
    "run_suite",
    "validate_paths",
]
