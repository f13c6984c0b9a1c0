from .registry import Check, CheckRegistry, registry
from .results import RunReport, TestResult
from .runner import ValidationRunner, interpret_outcome

__all__ = [
    "Check",
    "CheckRegistry",
    "RunReport",
    "TestResult",
    "ValidationRunner",
    "interpret_outcome",
    "registry",
]
