"""
VISPREP Errors.

Fatal errors (ConfigError, StrategyLoadError, DimensionMismatchError) abort
the run before any worker starts. BaselineProcessingError is caught at the
task boundary and turns into a fully flagged baseline.
"""


class VisprepError(Exception):
    """Base class for all visprep errors."""


class ConfigError(VisprepError):
    """Inconsistent dimensions or unsupported settings."""


class StrategyLoadError(VisprepError):
    """Missing or unreadable strategy file, or engine version mismatch."""


class DimensionMismatchError(VisprepError):
    """Cube, weight and mask shapes disagree."""

    def __init__(self, what: str, expected, found):
        self.what = what
        self.expected = tuple(expected)
        self.found = tuple(found)
        super().__init__(f"{what}: expected shape {self.expected}, found {self.found}")


class BaselineProcessingError(VisprepError):
    """Numerical failure while correcting or flagging a single baseline."""

    def __init__(self, baseline: int, reason: str):
        self.baseline = baseline
        self.reason = reason
        super().__init__(f"baseline {baseline}: {reason}")


__all__ = [
    'VisprepError',
    'ConfigError',
    'StrategyLoadError',
    'DimensionMismatchError',
    'BaselineProcessingError',
]
