"""
Core infrastructure for PySurvStat.

Shared abstractions and utilities used by the survival estimators.

Key components:
    result: Generic Result[P] envelope
    exceptions: Exception hierarchy
    validation: Input validators
    compute: Timing utilities
"""

from pysurvstat.core.result import Result
from pysurvstat.core.exceptions import (
    PySurvStatError,
    ValidationError,
    DimensionError,
    DataValidationError,
    DesignError,
    NumericalError,
    SingularMatrixError,
    DomainError,
    ConvergenceError,
)

__all__ = [
    # Result
    "Result",
    # Exceptions
    "PySurvStatError",
    "ValidationError",
    "DimensionError",
    "DataValidationError",
    "DesignError",
    "NumericalError",
    "SingularMatrixError",
    "DomainError",
    "ConvergenceError",
]
