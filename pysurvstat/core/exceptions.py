"""
Exception hierarchy for PySurvStat.

All exceptions inherit from PySurvStatError to allow catching any
library-specific error. Domain-specific exceptions should inherit from
the appropriate base class here.

Design principles:
    - Exceptions carry diagnostic information as attributes
    - Error messages are actionable with actual vs expected values
    - Never catch and re-raise with less information
"""


class PySurvStatError(Exception):
    """Base exception for all PySurvStat errors."""
    pass


class ValidationError(PySurvStatError):
    """
    Input validation failed.

    Raised when user-provided inputs fail validation checks.
    """
    pass


class DimensionError(ValidationError):
    """
    Array dimensions are incorrect or inconsistent.

    Raised when array shapes don't match expected dimensions or
    when multiple arrays have inconsistent shapes.
    """
    pass


class DataValidationError(ValidationError, ValueError):
    """
    Survival records are malformed.

    Raised at dataset construction for non-positive or non-finite times,
    event flags that are not boolean, or covariate vectors whose length
    differs across records.

    Attributes:
        field: Name of the offending field ('time', 'event', 'covariates', ...)
        index: Position of the first offending record, if known
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        index: int | None = None,
    ):
        super().__init__(message)
        self.field = field
        self.index = index


class DesignError(ValidationError, ValueError):
    """
    Design matrix cannot be used for fitting.

    Raised when the covariate matrix is rank-deficient (perfectly collinear
    or constant columns) or otherwise unusable.

    Attributes:
        rank: Numerical rank of the (centered) design matrix
        expected_rank: Number of columns
        column_names: Column labels of the offending design
    """

    def __init__(
        self,
        message: str,
        rank: int | None = None,
        expected_rank: int | None = None,
        column_names: tuple[str, ...] | None = None,
    ):
        super().__init__(message)
        self.rank = rank
        self.expected_rank = expected_rank
        self.column_names = column_names


class NumericalError(PySurvStatError):
    """
    Numerical computation failed.

    Base class for errors arising from numerical issues during computation.
    """
    pass


class SingularMatrixError(NumericalError):
    """
    Matrix is singular or nearly singular.

    Attributes:
        matrix_name: Name/description of the problematic matrix
        condition_number: Estimated condition number, if available
        rank: Numerical rank, if computed
        expected_rank: Expected rank
    """

    def __init__(
        self,
        message: str,
        matrix_name: str | None = None,
        condition_number: float | None = None,
        rank: int | None = None,
        expected_rank: int | None = None
    ):
        super().__init__(message)
        self.matrix_name = matrix_name
        self.condition_number = condition_number
        self.rank = rank
        self.expected_rank = expected_rank


class DomainError(NumericalError):
    """
    Transform evaluated outside its domain.

    Raised when the log-log confidence transform is applied at S(t) = 0 or
    S(t) = 1, where log(-log S) is undefined. Callers that want bounds at
    those points use the boundary-aware interval functions instead.

    Attributes:
        value: The offending input value
    """

    def __init__(self, message: str, value: float | None = None):
        super().__init__(message)
        self.value = value


class ConvergenceError(PySurvStatError):
    """
    Iterative algorithm failed to converge.

    Raised when Newton-Raphson fails to meet its convergence criterion
    within the maximum number of iterations, or cannot continue.

    Attributes:
        iterations: Number of iterations completed
        final_change: Final score norm (or parameter change)
        reason: Why convergence failed ('max_iterations',
            'singular_information', 'non_finite', 'no_events')
        threshold: The convergence threshold that was not met
    """

    def __init__(
        self,
        message: str,
        iterations: int,
        final_change: float | None = None,
        reason: str | None = None,
        threshold: float | None = None
    ):
        super().__init__(message)
        self.iterations = iterations
        self.final_change = final_change
        self.reason = reason
        self.threshold = threshold
