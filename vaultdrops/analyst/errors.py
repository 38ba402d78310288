"""Exception classes for statistical analysis."""


class StatisticalError(Exception):
    """Base exception for statistical analysis errors."""

    pass


class InvalidProportionError(StatisticalError, ValueError):
    """Raised when a (successes, trials) pair cannot describe a proportion."""

    def __init__(self, message: str, successes: int | None = None, trials: int | None = None):
        self.successes = successes
        self.trials = trials
        super().__init__(message)
