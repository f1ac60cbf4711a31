"""Domain exceptions for the commission pipeline."""


class CommissionError(Exception):
    """Base exception for commission pipeline errors."""
    pass


class RateNotFoundError(CommissionError):
    """Raised when no active grid entry matches a policy.

    The caller decides the fallback (usually zero rate + manual review);
    the resolver never guesses a default.
    """
    pass


class AmbiguousRateError(CommissionError):
    """Raised when two grid entries are equally specific and equally recent."""

    def __init__(self, message: str, entry_ids=None):
        super().__init__(message)
        self.entry_ids = list(entry_ids or [])


class NegativeShareError(CommissionError):
    """Raised when a split produces a negative party share (misconfigured contract %)."""
    pass


class InvalidTransitionError(CommissionError):
    """Raised when a settlement or revenue status change is not allowed."""
    pass


class StaleRecordError(CommissionError):
    """Raised when a conditional update lost a race with another writer."""
    pass


class StatementParseError(CommissionError):
    """Raised when an insurer statement cannot be read at all."""
    pass
