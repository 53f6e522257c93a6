class RatingEngineError(Exception):
    """Base class for every error the rating engine reports to its caller."""


class ValidationError(RatingEngineError):
    """Input rejected before the engine runs (e.g. stars out of range)."""


class NotFoundError(RatingEngineError):
    """A referenced movie or critic does not exist, or has nothing to summarize."""


class ArithmeticIndeterminate(RatingEngineError):
    """A weight or average would need a division by zero."""
