"""Exceptions raised by the batch engine."""


class BatchEngineError(Exception):
    """Base exception for batch engine errors."""
    pass


class InvalidIntent(BatchEngineError, ValueError):
    """Raised when a submitted intent is malformed."""
    pass


class NotFound(BatchEngineError, KeyError):
    """Raised when an intent or batch id is unknown."""

    def __str__(self):
        # KeyError repr()s its argument
        return str(self.args[0]) if self.args else ""


class InvalidTransition(BatchEngineError):
    """Raised when an intent status update would move backwards."""
    pass


class PriceUnavailable(BatchEngineError):
    """Raised by price providers when no prices could be fetched."""
    pass


class NettingFailure(BatchEngineError):
    """Raised when a batch cycle fails after intents were collected.

    The intents of the failed cycle have been released back to pending.
    """

    def __init__(self, message: str, intent_ids=None):
        super().__init__(message)
        self.intent_ids = list(intent_ids or [])
