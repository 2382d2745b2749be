"""
Custom Exceptions
Exception types for programmer/configuration errors and classified producer failures.
"""


class TrendreelError(Exception):
    """Base exception for the pipeline engine."""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(TrendreelError):
    """Invalid thresholds, tier lists or stage definitions."""
    pass


class ProducerError(TrendreelError):
    """Raised by a producer to report a classified failure."""

    def __init__(self, message: str, kind: str = "unknown", producer: str = None, **kwargs):
        super().__init__(message, kwargs)
        self.kind = kind
        self.producer = producer


class UnknownProducerError(ConfigurationError):
    """A tier references a producer id that is not registered."""

    def __init__(self, producer_id: str):
        super().__init__(f"producer not registered: {producer_id}", {"producer_id": producer_id})
        self.producer_id = producer_id


class DeadLetterError(TrendreelError):
    """Dead letter sink could not persist an entry."""
    pass
