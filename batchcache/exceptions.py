"""
Exceptions raised by the batch cache framework.

Consumer failures are caught at the flush boundary and never reach the
producer; the classes here mark the errors that do cross a public API.
"""


class BatchCacheError(Exception):
    """Base exception for all framework errors."""
    pass


class ConfigurationError(BatchCacheError):
    """Raised when a configuration value is missing or out of range."""
    pass


class UnknownCategoryError(BatchCacheError, ValueError):
    """Raised when a category name is not one of the declared categories."""

    def __init__(self, category):
        self.category = category
        super().__init__(f"Unknown category: {category!r}")


class RecordNormalizationError(BatchCacheError, ValueError):
    """Raised when an item cannot be normalized into a record."""

    def __init__(self, category: str, message: str):
        self.category = category
        super().__init__(f"[{category}] {message}")


class SinkError(BatchCacheError):
    """Raised when a downstream sink fails to persist a batch."""

    def __init__(self, sink: str, message: str):
        self.sink = sink
        super().__init__(f"{sink}: {message}")
