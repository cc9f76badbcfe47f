"""Custom exception classes for the application."""


class DealFeedsException(Exception):
    """Base exception for all DealFeeds errors."""

    def __init__(self, message: str = "An unexpected error occurred"):
        self.message = message
        super().__init__(self.message)


class NormalizationError(DealFeedsException):
    """Raised when a raw upstream record cannot be turned into a deal."""

    def __init__(self, message: str):
        super().__init__(f"Cannot normalize record: {message}")


class PartitionError(DealFeedsException):
    """Raised when reading or writing a category partition fails."""

    def __init__(self, category: str, message: str):
        self.category = category
        super().__init__(f"Partition error for {category}: {message}")


class SourceError(DealFeedsException):
    """Raised when the upstream deal source cannot be fetched."""

    def __init__(self, source: str, message: str):
        super().__init__(f"Source error for {source}: {message}")
