"""
Error taxonomy for storage connectors and backup workflows.

Connector calls raise the narrowest error that applies. Batch operations
(delete_all, transfers) only raise AggregateBatchError, after the whole
batch has completed.
"""

from typing import Any, Dict, List, Optional


class StorageError(Exception):
    """Base class for every error raised by bucketkeeper."""
    pass


class NotFoundError(StorageError):
    """Raised when a bucket or object does not exist."""
    pass


class ProviderError(StorageError):
    """Raised when a provider SDK call fails."""
    pass


class InvalidLocatorError(StorageError):
    """Raised when shared-bucket credentials (bucket/version) are malformed."""
    pass


class DateParseError(StorageError):
    """Raised when a backup name cannot be turned into a date."""
    pass


class DirectoryError(StorageError):
    """Raised when installations or filesources cannot be looked up."""
    pass


class UnsupportedProviderError(StorageError):
    """Raised when no connector is registered for a (provider, product) pair."""

    def __init__(self, provider: Optional[str], product: Optional[str]):
        self.provider = provider
        self.product = product
        super().__init__(
            f"No connector supports provider '{provider}' with product '{product}'"
        )


class UnsupportedTransferError(StorageError):
    """Raised when a transfer would cross two different providers or products."""

    def __init__(self, source: tuple, destination: tuple):
        self.source = source
        self.destination = destination
        super().__init__(
            f"File transfer from {source[0]}/{source[1]} to "
            f"{destination[0]}/{destination[1]} is not supported"
        )


class AggregateBatchError(StorageError):
    """
    Raised when a batch finished with at least one failed item.

    Attributes:
        failures: One dict per failed item (bucket, path, version, error)
        succeeded_count: Number of items that completed successfully
    """

    def __init__(self, message: str, failures: List[Dict[str, Any]], succeeded_count: int):
        self.failures = failures
        self.succeeded_count = succeeded_count
        super().__init__(message)

    def __str__(self):
        preview = ', '.join(
            f"{f.get('bucket')}/{f.get('path')}@{f.get('version')}" for f in self.failures[:10]
        )
        more = f" (+{len(self.failures) - 10} more)" if len(self.failures) > 10 else ''
        return f"{self.args[0]}; failed: {preview}{more}"
