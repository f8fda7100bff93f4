"""Custom error classes."""
from typing import Optional


class WalletHistoryError(Exception):
    """Base exception for the wallet history engine."""
    pass


class SourceFetchError(WalletHistoryError):
    """Error fetching a page from a remote history source."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class StorageError(WalletHistoryError):
    """Error reading from or writing to the history store."""
    pass


class NormalizationError(WalletHistoryError):
    """Error converting a raw provider record into a canonical record."""
    pass


class ChainMetadataError(WalletHistoryError):
    """Error related to chain metadata lookup."""
    pass
