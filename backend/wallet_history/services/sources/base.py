"""Abstract base class for history sources."""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from wallet_history.models.transaction import ChainInfo


@dataclass
class SourcePage:
    """One page of raw records returned by a source."""
    items: List[Dict[str, Any]] = field(default_factory=list)
    raw_count: int = 0  # items on the page before any source-side filtering
    count: Optional[int] = None  # total reported by the provider, if any
    requested_for: Optional[str] = None  # freshness token of the request


class HistorySource(ABC):
    """Abstract base class for paginated history providers."""

    name: str = "source"

    @abstractmethod
    async def fetch_page(
        self,
        chain: ChainInfo,
        address: str,
        page: int,
        page_size: int
    ) -> SourcePage:
        """
        Fetch one page of raw records.

        Args:
            chain: Chain to query
            address: Account address
            page: Zero-based page number
            page_size: Rows per page

        Returns:
            The page; a short page means the source is exhausted

        Raises:
            SourceFetchError: On transport or provider errors
        """
        pass

    async def aclose(self):
        """Release any transport resources."""
        pass
