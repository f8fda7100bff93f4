"""Local history cache."""
import logging
from typing import Callable, List, Optional
from pydantic import ValidationError
from wallet_history.config import settings
from wallet_history.models.transaction import TransactionRecord
from wallet_history.services.storage import KeyValueStore
from wallet_history.utils.errors import StorageError

logger = logging.getLogger(__name__)


def freshness_token(address: str, chain_id: str) -> str:
    """Token identifying the (address, chain) pair a request was made for."""
    return f"{address} - {chain_id}"


class HistoryCache:
    """
    Recency window of the newest records per (address, chain).

    Reads and writes are best-effort: storage failures are logged and never
    propagate. When an ``active_token`` callable is supplied, a read or write
    whose freshness token no longer matches the active request is dropped.
    """

    def __init__(
        self,
        store: KeyValueStore,
        max_items: Optional[int] = None,
        namespace: Optional[str] = None,
        active_token: Optional[Callable[[], Optional[str]]] = None
    ):
        self.store = store
        self.max_items = max_items if max_items is not None else settings.max_local_history_items
        self.namespace = namespace or settings.history_namespace
        self.active_token = active_token

    def make_key(self, address: str, chain_id: str) -> str:
        """Generate the store key for an (address, chain) pair."""
        return f"{self.namespace}.{address}.{chain_id}"

    def _is_current(self, token: str) -> bool:
        return self.active_token is None or self.active_token() == token

    async def load(self, address: str, chain_id: str) -> Optional[List[TransactionRecord]]:
        """
        Load the cached records for an account on a chain.

        Returns:
            Stored records, or None if nothing usable was found or the read
            completed after the active account/chain changed
        """
        token = freshness_token(address, chain_id)
        key = self.make_key(address, chain_id)

        try:
            raw = await self.store.get(key)
        except StorageError as e:
            logger.error(f"[CACHE] Error loading {key}: {e}")
            return None

        if not self._is_current(token):
            logger.info(f"[CACHE] Discarding stale read for {token}")
            return None

        if raw is None:
            logger.debug(f"[CACHE] No history stored for {key}")
            return None

        if not isinstance(raw, list):
            logger.warning(f"[CACHE] Ignoring malformed entry for {key}")
            return None

        records = []
        for item in raw:
            try:
                records.append(TransactionRecord.model_validate(item))
            except ValidationError as e:
                logger.warning(f"[CACHE] Skipping unreadable record in {key}: {e.error_count()} error(s)")

        logger.info(f"[CACHE] Loaded {len(records)} records for {key}")
        return records

    async def save(self, address: str, chain_id: str, records: List[TransactionRecord]) -> bool:
        """
        Persist the head of an already newest-first list.

        Args:
            address: Account address
            chain_id: Chain genesis hash of the active request
            records: Records sorted by date descending

        Returns:
            True if the write happened
        """
        if not records:
            logger.debug("[CACHE] Nothing to save")
            return False

        leading_chain = records[0].chain
        if leading_chain is None or not leading_chain.genesis_hash:
            logger.warning("[CACHE] Skipping save, leading record has no chain identity")
            return False

        token = freshness_token(address, chain_id)
        if not self._is_current(token):
            logger.info(f"[CACHE] Skipping superseded write for {token}")
            return False

        latest = records[:self.max_items]
        key = self.make_key(address, leading_chain.genesis_hash)
        try:
            await self.store.set(key, [record.to_storage() for record in latest])
        except StorageError as e:
            logger.error(f"[CACHE] Error saving {key}: {e}")
            return False

        logger.info(f"[CACHE] Saved latest {len(latest)} records to {key}")
        return True

    async def clear(self, address: str, chain_id: str):
        """Delete the cached entry for an account on a chain."""
        try:
            await self.store.delete(self.make_key(address, chain_id))
        except StorageError as e:
            logger.error(f"[CACHE] Error clearing history: {e}")
