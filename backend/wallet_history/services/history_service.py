"""Transaction history aggregation service."""
import asyncio
import logging
from typing import Dict, List, Optional
from wallet_history.config import settings
from wallet_history.models.fetch_state import FetchStateStore, SourceKind
from wallet_history.models.history import HistoryView
from wallet_history.models.transaction import ChainInfo, FilterOptions, TransactionRecord
from wallet_history.services.cache_service import HistoryCache, freshness_token
from wallet_history.services.chain_metadata import ChainMetadataProvider
from wallet_history.services.grouping import build_view, resolve_timezone
from wallet_history.services.merge import AggregateState, merge_histories, resolve_state
from wallet_history.services.pager import VisibilityPager, continuous_gate, should_fetch_more
from wallet_history.services.sources.base import HistorySource, SourcePage
from wallet_history.services.storage import KeyValueStore
from wallet_history.services.transaction_normalizer import RecordNormalizer
from wallet_history.utils.errors import ChainMetadataError, NormalizationError, SourceFetchError

logger = logging.getLogger(__name__)


class TransactionHistoryService:
    """
    Aggregates an account's history from the transfers and extrinsics sources.

    The service owns all mutable state for the active (address, chain) pair:
    both fetch states, the normalized records received so far, the cached
    snapshot and the merged aggregate. Switching account or chain resets
    everything, and results of requests issued for a previous pair are
    dropped when they arrive.
    """

    def __init__(
        self,
        transfers_source: HistorySource,
        extrinsics_source: HistorySource,
        store: KeyValueStore,
        chain_metadata: ChainMetadataProvider,
        normalizer: Optional[RecordNormalizer] = None,
        page_size: Optional[int] = None,
        max_page: Optional[int] = None,
        max_local_items: Optional[int] = None,
        continuous_paging: Optional[bool] = None,
        display_timezone: Optional[str] = None
    ):
        self.sources: Dict[SourceKind, HistorySource] = {
            SourceKind.TRANSFERS: transfers_source,
            SourceKind.EXTRINSICS: extrinsics_source,
        }
        self.chain_metadata = chain_metadata
        self.normalizer = normalizer or RecordNormalizer(exact_amounts=settings.exact_amounts)
        self.page_size = page_size or settings.single_page_size
        self.max_page = max_page or settings.max_page
        self.tz = resolve_timezone(display_timezone or settings.display_timezone)
        self.cache = HistoryCache(
            store,
            max_items=max_local_items,
            active_token=lambda: self.freshness_token,
        )
        self.store = FetchStateStore()

        if continuous_paging is None:
            continuous_paging = settings.continuous_paging
        self.pager = VisibilityPager(
            self.store,
            {kind: self._fetcher(kind) for kind in SourceKind},
            gate=continuous_gate if continuous_paging else should_fetch_more,
        )

        self.address: Optional[str] = None
        self.genesis_hash: Optional[str] = None
        self.chain: Optional[ChainInfo] = None
        self._session = 0
        self._clear_session()

    def _fetcher(self, kind: SourceKind):
        async def fetch():
            await self.fetch_source(kind)
        return fetch

    def _clear_session(self):
        # Bumped on every reset; in-flight work from an older session is dropped
        self._session += 1
        self.store.reset()
        self.fetched: Dict[SourceKind, List[TransactionRecord]] = {kind: [] for kind in SourceKind}
        self.cached: List[TransactionRecord] = []
        self.records: List[TransactionRecord] = []
        self.aggregate_state = AggregateState.NOT_LOADED
        self._pending_extrinsics: List[dict] = []
        self._first_page_done = {kind: False for kind in SourceKind}

    @property
    def freshness_token(self) -> Optional[str]:
        if not self.address or not self.genesis_hash:
            return None
        return freshness_token(self.address, self.genesis_hash)

    @property
    def is_loading(self) -> bool:
        """True until both sources have settled their first page."""
        if self.freshness_token is None:
            return False
        return not all(self._first_page_done.values())

    async def set_account(self, address: str, genesis_hash: str):
        """
        Make (address, chain) the active pair.

        A change resets every fetch state and the aggregate, resolves the chain
        metadata, reconnects the pager and loads the local cache.

        Raises:
            ChainMetadataError: If the chain is unknown
        """
        if address == self.address and genesis_hash == self.genesis_hash and self.chain is not None:
            return

        logger.info(f"[HISTORY] Input changed, resetting state for {address} on {genesis_hash}")
        self.address = address
        self.genesis_hash = genesis_hash
        self.chain = None
        self._clear_session()
        self.pager.connect()

        session = self._session
        chain = await self.chain_metadata.get_chain(genesis_hash)
        if session != self._session:
            return
        if chain is None:
            self.address = None
            self.genesis_hash = None
            self.pager.disconnect()
            raise ChainMetadataError(f"Unknown chain: {genesis_hash}")
        self.chain = chain

        cached = await self.cache.load(address, genesis_hash)
        if session != self._session:
            return
        if cached:
            self.cached = [self.normalizer.with_chain(record, chain) if record.chain is None else record
                           for record in cached]
            await self._merge()

    async def update_chain_info(self, chain: ChainInfo):
        """
        Attach refreshed chain metadata and normalize extrinsics held back
        while the token decimals were unknown.
        """
        if chain.genesis_hash != self.genesis_hash:
            logger.debug(f"[HISTORY] Ignoring metadata for inactive chain {chain.genesis_hash}")
            return
        self.chain = chain
        if chain.decimal is None or not self._pending_extrinsics:
            return

        pending, self._pending_extrinsics = self._pending_extrinsics, []
        logger.info(f"[HISTORY] Processing {len(pending)} deferred extrinsics")
        self.fetched[SourceKind.EXTRINSICS].extend(self._normalize(SourceKind.EXTRINSICS, pending))
        await self._merge()

    async def start(self) -> HistoryView:
        """Issue the initial fetches for the active pair."""
        return await self.load_more()

    async def load_more(self) -> HistoryView:
        """Run the pager once and wait for the fetches it schedules."""
        return await self._run(self.pager.on_visible())

    async def set_visible(self, visible: bool) -> HistoryView:
        """
        Report whether the end of the rendered list is on screen.

        Only a hidden -> visible transition requests more pages.
        """
        return await self._run(self.pager.notify(visible))

    async def _run(self, tasks: List[asyncio.Task]) -> HistoryView:
        if tasks:
            await asyncio.gather(*tasks)
        return self.view()

    async def fetch_source(self, kind: SourceKind):
        """
        Fetch the next page of one source and fold it into the aggregate.

        Only one request per source is in flight at a time. Transport errors
        leave ``has_more`` untouched so a later trigger can retry. Results of
        a request issued before the last reset are dropped, even when the
        same pair was selected again in between.
        """
        state = self.store.get(kind)
        if self.chain is None or state.is_fetching or not state.has_more:
            logger.debug(f"[HISTORY] Skipping {kind.value} fetch")
            return

        token, session = self.freshness_token, self._session
        chain, address = self.chain, self.address
        page_num = state.page_num
        self.store.update(kind, is_fetching=True)
        logger.info(f"[HISTORY] Fetching {kind.value} page {page_num}")

        try:
            page = await self.sources[kind].fetch_page(chain, address, page_num, self.page_size)
        except SourceFetchError as e:
            logger.error(f"[HISTORY] Error fetching {kind.value}: {e}")
            if session == self._session:
                self.store.update(kind, is_fetching=False)
                self._first_page_done[kind] = True
                self.pager.connect()
            return

        if session != self._session or (page.requested_for and page.requested_for != token):
            logger.info(f"[HISTORY] Discarding stale {kind.value} page for {token}")
            return

        has_more = self._has_more(page, page_num + 1)
        self.store.update(
            kind,
            page_num=page_num + 1,
            has_more=has_more,
            transactions=page.items,
            is_fetching=False,
        )
        self._first_page_done[kind] = True
        logger.info(f"[HISTORY] Received {kind.value}: count={page.count}, "
                    f"items={len(page.items)}, has_more={has_more}")

        self.fetched[kind].extend(self._normalize(kind, page.items))
        await self._merge()

    def _has_more(self, page: SourcePage, next_page: int) -> bool:
        if page.raw_count < self.page_size or next_page >= self.max_page:
            return False
        if page.count is not None and next_page * self.page_size >= page.count:
            return False
        return True

    def _normalize(self, kind: SourceKind, items: List[dict]) -> List[TransactionRecord]:
        if kind == SourceKind.EXTRINSICS and (self.chain is None or self.chain.decimal is None):
            logger.warning(f"[HISTORY] Deferring {len(items)} extrinsics until chain decimals are known")
            self._pending_extrinsics.extend(items)
            return []

        records = []
        for raw in items:
            try:
                if kind == SourceKind.TRANSFERS:
                    records.append(self.normalizer.normalize_transfer(raw, self.chain, self.address))
                else:
                    records.append(self.normalizer.normalize_extrinsic(raw, self.chain))
            except NormalizationError as e:
                logger.warning(f"[HISTORY] Skipping {kind.value} record "
                               f"{raw.get('hash') or raw.get('extrinsic_hash')}: {e}")
        return records

    async def _merge(self):
        """Recreate the aggregate and persist its recency window."""
        self.records = merge_histories(
            self.fetched[SourceKind.TRANSFERS],
            self.fetched[SourceKind.EXTRINSICS],
            self.cached,
        )
        self.aggregate_state = resolve_state(
            self.records,
            self.store.is_exhausted(SourceKind.TRANSFERS),
            self.store.is_exhausted(SourceKind.EXTRINSICS),
        )
        logger.info(f"[HISTORY] Final history count: {len(self.records)} ({self.aggregate_state.value})")

        if self.records:
            await self.cache.save(self.address, self.genesis_hash, self.records)

    def view(self, filters: Optional[FilterOptions] = None) -> HistoryView:
        """Filtered, day-grouped projection of the current aggregate."""
        return build_view(
            self.records,
            filters,
            self.store.get(SourceKind.TRANSFERS).has_more,
            self.store.get(SourceKind.EXTRINSICS).has_more,
            tz=self.tz,
            is_loading=self.is_loading,
        )

    async def aclose(self):
        for source in self.sources.values():
            await source.aclose()
