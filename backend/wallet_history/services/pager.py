"""Visibility-driven pagination trigger."""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, List
from wallet_history.models.fetch_state import FetchState, FetchStateStore, SourceKind

logger = logging.getLogger(__name__)

FetchCallback = Callable[[], Awaitable[None]]
FetchGate = Callable[[FetchState], bool]


def should_fetch_more(state: FetchState) -> bool:
    """First-page gate: only a source that has not fetched anything yet."""
    return state.has_more and not state.is_fetching and state.page_num == 0


def continuous_gate(state: FetchState) -> bool:
    """Gate that keeps paging while the source reports more pages."""
    return state.has_more and not state.is_fetching


class VisibilityPager:
    """
    Turns "end of list is visible" signals into per-source fetches.

    The pager is driven by an external notifier through ``notify``. Once no
    source is eligible it disconnects itself and ignores further signals
    until ``connect`` is called again.
    """

    def __init__(
        self,
        store: FetchStateStore,
        fetchers: Dict[SourceKind, FetchCallback],
        gate: FetchGate = should_fetch_more
    ):
        self.store = store
        self.fetchers = fetchers
        self.gate = gate
        self.connected = False
        self._visible = False

    def connect(self):
        self.connected = True
        self._visible = False
        logger.debug("[PAGER] Observing end of list")

    def disconnect(self):
        self.connected = False
        logger.debug("[PAGER] Disconnected")

    def notify(self, visible: bool) -> List[asyncio.Task]:
        """
        Feed a visibility reading; only a hidden -> visible edge triggers.

        Returns:
            Fetch tasks scheduled by this reading
        """
        rising = visible and not self._visible
        self._visible = visible
        if not rising:
            return []
        return self.on_visible()

    def on_visible(self) -> List[asyncio.Task]:
        """
        Schedule a fetch for every source the gate allows.

        Must be called from a running event loop.

        Returns:
            Scheduled fetch tasks, empty if the pager is disconnected
        """
        if not self.connected:
            logger.debug("[PAGER] Ignoring signal while disconnected")
            return []

        tasks = []
        for kind, fetch in self.fetchers.items():
            state = self.store.get(kind)
            if self.gate(state):
                logger.info(f"[PAGER] Requesting {kind.value} page {state.page_num}")
                tasks.append(asyncio.ensure_future(fetch()))
            else:
                logger.debug(f"[PAGER] Nothing to fetch for {kind.value} "
                             f"(has_more={state.has_more}, fetching={state.is_fetching})")

        if not tasks:
            logger.info("[PAGER] No source can fetch more, disconnecting")
            self.disconnect()

        return tasks
