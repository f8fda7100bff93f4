"""
History Service Tests.

End-to-end behaviour of the aggregation engine against fake sources:
pagination, merging with the local cache, emptiness and stale results.
"""

import asyncio

import pytest

from conftest import ALICE, BOB, make_extrinsic, make_transfer
from wallet_history.models.fetch_state import FetchState, SourceKind
from wallet_history.models.history import ViewStatus
from wallet_history.models.transaction import AccountRef, ChainInfo, FilterOptions, TransactionRecord
from wallet_history.services.cache_service import HistoryCache
from wallet_history.services.merge import AggregateState
from wallet_history.services.sources.base import SourcePage
from wallet_history.utils.errors import ChainMetadataError, SourceFetchError


# ============================================================
# PAGINATION
# ============================================================

class TestPagination:
    """Tests for fetching pages from both sources."""

    @pytest.mark.asyncio
    async def test_two_transfer_pages_and_one_extrinsics_page(
        self, make_service, transfers_source, extrinsics_source, westend, memory_store
    ):
        """50 + 30 transfers and 10 extrinsics merge into 90 records."""
        transfers_source.pages = [
            [make_transfer(i) for i in range(1, 51)],
            [make_transfer(i) for i in range(51, 81)],
        ]
        extrinsics_source.pages = [[make_extrinsic(i) for i in range(1, 11)]]
        service = make_service(continuous_paging=True)

        await service.set_account(ALICE, westend.genesis_hash)
        await service.start()
        await service.load_more()
        await service.load_more()

        assert len(service.records) == 90
        assert all(a.date > b.date for a, b in zip(service.records, service.records[1:]))
        assert [c["page"] for c in transfers_source.calls] == [0, 1]
        assert [c["page"] for c in extrinsics_source.calls] == [0]
        assert service.store.all_exhausted()
        assert not service.pager.connected

        stored = await memory_store.get(f"history.{ALICE}.{westend.genesis_hash}")
        assert len(stored) == 20
        assert stored[0]["tx_hash"] == service.records[0].tx_hash

    @pytest.mark.asyncio
    async def test_first_page_gate_stops_after_first_page(
        self, make_service, transfers_source, extrinsics_source, westend
    ):
        transfers_source.pages = [
            [make_transfer(i) for i in range(1, 51)],
            [make_transfer(i) for i in range(51, 81)],
        ]
        extrinsics_source.pages = [[make_extrinsic(i) for i in range(1, 11)]]
        service = make_service()

        await service.set_account(ALICE, westend.genesis_hash)
        await service.start()
        await service.load_more()

        assert len(service.records) == 60
        assert len(transfers_source.calls) == 1
        assert not service.pager.connected

    @pytest.mark.asyncio
    async def test_explicit_fetch_continues_paging(self, make_service, transfers_source, westend):
        transfers_source.pages = [
            [make_transfer(i) for i in range(1, 51)],
            [make_transfer(i) for i in range(51, 81)],
        ]
        service = make_service()
        await service.set_account(ALICE, westend.genesis_hash)

        await service.fetch_source(SourceKind.TRANSFERS)
        await service.fetch_source(SourceKind.TRANSFERS)
        await service.fetch_source(SourceKind.TRANSFERS)

        assert len(service.records) == 80
        assert len(transfers_source.calls) == 2
        state = service.store.get(SourceKind.TRANSFERS)
        assert state.page_num == 2
        assert state.has_more is False
        assert len(state.transactions) == 30

    @pytest.mark.asyncio
    async def test_visibility_pages_only_on_rising_edge(self, make_service, transfers_source, westend):
        transfers_source.pages = [
            [make_transfer(i) for i in range(1, 51)],
            [make_transfer(i) for i in range(51, 101)],
            [make_transfer(i) for i in range(101, 111)],
        ]
        service = make_service(continuous_paging=True)
        await service.set_account(ALICE, westend.genesis_hash)
        await service.start()

        await service.set_visible(True)
        await service.set_visible(True)
        assert [c["page"] for c in transfers_source.calls] == [0, 1]

        await service.set_visible(False)
        view = await service.set_visible(True)

        assert [c["page"] for c in transfers_source.calls] == [0, 1, 2]
        assert view.count == 110

    def test_has_more_rules(self, make_service):
        service = make_service(page_size=50, max_page=10)

        assert service._has_more(SourcePage(raw_count=50), 1)
        assert not service._has_more(SourcePage(raw_count=49), 1)
        assert not service._has_more(SourcePage(raw_count=50), 10)
        assert service._has_more(SourcePage(raw_count=50, count=120), 2)
        assert not service._has_more(SourcePage(raw_count=50, count=100), 2)

    @pytest.mark.asyncio
    async def test_single_flight_per_source(self, make_service, transfers_source, westend):
        transfers_source.pages = [[make_transfer(1)]]
        transfers_source.gate = asyncio.Event()
        service = make_service()
        await service.set_account(ALICE, westend.genesis_hash)

        first = asyncio.ensure_future(service.fetch_source(SourceKind.TRANSFERS))
        await asyncio.sleep(0)
        await service.fetch_source(SourceKind.TRANSFERS)
        transfers_source.gate.set()
        await first

        assert len(transfers_source.calls) == 1


# ============================================================
# CACHE INTERPLAY
# ============================================================

class TestCacheMerge:
    """Tests for merging with the local snapshot."""

    @pytest.mark.asyncio
    async def test_fresh_record_replaces_cached_copy(
        self, make_service, transfers_source, memory_store, westend
    ):
        cached = TransactionRecord(
            tx_hash="0xAA", action="balances", sub_action="receive", amount="1.0",
            date=1_700_000_000_000, from_=AccountRef(address=BOB), chain=westend,
        )
        await HistoryCache(memory_store).save(ALICE, westend.genesis_hash, [cached])
        transfers_source.pages = [[make_transfer(1, hash="0xAA", amount="1.5", block_timestamp=1_700_000_000)]]
        service = make_service()

        await service.set_account(ALICE, westend.genesis_hash)
        assert [r.amount for r in service.records] == ["1.0"]

        await service.start()

        matches = [r for r in service.records if r.tx_hash == "0xAA"]
        assert len(matches) == 1
        assert matches[0].amount == "1.5"

    @pytest.mark.asyncio
    async def test_cached_history_shown_before_fetch(self, make_service, memory_store, westend):
        records = [
            TransactionRecord(tx_hash=f"0x{i}", action="balances", sub_action="receive",
                              date=1_700_000_000_000 + i, chain=westend)
            for i in range(3)
        ]
        await HistoryCache(memory_store).save(ALICE, westend.genesis_hash, records)
        service = make_service()

        await service.set_account(ALICE, westend.genesis_hash)
        view = service.view()

        assert view.status == ViewStatus.READY
        assert view.count == 3
        assert service.is_loading

    @pytest.mark.asyncio
    async def test_account_switch_loads_matching_cache(self, make_service, memory_store, westend, polkadot):
        alice_record = TransactionRecord(tx_hash="0xa", action="balances", sub_action="receive",
                                         date=1, chain=westend)
        await HistoryCache(memory_store).save(ALICE, westend.genesis_hash, [alice_record])
        service = make_service()

        await service.set_account(ALICE, westend.genesis_hash)
        assert len(service.records) == 1

        await service.set_account(ALICE, polkadot.genesis_hash)
        assert service.records == []
        assert service.aggregate_state == AggregateState.NOT_LOADED


# ============================================================
# EMPTINESS
# ============================================================

class TestEmptiness:
    """Tests for telling "nothing to show" from "still loading"."""

    @pytest.mark.asyncio
    async def test_both_sources_empty_is_known_empty(self, make_service, westend):
        service = make_service()
        await service.set_account(ALICE, westend.genesis_hash)

        assert service.view().status == ViewStatus.PENDING

        await service.start()

        assert service.aggregate_state == AggregateState.KNOWN_EMPTY
        assert service.view().status == ViewStatus.EMPTY
        assert service.is_loading is False

    @pytest.mark.asyncio
    async def test_one_source_still_open_is_pending(self, make_service, extrinsics_source, westend):
        extrinsics_source.error = SourceFetchError("down")
        service = make_service()
        await service.set_account(ALICE, westend.genesis_hash)

        await service.start()

        assert service.aggregate_state == AggregateState.NOT_LOADED
        assert service.view().status == ViewStatus.PENDING


# ============================================================
# NORMALIZATION IN THE PIPELINE
# ============================================================

class TestNormalizationPipeline:
    """Tests for normalization during fetches."""

    @pytest.mark.asyncio
    async def test_extrinsic_amount_scaled_by_chain_decimals(
        self, make_service, extrinsics_source, polkadot
    ):
        extrinsics_source.pages = [[make_extrinsic(1, amount="500000000000")]]
        service = make_service()

        await service.set_account(ALICE, polkadot.genesis_hash)
        await service.start()

        assert [r.amount for r in service.records] == ["50"]
        assert service.records[0].chain == polkadot

    @pytest.mark.asyncio
    async def test_extrinsics_wait_for_chain_decimals(
        self, make_service, transfers_source, extrinsics_source
    ):
        chain = ChainInfo(genesis_hash="0xfeed", name="Devnet", subscan_network="devnet", decimal=None)
        transfers_source.pages = [[make_transfer(1)]]
        extrinsics_source.pages = [[make_extrinsic(1, amount="2000000000000")]]
        service = make_service()
        service.chain_metadata.register(chain)

        await service.set_account(ALICE, chain.genesis_hash)
        await service.start()

        assert [r.tx_hash for r in service.records] == ["0xt0001"]

        await service.update_chain_info(chain.model_copy(update={"decimal": 12, "token": "DEV"}))

        assert [r.tx_hash for r in service.records] == ["0xe0001", "0xt0001"]
        assert service.records[0].amount == "2"
        assert service.records[0].token == "DEV"

    @pytest.mark.asyncio
    async def test_filtered_view(self, make_service, transfers_source, extrinsics_source, westend):
        transfers_source.pages = [[make_transfer(1)]]
        extrinsics_source.pages = [[make_extrinsic(1, call_module="convictionvoting", call_module_function="vote")]]
        service = make_service()
        await service.set_account(ALICE, westend.genesis_hash)
        await service.start()

        view = service.view(FilterOptions(transfers=False, staking=False))

        records = [r for group in view.groups.values() for r in group]
        assert [r.action for r in records] == ["governance"]
        assert view.count == 2


# ============================================================
# ERRORS AND STALE RESULTS
# ============================================================

class TestErrorsAndStaleness:
    """Tests for transport errors and account switches."""

    @pytest.mark.asyncio
    async def test_transport_error_allows_retry(self, make_service, transfers_source, westend):
        transfers_source.pages = [[make_transfer(1)]]
        transfers_source.error = SourceFetchError("timeout")
        service = make_service()
        await service.set_account(ALICE, westend.genesis_hash)

        await service.start()

        state = service.store.get(SourceKind.TRANSFERS)
        assert state.is_fetching is False
        assert state.has_more is True
        assert state.page_num == 0
        assert service.pager.connected

        transfers_source.error = None
        await service.load_more()

        assert [r.tx_hash for r in service.records] == ["0xt0001"]

    @pytest.mark.asyncio
    async def test_unknown_chain(self, make_service):
        service = make_service()

        with pytest.raises(ChainMetadataError):
            await service.set_account(ALICE, "0x1234")

    @pytest.mark.asyncio
    async def test_late_result_after_account_switch_is_discarded(
        self, make_service, transfers_source, extrinsics_source, memory_store, westend
    ):
        transfers_source.pages = [[make_transfer(i) for i in range(1, 6)]]
        transfers_source.gate = asyncio.Event()
        service = make_service()
        await service.set_account(ALICE, westend.genesis_hash)

        pending = asyncio.ensure_future(service.start())
        for _ in range(5):
            await asyncio.sleep(0)
        assert service.store.get(SourceKind.TRANSFERS).is_fetching

        await service.set_account(BOB, westend.genesis_hash)
        transfers_source.gate.set()
        await pending

        assert service.address == BOB
        assert service.records == []
        assert service.store.get(SourceKind.TRANSFERS) == FetchState()
        assert await memory_store.get(f"history.{BOB}.{westend.genesis_hash}") is None
        assert await memory_store.get(f"history.{ALICE}.{westend.genesis_hash}") is None

    @pytest.mark.asyncio
    async def test_late_result_after_switching_back_is_discarded(
        self, make_service, transfers_source, westend
    ):
        transfers_source.pages = [[make_transfer(1)]]
        first_gate = asyncio.Event()
        transfers_source.gate = first_gate
        service = make_service()
        await service.set_account(ALICE, westend.genesis_hash)

        first = asyncio.ensure_future(service.fetch_source(SourceKind.TRANSFERS))
        await asyncio.sleep(0)
        await service.set_account(BOB, westend.genesis_hash)
        await service.set_account(ALICE, westend.genesis_hash)

        transfers_source.gate = asyncio.Event()
        second = asyncio.ensure_future(service.fetch_source(SourceKind.TRANSFERS))
        await asyncio.sleep(0)
        first_gate.set()
        await first

        state = service.store.get(SourceKind.TRANSFERS)
        assert state.page_num == 0
        assert state.is_fetching is True
        assert service.records == []

        # The new session's request is still outstanding, so nothing else is issued
        await service.fetch_source(SourceKind.TRANSFERS)
        assert [c["page"] for c in transfers_source.calls] == [0, 0]

        transfers_source.gate.set()
        await second

        assert service.store.get(SourceKind.TRANSFERS).page_num == 1
        assert [r.tx_hash for r in service.records] == ["0xt0001"]

    @pytest.mark.asyncio
    async def test_late_error_after_switching_back_is_discarded(
        self, make_service, transfers_source, westend
    ):
        transfers_source.error = SourceFetchError("timeout")
        transfers_source.gate = asyncio.Event()
        service = make_service()
        await service.set_account(ALICE, westend.genesis_hash)

        pending = asyncio.ensure_future(service.fetch_source(SourceKind.TRANSFERS))
        await asyncio.sleep(0)
        await service.set_account(BOB, westend.genesis_hash)
        await service.set_account(ALICE, westend.genesis_hash)
        service.store.update(SourceKind.TRANSFERS, is_fetching=True)

        transfers_source.gate.set()
        await pending

        assert service.store.get(SourceKind.TRANSFERS).is_fetching is True
        assert service.is_loading

    @pytest.mark.asyncio
    async def test_unknown_chain_fails_on_every_attempt(self, make_service):
        service = make_service()

        for _ in range(2):
            with pytest.raises(ChainMetadataError):
                await service.set_account(ALICE, "0x1234")

        assert service.freshness_token is None
        assert service.address is None
        assert not service.pager.connected

    @pytest.mark.asyncio
    async def test_record_without_timestamp_is_skipped(self, make_service, transfers_source, westend):
        transfers_source.pages = [[
            make_transfer(1),
            make_transfer(2, block_timestamp=None),
            make_transfer(3, block_timestamp="not-a-time"),
        ]]
        service = make_service()
        await service.set_account(ALICE, westend.genesis_hash)

        await service.fetch_source(SourceKind.TRANSFERS)

        assert [r.tx_hash for r in service.records] == ["0xt0001"]
        assert service.store.get(SourceKind.TRANSFERS).page_num == 1
        assert len(service.store.get(SourceKind.TRANSFERS).transactions) == 3

    @pytest.mark.asyncio
    async def test_same_account_is_not_reset(self, make_service, transfers_source, westend):
        transfers_source.pages = [[make_transfer(1)]]
        service = make_service()
        await service.set_account(ALICE, westend.genesis_hash)
        await service.start()

        await service.set_account(ALICE, westend.genesis_hash)

        assert len(service.records) == 1

    @pytest.mark.asyncio
    async def test_aclose_closes_sources(self, make_service, transfers_source, extrinsics_source):
        service = make_service()

        await service.aclose()

        assert transfers_source.closed and extrinsics_source.closed
