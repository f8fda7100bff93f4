"""Shared fixtures for history engine tests."""
import asyncio
from typing import Any, Callable, Dict, List, Optional

import pytest

from wallet_history.models.transaction import ChainInfo
from wallet_history.services.cache_service import freshness_token
from wallet_history.services.chain_metadata import POLKADOT, WESTEND, StaticChainMetadata
from wallet_history.services.history_service import TransactionHistoryService
from wallet_history.services.sources.base import HistorySource, SourcePage
from wallet_history.services.storage import InMemoryStore

ALICE = "5GrwvaEF5zXb26Fz9rcQpDWS57CtERHpNehXCPcNoHGKutQY"
BOB = "5FHneW46xGXgs5mUiveU4sbTyGBzmstUspZC92UhjJM694ty"

BASE_TIMESTAMP = 1_700_000_000  # seconds


def make_transfer(i: int, timestamp: Optional[int] = None, **overrides: Any) -> Dict[str, Any]:
    raw = {
        "hash": f"0xt{i:04d}",
        "amount": "1.5",
        "asset_symbol": "WND",
        "block_num": 1000 + i,
        "block_timestamp": timestamp if timestamp is not None else BASE_TIMESTAMP + i * 60,
        "fee": "15000000",
        "from": BOB,
        "from_account_display": {"address": BOB, "display": ""},
        "to": ALICE,
        "to_account_display": {"address": ALICE, "display": ""},
        "success": True,
    }
    raw.update(overrides)
    return raw


def make_extrinsic(i: int, timestamp: Optional[int] = None, **overrides: Any) -> Dict[str, Any]:
    raw = {
        "extrinsic_hash": f"0xe{i:04d}",
        "call_module": "staking",
        "call_module_function": "bond_extra",
        "amount": "10000000000000",
        "block_num": 2000 + i,
        "block_timestamp": timestamp if timestamp is not None else BASE_TIMESTAMP + 100_000 + i * 60,
        "fee": "15000000",
        "account_display": {"address": ALICE},
        "success": True,
    }
    raw.update(overrides)
    return raw


class FakeSource(HistorySource):
    """Serves pre-built pages; optionally blocks until released or fails."""

    def __init__(self, pages: Optional[List[List[Dict[str, Any]]]] = None, name: str = "fake"):
        self.pages = pages or []
        self.name = name
        self.calls: List[Dict[str, Any]] = []
        self.gate: Optional[asyncio.Event] = None
        self.error: Optional[Exception] = None
        self.closed = False

    async def fetch_page(self, chain: ChainInfo, address: str, page: int, page_size: int) -> SourcePage:
        self.calls.append({"chain": chain.genesis_hash, "address": address, "page": page})
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        items = self.pages[page] if page < len(self.pages) else []
        return SourcePage(
            items=list(items),
            raw_count=len(items),
            requested_for=freshness_token(address, chain.genesis_hash),
        )

    async def aclose(self):
        self.closed = True


@pytest.fixture
def memory_store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def transfers_source() -> FakeSource:
    return FakeSource(name="transfers")


@pytest.fixture
def extrinsics_source() -> FakeSource:
    return FakeSource(name="extrinsics")


@pytest.fixture
def make_service(transfers_source, extrinsics_source, memory_store) -> Callable[..., TransactionHistoryService]:
    def factory(**kwargs: Any) -> TransactionHistoryService:
        options = {
            "page_size": 50,
            "max_page": 10,
            "max_local_items": 20,
            "continuous_paging": False,
            "display_timezone": "UTC",
        }
        options.update(kwargs)
        return TransactionHistoryService(
            transfers_source=transfers_source,
            extrinsics_source=extrinsics_source,
            store=memory_store,
            chain_metadata=StaticChainMetadata(),
            **options,
        )
    return factory


@pytest.fixture
def westend() -> ChainInfo:
    return WESTEND


@pytest.fixture
def polkadot() -> ChainInfo:
    return POLKADOT

