"""Chain metadata lookup."""
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional
from wallet_history.models.transaction import ChainInfo

POLKADOT = ChainInfo(
    genesis_hash="0x91b171bb158e2d3848fa23a9f1c25182fb8e20313b2c1eb49219da7a70ce90c3",
    name="Polkadot",
    subscan_network="polkadot",
    ss58_format=0,
    decimal=10,
    token="DOT",
)

KUSAMA = ChainInfo(
    genesis_hash="0xb0a8d493285c2df73290dfb7e61f870f17b41801197a149ca93654499ea3dafe",
    name="Kusama",
    subscan_network="kusama",
    ss58_format=2,
    decimal=12,
    token="KSM",
)

WESTEND = ChainInfo(
    genesis_hash="0xe143f23803ac50e8f6f8e62695d1ce9e4e1d68aa36c1cd2cfd15340213f3423e",
    name="Westend",
    subscan_network="westend",
    ss58_format=42,
    decimal=12,
    token="WND",
)

POLKADOT_ASSET_HUB = ChainInfo(
    genesis_hash="0x68d56f15f85d3136970ec16946040bc1752654e906147f7e43e9d539d7c3de2f",
    name="Polkadot Asset Hub",
    subscan_network="assethub-polkadot",
    ss58_format=0,
    decimal=10,
    token="DOT",
)

KUSAMA_ASSET_HUB = ChainInfo(
    genesis_hash="0x48239ef607d7928874027a43a67689209727dfb3d3dc5e5b03a39bdc2eda771a",
    name="Kusama Asset Hub",
    subscan_network="assethub-kusama",
    ss58_format=2,
    decimal=12,
    token="KSM",
)

KNOWN_CHAINS = (POLKADOT, KUSAMA, WESTEND, POLKADOT_ASSET_HUB, KUSAMA_ASSET_HUB)


class ChainMetadataProvider(ABC):
    """Supplies chain identity, decimals and token symbol."""

    @abstractmethod
    async def get_chain(self, genesis_hash: str) -> Optional[ChainInfo]:
        """
        Look up a chain by genesis hash.

        Args:
            genesis_hash: 0x-prefixed genesis hash

        Returns:
            ChainInfo, or None if the chain is unknown
        """
        pass


class StaticChainMetadata(ChainMetadataProvider):
    """In-process chain registry."""

    def __init__(self, chains: Iterable[ChainInfo] = KNOWN_CHAINS):
        self._chains: Dict[str, ChainInfo] = {chain.genesis_hash.lower(): chain for chain in chains}

    def register(self, chain: ChainInfo) -> None:
        self._chains[chain.genesis_hash.lower()] = chain

    async def get_chain(self, genesis_hash: str) -> Optional[ChainInfo]:
        return self._chains.get((genesis_hash or "").lower())
