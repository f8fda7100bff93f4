"""Canonical transaction record model."""
from enum import Enum
from typing import Any, List, Optional
from pydantic import BaseModel, Field


class TransactionAction(str, Enum):
    """Known transaction categories."""
    BALANCES = "balances"
    SOLO_STAKING = "solo staking"
    POOL_STAKING = "pool staking"
    GOVERNANCE = "governance"
    UTILITY = "utility"


STAKING_ACTIONS = (TransactionAction.SOLO_STAKING.value, TransactionAction.POOL_STAKING.value)


class ChainInfo(BaseModel):
    """Chain identity and token metadata."""
    genesis_hash: str
    name: str
    subscan_network: str
    ss58_format: int = 42
    decimal: Optional[int] = None
    token: Optional[str] = None

    class Config:
        frozen = True


class AccountRef(BaseModel):
    """An address with an optional display name."""
    address: str
    name: Optional[str] = None

    class Config:
        frozen = True


class TransactionRecord(BaseModel):
    """Unified history record for transfers and extrinsics."""
    tx_hash: Optional[str] = Field(None, description="Transaction hash, absent on synthetic records")
    action: str = Field(..., description="Category: balances, solo staking, pool staking, governance, ...")
    sub_action: str = Field(..., description="Sub label: send, receive, reward, bond, ...")
    amount: Optional[str] = Field(None, description="Amount in human units")
    date: int = Field(..., description="Epoch milliseconds")
    from_: Optional[AccountRef] = Field(None, alias="from")
    to: Optional[AccountRef] = None
    success: bool = True
    chain: Optional[ChainInfo] = None

    # Provider details
    token: Optional[str] = None
    fee: Optional[str] = None
    block: Optional[int] = None

    # Protocol specific
    class_: Optional[Any] = Field(None, alias="class")
    conviction: Optional[str] = None
    delegatee: Optional[str] = None
    pool_id: Optional[str] = None
    ref_id: Optional[int] = None
    nominators: Optional[List[str]] = None
    vote_type: Optional[int] = None
    calls: Optional[List[str]] = None

    class Config:
        frozen = True
        populate_by_name = True

    def to_storage(self) -> dict:
        """Serialize to the JSON shape kept in the local store."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class FilterOptions(BaseModel):
    """Category filters for the history view."""
    transfers: bool = True
    staking: bool = True
    governance: bool = True

    @property
    def is_active(self) -> bool:
        return not (self.transfers and self.staking and self.governance)

    def matches(self, action: str) -> bool:
        return (
            (self.transfers and action.lower() == TransactionAction.BALANCES.value)
            or (self.governance and action == TransactionAction.GOVERNANCE.value)
            or (self.staking and action in STAKING_ACTIONS)
        )
