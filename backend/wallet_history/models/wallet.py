"""Wallet models."""
from pydantic import BaseModel, Field


class AccountRequest(BaseModel):
    """Request model for selecting the active account and chain."""
    address: str = Field(..., min_length=1, description="SS58 account address")
    genesis_hash: str = Field(..., min_length=1, description="Chain genesis hash")


class AddressValidation(BaseModel):
    """Response model for address validation."""
    address: str
    valid: bool
    ss58_format: int | None = None
    message: str
