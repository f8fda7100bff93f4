"""History view models."""
from enum import Enum
from typing import Dict, List
from pydantic import BaseModel, Field
from wallet_history.models.transaction import TransactionRecord


class ViewStatus(str, Enum):
    """Display state of the history list."""
    PENDING = "pending"  # sources may still produce results
    EMPTY = "empty"  # both sources exhausted, nothing to show
    READY = "ready"


class HistoryView(BaseModel):
    """Filtered, day-grouped projection of the aggregate."""
    status: ViewStatus
    groups: Dict[str, List[TransactionRecord]] = Field(default_factory=dict)
    count: int = 0
    is_loading: bool = False
