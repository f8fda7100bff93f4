"""Per-source pagination state."""
import logging
from enum import Enum
from typing import Any, Dict, List
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class SourceKind(str, Enum):
    """The two independent remote history sources."""
    TRANSFERS = "transfers"
    EXTRINSICS = "extrinsics"


class FetchState(BaseModel):
    """Pagination progress of a single source."""
    page_num: int = 0
    is_fetching: bool = False
    has_more: bool = True
    transactions: List[Dict[str, Any]] = Field(default_factory=list, description="Latest raw page only")

    class Config:
        frozen = True

    @property
    def is_exhausted(self) -> bool:
        return not self.has_more


class FetchStateStore:
    """Holds one FetchState per source and applies partial transitions."""

    def __init__(self):
        self._states: Dict[SourceKind, FetchState] = {}
        self.reset()

    def reset(self) -> None:
        """Return both sources to their initial state."""
        self._states = {kind: FetchState() for kind in SourceKind}

    def get(self, kind: SourceKind) -> FetchState:
        return self._states[kind]

    def update(self, kind: SourceKind, **partial: Any) -> FetchState:
        """
        Shallow-merge a partial transition into the state of one source.

        Args:
            kind: Source to update
            **partial: Fields of FetchState to replace

        Returns:
            The new state of that source
        """
        unknown = set(partial) - set(FetchState.model_fields)
        if unknown:
            raise ValueError(f"Unknown fetch state fields: {sorted(unknown)}")

        state = self._states[kind].model_copy(update=partial)
        self._states[kind] = state
        logger.debug(f"[FETCH] {kind.value} state updated: page={state.page_num} "
                     f"fetching={state.is_fetching} has_more={state.has_more}")
        return state

    def is_exhausted(self, kind: SourceKind) -> bool:
        return self._states[kind].is_exhausted

    def all_exhausted(self) -> bool:
        return all(state.is_exhausted for state in self._states.values())
