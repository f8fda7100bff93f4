"""Merging of fetched and cached history."""
import logging
from enum import Enum
from typing import List, Set
from wallet_history.models.transaction import TransactionRecord

logger = logging.getLogger(__name__)


class AggregateState(str, Enum):
    """Lifecycle of the in-memory aggregate."""
    NOT_LOADED = "not_loaded"
    KNOWN_EMPTY = "known_empty"
    LOADED = "loaded"


def merge_histories(
    transfers: List[TransactionRecord],
    extrinsics: List[TransactionRecord],
    cached: List[TransactionRecord]
) -> List[TransactionRecord]:
    """
    Merge fetched and cached records into one newest-first list.

    Sources are taken in priority order (transfers, extrinsics, cache) and
    the first record seen for a hash wins, so fresh data replaces cached
    copies. Records without a hash are always kept.

    Args:
        transfers: Normalized transfer records
        extrinsics: Normalized extrinsic records
        cached: Records loaded from the local cache

    Returns:
        New list sorted by date descending; ties keep concatenation order
    """
    seen_hashes: Set[str] = set()
    unique_records: List[TransactionRecord] = []
    duplicates = 0

    for records in (transfers, extrinsics, cached):
        for record in records:
            if not record.tx_hash:
                unique_records.append(record)
            elif record.tx_hash not in seen_hashes:
                seen_hashes.add(record.tx_hash)
                unique_records.append(record)
            else:
                duplicates += 1

    if duplicates > 0:
        logger.debug(f"[MERGE] Removed {duplicates} duplicate records")

    # list.sort is stable, equal dates keep their priority order
    unique_records.sort(key=lambda record: record.date, reverse=True)
    logger.debug(f"[MERGE] Total: {len(transfers) + len(extrinsics) + len(cached)}, Unique: {len(unique_records)}")
    return unique_records


def resolve_state(
    records: List[TransactionRecord],
    transfers_exhausted: bool,
    extrinsics_exhausted: bool
) -> AggregateState:
    """Classify a merged aggregate, telling "known empty" from "not loaded yet"."""
    if records:
        return AggregateState.LOADED
    if transfers_exhausted and extrinsics_exhausted:
        return AggregateState.KNOWN_EMPTY
    return AggregateState.NOT_LOADED
