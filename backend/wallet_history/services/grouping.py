"""Filtered, day-grouped history view."""
import logging
from datetime import datetime, timezone, tzinfo
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo
from wallet_history.models.history import HistoryView, ViewStatus
from wallet_history.models.transaction import FilterOptions, TransactionRecord

logger = logging.getLogger(__name__)


def resolve_timezone(name: Optional[str]) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def day_label(date_ms: int, tz: tzinfo = timezone.utc) -> str:
    """Calendar day of an epoch-millisecond timestamp, e.g. ``19 Oct 2026``."""
    moment = datetime.fromtimestamp(date_ms / 1000, tz=tz)
    return f"{moment.day} {moment.strftime('%b')} {moment.year}"


def apply_filters(
    records: List[TransactionRecord],
    options: Optional[FilterOptions]
) -> List[TransactionRecord]:
    """Keep the records whose category is enabled; no-op when every filter is on."""
    if options is None or not options.is_active:
        return records

    filtered = [record for record in records if options.matches(record.action)]
    logger.debug(f"[VIEW] Filtered transactions: {len(records)} -> {len(filtered)}")
    return filtered


def group_by_day(records: List[TransactionRecord], tz: tzinfo = timezone.utc) -> Dict[str, List[TransactionRecord]]:
    grouped: Dict[str, List[TransactionRecord]] = {}
    for record in records:
        grouped.setdefault(day_label(record.date, tz), []).append(record)
    return grouped


def build_view(
    records: List[TransactionRecord],
    options: Optional[FilterOptions],
    transfers_has_more: bool,
    extrinsics_has_more: bool,
    tz: tzinfo = timezone.utc,
    is_loading: bool = False
) -> HistoryView:
    """
    Derive the display projection of the aggregate.

    Args:
        records: Merged newest-first records
        options: Active category filters
        transfers_has_more: Whether the transfers source may have more pages
        extrinsics_has_more: Whether the extrinsics source may have more pages
        tz: Timezone used for day labels
        is_loading: Passed through for the presentation layer

    Returns:
        EMPTY when nothing is left to fetch, PENDING while sources may still
        produce results, otherwise READY with the grouped records
    """
    if not records:
        status = ViewStatus.PENDING if transfers_has_more or extrinsics_has_more else ViewStatus.EMPTY
        return HistoryView(status=status, is_loading=is_loading)

    return HistoryView(
        status=ViewStatus.READY,
        groups=group_by_day(apply_filters(records, options), tz),
        count=len(records),
        is_loading=is_loading,
    )
