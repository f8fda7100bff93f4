"""Transaction normalization service."""
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional
from wallet_history.models.transaction import (
    AccountRef,
    ChainInfo,
    TransactionAction,
    TransactionRecord,
)
from wallet_history.utils.errors import NormalizationError

logger = logging.getLogger(__name__)

# Subscan call module -> history category
MODULE_ACTIONS = {
    "nominationpools": TransactionAction.POOL_STAKING.value,
    "convictionvoting": TransactionAction.GOVERNANCE.value,
    "staking": TransactionAction.SOLO_STAKING.value,
}

REWARD_MARKER = "reward"


def humanize(name: Optional[str]) -> str:
    """Turn a call function name like ``bond_extra`` into ``bond extra``."""
    return (name or "").replace("_", " ")


def format_float(value: float) -> str:
    """Stringify a float the way a JavaScript number prints."""
    if value != value:
        return "NaN"
    if value in (float("inf"), float("-inf")):
        return "Infinity" if value > 0 else "-Infinity"
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))

    text = repr(value)
    if "e" not in text:
        return text

    magnitude = abs(value)
    if 1e-6 <= magnitude < 1e21:
        return format(Decimal(text), "f")

    mantissa, exponent = text.split("e")
    sign = "-" if exponent.startswith("-") else "+"
    return f"{mantissa}e{sign}{int(exponent.lstrip('+-'))}"


def _format_decimal(value: Decimal) -> str:
    text = format(value.normalize(), "f")
    return text if "." not in text else text.rstrip("0").rstrip(".")


def _opt_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _display_name(display: Any) -> Optional[str]:
    if isinstance(display, dict):
        return display.get("display") or None
    return None


def _timestamp_ms(raw: Dict[str, Any]) -> int:
    """Block timestamp (seconds) as epoch milliseconds."""
    value = raw.get("block_timestamp")
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        seconds = 0
    if seconds <= 0:
        raise NormalizationError(f"Missing or invalid block_timestamp: {value!r}")
    return seconds * 1000


class RecordNormalizer:
    """Converts raw provider records into canonical TransactionRecords."""

    def __init__(self, exact_amounts: bool = False):
        self.exact_amounts = exact_amounts

    def scale_amount(self, raw: Optional[str], decimal: int) -> Optional[str]:
        """
        Scale a raw on-chain amount into human units.

        Amounts that already contain a decimal point are assumed to be
        pre-scaled and are passed through untouched.

        Args:
            raw: Raw amount string (planck) or pre-scaled amount
            decimal: Token decimals

        Returns:
            Amount string, or None if the input is missing or not numeric
        """
        if raw is None:
            return None

        raw = str(raw)
        if "." in raw:
            return raw

        if self.exact_amounts:
            try:
                return _format_decimal(Decimal(raw).scaleb(-decimal))
            except InvalidOperation:
                logger.warning(f"[NORMALIZE] Non-numeric amount {raw!r}")
                return None

        try:
            return format_float(float(raw) / (10 ** decimal))
        except ValueError:
            logger.warning(f"[NORMALIZE] Non-numeric amount {raw!r}")
            return None

    def normalize_transfer(
        self,
        raw: Dict[str, Any],
        chain: Optional[ChainInfo],
        account: Optional[str] = None
    ) -> TransactionRecord:
        """
        Normalize a transfer record.

        Transfers reported by the provider are already in human units. A sender
        whose display name mentions "reward" marks a pool staking reward.

        Args:
            raw: Raw transfer record
            chain: Chain the record belongs to
            account: Address whose history is being built, used to tell sends
                from receives

        Returns:
            Canonical record

        Raises:
            NormalizationError: If the record has no usable block timestamp
        """
        from_name = _display_name(raw.get("from_account_display"))
        to_name = _display_name(raw.get("to_account_display"))
        sender = raw.get("from") or ""

        action = TransactionAction.BALANCES.value
        sub_action = "send" if account and sender == account else "receive"
        if from_name and REWARD_MARKER in from_name.lower():
            action = TransactionAction.POOL_STAKING.value
            sub_action = "reward"

        return TransactionRecord(
            tx_hash=raw.get("hash") or None,
            action=action,
            sub_action=sub_action,
            amount=_opt_str(raw.get("amount")),
            date=_timestamp_ms(raw),
            from_=AccountRef(address=sender, name=from_name),
            to=AccountRef(address=raw.get("to") or "", name=to_name),
            success=bool(raw.get("success", True)),
            chain=chain,
            token=raw.get("asset_symbol") or (chain.token if chain else None),
            fee=_opt_str(raw.get("fee")),
            block=raw.get("block_num"),
        )

    def normalize_extrinsic(self, raw: Dict[str, Any], chain: ChainInfo) -> TransactionRecord:
        """
        Normalize an extrinsic record.

        Raises:
            NormalizationError: If the chain decimals are not known yet or the
                record has no usable block timestamp
        """
        if chain is None or chain.decimal is None:
            raise NormalizationError("Chain decimals are required to normalize extrinsics")

        module = raw.get("call_module") or ""
        action = MODULE_ACTIONS.get(module, module)
        if action == TransactionAction.BALANCES.value:
            sub_action = "send"
        else:
            sub_action = humanize(raw.get("call_module_function"))

        account_display = raw.get("account_display") or {}
        to_address = raw.get("to")
        to = None
        if to_address:
            to = AccountRef(address=to_address, name=_display_name(raw.get("to_account_display")) or "")

        return TransactionRecord(
            tx_hash=raw.get("extrinsic_hash") or None,
            action=action,
            sub_action=sub_action,
            amount=self.scale_amount(raw.get("amount"), chain.decimal),
            date=_timestamp_ms(raw),
            from_=AccountRef(address=account_display.get("address") or raw.get("from") or "", name=""),
            to=to,
            success=bool(raw.get("success", True)),
            chain=chain,
            token=chain.token,
            fee=_opt_str(raw.get("fee")),
            block=raw.get("block_num"),
            class_=raw.get("class"),
            conviction=_opt_str(raw.get("conviction")),
            delegatee=raw.get("delegatee"),
            pool_id=_opt_str(raw.get("poolId")),
            ref_id=raw.get("refId"),
            nominators=raw.get("nominators"),
            vote_type=raw.get("voteType"),
            calls=raw.get("calls"),
        )

    def with_chain(self, record: TransactionRecord, chain: ChainInfo) -> TransactionRecord:
        """Return a copy of the record bound to resolved chain metadata."""
        return record.model_copy(update={"chain": chain, "token": record.token or chain.token})
