"""Subscan history sources."""
import asyncio
import logging
from typing import Any, Dict, List, Optional
import httpx
from wallet_history.config import settings
from wallet_history.models.transaction import ChainInfo
from wallet_history.services.cache_service import freshness_token
from wallet_history.services.sources.base import HistorySource, SourcePage
from wallet_history.utils.errors import SourceFetchError
from wallet_history.utils.ss58 import encode_hex_address

logger = logging.getLogger(__name__)

SUPPORTED_MODULES = ("balances", "nominationpools", "utility", "proxy", "staking", "convictionvoting")

# Status codes worth another attempt (rate limiting and upstream hiccups)
RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class SubscanClient:
    """Thin async client for the Subscan REST API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_key = api_key if api_key is not None else settings.subscan_api_key
        self.base_url = base_url or settings.subscan_api_url
        self.max_retries = max_retries if max_retries is not None else settings.max_retries
        self.retry_delay = retry_delay if retry_delay is not None else settings.retry_delay_seconds
        self.client = httpx.AsyncClient(
            timeout=timeout or settings.request_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self):
        await self.client.aclose()

    def url(self, network: str, path: str) -> str:
        return self.base_url.format(network=network).rstrip("/") + path

    async def post(self, network: str, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST to a Subscan endpoint, retrying transient failures with backoff.

        Returns:
            The ``data`` member of the response

        Raises:
            SourceFetchError: When retries are exhausted or Subscan reports an error
        """
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-API-Key"] = self.api_key

        url = self.url(network, path)
        attempt = 0
        while True:
            try:
                response = await self.client.post(url, json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()
                break
            except httpx.HTTPStatusError as e:
                if e.response.status_code not in RETRYABLE_STATUS or attempt >= self.max_retries:
                    raise SourceFetchError(f"HTTP {e.response.status_code} from {url}", source=network)
            except httpx.HTTPError as e:
                if attempt >= self.max_retries:
                    raise SourceFetchError(f"HTTP error calling {url}: {str(e)}", source=network)
            except ValueError as e:
                raise SourceFetchError(f"Invalid JSON from {url}: {str(e)}", source=network)

            delay = self.retry_delay * (2 ** attempt)
            attempt += 1
            logger.warning(f"[SUBSCAN] Request to {path} failed, retrying in {delay:.1f}s "
                           f"(attempt {attempt}/{self.max_retries})")
            await asyncio.sleep(delay)

        if data.get("code", 0) != 0:
            raise SourceFetchError(f"Subscan error: {data.get('message', 'Unknown error')}", source=network)

        return data.get("data") or {}


class SubscanTransfersSource(HistorySource):
    """Asset transfers of an account."""

    name = "transfers"

    def __init__(self, client: SubscanClient):
        self.client = client

    async def fetch_page(self, chain: ChainInfo, address: str, page: int, page_size: int) -> SourcePage:
        data = await self.client.post(chain.subscan_network, "/api/v2/scan/transfers", {
            "address": address,
            "page": page,
            "row": page_size,
        })
        transfers = data.get("transfers") or []
        logger.info(f"[SUBSCAN] {chain.name} transfers page {page}: {len(transfers)} items")

        return SourcePage(
            items=transfers,
            raw_count=len(transfers),
            count=data.get("count"),
            requested_for=freshness_token(address, chain.genesis_hash),
        )


class SubscanExtrinsicsSource(HistorySource):
    """Signed extrinsics of an account, optionally enriched with call params."""

    name = "extrinsics"

    def __init__(
        self,
        client: SubscanClient,
        fetch_details: Optional[bool] = None,
        batch_size: Optional[int] = None
    ):
        self.client = client
        self.fetch_details = settings.fetch_extrinsic_details if fetch_details is None else fetch_details
        self.batch_size = batch_size or settings.detail_batch_size

    async def fetch_page(self, chain: ChainInfo, address: str, page: int, page_size: int) -> SourcePage:
        data = await self.client.post(chain.subscan_network, "/api/v2/scan/extrinsics", {
            "address": address,
            "page": page,
            "row": page_size,
        })
        extrinsics = data.get("extrinsics") or []
        supported = [e for e in extrinsics if e.get("call_module") in SUPPORTED_MODULES]
        logger.info(f"[SUBSCAN] {chain.name} extrinsics page {page}: "
                    f"{len(extrinsics)} items, {len(supported)} supported")

        if self.fetch_details and supported:
            supported = await self._with_details(supported, chain)

        return SourcePage(
            items=supported,
            raw_count=len(extrinsics),
            count=data.get("count"),
            requested_for=freshness_token(address, chain.genesis_hash),
        )

    async def _with_details(self, extrinsics: List[Dict[str, Any]], chain: ChainInfo) -> List[Dict[str, Any]]:
        """Fetch call details in batches; an extrinsic whose lookup fails is kept as-is."""
        enriched = []
        for i in range(0, len(extrinsics), self.batch_size):
            batch = extrinsics[i:i + self.batch_size]
            results = await asyncio.gather(
                *(self.client.post(chain.subscan_network, "/api/scan/extrinsic", {"hash": e.get("extrinsic_hash")})
                  for e in batch),
                return_exceptions=True,
            )
            for extrinsic, result in zip(batch, results):
                if isinstance(result, Exception):
                    logger.warning(f"[SUBSCAN] Failed to fetch details for {extrinsic.get('extrinsic_hash')}: {result}")
                    enriched.append(extrinsic)
                    continue
                details = extract_call_details(
                    extrinsic.get("call_module_function") or "",
                    result.get("params") or [],
                    result.get("transfer"),
                    chain.ss58_format,
                )
                enriched.append({**extrinsic, **{k: v for k, v in details.items() if v is not None}})
        return enriched


def _param(params: List[Dict[str, Any]], index: int) -> Any:
    if index < len(params) and isinstance(params[index], dict):
        return params[index].get("value")
    return None


def _account(value: Any, ss58_format: int) -> Optional[str]:
    """Render an AccountId param (``{"Id": "0x.."}`` or bare hex) as an SS58 address."""
    account_id = value.get("Id") if isinstance(value, dict) else value
    if not isinstance(account_id, str) or not account_id:
        return None
    try:
        return encode_hex_address(account_id, ss58_format)
    except ValueError:
        return None


def _call_label(call: Dict[str, Any]) -> str:
    return f"{call.get('call_module')} ({call.get('call_name')})"


def extract_call_details(
    function_name: str,
    params: List[Dict[str, Any]],
    transfer: Optional[Dict[str, Any]],
    ss58_format: int
) -> Dict[str, Any]:
    """
    Pull protocol-specific fields out of an extrinsic's call params.

    Args:
        function_name: Call function, e.g. ``vote`` or ``bond_extra``
        params: Subscan ``params`` list of ``{"name", "type", "value"}``
        transfer: Subscan ``transfer`` member, if any
        ss58_format: Prefix used to render account ids

    Returns:
        Fields to overlay on the raw extrinsic; empty when nothing applies
    """
    try:
        if function_name == "delegate":
            return {
                "amount": _param(params, 3),
                "class": _param(params, 0),
                "conviction": _param(params, 2),
                "delegatee": _account(_param(params, 1), ss58_format),
            }

        if function_name == "undelegate":
            return {"class": _param(params, 0)}

        if function_name == "unlock":
            return {"class": _param(params, 0), "from": _account(_param(params, 1), ss58_format)}

        if function_name == "vote":
            votes = _param(params, 1) or {}
            standard = votes.get("Standard") or {}
            split = votes.get("SplitAbstain") or {}
            balance = standard.get("balance")
            return {
                "amount": balance if balance is not None else split.get("abstain"),
                "refId": _param(params, 0),
                "voteType": standard.get("vote"),
            }

        if function_name == "remove_vote":
            return {"class": _param(params, 0), "refId": _param(params, 1)}

        if function_name in ("batch", "force_batch", "batch_all"):
            return {"calls": [_call_label(call) for call in (_param(params, 0) or [])]}

        if function_name in ("transfer", "transfer_keep_alive", "transfer_allow_death", "transfer_all"):
            transfer = transfer or {}
            return {
                "amount": transfer.get("amount", _param(params, 1)),
                "from": transfer.get("from", ""),
                "to": transfer.get("to", _account(_param(params, 0), ss58_format) or ""),
            }

        if function_name in ("rebond", "unbond"):
            amount = _param(params, 1)
            return {"amount": amount if amount is not None else _param(params, 0)}

        if function_name == "bond":
            return {"amount": _param(params, 0)}

        if function_name == "bond_extra":
            value = _param(params, 0)
            if isinstance(value, dict):
                amount = value.get("Rewards") or value.get("FreeBalance") or "0"
            else:
                amount = value or "0"
            try:
                float(amount)
            except (TypeError, ValueError):
                amount = "0"
            return {"amount": str(amount)}

        if function_name == "nominate":
            targets = _param(params, 0)
            targets = targets if isinstance(targets, list) else []
            return {"nominators": [a for a in (_account(t, ss58_format) for t in targets) if a]}

        if function_name == "join":
            return {"amount": _param(params, 0), "poolId": _param(params, 1)}

        if function_name == "proxy":
            call = _param(params, 2)
            return {"calls": [_call_label(call)]} if isinstance(call, dict) else {}

    except (AttributeError, TypeError) as e:
        logger.warning(f"[SUBSCAN] Could not read params of {function_name}: {e}")

    return {}
