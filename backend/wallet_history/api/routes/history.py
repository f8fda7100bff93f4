"""Transaction history endpoints."""
from fastapi import APIRouter, Depends, HTTPException, Request
from wallet_history.models.history import HistoryView
from wallet_history.models.transaction import FilterOptions
from wallet_history.models.wallet import AccountRequest, AddressValidation
from wallet_history.services.history_service import TransactionHistoryService
from wallet_history.utils.errors import ChainMetadataError
from wallet_history.utils.ss58 import decode_address, validate_address

router = APIRouter()


def get_history_service(request: Request) -> TransactionHistoryService:
    return request.app.state.history_service


@router.post("/account", response_model=HistoryView)
async def select_account(
    request: AccountRequest,
    service: TransactionHistoryService = Depends(get_history_service)
):
    """
    Select the account and chain whose history is shown.

    Resets any previous session, loads the local cache and fetches the first
    page of both sources.
    """
    if not validate_address(request.address):
        raise HTTPException(status_code=400, detail=f"Invalid address: {request.address}")

    try:
        await service.set_account(request.address, request.genesis_hash)
    except ChainMetadataError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return await service.start()


@router.post("/visible", response_model=HistoryView)
async def end_of_list_visibility(
    visible: bool = True,
    filters: FilterOptions = Depends(),
    service: TransactionHistoryService = Depends(get_history_service)
):
    """
    Report whether the end of the rendered list is on screen.

    More pages are requested only when it comes into view after having been
    hidden; send ``visible=false`` when it scrolls out again.
    """
    if service.freshness_token is None:
        raise HTTPException(status_code=409, detail="No account selected")

    await service.set_visible(visible)
    return service.view(filters)


@router.get("", response_model=HistoryView)
async def get_history(
    filters: FilterOptions = Depends(),
    service: TransactionHistoryService = Depends(get_history_service)
):
    """Current history view, optionally filtered by category."""
    if service.freshness_token is None:
        raise HTTPException(status_code=409, detail="No account selected")

    return service.view(filters)


@router.get("/validate/{address}", response_model=AddressValidation)
async def validate_wallet(address: str):
    """Validate an SS58 address."""
    if not validate_address(address):
        return AddressValidation(address=address, valid=False, message="Invalid SS58 address format")

    ss58_format, _ = decode_address(address)
    return AddressValidation(address=address, valid=True, ss58_format=ss58_format, message="Address is valid")
