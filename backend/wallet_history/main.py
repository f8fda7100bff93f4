"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from wallet_history.config import settings
from wallet_history.api.routes import history
from wallet_history.services.chain_metadata import StaticChainMetadata
from wallet_history.services.history_service import TransactionHistoryService
from wallet_history.services.sources.subscan import (
    SubscanClient,
    SubscanExtrinsicsSource,
    SubscanTransfersSource,
)
from wallet_history.services.storage import JsonFileStore

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)


def build_history_service(client: Optional[SubscanClient] = None) -> TransactionHistoryService:
    """Wire the history service against Subscan and the on-disk cache."""
    client = client or SubscanClient()
    return TransactionHistoryService(
        transfers_source=SubscanTransfersSource(client),
        extrinsics_source=SubscanExtrinsicsSource(client),
        store=JsonFileStore(settings.history_storage_path),
        chain_metadata=StaticChainMetadata(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    client = SubscanClient()
    if getattr(app.state, "history_service", None) is None:
        app.state.history_service = build_history_service(client)
    logger.info(f"History cache at {settings.history_storage_path}")
    try:
        yield
    finally:
        await client.aclose()


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description="Wallet transaction history API",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(history.router, prefix=f"{settings.api_prefix}/history", tags=["history"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Wallet History API",
        "version": settings.api_version,
        "docs": "/docs"
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}
