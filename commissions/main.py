"""FastAPI application entry point."""

import asyncio
import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from commissions.config import settings
from commissions.middleware import BodySizeLimitMiddleware, SecurityHeadersMiddleware
from commissions.routers import (
    admin,
    contracts,
    reconciliation,
    resolutions,
    tickets,
    uploads,
    users,
    wallet,
)

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: optional expiration sweeper."""
    sweeper_task = None
    if settings.sweeper_enabled:
        from commissions.services.sweeper import run_sweeper
        sweeper_task = asyncio.create_task(run_sweeper())
    else:
        logger.info("Background sweeper disabled; expirations apply on read and reconcile")

    yield

    if sweeper_task is not None:
        sweeper_task.cancel()
        try:
            await sweeper_task
        except asyncio.CancelledError:
            pass


app = FastAPI(
    title="Commission Contracts",
    description="Commission contract lifecycle, escrow and dispute resolution",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Added last runs first, so the body cap answers before anything else.
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(BodySizeLimitMiddleware, max_bytes=settings.max_request_body_bytes)

app.include_router(users.router)
app.include_router(wallet.router)
app.include_router(contracts.router)
app.include_router(uploads.router)
app.include_router(tickets.router)
app.include_router(resolutions.router)
app.include_router(reconciliation.router)
app.include_router(admin.router)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "env": settings.env}
