"""Dataviz Account API — FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from account_api.api.v1.account import router as account_router
from account_api.api.v1.billing import router as billing_router
from account_api.api.v1.cron import router as cron_router
from account_api.api.v1.projects import router as projects_router
from account_api.api.v1.webhooks import router as webhooks_router
from account_api.config import settings

# Configure root logger so all account_api.* loggers output to stderr.
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler for startup and shutdown events."""
    yield
    # Shutdown — dispose engine connections
    from account_api.database import engine

    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Accounts, Stripe subscriptions, and saved projects for the dataviz apps.",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(account_router)
app.include_router(billing_router)
app.include_router(projects_router)
app.include_router(webhooks_router)
app.include_router(cron_router)


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "service": settings.app_name}
