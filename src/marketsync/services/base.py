"""Common helpers for FastAPI-based services."""

from __future__ import annotations

from typing import Any, Callable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from marketsync import __version__
from marketsync.config import get_settings
from marketsync.logging import configure_logging


SERVICE_DESCRIPTION = {
    "sync": "Keeps the local market store reconciled with the Polymarket listings feed.",
}


def create_app(service_name: str, *, lifespan: Callable[[FastAPI], Any] | None = None) -> FastAPI:
    """Create a FastAPI app configured for the given service."""

    settings = get_settings()
    configure_logging()

    app = FastAPI(
        title=f"Market {service_name.title()} Service",
        description=SERVICE_DESCRIPTION.get(service_name, ""),
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["Health"])
    async def health() -> dict[str, str]:
        """Basic health endpoint."""

        return {"status": "ok", "service": service_name}

    return app
