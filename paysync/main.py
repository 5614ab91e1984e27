from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from paysync.config import Settings
from paysync.container import Container, build_container
from paysync.logging import setup_logging
from paysync.routes import health, payments, webhooks


def create_app(settings: Settings | None = None, container: Container | None = None) -> FastAPI:
    """Build the ASGI app with its collaborators.

    Tests pass a prebuilt container (in-memory store, fake payout/notifier).
    """
    if container is None:
        container = build_container(settings or Settings())

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await container.store.close()

    app = FastAPI(title="paysync", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.settings = container.settings
    app.state.container = container
    app.include_router(health.router)
    app.include_router(webhooks.router)
    app.include_router(payments.router)
    return app


def build_app() -> FastAPI:
    setup_logging()
    return create_app()


app = build_app()
