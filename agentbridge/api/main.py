from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from agentbridge import __version__
from agentbridge.api.deps import Services, build_services
from agentbridge.api.routers.chat import router as chat_router
from agentbridge.api.routers.webhooks import router as webhooks_router
from agentbridge.core.config import Settings, settings as default_settings
from agentbridge.core.logging import configure_logging

logger = logging.getLogger(__name__)

ACK_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = getattr(app.state, "services", None) is None
        if owned:
            app.state.services = build_services(settings)
        yield
        if owned:
            await app.state.services.close()

    app = FastAPI(title=settings.app_name, version=__version__, lifespan=lifespan)
    if services is not None:
        app.state.services = services

    @app.get("/health")
    def health():
        return {"status": "ok", "service": settings.app_name, "version": __version__}

    app.include_router(webhooks_router)
    app.include_router(chat_router)

    # Unknown paths are acknowledged so webhook senders never retry them
    @app.api_route("/{path:path}", methods=ACK_METHODS, include_in_schema=False)
    async def acknowledge(path: str):
        logger.info("webhook.unrouted", extra={"reason": path})
        return {"status": "ignored"}

    return app


configure_logging()
app = create_app()
