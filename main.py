"""
Invoice Reminders API — application entry point.
"""

from __future__ import annotations

import logging
import sys

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.email_providers import router as email_providers_router
from api.middleware import register_middleware
from api.routes import router as api_router
from auth.routes import router as auth_router
from config.settings import config
from connectors.registry import ConnectorRegistry
from connectors.routes import router as integrations_router
from database.session import init_models
from utils import log_redaction

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "urllib3", "hpack", "asyncio"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
log_redaction.install("uvicorn", "uvicorn.access", "uvicorn.error")
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title="Invoice Reminders API",
        version="1.0.0",
        description="OAuth integrations, invoice sync and reminder scheduling.",
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_middleware(app)

    # Routes
    app.include_router(auth_router, prefix="/api/v1/auth")
    app.include_router(integrations_router, prefix="/api/v1/integrations")
    app.include_router(email_providers_router, prefix="/api/v1/email-providers")
    app.include_router(api_router, prefix="/api/v1")

    @app.on_event("startup")
    async def on_startup():
        log_redaction.install("uvicorn", "uvicorn.access", "uvicorn.error")
        logger.info("Discovering connectors…")
        registry = ConnectorRegistry()
        registry.discover()
        logger.info("Configured providers: %s", registry.list_configured() or "none")

        if not config.encryption_key:
            logger.warning("ENCRYPTION_KEY is not set; OAuth connections will fail")

        await init_models()
        logger.info("Application ready to accept requests.")

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
