"""
Sportsbook Connect — application entry point.
"""

from __future__ import annotations

import logging
import sys

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import register_middleware
from config.settings import config
from connectors.routes import router as oauth_router
from connectors.service import (
    get_credential_store,
    get_gateway,
    get_refresh_scheduler,
    get_token_cipher,
)
from database.session import init_models

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "asyncio"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title="Sportsbook Connect",
        version="1.0.0",
        description="OAuth credential lifecycle for linked sportsbook accounts.",
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
    app.include_router(oauth_router, prefix="/api/oauth")

    @app.get("/health", tags=["health"])
    async def health():
        database_ok = await get_credential_store().ping()
        scheduler = get_refresh_scheduler()
        return {
            "status": "ok" if database_ok else "degraded",
            "database": database_ok,
            "scheduler": scheduler.is_running,
        }

    @app.on_event("startup")
    async def on_startup():
        if config.auto_create_tables:
            logger.info("Ensuring credential tables exist…")
            await init_models()

        # Builds the cipher now so a missing key is reported at boot.
        get_token_cipher()

        if config.scheduler_enabled:
            get_refresh_scheduler().start()
        else:
            logger.info("Token refresh scheduler disabled by configuration")

        logger.info("Application ready to accept requests.")

    @app.on_event("shutdown")
    async def on_shutdown():
        await get_refresh_scheduler().stop()
        await get_gateway().aclose()

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
