"""
aegis warden - main entry point

Loads config, builds the WardenContext, starts the scan scheduler inside the
FastAPI lifespan and serves the status API.

Usage:
    python main.py              # Start the warden
    uvicorn main:app            # Or via uvicorn directly

Missing WARDEN_PRIVATE_KEY / RPC_URL / INDEXER_GRAPHQL_URL is the only thing
that stops the process: it refuses to start.
"""

import os
import sys
import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv

from core.rules import SecretMaskingFilter

# ============================================================
# BOOTSTRAP
# ============================================================

load_dotenv()

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

_mask_filter = SecretMaskingFilter()
for _h in logging.root.handlers:
    _h.addFilter(_mask_filter)

logger = logging.getLogger("warden.main")


# ============================================================
# MODULE IMPORTS
# ============================================================

from core.errors import ConfigError
from core.rules import WardenConfig
from core.context import WardenContext
from api.server import create_app


# ============================================================
# APP
# ============================================================

def build_context() -> WardenContext:
    """Config + context. Exits the process on ConfigError."""
    try:
        config = WardenConfig.from_env()
        return WardenContext.build(config)
    except ConfigError as e:
        logger.critical(f"Refusing to start: {e}")
        sys.exit(1)


def create_warden_app(context: WardenContext):
    """Create the FastAPI app and attach the scheduler to its lifespan."""

    @asynccontextmanager
    async def lifespan(app):
        logger.info("=" * 60)
        logger.info(f"Warden service initialized. Warden address: {context.warden_address}")
        logger.info(f"Config: {context.config.redacted()}")
        logger.info("=" * 60)

        scheduler_task = asyncio.create_task(context.warden.run_forever())

        yield

        # Shutdown: let an in-flight cycle finish before halting
        logger.info("Warden shutting down...")
        await context.warden.stop()
        if not scheduler_task.done():
            scheduler_task.cancel()
        await context.close()
        logger.info("Goodbye.")

    app = create_app(context)
    app.router.lifespan_context = lifespan
    return app


# ============================================================
# ENTRY POINT
# ============================================================

context = build_context()
app = create_warden_app(context)

if __name__ == "__main__":
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))

    logger.info(f"Starting server on {host}:{port}")

    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level=LOG_LEVEL.lower(),
    )
