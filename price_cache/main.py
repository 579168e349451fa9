"""
Main application entry point.
Initializes the FastAPI app, the quote store schema and the shared HTTP client.
"""
import logging
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from price_cache.api.routes import create_app, get_http_client, get_quote_service
from price_cache.config.settings import settings

# Configure logging for stdout/stderr collectors
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
    force=True,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the schema on startup; close upstream connections on shutdown."""
    logger.info("Starting Price Cache...")

    try:
        get_quote_service()
        logger.info("Application started successfully")
        yield
    except Exception as e:
        logger.error(f"Startup failed: {e}", exc_info=True)
        raise
    finally:
        logger.info("Shutting down Price Cache...")
        await get_http_client().aclose()
        get_http_client.cache_clear()
        get_quote_service.cache_clear()
        logger.info("Shutdown complete")


app = create_app(lifespan=lifespan)


def main():
    """Run the application."""
    logger.info(
        "Configuration loaded",
        extra={
            "host": settings.host,
            "port": settings.port,
            "log_level": settings.log_level,
            "quote_store_backend": settings.quote_store_backend,
            "quote_ttl_seconds": settings.quote_ttl_seconds,
            "fallback_mirrors": settings.fallback_mirrors,
        },
    )

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        lifespan="on",
        access_log=True,
    )


if __name__ == "__main__":
    main()
