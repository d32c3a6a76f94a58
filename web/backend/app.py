#!/usr/bin/env python3
"""
Finance Tracker Notifications - FastAPI Application

In-app notification feed, read state, preferences, device tokens and a debug
dispatch endpoint. The cadence scheduler runs inside this process unless
SCHEDULER_ENABLED=false (then run `python -m notification.worker` instead).

Usage:
    python -m web.backend.app

Then open:
    - http://localhost:8080/docs - API Documentation (Swagger UI)
    - http://localhost:8080/redoc - Alternative API Documentation
"""

import sys
import logging
from contextlib import asynccontextmanager
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError

from core.app_context import AppContext
from core.config_loader import get_config
from database.database import init_db
from .exceptions import (
    ServiceException,
    service_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    general_exception_handler
)
from .routers import notifications_router
from .routers.notifications import add_rate_limit_handlers

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = get_config()
    ctx = AppContext.build(config)
    await init_db(ctx.engine)
    app.state.ctx = ctx

    if config.notifications.scheduler.enabled:
        ctx.scheduler.start()
    else:
        logger.info("In-process scheduler disabled")

    try:
        yield
    finally:
        await ctx.aclose()
        app.state.ctx = None


def create_app() -> FastAPI:
    app = FastAPI(
        title="Finance Tracker Notifications API",
        description="Notification feed, preferences and delivery for the finance tracker",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    # Configure rate limiting
    add_rate_limit_handlers(app)

    # Register exception handlers
    app.add_exception_handler(ServiceException, service_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(notifications_router)

    @app.get("/health")
    def health_check(request: Request):
        """Health check endpoint."""
        ctx = getattr(request.app.state, 'ctx', None)
        return {
            "status": "healthy",
            "service": "finance-notifications",
            "scheduler_running": bool(ctx and ctx.scheduler.running),
        }

    return app


app = create_app()


def main():
    """Run the web server."""
    import uvicorn

    config = get_config()
    logger.info(f"Starting Notifications API on {config.web.host}:{config.web.port}")
    logger.info(f"API Docs: http://{config.web.host}:{config.web.port}/docs")

    uvicorn.run(
        "web.backend.app:app",
        host=config.web.host,
        port=config.web.port,
        reload=False,
        log_level="info"
    )


if __name__ == "__main__":
    main()
