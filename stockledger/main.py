# stockledger/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from stockledger import __version__
from stockledger.api.router import api_router
from stockledger.core.config import get_settings
from stockledger.core.logging import setup_logging
from stockledger.db.base import init_models
from stockledger.db.session import close_engines, create_all
from stockledger.http_problem_handlers import register_exception_handlers
from stockledger.obs.metrics import PrometheusMiddleware

logger = logging.getLogger("stockledger")


@asynccontextmanager
async def lifespan(_app: FastAPI):
    s = get_settings()
    if s.ENV == "dev":
        # dev convenience; other environments are migrated with alembic
        await create_all()
    yield
    await close_engines()


def create_app() -> FastAPI:
    s = get_settings()
    setup_logging(s.LOG_LEVEL, json=s.JSON_LOG)
    init_models()

    app = FastAPI(
        title="stockledger",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.add_middleware(PrometheusMiddleware)
    register_exception_handlers(app)
    app.include_router(api_router)
    logger.info("stockledger %s started env=%s", __version__, s.ENV)
    return app


app = create_app()
