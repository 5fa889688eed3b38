"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from photolabel.api.routes import router
from photolabel.config import get_settings
from photolabel.errors import ClassificationError
from photolabel.ml.inference import InferencePool
from photolabel.ml.pipeline import ClassificationPipeline

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: load the model on startup, release it on shutdown.

    A model or label asset that fails to load aborts startup; the app never
    accepts requests without a ready pipeline.
    """
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting PhotoLabel (device=%s, max_concurrent=%s, model=%s, labels=%s)",
        settings.device,
        settings.max_concurrent,
        settings.model_repo_id or settings.model_path,
        settings.labels_path,
    )

    try:
        pipeline = ClassificationPipeline.from_settings(settings)
    except ClassificationError:
        logger.exception("PhotoLabel failed to start")
        raise
    app.state.pipeline = pipeline

    inference_pool = InferencePool(settings)
    app.state.inference_pool = inference_pool

    logger.info("PhotoLabel ready (%d classes)", len(pipeline.labels))
    yield

    logger.info("Shutting down PhotoLabel")
    inference_pool.shutdown()
    pipeline.close()
    logger.info("PhotoLabel shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="PhotoLabel",
        description="Image classification API: top-K labels for an uploaded photo",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()
