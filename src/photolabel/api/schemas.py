"""Pydantic request/response schemas for the PhotoLabel API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class PredictionTag(BaseModel):
    """A single classification label with its confidence percentage."""

    label: str
    confidence: str = Field(description="Confidence as a percentage with two decimals, e.g. '87.50'")


class ClassifyImageResponse(BaseModel):
    """Response for the image classification endpoint."""

    predictions: list[PredictionTag]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about the loaded model."""

    name: str
    input_shape: list[int | str | None] = Field(description="Declared model input shape, NHWC")
    num_classes: int
    top_k: int = Field(description="Default number of predictions returned")


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
    stage: str | None = Field(default=None, description="Pipeline stage that failed, if any")
