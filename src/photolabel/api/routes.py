"""API route definitions."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, UploadFile, status
from fastapi.responses import JSONResponse

from photolabel.api.middleware import get_inference_pool, get_pipeline, get_request_settings, verify_api_key
from photolabel.api.schemas import (
    ClassifyImageResponse,
    ErrorResponse,
    HealthResponse,
    ModelInfo,
    ModelsResponse,
    PredictionTag,
)
from photolabel.errors import ClassificationError, DecodeError

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

_HTTP_PAYLOAD_TOO_LARGE = 413


def _error(status_code: int, detail: str, stage: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(detail=detail, stage=stage).model_dump(),
    )


def _status_for(exc: ClassificationError) -> int:
    if isinstance(exc, DecodeError):
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@router.post(
    "/classify-image",
    response_model=ClassifyImageResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        _HTTP_PAYLOAD_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Classify an image and return the top labels",
)
async def classify_image(
    request: Request,
    file: UploadFile,
    top_k: Annotated[int | None, Query(ge=0, description="Number of labels to return")] = None,
) -> ClassifyImageResponse | JSONResponse:
    """Classify an uploaded image and return ranked labels."""
    settings = get_request_settings(request)
    pipeline = get_pipeline(request)
    pool = get_inference_pool(request)

    image_bytes = await file.read(settings.max_file_size + 1)
    if len(image_bytes) > settings.max_file_size:
        return _error(_HTTP_PAYLOAD_TOO_LARGE, f"File exceeds {settings.max_file_size} bytes", stage="upload")

    try:
        result = await pool.run(pipeline.classify_image, image_bytes, top_k)
    except TimeoutError:
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Inference queue is full, retry later")
    except ClassificationError as exc:
        return _error(_status_for(exc), str(exc), stage=exc.stage)

    return ClassifyImageResponse(
        predictions=[PredictionTag(label=p.label, confidence=p.confidence) for p in result],
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = get_request_settings(request)
    pipeline = get_pipeline(request)
    pool = get_inference_pool(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        models_loaded=[pipeline.handle.name],
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="Describe the loaded model",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return the loaded model's input contract and label count."""
    pipeline = get_pipeline(request)
    return ModelsResponse(models=[ModelInfo(**pipeline.describe())])
