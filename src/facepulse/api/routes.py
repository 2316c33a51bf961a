"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from facepulse.api.schemas import (
    HealthResponse,
    LandmarkCentroids,
    ModelInfo,
    ModelsResponse,
    NormalizedBoxSchema,
    NormalizedPointSchema,
    RecognizeFailure,
    RecognizeRequest,
    RecognizeSuccess,
)
from facepulse.ml.geometry import normalize_face
from facepulse.ml.model_manager import MODEL_REGISTRY
from facepulse.ml.preprocessing import ImageDecodeError, decode_base64, decode_image

if TYPE_CHECKING:
    from facepulse.config import Settings
    from facepulse.ml.geometry import NormalizedGeometry, NormalizedPoint
    from facepulse.ml.inference import InferencePool
    from facepulse.ml.model_manager import ModelManager
    from facepulse.ml.pipeline import FaceAnalyzer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

MISSING_IMAGE_MESSAGE = "Missing image"
INVALID_BODY_MESSAGE = "Request body must be a JSON object with a base64 'image' string"
NO_FACE_MESSAGE = "No face detected"
SERVER_ERROR_MESSAGE = "Server error"


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_analyzer(request: Request) -> FaceAnalyzer:
    analyzer: FaceAnalyzer = request.app.state.analyzer
    return analyzer


def _get_model_manager(request: Request) -> ModelManager:
    manager: ModelManager = request.app.state.model_manager
    return manager


def _failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=RecognizeFailure(message=message).model_dump())


def _point(point: NormalizedPoint) -> NormalizedPointSchema:
    return NormalizedPointSchema(x=point.x, y=point.y)


def _success_payload(geometry: NormalizedGeometry) -> RecognizeSuccess:
    box = geometry.box
    return RecognizeSuccess(
        box=NormalizedBoxSchema(x=box.x, y=box.y, width=box.width, height=box.height),
        landmarks=LandmarkCentroids(
            left_eye=_point(geometry.left_eye),
            right_eye=_point(geometry.right_eye),
            nose=_point(geometry.nose),
        ),
    )


def _analyze_image(analyzer: FaceAnalyzer, image_bytes: bytes, max_pixels: int) -> NormalizedGeometry | None:
    """Decode, detect the best face with landmarks, and normalize. Runs in the inference pool."""
    image = decode_image(image_bytes, max_pixels)
    height, width = image.shape[:2]
    result = analyzer.detect_single(image, with_landmarks=True)
    if result is None:
        return None
    return normalize_face(result, width, height)


async def _read_recognize_request(request: Request) -> RecognizeRequest | None:
    """Parse the request body; an empty body counts as a request without an image.

    Returns None when the body is not valid JSON or does not match the schema.
    """
    raw = await request.body()
    if not raw.strip():
        return RecognizeRequest()
    try:
        return RecognizeRequest.model_validate_json(raw)
    except ValidationError:
        return None


@router.post(
    "/recognize",
    response_model=RecognizeSuccess | RecognizeFailure,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": RecognizeFailure},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": RecognizeFailure},
    },
    openapi_extra={
        "requestBody": {
            "content": {"application/json": {"schema": RecognizeRequest.model_json_schema()}},
            "required": True,
        }
    },
    summary="Detect a single face and return normalized geometry",
)
async def recognize(request: Request) -> JSONResponse:
    """Detect the most confident face in a base64 image.

    The body is parsed here rather than by FastAPI so malformed requests get
    the same ``{success, message}`` shape as every other failure. A missing
    face is a normal outcome and is reported with ``success: false`` and
    status 200. Unexpected failures are logged and reported generically.
    """
    body = await _read_recognize_request(request)
    if body is None:
        return _failure(status.HTTP_400_BAD_REQUEST, INVALID_BODY_MESSAGE)
    if not body.image:
        return _failure(status.HTTP_400_BAD_REQUEST, MISSING_IMAGE_MESSAGE)

    settings = _get_settings(request)
    try:
        image_bytes = decode_base64(body.image, settings.max_file_size)
        geometry = await _get_inference_pool(request).run(
            _analyze_image,
            _get_analyzer(request),
            image_bytes,
            settings.max_image_pixels,
        )
    except ImageDecodeError as exc:
        return _failure(status.HTTP_400_BAD_REQUEST, str(exc))
    except Exception:
        logger.exception("Error in /api/recognize")
        return _failure(status.HTTP_500_INTERNAL_SERVER_ERROR, SERVER_ERROR_MESSAGE)

    if geometry is None:
        return JSONResponse(content=RecognizeFailure(message=NO_FACE_MESSAGE).model_dump())
    return JSONResponse(content=_success_payload(geometry).model_dump(by_alias=True))


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        detector=_get_analyzer(request).capabilities.variant,
        models_loaded=_get_model_manager(request).get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List model assets",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return the known model assets and whether each one is loaded."""
    loaded = set(_get_model_manager(request).get_loaded_models())
    models = [
        ModelInfo(
            name=spec.name,
            task=spec.task,
            status="active" if spec.name in loaded else "unavailable",
            description=spec.description,
        )
        for spec in MODEL_REGISTRY.values()
    ]
    return ModelsResponse(models=models)
