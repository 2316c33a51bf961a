"""Pydantic request/response schemas for the FacePulse API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class RecognizeRequest(BaseModel):
    """Single image to analyze."""

    image: str | None = Field(default=None, description="Base64-encoded image bytes, without a data-URI prefix")


class NormalizedPointSchema(BaseModel):
    x: float = Field(ge=0.0, le=1.0)
    y: float = Field(ge=0.0, le=1.0)


class NormalizedBoxSchema(BaseModel):
    x: float = Field(ge=0.0, le=1.0, description="Relative bounding box x position (0.0-1.0)")
    y: float = Field(ge=0.0, le=1.0, description="Relative bounding box y position (0.0-1.0)")
    width: float = Field(ge=0.0, le=1.0, description="Relative bounding box width (0.0-1.0)")
    height: float = Field(ge=0.0, le=1.0, description="Relative bounding box height (0.0-1.0)")


class LandmarkCentroids(BaseModel):
    """Centroids of the eye and nose landmark groups."""

    model_config = ConfigDict(populate_by_name=True)

    left_eye: NormalizedPointSchema = Field(alias="leftEye")
    right_eye: NormalizedPointSchema = Field(alias="rightEye")
    nose: NormalizedPointSchema


class RecognizeSuccess(BaseModel):
    """A face was found. ``userId`` is always null: no identity matching is done."""

    model_config = ConfigDict(populate_by_name=True)

    success: Literal[True] = True
    box: NormalizedBoxSchema
    landmarks: LandmarkCentroids
    user_id: None = Field(default=None, alias="userId")


class RecognizeFailure(BaseModel):
    """No face found, bad input, or a server-side failure."""

    success: Literal[False] = False
    message: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    detector: str
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about a model asset."""

    name: str
    task: str = Field(description="Model task: 'face_detection', 'face_landmarks', or 'face_expressions'")
    status: str = Field(description="Model status: 'active' or 'unavailable'")
    description: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]
