"""Response schemas for the OpenAI-compatible HTTP surface.

These models document and validate what the adapter returns; request bodies
are parsed by `GenerationRequest.from_payload` so that validation errors keep
the OpenAI error shape instead of FastAPI's 422 format.
"""

from pydantic import BaseModel


class ImageDatum(BaseModel):
    url: str | None = None
    b64_json: str | None = None


class ImageResponse(BaseModel):
    creator: str
    created: int
    data: list[ImageDatum]


class ModelCard(BaseModel):
    id: str
    object: str = "model"
    created: int
    owned_by: str
    provider: str


class ModelList(BaseModel):
    object: str = "list"
    data: list[ModelCard]


class ErrorDetail(BaseModel):
    message: str
    type: str
    param: str | None = None
    code: str | None = None


class ErrorResponse(BaseModel):
    error: ErrorDetail


class KeepAliveStart(BaseModel):
    url: str | None = None
    intervalMinutes: float | None = None
