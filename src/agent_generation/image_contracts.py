from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, field_validator

_DATA_URL_RE = re.compile(r"^data:[\w.+-]+/[\w.+-]+;base64,.+$", re.DOTALL)


class ImageGenerationRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    prompt: str
    width: int
    height: int
    count: int = 1
    negative_prompt: str | None = None
    num_iterations: int | None = None
    guidance_scale: float | None = None
    seed: int | None = None
    model_id: str | None = None
    job_id: str | None = None
    style_preset: str | None = None
    hide_watermark: bool | None = None
    safe_mode: bool | None = None
    cfg_scale: float | None = None

    @field_validator("prompt")
    @classmethod
    def _validate_prompt(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("prompt must be non-empty.")
        return v

    @field_validator("width", "height", "count")
    @classmethod
    def _validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("width, height and count must be > 0.")
        return v


class ImageGenerationResult(BaseModel):
    success: bool
    data: list[str] | None = None
    error: str | None = None

    @field_validator("data")
    @classmethod
    def _validate_data_urls(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return None
        for entry in v:
            if not _DATA_URL_RE.match(entry):
                raise ValueError("image entries must be base64 data URLs.")
        return v

    @classmethod
    def ok(cls, data: list[str]) -> "ImageGenerationResult":
        return cls(success=True, data=data)

    @classmethod
    def failed(cls, error: BaseException | str) -> "ImageGenerationResult":
        return cls(success=False, error=str(error) or type(error).__name__)


def to_data_url(mime_type: str, payload: str) -> str:
    if not payload:
        raise ValueError("Empty base64 payload.")
    return f"data:{mime_type};base64,{payload}"
