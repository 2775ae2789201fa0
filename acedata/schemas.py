"""Pydantic models for the AceData Suno wire format and the proxy's own contract."""
from __future__ import annotations

from enum import Enum
from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Models(str, Enum):
    V3_5 = "chirp-v3-5"
    V4 = "chirp-v4"
    V3_0 = "chirp-v3-0"
    V2 = "chirp-v2-xxl-alpha"


DEFAULT_MODEL = Models.V3_5.value


class Actions(str, Enum):
    GENERATE = "generate"
    EXTEND = "extend"


def parse_lyrics(lyric: Optional[str]) -> Optional[str]:
    """Drop blank lines and rejoin the rest with single newlines."""

    if lyric is None:
        return None
    lines = [line for line in str(lyric).split("\n") if line.strip() != ""]
    return "\n".join(lines)


# --------------------------------------------------------------------- outbound
class AudioPayload(BaseModel):
    """Body posted to the audio generation endpoint."""

    model_config = ConfigDict(extra="forbid", use_enum_values=True)

    action: Actions
    prompt: Optional[str] = None
    model: Optional[str] = None
    lyric: Optional[str] = None
    custom: Optional[bool] = None
    instrumental: Optional[bool] = None
    title: Optional[str] = None
    style: Optional[str] = None
    audio_id: Optional[str] = None
    continue_at: Optional[str] = None
    callback_url: Optional[str] = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


# --------------------------------------------------------------------- upstream
class UpstreamAudio(BaseModel):
    """Single audio object as produced by the provider."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    state: str
    title: Optional[str] = None
    image_url: Optional[str] = None
    lyric: Optional[str] = None
    audio_url: Optional[str] = None
    video_url: Optional[str] = None
    created_at: Optional[str] = None
    model: Optional[str] = None
    prompt: Optional[str] = None
    gpt_description_prompt: Optional[str] = None
    style: Optional[str] = None
    duration: Optional[float] = None


class AudiosEnvelope(BaseModel):
    """``{data: [...], task_id}`` returned by synchronous generation."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    data: List[UpstreamAudio]
    task_id: Optional[str] = None


class TaskSubmissionEnvelope(BaseModel):
    """Acknowledgement returned when a ``callback_url`` is supplied."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    task_id: str


class TaskResponse(BaseModel):
    """Inner ``response`` object of a task retrieval or a task callback."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    task_id: Optional[str] = None
    success: Optional[bool] = None
    data: List[UpstreamAudio] = Field(default_factory=list)

    @field_validator("data", mode="before")
    @classmethod
    def _null_data_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class TaskEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    response: TaskResponse


# ------------------------------------------------------------------ normalized
class AudioRecord(BaseModel):
    """Normalized representation of one generated song."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    id: str
    title: Optional[str] = None
    image_url: Optional[str] = None
    lyric: Optional[str] = None
    audio_url: Optional[str] = None
    video_url: Optional[str] = None
    created_at: Optional[str] = None
    model_name: Optional[str] = None
    gpt_description_prompt: Optional[str] = None
    prompt: Optional[str] = None
    status: str
    type: Optional[str] = None
    tags: Optional[str] = None
    negative_tags: Optional[str] = None
    duration: Optional[float] = None
    error_message: Optional[str] = None
    task_id: Optional[str] = None

    @classmethod
    def from_upstream(cls, audio: UpstreamAudio, task_id: Optional[str] = None) -> "AudioRecord":
        return cls(
            id=audio.id,
            title=audio.title,
            image_url=audio.image_url,
            lyric=parse_lyrics(audio.lyric),
            audio_url=audio.audio_url,
            video_url=audio.video_url,
            created_at=audio.created_at,
            model_name=audio.model,
            gpt_description_prompt=audio.gpt_description_prompt,
            prompt=audio.prompt,
            status=audio.state,
            tags=audio.style,
            duration=audio.duration,
            task_id=task_id,
        )


class GenerationTask(BaseModel):
    """Polling view of an asynchronous generation job."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    success: bool = False
    audios: List[AudioRecord] = Field(default_factory=list)

    @classmethod
    def from_response(cls, response: TaskResponse, fallback_task_id: str = "") -> "GenerationTask":
        task_id = response.task_id or fallback_task_id
        return cls(
            task_id=task_id,
            success=bool(response.success),
            audios=[AudioRecord.from_upstream(audio, task_id) for audio in response.data],
        )


class LyricResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = None
    text: str


class LyricsEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: LyricResult


class TaskSubmission(BaseModel):
    task_id: str


# ---------------------------------------------------------------------- inbound
class GenerateRequest(BaseModel):
    """Body of ``/generate`` and ``/generate_task``."""

    model_config = ConfigDict(extra="ignore")

    prompt: str
    make_instrumental: bool = False
    model: Optional[str] = None

    @field_validator("make_instrumental", mode="before")
    @classmethod
    def _null_is_false(cls, value: Any) -> Any:
        return False if value is None else value


class CustomGenerateRequest(GenerateRequest):
    """Body of ``/custom_generate`` and ``/custom_generate_task``."""

    tags: Optional[str] = None
    title: Optional[str] = None


class LyricsRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    prompt: str


class ExtendAudioRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    audio_id: str
    prompt: str = ""
    continue_at: str = "0"
    tags: str = ""
    title: str = ""
    model: Optional[str] = None


def task_response_from_callback(payload: Mapping[str, Any]) -> TaskResponse:
    """Accept a callback body either bare or wrapped in ``response``."""

    inner = payload.get("response")
    if isinstance(inner, Mapping):
        return TaskEnvelope.model_validate(payload).response
    return TaskResponse.model_validate(payload)


__all__ = [
    "Actions",
    "AudioPayload",
    "AudioRecord",
    "AudiosEnvelope",
    "CustomGenerateRequest",
    "DEFAULT_MODEL",
    "ExtendAudioRequest",
    "GenerateRequest",
    "GenerationTask",
    "LyricResult",
    "LyricsEnvelope",
    "LyricsRequest",
    "Models",
    "TaskEnvelope",
    "TaskResponse",
    "TaskSubmission",
    "TaskSubmissionEnvelope",
    "UpstreamAudio",
    "parse_lyrics",
    "task_response_from_callback",
]
