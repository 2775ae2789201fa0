"""HTTP client wrapper for the AceData Suno API."""
from __future__ import annotations

import logging
import time
from typing import Any, Mapping, MutableMapping, Optional, Type, TypeVar
from urllib.parse import urljoin

import requests
from pydantic import BaseModel, ValidationError
from requests import RequestException, Response, Session
from requests.adapters import HTTPAdapter
from urllib3.util import Timeout

from core.settings import Settings
from metrics import acedata_request_duration_seconds, acedata_requests_total, labels

from .schemas import (
    DEFAULT_MODEL,
    Actions,
    AudioPayload,
    AudioRecord,
    AudiosEnvelope,
    GenerationTask,
    LyricResult,
    LyricsEnvelope,
    TaskEnvelope,
    TaskSubmissionEnvelope,
)

log = logging.getLogger("acedata.client")

DEFAULT_BASE_URL = "https://api.acedata.cloud/suno"

AUDIOS_PATH = "/audios"
TASKS_PATH = "/tasks"
LYRICS_PATH = "/lyrics"
# Extend requests go to the lyrics endpoint, matching the deployed behaviour.
EXTEND_PATH = LYRICS_PATH

_METRIC_LABELS = labels("client")

_EnvelopeT = TypeVar("_EnvelopeT", bound=BaseModel)


class AceDataAPIError(RuntimeError):
    """Raised when the AceData API responds with an error."""

    def __init__(self, message: str, *, status: Optional[int] = None, payload: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.payload = payload


class AceDataContractError(AceDataAPIError):
    """The upstream answered 200 but the body does not match the expected schema."""


class AceDataConfigError(AceDataAPIError):
    """The client is missing configuration needed for the requested call."""


class AceDataSunoClient:
    """Thin wrapper around :mod:`requests` for the AceData Suno endpoints."""

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        callback_url: Optional[str] = None,
        session: Optional[Session] = None,
        timeout: Optional[tuple[float, float] | Timeout] = None,
        default_model: Optional[str] = None,
        pool_connections: int = 10,
        pool_maxsize: int = 10,
    ) -> None:
        raw_base = (base_url or DEFAULT_BASE_URL).strip() or DEFAULT_BASE_URL
        self.base_url = raw_base.rstrip("/") + "/"
        self.token = (token or "").strip()
        if not self.token:
            log.warning("AceDataSunoClient initialized without API token; requests will fail")
        self.callback_url = (callback_url or "").strip() or None
        self.default_model = (default_model or DEFAULT_MODEL).strip() or DEFAULT_MODEL
        self.session = session or requests.Session()
        adapter = HTTPAdapter(pool_connections=pool_connections, pool_maxsize=pool_maxsize)
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)
        if timeout is None:
            self.timeout = Timeout(total=300.0, connect=10.0, read=300.0)
        elif isinstance(timeout, tuple):
            connect, read = timeout
            self.timeout = Timeout(
                total=max(float(connect), float(read)),
                connect=float(connect),
                read=float(read),
            )
        else:
            self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings, *, session: Optional[Session] = None) -> "AceDataSunoClient":
        return cls(
            base_url=settings.ACEDATA_API_BASE,
            token=settings.ACEDATA_TOKEN,
            callback_url=settings.callback_url,
            session=session,
            timeout=Timeout(
                total=settings.HTTP_TIMEOUT_TOTAL_EFFECTIVE,
                connect=settings.HTTP_TIMEOUT_CONNECT,
                read=settings.HTTP_TIMEOUT_READ,
            ),
            default_model=settings.DEFAULT_MODEL,
            pool_connections=settings.HTTP_POOL_CONNECTIONS,
            pool_maxsize=settings.HTTP_POOL_PER_HOST,
        )

    # ------------------------------------------------------------------ helpers
    def _headers(self) -> MutableMapping[str, str]:
        return {
            "Accept": "application/json",
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }

    def _url(self, path: str) -> str:
        return urljoin(self.base_url, path.lstrip("/"))

    @staticmethod
    def _error_body(response: Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    @staticmethod
    def _parse_json(response: Response, op: str) -> Mapping[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise AceDataContractError(f"Invalid JSON from AceData ({op})") from exc
        if not isinstance(payload, Mapping):
            raise AceDataContractError(
                f"Unexpected AceData response for {op}: expected an object", payload=payload
            )
        return payload

    @staticmethod
    def _validate(model: Type[_EnvelopeT], payload: Mapping[str, Any], op: str) -> _EnvelopeT:
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            fields = sorted({".".join(str(part) for part in err.get("loc", ())) for err in exc.errors()})
            log.warning(
                "[ACEDATA][%s] upstream contract violation fields=%s",
                op,
                ",".join(fields),
                extra={"meta": {"op": op, "fields": fields}},
            )
            raise AceDataContractError(
                f"Unexpected AceData response for {op}: invalid {', '.join(fields) or 'body'}",
                payload=payload,
            ) from exc

    def _log_request(
        self,
        op: str,
        *,
        level: int,
        url: str,
        status: Any,
        duration_ms: float,
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        fields: MutableMapping[str, Any] = {
            "method": "POST",
            "url": url,
            "status": status,
            "ms": round(duration_ms, 3),
        }
        if context:
            for key, value in context.items():
                if value is not None and key not in fields:
                    fields[key] = value
        message = " ".join(f"{key}={value}" for key, value in fields.items() if value not in (None, ""))
        log.log(level, "[ACEDATA][%s] %s", op, message, extra={"meta": {"op": op, **fields}})

    @staticmethod
    def _observe(op: str, result: str, duration_ms: float) -> None:
        acedata_requests_total.labels(op=op, result=result, **_METRIC_LABELS).inc()
        acedata_request_duration_seconds.labels(op=op, **_METRIC_LABELS).observe(duration_ms / 1000.0)

    def _post(self, path: str, payload: Mapping[str, Any], *, op: str) -> Mapping[str, Any]:
        url = self._url(path)
        log.info("[ACEDATA][%s] payload", op, extra={"meta": {"op": op, "payload": dict(payload)}})
        log.info("[ACEDATA][%s] request url=%s", op, url, extra={"meta": {"op": op, "url": url}})
        start_ts = time.monotonic()
        try:
            response = self.session.post(
                url,
                headers=self._headers(),
                json=dict(payload),
                timeout=self.timeout,
            )
        except RequestException as exc:
            duration_ms = max(0.0, (time.monotonic() - start_ts) * 1000.0)
            self._log_request(
                op,
                level=logging.ERROR,
                url=url,
                status="network_error",
                duration_ms=duration_ms,
                context={"error": str(exc)},
            )
            self._observe(op, "network_error", duration_ms)
            raise

        status = response.status_code
        duration_ms = max(0.0, (time.monotonic() - start_ts) * 1000.0)
        if status != 200:
            message = f"Error response: {response.reason or f'HTTP {status}'}"
            level = logging.WARNING if 400 <= status < 500 else logging.ERROR
            self._log_request(
                op,
                level=level,
                url=url,
                status=status,
                duration_ms=duration_ms,
                context={"error": message},
            )
            self._observe(op, f"http_{status}", duration_ms)
            raise AceDataAPIError(message, status=status, payload=self._error_body(response))

        body = self._parse_json(response, op)
        self._log_request(op, level=logging.INFO, url=url, status=status, duration_ms=duration_ms)
        self._observe(op, "ok", duration_ms)
        return body

    def _require_callback_url(self) -> str:
        if not self.callback_url:
            raise AceDataConfigError("Task callback URL is not configured (set PUBLIC_BASE_URL)")
        return self.callback_url

    def _generate_audios(self, payload: AudioPayload, *, op: str) -> list[AudioRecord]:
        start_ts = time.monotonic()
        body = self._post(AUDIOS_PATH, payload.to_wire(), op=op)
        envelope = self._validate(AudiosEnvelope, body, op)
        audios = [AudioRecord.from_upstream(audio, envelope.task_id) for audio in envelope.data]
        cost_ms = (time.monotonic() - start_ts) * 1000.0
        log.info(
            "[ACEDATA][%s] generated %d audio(s) task_id=%s cost_ms=%.1f",
            op,
            len(audios),
            envelope.task_id,
            cost_ms,
            extra={"meta": {"op": op, "task_id": envelope.task_id, "ids": [audio.id for audio in audios]}},
        )
        return audios

    def _submit_task(self, payload: AudioPayload, *, op: str) -> str:
        body = self._post(AUDIOS_PATH, payload.to_wire(), op=op)
        envelope = self._validate(TaskSubmissionEnvelope, body, op)
        log.info("[ACEDATA][%s] task submitted task_id=%s", op, envelope.task_id)
        return envelope.task_id

    def _generate_payload(
        self,
        prompt: str,
        make_instrumental: bool,
        model: Optional[str],
        *,
        callback_url: Optional[str] = None,
    ) -> AudioPayload:
        return AudioPayload(
            action=Actions.GENERATE,
            custom=False,
            prompt=prompt,
            instrumental=bool(make_instrumental),
            model=model or self.default_model,
            callback_url=callback_url,
        )

    def _custom_payload(
        self,
        prompt: str,
        tags: Optional[str],
        title: Optional[str],
        make_instrumental: bool,
        model: Optional[str],
        *,
        callback_url: Optional[str] = None,
    ) -> AudioPayload:
        return AudioPayload(
            action=Actions.GENERATE,
            custom=True,
            style=tags,
            title=title,
            lyric=prompt,
            instrumental=bool(make_instrumental),
            model=model or self.default_model,
            callback_url=callback_url,
        )

    # ------------------------------------------------------------------ public API
    def generate(
        self,
        prompt: str,
        make_instrumental: bool = False,
        model: Optional[str] = None,
    ) -> list[AudioRecord]:
        """Generate songs from a free-form description and wait for the result."""

        payload = self._generate_payload(prompt, make_instrumental, model)
        return self._generate_audios(payload, op="generate")

    def custom_generate(
        self,
        prompt: str,
        tags: Optional[str],
        title: Optional[str],
        make_instrumental: bool = False,
        model: Optional[str] = None,
    ) -> list[AudioRecord]:
        """Generate songs from explicit lyrics (``prompt``), style tags and a title."""

        payload = self._custom_payload(prompt, tags, title, make_instrumental, model)
        return self._generate_audios(payload, op="custom_generate")

    def generate_task(
        self,
        prompt: str,
        make_instrumental: bool = False,
        model: Optional[str] = None,
    ) -> str:
        """Submit a description-based generation and return its task id without waiting."""

        callback_url = self._require_callback_url()
        payload = self._generate_payload(prompt, make_instrumental, model, callback_url=callback_url)
        return self._submit_task(payload, op="generate_task")

    def custom_generate_task(
        self,
        prompt: str,
        tags: Optional[str],
        title: Optional[str],
        make_instrumental: bool = False,
        model: Optional[str] = None,
    ) -> str:
        callback_url = self._require_callback_url()
        payload = self._custom_payload(
            prompt, tags, title, make_instrumental, model, callback_url=callback_url
        )
        return self._submit_task(payload, op="custom_generate_task")

    def get_task(self, task_id: str) -> GenerationTask:
        body = self._post(TASKS_PATH, {"id": str(task_id), "action": "retrieve"}, op="get_task")
        envelope = self._validate(TaskEnvelope, body, "get_task")
        return GenerationTask.from_response(envelope.response, str(task_id))

    def generate_lyrics(self, prompt: str) -> LyricResult:
        body = self._post(LYRICS_PATH, {"prompt": prompt}, op="generate_lyrics")
        return self._validate(LyricsEnvelope, body, "generate_lyrics").data

    def extend_audio(
        self,
        audio_id: str,
        prompt: str = "",
        continue_at: str = "0",
        tags: str = "",
        title: str = "",
        model: Optional[str] = None,
    ) -> AudioRecord:
        """Extend an existing clip from ``continue_at`` (``mm:ss`` or seconds)."""

        start_ts = time.monotonic()
        payload = AudioPayload(
            action=Actions.EXTEND,
            audio_id=audio_id,
            custom=True,
            style=tags,
            title=title,
            prompt=prompt,
            model=model or self.default_model,
            continue_at=continue_at,
        )
        body = self._post(EXTEND_PATH, payload.to_wire(), op="extend_audio")
        envelope = self._validate(AudiosEnvelope, body, "extend_audio")
        if not envelope.data:
            raise AceDataContractError("AceData returned no audio for extend", payload=body)
        record = AudioRecord.from_upstream(envelope.data[0], envelope.task_id)
        log.info(
            "[ACEDATA][extend_audio] extended audio_id=%s new_id=%s cost_ms=%.1f",
            audio_id,
            record.id,
            (time.monotonic() - start_ts) * 1000.0,
        )
        return record


__all__ = [
    "AceDataAPIError",
    "AceDataConfigError",
    "AceDataContractError",
    "AceDataSunoClient",
    "AUDIOS_PATH",
    "EXTEND_PATH",
    "LYRICS_PATH",
    "TASKS_PATH",
]
