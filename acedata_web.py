"""FastAPI application proxying song and lyric generation to AceData Suno."""
from __future__ import annotations

import argparse
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Mapping, Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError
from requests import RequestException
from starlette.exceptions import HTTPException as StarletteHTTPException

from acedata.client import AceDataAPIError, AceDataSunoClient
from acedata.schemas import (
    CustomGenerateRequest,
    ExtendAudioRequest,
    GenerateRequest,
    GenerationTask,
    LyricsRequest,
    TaskSubmission,
    task_response_from_callback,
)
from core.settings import Settings, load_settings
from logging_utils import init_logging, log_environment
from metrics import api_responses_total, labels, render_metrics, task_callback_total

log = logging.getLogger("acedata-web")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}

_MAX_JSON_BYTES = 512 * 1024
_WEB_LABELS = labels("web")

router = APIRouter()


def get_client(request: Request) -> AceDataSunoClient:
    return request.app.state.client


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _respond(route: str, status: int, content: Any) -> JSONResponse:
    api_responses_total.labels(route=route, status=str(status), **_WEB_LABELS).inc()
    return JSONResponse(content, status_code=status)


def _error(route: str, status: int, message: str) -> JSONResponse:
    return _respond(route, status, {"error": message})


def _upstream_failure(route: str, exc: Exception, *, internal_prefix: bool = True) -> JSONResponse:
    """402 when the provider reported a payment/quota problem, 500 otherwise."""

    message = str(exc)
    if isinstance(exc, AceDataAPIError) and exc.status == 402:
        return _error(route, 402, message)
    if internal_prefix:
        message = f"Internal server error: {message}"
    return _error(route, 500, message)


def _log_failure(route: str, exc: Exception) -> None:
    log.error(
        "%s failed: %s",
        route,
        exc,
        extra={"meta": {"route": route, "status": getattr(exc, "status", None), "err": type(exc).__name__}},
        exc_info=exc,
    )


def _format_validation_error(exc: RequestValidationError) -> str:
    parts: list[str] = []
    for entry in exc.errors():
        loc = [str(item) for item in entry.get("loc", ()) if item != "body"]
        msg = entry.get("msg", "invalid value")
        parts.append(f"{'.'.join(loc)}: {msg}" if loc else str(msg))
    return "Invalid request: " + "; ".join(parts)


# ------------------------------------------------------------------ generation
@router.post("/generate")
def generate(body: GenerateRequest, client: AceDataSunoClient = Depends(get_client)) -> JSONResponse:
    try:
        audios = client.generate(body.prompt, body.make_instrumental, body.model)
    except (AceDataAPIError, RequestException) as exc:
        _log_failure("generate", exc)
        return _upstream_failure("generate", exc)
    return _respond("generate", 200, [audio.model_dump() for audio in audios])


@router.post("/custom_generate")
def custom_generate(
    body: CustomGenerateRequest, client: AceDataSunoClient = Depends(get_client)
) -> JSONResponse:
    try:
        audios = client.custom_generate(
            body.prompt, body.tags, body.title, body.make_instrumental, body.model
        )
    except (AceDataAPIError, RequestException) as exc:
        _log_failure("custom_generate", exc)
        return _upstream_failure("custom_generate", exc, internal_prefix=False)
    return _respond("custom_generate", 200, [audio.model_dump() for audio in audios])


@router.post("/custom_generate_task")
def custom_generate_task(
    body: CustomGenerateRequest, client: AceDataSunoClient = Depends(get_client)
) -> JSONResponse:
    try:
        task_id = client.custom_generate_task(
            body.prompt, body.tags, body.title, body.make_instrumental, body.model
        )
    except (AceDataAPIError, RequestException) as exc:
        _log_failure("custom_generate_task", exc)
        return _error("custom_generate_task", 402, str(exc))
    return _respond("custom_generate_task", 200, TaskSubmission(task_id=task_id).model_dump())


@router.post("/generate_task")
def generate_task(body: GenerateRequest, client: AceDataSunoClient = Depends(get_client)) -> JSONResponse:
    try:
        task_id = client.generate_task(body.prompt, body.make_instrumental, body.model)
    except (AceDataAPIError, RequestException) as exc:
        _log_failure("generate_task", exc)
        return _error("generate_task", 500, f"Internal server error: {exc}")
    return _respond("generate_task", 200, TaskSubmission(task_id=task_id).model_dump())


@router.post("/generate_lyrics")
def generate_lyrics(body: LyricsRequest, client: AceDataSunoClient = Depends(get_client)) -> JSONResponse:
    try:
        lyrics = client.generate_lyrics(body.prompt)
    except (AceDataAPIError, RequestException) as exc:
        _log_failure("generate_lyrics", exc)
        return _upstream_failure("generate_lyrics", exc)
    return _respond("generate_lyrics", 200, lyrics.model_dump())


@router.post("/extend_audio")
def extend_audio(body: ExtendAudioRequest, client: AceDataSunoClient = Depends(get_client)) -> JSONResponse:
    try:
        audio = client.extend_audio(
            body.audio_id, body.prompt, body.continue_at, body.tags, body.title, body.model
        )
    except (AceDataAPIError, RequestException) as exc:
        _log_failure("extend_audio", exc)
        return _upstream_failure("extend_audio", exc)
    return _respond("extend_audio", 200, audio.model_dump())


# ------------------------------------------------------------------ tasks
@router.get("/get_task")
def get_task(
    task_id: Optional[str] = Query(default=None, alias="id"),
    client: AceDataSunoClient = Depends(get_client),
) -> JSONResponse:
    if task_id is None or not task_id.strip():
        return _error("get_task", 400, "Missing parameter id")
    try:
        task = client.get_task(task_id.strip())
    except (AceDataAPIError, RequestException) as exc:
        _log_failure("get_task", exc)
        return _error("get_task", 500, f"Internal server error: {exc}")
    return _respond("get_task", 200, task.model_dump())


@router.post("/task_callback")
async def task_callback(request: Request) -> JSONResponse:
    body = await request.body()
    if len(body) > _MAX_JSON_BYTES:
        log.warning("payload too large", extra={"meta": {"size": len(body)}})
        task_callback_total.labels(status="rejected", **_WEB_LABELS).inc()
        return _error("task_callback", 413, "payload too large")

    try:
        payload = json.loads(body or b"{}")
    except json.JSONDecodeError:
        log.error(
            "invalid json payload",
            extra={"meta": {"preview": body[:200].decode("utf-8", errors="replace")}},
        )
        task_callback_total.labels(status="invalid", **_WEB_LABELS).inc()
        return _error("task_callback", 400, "invalid json payload")

    if not isinstance(payload, Mapping):
        task_callback_total.labels(status="invalid", **_WEB_LABELS).inc()
        return _error("task_callback", 400, "callback payload must be an object")

    try:
        response = task_response_from_callback(payload)
    except ValidationError as exc:
        log.warning("invalid task callback", extra={"meta": {"errors": exc.error_count()}})
        task_callback_total.labels(status="invalid", **_WEB_LABELS).inc()
        return _error("task_callback", 400, "invalid callback payload")

    task = GenerationTask.from_response(response)
    log.info(
        "task callback",
        extra={
            "meta": {
                "phase": "callback",
                "task_id": task.task_id,
                "success": task.success,
                "items": len(task.audios),
                "states": [audio.status for audio in task.audios],
            }
        },
    )
    task_callback_total.labels(status="ok", **_WEB_LABELS).inc()
    return _respond("task_callback", 200, {"ok": True})


# ------------------------------------------------------------------ service
@router.get("/get_remote_config")
def get_remote_config(settings: Settings = Depends(get_settings)) -> JSONResponse:
    return _respond("get_remote_config", 200, {"implementation": settings.IMPLEMENTATION_TYPE})


@router.get("/healthz")
def healthz(settings: Settings = Depends(get_settings)) -> JSONResponse:
    payload = {
        "ok": True,
        "upstream": settings.ACEDATA_API_BASE,
        "callback_configured": bool(settings.callback_url),
    }
    return JSONResponse(payload)


@router.get("/metrics", include_in_schema=False)
def metrics_endpoint() -> Response:
    payload = render_metrics()
    return Response(content=payload, media_type="text/plain; version=0.0.4; charset=utf-8")


def create_app(
    settings: Optional[Settings] = None,
    client: Optional[AceDataSunoClient] = None,
) -> FastAPI:
    """Build the application around an explicit settings object and client."""

    settings = settings or load_settings()
    init_logging("acedata-web", settings=settings)
    client = client or AceDataSunoClient.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log_environment(log)
        tail = settings.token_tail(settings.ACEDATA_TOKEN)
        log.info(
            "ENV AceData: base=%s, callback=%s, token_tail=%s",
            settings.ACEDATA_API_BASE,
            settings.callback_url or "none",
            f"****{tail}" if tail else "none",
        )
        if not settings.callback_url:
            log.warning("PUBLIC_BASE_URL is not set; task endpoints will fail")
        yield

    app = FastAPI(title="AceData Suno Proxy", docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.settings = settings
    app.state.client = client

    @app.middleware("http")
    async def _middleware(request: Request, call_next):  # type: ignore[override]
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=CORS_HEADERS)
        response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Cache-Control"] = "no-store"
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        message = _format_validation_error(exc)
        log.warning("invalid request", extra={"meta": {"path": request.url.path, "error": message}})
        route = request.url.path.strip("/") or "root"
        return _error(route, 400, message)

    app.include_router(router)
    return app


def main() -> None:
    """Start the server."""

    parser = argparse.ArgumentParser(description="AceData Suno proxy server")
    parser.add_argument("--host", default="127.0.0.1", help="bind address")
    parser.add_argument("--port", type=int, default=3000, help="bind port")
    parser.add_argument("--reload", action="store_true", help="auto-reload for development")
    parser.add_argument("--log-level", default="info", help="uvicorn log level")
    args = parser.parse_args()

    uvicorn.run(
        "acedata_web:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()


__all__ = ["create_app", "main", "CORS_HEADERS"]
