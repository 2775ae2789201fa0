"""Centralised application configuration and environment validation."""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping, Optional

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("settings")


_SECRET_FIELDS = {
    "ACEDATA_TOKEN",
}

_DEFAULT_API_BASE = "https://api.acedata.cloud/suno"
_DEFAULT_MODEL = "chirp-v3-5"


def _mask(value: Optional[str]) -> str:
    if not value:
        return ""
    text = str(value).strip()
    if len(text) <= 4:
        return text
    return f"***{text[-4:]}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    ACEDATA_TOKEN: Optional[str] = Field(default=None)
    ACEDATA_API_BASE: str = Field(default=_DEFAULT_API_BASE)
    PUBLIC_BASE_URL: Optional[str] = Field(default=None)
    TASK_CALLBACK_PATH: str = Field(default="/task_callback")
    IMPLEMENTATION_TYPE: Optional[str] = Field(default=None)
    DEFAULT_MODEL: str = Field(default=_DEFAULT_MODEL)

    APP_ENV: str = Field(default="prod")
    LOG_LEVEL: str = Field(default="INFO")
    LOG_JSON: bool = Field(default=True)
    MAX_IN_LOG_BODY: int = Field(default=2048, ge=256, le=65536)

    HTTP_TIMEOUT_CONNECT: float = Field(default=10.0, ge=0.1, le=300.0)
    HTTP_TIMEOUT_READ: float = Field(default=300.0, ge=1.0, le=900.0)
    HTTP_TIMEOUT_TOTAL: float = Field(default=300.0, ge=1.0, le=900.0)
    HTTP_POOL_CONNECTIONS: int = Field(default=10, ge=1, le=200)
    HTTP_POOL_PER_HOST: int = Field(default=10, ge=1, le=100)

    # Runtime/computed attributes populated by ``_post_init``
    HTTP_TIMEOUT_TOTAL_EFFECTIVE: float = Field(default=0.0, exclude=True)

    @field_validator(
        "ACEDATA_TOKEN",
        "PUBLIC_BASE_URL",
        "IMPLEMENTATION_TYPE",
        mode="before",
    )
    def _strip_optional(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @field_validator("ACEDATA_API_BASE", mode="before")
    def _normalize_base(cls, value: Any) -> str:
        text = str(value or "").strip()
        return text or _DEFAULT_API_BASE

    @field_validator("TASK_CALLBACK_PATH", mode="before")
    def _normalize_callback_path(cls, value: Any) -> str:
        text = str(value or "").strip() or "/task_callback"
        if not text.startswith("/"):
            text = f"/{text}"
        return text

    @field_validator("DEFAULT_MODEL", mode="before")
    def _normalize_model(cls, value: Any) -> str:
        text = str(value or "").strip()
        return text or _DEFAULT_MODEL

    @field_validator("APP_ENV", mode="before")
    def _normalize_env(cls, value: Any) -> str:
        text = str(value or "").strip()
        return text or "prod"

    @field_validator("LOG_LEVEL", mode="before")
    def _normalize_level(cls, value: Any) -> str:
        if value is None:
            return "INFO"
        text = str(value).strip().upper()
        if text not in logging._nameToLevel:  # type: ignore[attr-defined]
            return "INFO"
        return text

    @model_validator(mode="after")
    def _post_init(self) -> "Settings":
        self.ACEDATA_API_BASE = self.ACEDATA_API_BASE.rstrip("/")
        if self.PUBLIC_BASE_URL:
            self.PUBLIC_BASE_URL = self.PUBLIC_BASE_URL.rstrip("/")

        total_timeout = self.HTTP_TIMEOUT_TOTAL
        if total_timeout < max(self.HTTP_TIMEOUT_CONNECT, self.HTTP_TIMEOUT_READ):
            total_timeout = max(self.HTTP_TIMEOUT_CONNECT, self.HTTP_TIMEOUT_READ)
        self.HTTP_TIMEOUT_TOTAL_EFFECTIVE = float(total_timeout)
        return self

    @property
    def callback_url(self) -> Optional[str]:
        if not self.PUBLIC_BASE_URL:
            return None
        return f"{self.PUBLIC_BASE_URL}{self.TASK_CALLBACK_PATH}"

    def configuration_summary(self) -> Mapping[str, Any]:
        keys: MutableMapping[str, Any] = {
            "APP_ENV": self.APP_ENV,
            "ACEDATA_API_BASE": self.ACEDATA_API_BASE,
            "PUBLIC_BASE_URL": self.PUBLIC_BASE_URL,
            "CALLBACK_URL": self.callback_url,
            "IMPLEMENTATION_TYPE": self.IMPLEMENTATION_TYPE,
            "DEFAULT_MODEL": self.DEFAULT_MODEL,
        }
        for secret in sorted(_SECRET_FIELDS):
            value = getattr(self, secret, None)
            keys[secret] = _mask(value)
        return keys

    def token_tail(self, token: Optional[str]) -> str:
        if not token:
            return ""
        text = token.strip()
        if len(text) <= 4:
            return text
        return text[-4:]


def load_settings(**overrides: Any) -> Settings:
    """Build :class:`Settings` from the environment, failing fast on bad values."""

    try:
        return Settings(**overrides)
    except ValidationError as exc:
        errors = []
        for entry in exc.errors():
            loc = "::".join(str(part) for part in entry.get("loc", ()))
            msg = entry.get("msg", "invalid value")
            errors.append(f"{loc}: {msg}")
        message = "Invalid configuration: " + ", ".join(errors)
        logger.error(message)
        raise RuntimeError(message) from exc


__all__ = [
    "Settings",
    "load_settings",
]
