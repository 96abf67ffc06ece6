from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

from meetingdesk.home import MeetingDeskPaths


class NetworkConfig(BaseModel):
    bind_host: str = Field(default="127.0.0.1")
    port: int = Field(default=3000, ge=1, le=65535)


class ApiConfig(BaseModel):
    """Remote meetings service settings."""

    base_url: str = Field(default="http://localhost:3001")
    timeout_s: float = Field(
        default=10.0,
        gt=0,
        description="Per-request timeout; a hung request fails as a transport error.",
    )


class SessionConfig(BaseModel):
    lifetime_s: int = Field(
        default=60 * 60 * 24, ge=60, description="Lifetime of the auth_token and user cookies."
    )
    secure_cookies: bool = Field(
        default=False, description="Only send cookies over HTTPS (enable in production)."
    )
    samesite: Literal["strict", "lax"] = Field(default="strict")


class DisplayConfig(BaseModel):
    timezone: str = Field(
        default="UTC",
        description="IANA zone used to interpret and render datetime-local form values.",
    )

    @field_validator("timezone")
    @classmethod
    def _known_zone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown time zone: {value}") from exc
        return value


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    max_size_mb: int = Field(
        default=10, ge=1, description="Max size of a log file in MB before rolling."
    )
    backup_count: int = Field(default=5, ge=1, description="Number of log archives to keep.")


class FrontendConfig(BaseModel):
    version: str = Field(default="1")
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    display: DisplayConfig = Field(default_factory=DisplayConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _read_json(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def load_frontend_config(paths: MeetingDeskPaths) -> FrontendConfig:
    """Load config from ${MEETINGDESK_HOME}/config/frontend.json.

    - If missing: returns defaults.
    - Validation is performed by Pydantic.
    """

    config_path = paths.frontend_config_path
    if not config_path.exists():
        return FrontendConfig()

    raw = _read_json(config_path)
    return FrontendConfig.model_validate(raw)


def write_frontend_config(paths: MeetingDeskPaths, config: FrontendConfig) -> None:
    """Persist config to ${MEETINGDESK_HOME}/config/frontend.json."""

    payload = config.model_dump(mode="json", exclude_none=True)
    paths.config_dir.mkdir(parents=True, exist_ok=True)
    paths.frontend_config_path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")


def apply_env_overrides(
    config: FrontendConfig, environ: dict[str, str] | None = None
) -> FrontendConfig:
    """Apply MEETINGDESK_API_URL / MEETINGDESK_BIND / MEETINGDESK_PORT on top of file config."""

    env = os.environ if environ is None else environ

    api = config.api
    api_url = (env.get("MEETINGDESK_API_URL") or "").strip()
    if api_url:
        api = api.model_copy(update={"base_url": api_url})

    network = config.network
    bind = (env.get("MEETINGDESK_BIND") or "").strip()
    if bind:
        network = network.model_copy(update={"bind_host": bind})
    port = (env.get("MEETINGDESK_PORT") or "").strip()
    if port:
        # Re-validate so an out-of-range port fails like a bad config file would.
        network = NetworkConfig.model_validate({**network.model_dump(), "port": port})

    return config.model_copy(update={"api": api, "network": network})
