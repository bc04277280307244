"""
Configuration loader for the notification dispatch service.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import structlog
import yaml

logger = structlog.get_logger()

DEFAULT_MESSAGES_PER_MINUTE = 256

DEFAULT_PERMANENT_SIGNATURES = [
    "status 422",
    "does not exist on whatsapp",
    "invalid_phone",
    "invalid phone",
    "service_disabled",
]


@dataclass
class DispatchConfig:
    messages_per_minute: int = DEFAULT_MESSAGES_PER_MINUTE
    safety_margin: float = 0.10         # pace 10% slower than the provider ceiling
    max_attempts: int = 3
    default_priority: int = 2
    send_timeout: Optional[float] = None   # seconds; None waits on the transport forever
    history_size: int = 100             # finished jobs kept for get_job()
    permanent_signatures: list[str] = field(
        default_factory=lambda: list(DEFAULT_PERMANENT_SIGNATURES)
    )


@dataclass
class TransportConfig:
    provider: str = "log"               # "log" for dev, "wasender" for production
    enabled: bool = False
    api_key: str = ""
    base_url: str = "https://www.wasenderapi.com/api"
    timeout: float = 30.0


@dataclass
class Settings:
    app_name: str = "NotifyDispatch"
    debug: bool = False
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _parse_bounded(name: str, value: Any, default: Any, minimum: float, cast=int) -> Any:
    """Coerce a setting; unparseable or below `minimum` falls back to `default`."""
    try:
        parsed = cast(value)
    except (TypeError, ValueError):
        parsed = None
    if parsed is None or parsed < minimum:
        logger.warning("invalid_dispatch_setting", setting=name, value=value,
                       fallback=default)
        return default
    return parsed


def parse_messages_per_minute(value: Any) -> int:
    return _parse_bounded("messages_per_minute", value, DEFAULT_MESSAGES_PER_MINUTE, 1)


def _apply_env_overrides(settings: Settings) -> None:
    env = os.environ
    if "WHATSAPP_MESSAGES_PER_MINUTE" in env:
        settings.dispatch.messages_per_minute = parse_messages_per_minute(
            env["WHATSAPP_MESSAGES_PER_MINUTE"]
        )
    if "WHATSAPP_ENABLED" in env:
        settings.transport.enabled = _as_bool(env["WHATSAPP_ENABLED"])
    if env.get("WASENDER_API_KEY"):
        settings.transport.api_key = env["WASENDER_API_KEY"]
    if env.get("WASENDER_BASE_URL"):
        settings.transport.base_url = env["WASENDER_BASE_URL"]


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file, then apply environment overrides."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "DISPATCH_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = _as_bool(raw.get("debug", settings.debug))

        if "dispatch" in raw:
            d = raw["dispatch"] or {}
            defaults = DispatchConfig()
            timeout = d.get("send_timeout", defaults.send_timeout)
            settings.dispatch = DispatchConfig(
                messages_per_minute=parse_messages_per_minute(
                    d.get("messages_per_minute", defaults.messages_per_minute)
                ),
                safety_margin=_parse_bounded(
                    "safety_margin", d.get("safety_margin", defaults.safety_margin),
                    defaults.safety_margin, 0.0, float,
                ),
                max_attempts=_parse_bounded(
                    "max_attempts", d.get("max_attempts", defaults.max_attempts),
                    defaults.max_attempts, 1,
                ),
                default_priority=_parse_bounded(
                    "default_priority", d.get("default_priority", defaults.default_priority),
                    defaults.default_priority, 1,
                ),
                send_timeout=(
                    _parse_bounded("send_timeout", timeout, None, 0.001, float)
                    if timeout else None
                ),
                history_size=_parse_bounded(
                    "history_size", d.get("history_size", defaults.history_size),
                    defaults.history_size, 0,
                ),
                permanent_signatures=d.get("permanent_signatures",
                                           defaults.permanent_signatures),
            )

        if "transport" in raw:
            t = raw["transport"] or {}
            defaults = TransportConfig()
            settings.transport = TransportConfig(
                provider=t.get("provider", defaults.provider),
                enabled=_as_bool(t.get("enabled", defaults.enabled)),
                api_key=t.get("api_key", defaults.api_key),
                base_url=t.get("base_url", defaults.base_url),
                timeout=float(t.get("timeout", defaults.timeout)),
            )
    else:
        logger.info("settings_file_missing", path=str(config_path))

    _apply_env_overrides(settings)

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
