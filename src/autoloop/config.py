"""Environment-backed application configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_UPDATE_URL = "https://pypi.org/pypi/autoloop/json"
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _to_bool(value: str | None, default: bool = False) -> bool:
    """Convert common env var truthy/falsy values into booleans."""
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


@dataclass(slots=True, frozen=True)
class AppConfig:
    """Runtime settings loaded once from environment variables and config files."""

    assistant_command: str = "claude"
    log_dir: str = "build-logs"
    max_runs: int = 20
    settings_path: str = ".claude/settings.json"
    check_updates: bool = True
    update_url: str = DEFAULT_UPDATE_URL
    adjudicator_timeout: float = 30.0
    audit_timeout: float = 300.0
    reader_grace_seconds: float = 1.0
    stop_on_missing_signal: bool = False
    log_level: str = "WARNING"
    audit_mode: bool = False
    apply_grants: bool = False

    @classmethod
    def from_env(cls) -> AppConfig:
        file_config = _load_preferred_file_config()

        return cls(
            assistant_command=(
                os.getenv("AUTOLOOP_ASSISTANT_COMMAND")
                or _to_optional_string(file_config.get("assistant_command"))
                or "claude"
            ),
            log_dir=(
                os.getenv("AUTOLOOP_LOG_DIR")
                or _to_optional_string(file_config.get("log_dir"))
                or "build-logs"
            ),
            max_runs=_to_positive_int(
                os.getenv("AUTOLOOP_MAX_RUNS") or file_config.get("max_runs"),
                default=20,
            ),
            settings_path=(
                os.getenv("AUTOLOOP_SETTINGS_PATH")
                or _to_optional_string(file_config.get("settings_path"))
                or ".claude/settings.json"
            ),
            check_updates=_to_bool(
                os.getenv("AUTOLOOP_CHECK_UPDATES"),
                default=bool(file_config.get("check_updates", True)),
            ),
            update_url=(
                os.getenv("AUTOLOOP_UPDATE_URL")
                or _to_optional_string(file_config.get("update_url"))
                or DEFAULT_UPDATE_URL
            ),
            adjudicator_timeout=_to_positive_float(
                os.getenv("AUTOLOOP_ADJUDICATOR_TIMEOUT")
                or file_config.get("adjudicator_timeout"),
                default=30.0,
            ),
            audit_timeout=_to_positive_float(
                os.getenv("AUTOLOOP_AUDIT_TIMEOUT") or file_config.get("audit_timeout"),
                default=300.0,
            ),
            reader_grace_seconds=_to_positive_float(
                os.getenv("AUTOLOOP_READER_GRACE_SECONDS")
                or file_config.get("reader_grace_seconds"),
                default=1.0,
            ),
            stop_on_missing_signal=_to_bool(
                os.getenv("AUTOLOOP_STOP_ON_MISSING_SIGNAL"),
                default=bool(file_config.get("stop_on_missing_signal", False)),
            ),
            log_level=_to_log_level(
                os.getenv("AUTOLOOP_LOG_LEVEL") or file_config.get("log_level")
            ),
        )


def _to_optional_string(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _load_file_config(path_value: str) -> dict[str, object]:
    path = Path(path_value)
    if not path.exists() or not path.is_file():
        return {}
    try:
        with path.open("r", encoding="utf-8") as fh:
            parsed = json.load(fh)
    except (OSError, json.JSONDecodeError):
        return {}
    if isinstance(parsed, dict):
        return parsed
    return {}


def _load_preferred_file_config() -> dict[str, object]:
    explicit_path = os.getenv("AUTOLOOP_CONFIG_FILE")
    if explicit_path:
        return _load_file_config(explicit_path)

    shared_config = _load_file_config("autoloop.config.json")
    local_override = _load_file_config("autoloop.config.local.json")
    return _merge_dicts(shared_config, local_override)


def _merge_dicts(base: dict[str, object], override: dict[str, object]) -> dict[str, object]:
    merged: dict[str, object] = dict(base)
    for key, value in override.items():
        base_value = merged.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            merged[key] = _merge_dicts(base_value, value)
        else:
            merged[key] = value
    return merged


def _to_log_level(value: object) -> str:
    if isinstance(value, str) and value.strip().upper() in VALID_LOG_LEVELS:
        return value.strip().upper()
    return "WARNING"


def _to_positive_int(value: object, *, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value if value > 0 else default
    if isinstance(value, str):
        try:
            parsed = int(value.strip())
        except ValueError:
            return default
        return parsed if parsed > 0 else default
    return default


def _to_positive_float(value: object, *, default: float) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value) if value > 0 else default
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return default
        return parsed if parsed > 0 else default
    return default
