"""
Configuration for the ML inference server.

All settings are loaded from environment variables at call time so tests and
process bootstrap can shape them before the app is built.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Optional

from ml_server import __version__

APP_NAME = "ML Inference Server"
APP_VERSION = __version__

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080
DEFAULT_STREAM_MAX_IN_FLIGHT = 32


def _parse_bool_env(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if raw in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if raw in {"0", "false", "f", "no", "n", "off"}:
        return False
    return default


def _parse_float_env(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return float(default)
    try:
        return float(raw)
    except Exception:
        return float(default)


def _parse_int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return int(default)
    try:
        return int(raw)
    except Exception:
        return int(default)


def _parse_optional_int_env(name: str) -> Optional[int]:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except Exception:
        return None


@dataclass(frozen=True)
class Settings:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_level: str = "INFO"
    service_name: str = "ml-server"
    cors_origins: tuple = ("*",)

    admin_updates_enabled: bool = True
    stream_max_in_flight: int = DEFAULT_STREAM_MAX_IN_FLIGHT
    random_seed: Optional[int] = None

    # Executor tunables (initial values; admin updates change them at runtime).
    anomaly_threshold: float = 0.85
    anomaly_score_jitter: float = 0.1
    trajectory_base_confidence: float = 0.85
    trajectory_confidence_jitter: float = 0.1
    trajectory_max_horizon: int = 1000
    object_min_confidence: float = 0.7
    fusion_active_confidence: float = 0.9
    fusion_confidence_jitter: float = 0.1


def load_settings() -> Settings:
    """Build `Settings` from the current environment."""
    origins = tuple(
        o.strip() for o in (os.getenv("CORS_ORIGINS") or "*").split(",") if o.strip()
    ) or ("*",)
    return Settings(
        host=(os.getenv("HOST") or DEFAULT_HOST).strip(),
        port=_parse_int_env("PORT", DEFAULT_PORT),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").strip().upper(),
        service_name=(os.getenv("SERVICE_NAME") or "ml-server").strip(),
        cors_origins=origins,
        admin_updates_enabled=_parse_bool_env("ADMIN_UPDATES_ENABLED", default=True),
        stream_max_in_flight=_parse_int_env("STREAM_MAX_IN_FLIGHT", DEFAULT_STREAM_MAX_IN_FLIGHT),
        random_seed=_parse_optional_int_env("ML_RANDOM_SEED"),
        anomaly_threshold=_parse_float_env("ANOMALY_THRESHOLD", 0.85),
        anomaly_score_jitter=_parse_float_env("ANOMALY_SCORE_JITTER", 0.1),
        trajectory_base_confidence=_parse_float_env("TRAJECTORY_BASE_CONFIDENCE", 0.85),
        trajectory_confidence_jitter=_parse_float_env("TRAJECTORY_CONFIDENCE_JITTER", 0.1),
        trajectory_max_horizon=_parse_int_env("TRAJECTORY_MAX_HORIZON", 1000),
        object_min_confidence=_parse_float_env("OBJECT_MIN_CONFIDENCE", 0.7),
        fusion_active_confidence=_parse_float_env("FUSION_ACTIVE_CONFIDENCE", 0.9),
        fusion_confidence_jitter=_parse_float_env("FUSION_CONFIDENCE_JITTER", 0.1),
    )


def validate_config(settings: Settings) -> List[str]:
    """
    Validate settings.
    Returns list of error messages (empty if valid).
    """
    errors = []

    if not (0 < settings.port < 65536):
        errors.append(f"PORT out of range: {settings.port}")

    if settings.stream_max_in_flight < 1:
        errors.append("STREAM_MAX_IN_FLIGHT must be >= 1")

    if settings.anomaly_threshold < 0:
        errors.append("ANOMALY_THRESHOLD must be >= 0")

    for name, value in (
        ("TRAJECTORY_BASE_CONFIDENCE", settings.trajectory_base_confidence),
        ("OBJECT_MIN_CONFIDENCE", settings.object_min_confidence),
        ("FUSION_ACTIVE_CONFIDENCE", settings.fusion_active_confidence),
    ):
        if not (0.0 <= value <= 1.0):
            errors.append(f"{name} must be within [0, 1], got {value}")

    for name, value in (
        ("ANOMALY_SCORE_JITTER", settings.anomaly_score_jitter),
        ("TRAJECTORY_CONFIDENCE_JITTER", settings.trajectory_confidence_jitter),
        ("FUSION_CONFIDENCE_JITTER", settings.fusion_confidence_jitter),
    ):
        if value < 0:
            errors.append(f"{name} must be >= 0")

    if settings.trajectory_max_horizon < 0:
        errors.append("TRAJECTORY_MAX_HORIZON must be >= 0")

    return errors
