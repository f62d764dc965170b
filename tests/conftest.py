from __future__ import annotations

from typing import Any, Callable

import pytest
from fastapi.testclient import TestClient

from ml_server.app import create_app
from ml_server.config import Settings
from ml_server.executors import build_default_executors
from ml_server.registry import ExecutorRegistry


def _deterministic_settings(**overrides: Any) -> Settings:
    """
    Settings with every randomized term zeroed and a fixed seed, so numeric
    assertions are exact.
    """
    base: dict[str, Any] = {
        "random_seed": 7,
        "anomaly_score_jitter": 0.0,
        "trajectory_confidence_jitter": 0.0,
        "fusion_confidence_jitter": 0.0,
    }
    base.update(overrides)
    return Settings(**base)


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    return _deterministic_settings


@pytest.fixture
def settings() -> Settings:
    return _deterministic_settings()


@pytest.fixture
def registry(settings: Settings) -> ExecutorRegistry:
    return ExecutorRegistry(build_default_executors(settings))


@pytest.fixture
def client(settings: Settings, registry: ExecutorRegistry):
    with TestClient(create_app(settings, registry)) as c:
        yield c


@pytest.fixture
def trajectory_example() -> dict[str, Any]:
    return {
        "history": [{"x": 0, "y": 0, "t": 0}, {"x": 1, "y": 2, "t": 1}],
        "prediction_horizon": 2,
    }
