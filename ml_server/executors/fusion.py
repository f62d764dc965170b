"""
Sensor fusion executor.

Weighted confidence over the active sensors, classified into a quality tier.
"""

from __future__ import annotations

from typing import Dict, List, Literal

from pydantic import BaseModel, Field

from ml_server.executors.base import Executor, ExecutorParameters
from ml_server.schemas import ModelKind

FusionQuality = Literal["poor", "fair", "good", "excellent"]

DEFAULT_SENSOR_WEIGHTS: Dict[str, float] = {
    "lidar": 0.4,
    "camera": 0.35,
    "radar": 0.25,
}

# Lower bounds, highest first.
QUALITY_TIERS = (
    (0.8, "excellent"),
    (0.6, "good"),
    (0.4, "fair"),
)


def classify_quality(confidence: float) -> FusionQuality:
    for bound, tier in QUALITY_TIERS:
        if confidence >= bound:
            return tier  # type: ignore[return-value]
    return "poor"


class SensorStatus(BaseModel):
    sensor_type: str
    is_active: bool
    confidence: float
    last_update: int


class FusionInput(BaseModel):
    sensor_data: Dict[str, bool]
    timestamp: int = 0


class FusionOutput(BaseModel):
    overall_confidence: float
    sensor_statuses: List[SensorStatus]
    fusion_quality: FusionQuality


class FusionParameters(ExecutorParameters):
    sensor_weights: Dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_SENSOR_WEIGHTS))
    default_weight: float = Field(default=0.2, gt=0.0)
    active_confidence: float = Field(default=0.9, ge=0.0, le=1.0)
    confidence_jitter: float = Field(default=0.1, ge=0.0)


class SensorFusion(Executor[FusionInput, FusionOutput, FusionParameters]):
    kind = ModelKind.SENSOR_FUSION
    input_model = FusionInput
    output_model = FusionOutput
    parameters_model = FusionParameters

    def weight_for(self, sensor_type: str) -> float:
        return self._params.sensor_weights.get(sensor_type, self._params.default_weight)

    def compute(self, data: FusionInput) -> FusionOutput:
        params = self._params
        statuses: List[SensorStatus] = []
        total_weight = 0.0
        weighted_confidence = 0.0

        for sensor_type, is_active in data.sensor_data.items():
            confidence = 0.0
            if is_active:
                confidence = min(1.0, params.active_confidence + self._rng.random() * params.confidence_jitter)
                weight = self.weight_for(sensor_type)
                total_weight += weight
                weighted_confidence += weight * confidence
            statuses.append(
                SensorStatus(
                    sensor_type=sensor_type,
                    is_active=is_active,
                    confidence=confidence,
                    last_update=data.timestamp,
                )
            )

        overall = weighted_confidence / total_weight if total_weight > 0 else 0.0
        return FusionOutput(
            overall_confidence=overall,
            sensor_statuses=statuses,
            fusion_quality=classify_quality(overall),
        )
