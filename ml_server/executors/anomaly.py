"""
Anomaly detection executor.

Scores each sensor series by its coefficient of variation and flags the frame
when the mean score crosses a tunable threshold.
"""

from __future__ import annotations

from typing import List, Tuple

import numpy as np
from pydantic import BaseModel, Field, FiniteFloat

from ml_server.executors.base import Executor, ExecutorParameters
from ml_server.schemas import ModelKind

# Keeps the ratio finite for zero-mean series.
MEAN_EPSILON = 0.001


class SensorData(BaseModel):
    sensor_type: str
    values: List[FiniteFloat] = Field(min_length=1)
    timestamp: int = 0


class AnomalyDetectionInput(BaseModel):
    sensor_readings: List[SensorData]


class AnomalyDetectionOutput(BaseModel):
    anomaly_score: float
    is_anomaly: bool
    threshold: float
    sensor_scores: List[Tuple[str, float]]


class AnomalyParameters(ExecutorParameters):
    threshold: float = Field(default=0.85, ge=0.0)
    score_jitter: float = Field(default=0.1, ge=0.0)


def series_score(values: List[float]) -> float:
    """
    Population std over `mean + MEAN_EPSILON`.

    A denominator that cancels to zero falls back to MEAN_EPSILON, and overflow
    is clamped to the largest finite float, so the score is always finite.
    """
    arr = np.asarray(values, dtype=float)
    with np.errstate(over="ignore", invalid="ignore"):
        denom = arr.mean() + MEAN_EPSILON
        if denom == 0.0:
            denom = MEAN_EPSILON
        score = arr.std() / denom
    return float(np.nan_to_num(score))


class AnomalyDetector(Executor[AnomalyDetectionInput, AnomalyDetectionOutput, AnomalyParameters]):
    kind = ModelKind.ANOMALY_DETECTION
    input_model = AnomalyDetectionInput
    output_model = AnomalyDetectionOutput
    parameters_model = AnomalyParameters

    def compute(self, data: AnomalyDetectionInput) -> AnomalyDetectionOutput:
        params = self._params
        sensor_scores = [(s.sensor_type, series_score(s.values)) for s in data.sensor_readings]

        if sensor_scores:
            with np.errstate(over="ignore"):
                anomaly_score = float(np.nan_to_num(np.mean([score for _, score in sensor_scores])))
            if params.score_jitter:
                anomaly_score += self._rng.uniform(-params.score_jitter, params.score_jitter)
        else:
            anomaly_score = 0.0

        return AnomalyDetectionOutput(
            anomaly_score=anomaly_score,
            is_anomaly=anomaly_score > params.threshold,
            threshold=params.threshold,
            sensor_scores=sensor_scores,
        )
