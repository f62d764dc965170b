"""
Trajectory prediction executor.

Linear extrapolation of the last observed displacement. A learned sequence
model can replace `compute` without changing the wire contract.
"""

from __future__ import annotations

from typing import List

from pydantic import AliasChoices, BaseModel, Field, model_validator

from ml_server.errors import InvalidInputError
from ml_server.executors.base import Executor, ExecutorParameters
from ml_server.schemas import ModelKind


class TrajectoryPoint(BaseModel):
    x: float
    y: float
    timestamp: int = Field(validation_alias=AliasChoices("timestamp", "t"))


class TrajectoryPredictionInput(BaseModel):
    history: List[TrajectoryPoint]
    prediction_horizon: int = Field(ge=0)

    @model_validator(mode="after")
    def _last_step_moves_forward(self) -> "TrajectoryPredictionInput":
        # Only the last two points drive the extrapolation.
        if len(self.history) >= 2 and self.history[-1].timestamp <= self.history[-2].timestamp:
            raise ValueError("the last history timestamp must be after the one before it")
        return self


class TrajectoryPredictionOutput(BaseModel):
    predictions: List[TrajectoryPoint]
    confidence: float


class TrajectoryParameters(ExecutorParameters):
    base_confidence: float = Field(default=0.85, ge=0.0, le=1.0)
    confidence_jitter: float = Field(default=0.1, ge=0.0)
    max_horizon: int = Field(default=1000, ge=0)


class TrajectoryPredictor(Executor[TrajectoryPredictionInput, TrajectoryPredictionOutput, TrajectoryParameters]):
    kind = ModelKind.TRAJECTORY_PREDICTION
    input_model = TrajectoryPredictionInput
    output_model = TrajectoryPredictionOutput
    parameters_model = TrajectoryParameters

    def compute(self, data: TrajectoryPredictionInput) -> TrajectoryPredictionOutput:
        params = self._params
        if data.prediction_horizon > params.max_horizon:
            raise InvalidInputError(
                f"prediction_horizon {data.prediction_horizon} exceeds max_horizon {params.max_horizon}",
                model_type=self.kind.value,
            )

        if len(data.history) < 2:
            return TrajectoryPredictionOutput(predictions=[], confidence=0.0)

        prev, last = data.history[-2], data.history[-1]
        dx = last.x - prev.x
        dy = last.y - prev.y
        dt = last.timestamp - prev.timestamp

        predictions = [
            TrajectoryPoint(x=last.x + dx * i, y=last.y + dy * i, timestamp=last.timestamp + dt * i)
            for i in range(1, data.prediction_horizon + 1)
        ]
        confidence = min(1.0, params.base_confidence + self._rng.random() * params.confidence_jitter)
        return TrajectoryPredictionOutput(predictions=predictions, confidence=confidence)
