"""
Object detection executor (simulated).

No image payload is carried; the frame id and a complexity flag drive a
randomized set of labelled boxes from a fixed vocabulary.
"""

from __future__ import annotations

import time
from typing import List

from pydantic import BaseModel, Field

from ml_server.executors.base import Executor, ExecutorParameters
from ml_server.schemas import ModelKind

OBJECT_CLASSES = (
    "car",
    "truck",
    "pedestrian",
    "bicycle",
    "motorcycle",
    "bus",
    "traffic_light",
    "stop_sign",
)

# Inclusive object count ranges.
SIMPLE_SCENE_COUNT = (2, 7)
COMPLEX_SCENE_COUNT = (5, 14)


class BoundingBox(BaseModel):
    x: float
    y: float
    width: float
    height: float


class DetectedObject(BaseModel):
    id: str
    class_name: str
    confidence: float
    bounding_box: BoundingBox


class ObjectDetectionInput(BaseModel):
    frame_id: str
    timestamp: int = 0
    simulate_complex: bool = False


class ObjectDetectionOutput(BaseModel):
    frame_id: str
    objects: List[DetectedObject]
    processing_time_ms: float


class ObjectParameters(ExecutorParameters):
    min_confidence: float = Field(default=0.7, ge=0.0, le=1.0)


class ObjectDetector(Executor[ObjectDetectionInput, ObjectDetectionOutput, ObjectParameters]):
    kind = ModelKind.OBJECT_DETECTION
    input_model = ObjectDetectionInput
    output_model = ObjectDetectionOutput
    parameters_model = ObjectParameters

    def compute(self, data: ObjectDetectionInput) -> ObjectDetectionOutput:
        start = time.perf_counter()
        rng = self._rng
        floor = self._params.min_confidence

        lo, hi = COMPLEX_SCENE_COUNT if data.simulate_complex else SIMPLE_SCENE_COUNT
        objects = [
            DetectedObject(
                id=f"obj_{i}",
                class_name=rng.choice(OBJECT_CLASSES),
                confidence=floor + rng.random() * (1.0 - floor),
                bounding_box=BoundingBox(
                    x=rng.uniform(-50.0, 50.0),
                    y=rng.uniform(-50.0, 50.0),
                    width=rng.uniform(5.0, 20.0),
                    height=rng.uniform(5.0, 20.0),
                ),
            )
            for i in range(rng.randint(lo, hi))
        ]

        return ObjectDetectionOutput(
            frame_id=data.frame_id,
            objects=objects,
            processing_time_ms=(time.perf_counter() - start) * 1000.0,
        )
