from __future__ import annotations

import random
from typing import List, Optional

from ml_server.config import Settings
from ml_server.executors.anomaly import AnomalyDetector, AnomalyParameters
from ml_server.executors.base import Executor, ExecutorParameters
from ml_server.executors.fusion import FusionParameters, SensorFusion
from ml_server.executors.objects import ObjectDetector, ObjectParameters
from ml_server.executors.trajectory import TrajectoryParameters, TrajectoryPredictor

__all__ = [
    "AnomalyDetector",
    "Executor",
    "ExecutorParameters",
    "ObjectDetector",
    "SensorFusion",
    "TrajectoryPredictor",
    "build_default_executors",
]


def build_default_executors(settings: Optional[Settings] = None) -> List[Executor]:
    """
    One executor per ModelKind, initialised from settings.

    With `random_seed` set, each executor gets its own seeded generator so runs
    are reproducible.
    """
    s = settings or Settings()

    def _rng(offset: int) -> Optional[random.Random]:
        if s.random_seed is None:
            return None
        return random.Random(s.random_seed + offset)

    return [
        TrajectoryPredictor(
            TrajectoryParameters(
                base_confidence=s.trajectory_base_confidence,
                confidence_jitter=s.trajectory_confidence_jitter,
                max_horizon=s.trajectory_max_horizon,
            ),
            rng=_rng(0),
        ),
        AnomalyDetector(
            AnomalyParameters(threshold=s.anomaly_threshold, score_jitter=s.anomaly_score_jitter),
            rng=_rng(1),
        ),
        ObjectDetector(ObjectParameters(min_confidence=s.object_min_confidence), rng=_rng(2)),
        SensorFusion(
            FusionParameters(
                active_confidence=s.fusion_active_confidence,
                confidence_jitter=s.fusion_confidence_jitter,
            ),
            rng=_rng(3),
        ),
    ]
