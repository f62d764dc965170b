"""
In-process metrics for the inference server, exposed as Prometheus text.

Dispatch runs in the threadpool while stream sessions run on the event loop,
so every series is guarded by the registry lock.
"""

from __future__ import annotations

import threading
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

LabelKey = Tuple[Tuple[str, str], ...]


def _escape(value: Any) -> str:
    text = str(value)
    for raw, escaped in (("\\", "\\\\"), ("\n", "\\n"), ('"', '\\"')):
        text = text.replace(raw, escaped)
    return text


def _render_labels(key: LabelKey) -> str:
    if not key:
        return ""
    return "{" + ",".join(f'{name}="{_escape(value)}"' for name, value in key) + "}"


class _Metric:
    mtype = ""

    def __init__(self, registry: "MetricRegistry", name: str, help: str, label_names: Tuple[str, ...]) -> None:
        self._registry = registry
        self.name = name
        self.help = help
        self.label_names = label_names
        self._samples: Dict[LabelKey, float] = {}

    def _key(self, labels: Optional[Mapping[str, Any]]) -> LabelKey:
        if not self.label_names:
            return ()
        if not labels:
            raise ValueError(f"{self.name}: labels required ({', '.join(self.label_names)})")
        missing = [n for n in self.label_names if n not in labels]
        if missing:
            raise ValueError(f"{self.name}: missing label: {missing[0]}")
        return tuple((n, str(labels[n])) for n in self.label_names)

    def value(self, *, labels: Optional[Mapping[str, Any]] = None) -> float:
        key = self._key(labels)
        with self._registry._lock:
            return self._samples.get(key, 0.0)

    def _lines(self) -> List[str]:
        lines = [f"# HELP {self.name} {self.help}"] if self.help else []
        lines.append(f"# TYPE {self.name} {self.mtype}")
        for key in sorted(self._samples):
            lines.append(f"{self.name}{_render_labels(key)} {self._samples[key]}")
        return lines


class Counter(_Metric):
    mtype = "counter"

    def inc(self, by: float = 1.0, *, labels: Optional[Mapping[str, Any]] = None) -> None:
        if by < 0:
            raise ValueError("counters can only increase")
        key = self._key(labels)
        with self._registry._lock:
            self._samples[key] = self._samples.get(key, 0.0) + float(by)


class Gauge(_Metric):
    mtype = "gauge"

    def set(self, value: float, *, labels: Optional[Mapping[str, Any]] = None) -> None:
        key = self._key(labels)
        with self._registry._lock:
            self._samples[key] = float(value)


class MetricRegistry:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._metrics: Dict[str, _Metric] = {}

    def _register(self, cls: type, name: str, help: str, label_names: Iterable[str]) -> Any:
        names = tuple(label_names)
        with self._lock:
            existing = self._metrics.get(name)
            if existing is None:
                metric = cls(self, name, help, names)
                self._metrics[name] = metric
                return metric
            if type(existing) is not cls or existing.label_names != names:
                raise ValueError(
                    f"Metric redefined: {name} was {existing.mtype}{existing.label_names}, "
                    f"now {cls.mtype}{names}"
                )
            return existing

    def counter(self, name: str, *, help: str = "", label_names: Iterable[str] = ()) -> Counter:
        return self._register(Counter, name, help, label_names)

    def gauge(self, name: str, *, help: str = "", label_names: Iterable[str] = ()) -> Gauge:
        return self._register(Gauge, name, help, label_names)

    def render_prometheus_text(self) -> str:
        """Prometheus exposition format v0.0.4, metrics sorted by name."""
        with self._lock:
            lines: List[str] = []
            for name in sorted(self._metrics):
                lines.extend(self._metrics[name]._lines())
        return "\n".join(lines) + "\n"


REGISTRY = MetricRegistry()

inference_requests_total = REGISTRY.counter(
    "inference_requests_total",
    help="Inference dispatches, labeled by model type, transport and outcome.",
    label_names=("model_type", "transport", "outcome"),
)
inference_latency_ms_sum = REGISTRY.counter(
    "inference_latency_ms_sum",
    help="Sum of executor compute latency in milliseconds, labeled by model type.",
    label_names=("model_type",),
)
model_updates_total = REGISTRY.counter(
    "model_updates_total",
    help="Applied executor reconfigurations, labeled by model type.",
    label_names=("model_type",),
)
stream_messages_received_total = REGISTRY.counter(
    "stream_messages_received_total",
    help="Messages read from streaming connections, labeled by message type.",
    label_names=("message_type",),
)
stream_connections_active = REGISTRY.gauge(
    "stream_connections_active",
    help="Currently open streaming connections.",
)

stream_connections_active.set(0.0)
