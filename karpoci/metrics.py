"""Labelled gauges describing instance types, and a registry to look them up."""

from __future__ import annotations

import threading
from typing import Mapping, Optional, Sequence

NAMESPACE = "karpenter"
CLOUD_PROVIDER_SUBSYSTEM = "cloudprovider"
INSTANCE_TYPE_LABEL = "instance_type"
CAPACITY_TYPE_LABEL = "capacity_type"
ZONE_LABEL = "zone"


class Gauge:
    """A gauge holding one value per combination of label values."""

    def __init__(self, name: str, help: str, label_names: Sequence[str]) -> None:
        self.name = name
        self.help = help
        self.label_names = tuple(label_names)
        self._values: dict[tuple[str, ...], float] = {}
        self._lock = threading.Lock()

    def _key(self, labels: Mapping[str, str]) -> tuple[str, ...]:
        if set(labels) != set(self.label_names):
            raise ValueError(
                f"{self.name}: expected labels {sorted(self.label_names)}, got {sorted(labels)}"
            )
        return tuple(labels[name] for name in self.label_names)

    def set(self, labels: Mapping[str, str], value: float) -> None:
        """Set the value of the series with these labels."""
        key = self._key(labels)
        with self._lock:
            self._values[key] = float(value)

    def get(self, labels: Mapping[str, str]) -> Optional[float]:
        """The value of the series with these labels, or None if never set."""
        key = self._key(labels)
        with self._lock:
            return self._values.get(key)

    def clear(self) -> None:
        """Drop every series."""
        with self._lock:
            self._values.clear()

    def _find(self, labels: Mapping[str, str]) -> Optional[float]:
        with self._lock:
            for key, value in self._values.items():
                series = dict(zip(self.label_names, key))
                if all(series.get(name) == wanted for name, wanted in labels.items()):
                    return value
        return None


def _full_name(name: str) -> str:
    return f"{NAMESPACE}_{CLOUD_PROVIDER_SUBSYSTEM}_{name}"


INSTANCE_TYPE_VCPU = Gauge(
    _full_name("instance_type_cpu_cores"),
    "VCPUs cores for a given instance type.",
    [INSTANCE_TYPE_LABEL],
)
INSTANCE_TYPE_MEMORY = Gauge(
    _full_name("instance_type_memory_bytes"),
    "Memory, in bytes, for a given instance type.",
    [INSTANCE_TYPE_LABEL],
)
INSTANCE_TYPE_OFFERING_AVAILABLE = Gauge(
    _full_name("instance_type_offering_available"),
    "Instance type offering availability, based on instance type, capacity type, and zone",
    [INSTANCE_TYPE_LABEL, CAPACITY_TYPE_LABEL, ZONE_LABEL],
)
INSTANCE_TYPE_OFFERING_PRICE_ESTIMATE = Gauge(
    _full_name("instance_type_offering_price_estimate"),
    "Instance type offering estimated hourly price used when making informed decisions "
    "on node cost calculation, based on instance type, capacity type, and zone.",
    [INSTANCE_TYPE_LABEL, CAPACITY_TYPE_LABEL, ZONE_LABEL],
)

_REGISTRY: dict[str, Gauge] = {}


def _register(*gauges: Gauge) -> None:
    for gauge in gauges:
        if gauge.name in _REGISTRY:
            raise ValueError(f"duplicate metrics collector registration attempted: {gauge.name}")
        _REGISTRY[gauge.name] = gauge


_register(
    INSTANCE_TYPE_VCPU,
    INSTANCE_TYPE_MEMORY,
    INSTANCE_TYPE_OFFERING_AVAILABLE,
    INSTANCE_TYPE_OFFERING_PRICE_ESTIMATE,
)


def find_metric(name: str, labels: Mapping[str, str]) -> Optional[float]:
    """Value of the first series of a registered gauge whose labels include these."""
    gauge = _REGISTRY.get(name)
    if gauge is None:
        return None
    return gauge._find(labels)