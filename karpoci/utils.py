"""Helpers for launch options, labels, environment settings and kubelet configuration."""

from __future__ import annotations

import hashlib
import json
import math
import os
import re
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Sequence, TypeVar

from karpoci.models import KubeletConfiguration

K = TypeVar("K")
V = TypeVar("V")

KUBELET_COMPATIBILITY_ANNOTATION_KEY = "compatibility.karpenter.sh/v1beta1-kubelet-conversion"

_UNQUALIFIED = re.compile(r"[^a-zA-Z0-9\-_.]")
_STARTS_QUALIFIED = re.compile(r"^[a-zA-Z0-9]")
_ENDS_QUALIFIED = re.compile(r"[a-zA-Z0-9]$")
_DURATION = re.compile(
    r"[-+]?(?:0|(?:(?:\d+\.?\d*|\.\d+)(?:ns|us|µs|μs|ms|s|m|h))+)"
)
_INT32_MIN, _INT32_MAX = -(2**31), 2**31 - 1


class BootVolumeType(str, Enum):
    ISCSI = "ISCSI"
    SCSI = "SCSI"
    IDE = "IDE"
    VFIO = "VFIO"
    PARAVIRTUALIZED = "PARAVIRTUALIZED"


class Firmware(str, Enum):
    BIOS = "BIOS"
    UEFI_64 = "UEFI_64"


class NetworkType(str, Enum):
    E1000 = "E1000"
    VFIO = "VFIO"
    PARAVIRTUALIZED = "PARAVIRTUALIZED"


class RemoteDataVolumeType(str, Enum):
    ISCSI = "ISCSI"
    SCSI = "SCSI"
    IDE = "IDE"
    VFIO = "VFIO"
    PARAVIRTUALIZED = "PARAVIRTUALIZED"


@dataclass
class LaunchOptions:
    """Launch options as written in a node class."""

    boot_volume_type: str = ""
    firmware: str = ""
    network_type: str = ""
    remote_data_volume_type: str = ""
    is_consistent_volume_naming_enabled: bool = False


@dataclass
class OciLaunchOptions:
    """Launch options resolved to the values the compute API accepts."""

    boot_volume_type: Optional[BootVolumeType] = None
    firmware: Optional[Firmware] = None
    network_type: Optional[NetworkType] = None
    remote_data_volume_type: Optional[RemoteDataVolumeType] = None
    is_consistent_volume_naming_enabled: bool = False


class LaunchOptionsError(ValueError):
    """Raised when launch options hold unsupported values; carries the partial result."""

    def __init__(self, message: str, options: OciLaunchOptions) -> None:
        super().__init__(message)
        self.options = options


_LAUNCH_OPTION_FIELDS = (
    ("boot_volume_type", "BootVolumeType", BootVolumeType),
    ("firmware", "Firmware", Firmware),
    ("network_type", "NetworkType", NetworkType),
    ("remote_data_volume_type", "RemoteDataVolumeType", RemoteDataVolumeType),
)


def _lookup(enum_cls: type[Enum], raw: str) -> Optional[Enum]:
    wanted = raw.lower()
    return next((member for member in enum_cls if member.value.lower() == wanted), None)


def convert_launch_options(options: LaunchOptions) -> OciLaunchOptions:
    """Resolve launch options case-insensitively; empty values stay unset."""
    problems: list[str] = []
    resolved: dict[str, Any] = {}
    for attr, label, enum_cls in _LAUNCH_OPTION_FIELDS:
        raw = getattr(options, attr)
        member = _lookup(enum_cls, raw)
        if member is None and raw:
            supported = ",".join(m.value for m in enum_cls)
            problems.append(
                f"unsupported enum value for {label}: {raw}. Supported values are: {supported}."
            )
        resolved[attr] = member
    result = OciLaunchOptions(
        **resolved,
        is_consistent_volume_naming_enabled=options.is_consistent_volume_naming_enabled,
    )
    if problems:
        raise LaunchOptionsError("\n".join(problems), result)
    return result


def safe_tag_key(origin: str) -> str:
    """Replace dots and spaces, which tag keys may not hold, with underscores."""
    return origin.replace(".", "_").replace(" ", "_")


def pretty_slice(items: Sequence[Any], max_items: int) -> str:
    """Join items with commas, summarising those beyond max_items."""
    items = list(items)
    parts: list[str] = []
    for index, item in enumerate(items):
        if index > max_items - 1:
            parts.append(f" and {len(items) - index} other(s)")
            break
        if index > 0:
            parts.append(", ")
        parts.append(str(item))
    return "".join(parts)


def sanitize_label_value(value: str) -> str:
    """Turn any string into a valid Kubernetes label value."""
    value = value.encode("utf-8")[:63].decode("utf-8", "surrogateescape")
    value = _UNQUALIFIED.sub("_", value)
    if not value:
        return value
    if not _STARTS_QUALIFIED.search(value):
        value = "a_" + value
    if not _ENDS_QUALIFIED.search(value):
        value = value + "_z"
    return value


def filter_map(mapping: Mapping[K, V], predicate: Callable[[K, V], bool]) -> dict[K, V]:
    """Keep the entries for which predicate(key, value) holds."""
    return {key: value for key, value in mapping.items() if predicate(key, value)}


def with_default_float(key: str, default: float) -> float:
    """Read a float from the environment, falling back to default if absent or invalid."""
    raw = os.environ.get(key)
    if raw is None:
        return default
    if "_" in raw or raw != raw.strip():
        return default
    try:
        parsed = float(raw)
    except ValueError:
        return default
    if math.isinf(parsed) and "inf" not in raw.lower():
        return default
    return parsed


def _as_int32(name: str, raw: Any) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ValueError(f"field {name} must be an integer, got {raw!r}")
    if not _INT32_MIN <= raw <= _INT32_MAX:
        raise ValueError(f"field {name} is out of range: {raw}")
    return raw


def _as_bool(name: str, raw: Any) -> bool:
    if not isinstance(raw, bool):
        raise ValueError(f"field {name} must be a boolean, got {raw!r}")
    return raw


def _as_strings(name: str, raw: Any) -> list[str]:
    if not isinstance(raw, list):
        raise ValueError(f"field {name} must be a list of strings, got {raw!r}")
    result = []
    for element in raw:
        if element is None:
            element = ""
        if not isinstance(element, str):
            raise ValueError(f"field {name} must hold strings, got {element!r}")
        result.append(element)
    return result


def _as_string_map(name: str, raw: Any) -> dict[str, str]:
    if not isinstance(raw, dict):
        raise ValueError(f"field {name} must be an object, got {raw!r}")
    result = {}
    for key, value in raw.items():
        if value is None:
            value = ""
        if not isinstance(value, str):
            raise ValueError(f"field {name} must map to strings, got {value!r}")
        result[key] = value
    return result


def _as_duration_map(name: str, raw: Any) -> dict[str, str]:
    if not isinstance(raw, dict):
        raise ValueError(f"field {name} must be an object, got {raw!r}")
    result = {}
    for key, value in raw.items():
        if not isinstance(value, str) or not _DURATION.fullmatch(value):
            raise ValueError(f"field {name} holds an invalid duration {value!r}")
        result[key] = value
    return result


_KUBELET_FIELDS: dict[str, tuple[str, Callable[[str, Any], Any]]] = {
    "clusterdns": ("cluster_dns", _as_strings),
    "maxpods": ("max_pods", _as_int32),
    "podspercore": ("pods_per_core", _as_int32),
    "systemreserved": ("system_reserved", _as_string_map),
    "kubereserved": ("kube_reserved", _as_string_map),
    "evictionhard": ("eviction_hard", _as_string_map),
    "evictionsoft": ("eviction_soft", _as_string_map),
    "evictionsoftgraceperiod": ("eviction_soft_grace_period", _as_duration_map),
    "evictionmaxpodgraceperiod": ("eviction_max_pod_grace_period", _as_int32),
    "imagegchighthresholdpercent": ("image_gc_high_threshold_percent", _as_int32),
    "imagegclowthresholdpercent": ("image_gc_low_threshold_percent", _as_int32),
    "cpucfsquota": ("cpu_cfs_quota", _as_bool),
}


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON constant {name}")


def parse_kubelet_configuration(annotation: str) -> KubeletConfiguration:
    """Parse the kubelet compatibility annotation; raise ValueError if it is invalid."""
    try:
        document = json.loads(annotation, parse_constant=_reject_constant)
        values: dict[str, Any] = {}
        if document is not None:
            if not isinstance(document, dict):
                raise ValueError("kubelet configuration must be a JSON object")
            for key, raw in document.items():
                spec = _KUBELET_FIELDS.get(key.lower())
                if spec is None:
                    continue
                attr, convert = spec
                values[attr] = None if raw is None else convert(key, raw)
    except ValueError as err:
        raise ValueError(
            f"parsing kubelet config from {KUBELET_COMPATIBILITY_ANNOTATION_KEY} annotation, {err}"
        ) from err
    return KubeletConfiguration(**values)


def kubelet_configuration_with_node_pool(
    annotations: Optional[Mapping[str, str]],
    kubelet: Optional[KubeletConfiguration],
) -> Optional[KubeletConfiguration]:
    """Prefer the node pool's compatibility annotation, else a copy of the node class kubelet."""
    if annotations is not None:
        annotation = annotations.get(KUBELET_COMPATIBILITY_ANNOTATION_KEY)
        if annotation is not None:
            return parse_kubelet_configuration(annotation)
    return kubelet.copy() if kubelet is not None else None


def kubelet_configuration_with_node_claim(
    annotations: Mapping[str, str],
    kubelet: Optional[KubeletConfiguration],
) -> Optional[KubeletConfiguration]:
    """Prefer the node claim's compatibility annotation, else a copy of the node class kubelet."""
    annotation = annotations.get(KUBELET_COMPATIBILITY_ANNOTATION_KEY)
    if annotation is not None:
        return parse_kubelet_configuration(annotation)
    return kubelet.copy() if kubelet is not None else None


def hash_kubelet(kubelet: Optional[KubeletConfiguration]) -> str:
    """Hash a kubelet configuration; unset fields are ignored and lists are order-free."""
    canonical: dict[str, Any] = {}
    if kubelet is not None:
        for spec in fields(kubelet):
            value = getattr(kubelet, spec.name)
            if value is None:
                continue
            if isinstance(value, list):
                value = sorted(value)
            canonical[spec.name] = value
    payload = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
    digest = hashlib.sha256(payload.encode("utf-8")).digest()
    return str(int.from_bytes(digest[:8], "big"))