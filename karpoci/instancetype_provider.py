"""Discovery of compute shapes and their conversion into priced instance types."""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from typing import Callable, Iterable, MutableMapping, Optional, Protocol, Sequence

from cachetools import TTLCache

from karpoci import metrics
from karpoci.instance_types import (
    CAPACITY_TYPE_ON_DEMAND,
    InstanceType,
    Offering,
    new_instance_type,
)
from karpoci.models import KubeletConfiguration, Shape, WrapShape
from karpoci.pricing import PriceCatalog, PriceListSyncer, calculate

INSTANCE_TYPES_CACHE_KEY = "types"
DEFAULT_CACHE_TTL = 300.0
PAGE_SIZE = 50
MAX_FLEX_VNICS = 24
GIB = 1024 * 1024 * 1024

_INTEGER = re.compile(r"[+-]?[0-9]+")

UnavailableCheck = Callable[[str, str, str], bool]


class _ComputeClient(Protocol):
    def list_shapes(
        self, *, compartment_id: str, availability_domain: str, limit: int, page: str
    ) -> tuple[list[Shape], Optional[str]]:
        """Return one page of shapes and the token of the next page, if any."""


@dataclass
class ProviderOptions:
    """Settings that steer shape discovery and sizing."""

    compartment_id: str = ""
    available_domains: list[str] = field(default_factory=list)
    flex_cpu_mem_ratios: str = "2,4,8"
    flex_cpu_constrain_list: str = "1,2,4,8,16,32,48,64,96,128"
    vm_memory_overhead_percent: float = 0.075


def _atoi(text: str) -> Optional[int]:
    return int(text) if _INTEGER.fullmatch(text) else None


def _require(value, what: str, shape: Shape):
    if value is None:
        raise ValueError(f"shape {shape.shape} has no {what}")
    return value


def to_wrap_shapes(
    shapes: Iterable[Shape], availability_domain: str, options: ProviderOptions
) -> list[WrapShape]:
    """Size every shape: fixed shapes as they are, flexible ones in each allowed size."""
    wrapped: list[WrapShape] = []
    for shape in shapes:
        if _require(shape.is_flexible, "flexibility flag", shape):
            wrapped.extend(split_flex_cpu_mem(shape, availability_domain, options))
            continue
        wrapped.append(
            WrapShape(
                shape=shape,
                # a vCPU count is twice the OCPU count
                calc_cpu=int(_require(shape.ocpus, "OCPU count", shape)) * 2,
                cal_mem_in_gbs=int(_require(shape.memory_in_gbs, "memory size", shape)),
                available_domains=[availability_domain],
                cal_max_vnic=int(_require(shape.max_vnic_attachments, "VNIC limit", shape)),
            )
        )
    return wrapped


def split_flex_cpu_mem(
    shape: Shape, availability_domain: str, options: ProviderOptions
) -> list[WrapShape]:
    """Expand a flexible shape into one sized shape per OCPU count and memory ratio in bounds."""
    ratios = options.flex_cpu_mem_ratios.split(",")
    cpu_counts = options.flex_cpu_constrain_list.split(",")
    ocpu_options = _require(shape.ocpu_options, "OCPU options", shape)
    memory_options = _require(shape.memory_options, "memory options", shape)
    vnic_options = shape.max_vnic_attachment_options

    wrapped: list[WrapShape] = []
    for cpu_text in cpu_counts:
        for ratio_text in ratios:
            ratio = _atoi(ratio_text)
            if ratio is None:
                continue
            cpus = _atoi(cpu_text)
            if cpus is None:
                continue
            memory_in_gbs = cpus * 2 * ratio
            if cpus < int(_require(ocpu_options.min, "OCPU minimum", shape)) or memory_in_gbs < int(
                _require(memory_options.min_in_gbs, "memory minimum", shape)
            ):
                continue
            if cpus > int(_require(ocpu_options.max, "OCPU maximum", shape)) or memory_in_gbs > int(
                _require(memory_options.max_in_gbs, "memory maximum", shape)
            ):
                continue
            if vnic_options is not None and vnic_options.default_per_ocpu is not None:
                max_vnic = 2 if cpus == 1 else int(vnic_options.default_per_ocpu) * cpus
                max_vnic = min(MAX_FLEX_VNICS, max_vnic)
            else:
                max_vnic = int(_require(shape.max_vnic_attachments, "VNIC limit", shape))
            wrapped.append(
                WrapShape(
                    shape=shape,
                    calc_cpu=cpus * 2,
                    cal_mem_in_gbs=memory_in_gbs,
                    available_domains=[availability_domain],
                    cal_max_vnic=max_vnic,
                )
            )
    return wrapped


def _zone_of(availability_domain: str) -> str:
    parts = availability_domain.split(":")
    if len(parts) < 2:
        raise ValueError(f"availability domain {availability_domain!r} has no zone part")
    return parts[1]


class InstanceTypeProvider:
    """Lists the shapes of every availability domain and turns them into instance types."""

    def __init__(
        self,
        region: str,
        compute_client: _ComputeClient,
        options: ProviderOptions,
        is_unavailable: Optional[UnavailableCheck] = None,
        price_syncer: Optional[PriceListSyncer] = None,
        cache: Optional[MutableMapping[str, dict[str, WrapShape]]] = None,
    ) -> None:
        self.region = region
        self.options = options
        self._client = compute_client
        self._is_unavailable = is_unavailable or (lambda shape, zone, capacity: False)
        self._price_syncer = price_syncer
        self.cache = cache if cache is not None else TTLCache(maxsize=16, ttl=DEFAULT_CACHE_TTL)
        self._lock = threading.Lock()

    def list(
        self, kubelet: Optional[KubeletConfiguration], boot_volume_size_in_gbs: int
    ) -> list[InstanceType]:
        """Every known shape as an instance type with its offerings."""
        return [
            new_instance_type(
                wrapped,
                kubelet,
                boot_volume_size_in_gbs,
                self.region,
                wrapped.available_domains,
                self.create_offerings(wrapped, wrapped.available_domains),
                self.options.vm_memory_overhead_percent,
            )
            for wrapped in self.list_instance_types().values()
        ]

    def create_offerings(self, shape: WrapShape, zones: Iterable[str]) -> list[Offering]:
        """On-demand offerings of a shape in each zone, priced and checked for capacity."""
        catalog: Optional[PriceCatalog] = (
            self._price_syncer.price_catalog if self._price_syncer is not None else None
        )
        offerings: list[Offering] = []
        for zone in dict.fromkeys(zones):
            unavailable = self._is_unavailable(shape.name, zone, CAPACITY_TYPE_ON_DEMAND)
            price = float(calculate(shape, catalog))
            offerings.append(
                Offering(
                    zone=zone,
                    price=price,
                    available=not unavailable,
                    capacity_type=CAPACITY_TYPE_ON_DEMAND,
                )
            )
            metrics.INSTANCE_TYPE_OFFERING_AVAILABLE.set(
                {
                    metrics.INSTANCE_TYPE_LABEL: shape.name,
                    metrics.CAPACITY_TYPE_LABEL: CAPACITY_TYPE_ON_DEMAND,
                    metrics.ZONE_LABEL: zone,
                },
                0.0 if unavailable else 1.0,
            )
            metrics.INSTANCE_TYPE_OFFERING_PRICE_ESTIMATE.set(
                {
                    metrics.INSTANCE_TYPE_LABEL: (
                        f"{shape.name}_{shape.calc_cpu // 2}_{shape.cal_mem_in_gbs}"
                    ),
                    metrics.CAPACITY_TYPE_LABEL: CAPACITY_TYPE_ON_DEMAND,
                    metrics.ZONE_LABEL: zone,
                },
                price,
            )
        return offerings

    def _list_shapes(self, availability_domain: str) -> list[Shape]:
        shapes: list[Shape] = []
        page = ""
        while True:
            items, next_page = self._client.list_shapes(
                compartment_id=self.options.compartment_id,
                availability_domain=availability_domain,
                limit=PAGE_SIZE,
                page=page,
            )
            shapes.extend(items)
            if not next_page:
                return shapes
            page = next_page

    def list_instance_types(self) -> dict[str, WrapShape]:
        """Sized shapes keyed by name, vCPUs and memory, with the zones offering them."""
        with self._lock:
            cached = self.cache.get(INSTANCE_TYPES_CACHE_KEY)
            if cached is not None:
                return cached

            by_zone: dict[str, list[WrapShape]] = {}
            for availability_domain in self.options.available_domains:
                shapes = self._list_shapes(availability_domain)
                zone = _zone_of(availability_domain)
                by_zone.setdefault(zone, []).extend(to_wrap_shapes(shapes, zone, self.options))

            combined: dict[str, WrapShape] = {}
            for zone, shapes in by_zone.items():
                for shape in shapes:
                    metrics.INSTANCE_TYPE_VCPU.set(
                        {metrics.INSTANCE_TYPE_LABEL: shape.name}, float(shape.calc_cpu)
                    )
                    metrics.INSTANCE_TYPE_MEMORY.set(
                        {metrics.INSTANCE_TYPE_LABEL: shape.name},
                        float(shape.memory_in_gbs or 0) * GIB,
                    )
                    key = f"{shape.name}-{shape.calc_cpu}-{shape.cal_mem_in_gbs}"
                    existing = combined.get(key)
                    if existing is None:
                        combined[key] = shape
                    else:
                        existing.available_domains.append(zone)

            self.cache[INSTANCE_TYPES_CACHE_KEY] = combined
            return combined

    def flush(self) -> None:
        """Forget the cached shapes so the next listing asks the API again."""
        with self._lock:
            self.cache.clear()


__all__: Sequence[str] = (
    "ProviderOptions",
    "InstanceTypeProvider",
    "to_wrap_shapes",
    "split_flex_cpu_mem",
)