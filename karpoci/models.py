"""Compute shape descriptions and kubelet settings shared by the providers."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class ShapeOcpuOptions:
    """OCPU bounds of a flexible shape."""

    min: Optional[float] = None
    max: Optional[float] = None


@dataclass
class ShapeMemoryOptions:
    """Memory bounds, in GB, of a flexible shape."""

    min_in_gbs: Optional[float] = None
    max_in_gbs: Optional[float] = None


@dataclass
class ShapeMaxVnicAttachmentOptions:
    """VNIC attachment limits of a flexible shape."""

    min: Optional[int] = None
    max: Optional[float] = None
    default_per_ocpu: Optional[float] = None


@dataclass
class Shape:
    """A compute shape as reported by the cloud API."""

    shape: str
    is_flexible: Optional[bool] = None
    ocpus: Optional[float] = None
    memory_in_gbs: Optional[float] = None
    gpus: Optional[int] = None
    gpu_description: Optional[str] = None
    networking_bandwidth_in_gbps: Optional[float] = None
    max_vnic_attachments: Optional[int] = None
    local_disks_total_size_in_gbs: Optional[float] = None
    ocpu_options: Optional[ShapeOcpuOptions] = None
    memory_options: Optional[ShapeMemoryOptions] = None
    max_vnic_attachment_options: Optional[ShapeMaxVnicAttachmentOptions] = None


@dataclass
class WrapShape:
    """A shape together with the concrete sizing chosen for it."""

    shape: Shape
    calc_cpu: int = 0
    cal_mem_in_gbs: int = 0
    available_domains: list[str] = field(default_factory=list)
    cal_max_vnic: int = 0
    cal_max_bandwidth_in_gbps: int = 0

    @property
    def name(self) -> str:
        return self.shape.shape

    @property
    def is_flexible(self) -> Optional[bool]:
        return self.shape.is_flexible

    @property
    def ocpus(self) -> Optional[float]:
        return self.shape.ocpus

    @property
    def memory_in_gbs(self) -> Optional[float]:
        return self.shape.memory_in_gbs

    @property
    def gpus(self) -> Optional[int]:
        return self.shape.gpus

    @property
    def gpu_description(self) -> Optional[str]:
        return self.shape.gpu_description

    @property
    def networking_bandwidth_in_gbps(self) -> Optional[float]:
        return self.shape.networking_bandwidth_in_gbps

    @property
    def max_vnic_attachments(self) -> Optional[int]:
        return self.shape.max_vnic_attachments

    @property
    def local_disks_total_size_in_gbs(self) -> Optional[float]:
        return self.shape.local_disks_total_size_in_gbs


@dataclass
class KubeletConfiguration:
    """Kubelet settings that influence node capacity and overhead."""

    cluster_dns: Optional[list[str]] = None
    max_pods: Optional[int] = None
    pods_per_core: Optional[int] = None
    system_reserved: Optional[dict[str, str]] = None
    kube_reserved: Optional[dict[str, str]] = None
    eviction_hard: Optional[dict[str, str]] = None
    eviction_soft: Optional[dict[str, str]] = None
    eviction_soft_grace_period: Optional[dict[str, str]] = None
    eviction_max_pod_grace_period: Optional[int] = None
    image_gc_high_threshold_percent: Optional[int] = None
    image_gc_low_threshold_percent: Optional[int] = None
    cpu_cfs_quota: Optional[bool] = None

    def copy(self) -> "KubeletConfiguration":
        """Return a deep copy that shares no mutable state with this one."""
        return copy.deepcopy(self)