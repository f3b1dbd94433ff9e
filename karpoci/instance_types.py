"""Instance types built from compute shapes: labels, capacity and reserved overhead."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Mapping, Optional, Sequence, Set

from karpoci.models import KubeletConfiguration, WrapShape
from karpoci.quantity import Format, Quantity, max_resources, parse_quantity
from karpoci.utils import sanitize_label_value

GI = 1024 * 1024 * 1024
MEMORY_AVAILABLE = "memory.available"
NODEFS_AVAILABLE = "nodefs.available"

ARM_SHAPES = ("BM.Standard.A1.160", "VM.Standard.A1.Flex", "VM.Standard.A2.Flex")

RESOURCE_CPU = "cpu"
RESOURCE_MEMORY = "memory"
RESOURCE_EPHEMERAL_STORAGE = "ephemeral-storage"
RESOURCE_PODS = "pods"
RESOURCE_NVIDIA_GPU = "nvidia.com/gpu"

LABEL_INSTANCE_TYPE = "node.kubernetes.io/instance-type"
LABEL_ARCH = "kubernetes.io/arch"
LABEL_OS = "kubernetes.io/os"
LABEL_TOPOLOGY_ZONE = "topology.kubernetes.io/zone"
LABEL_TOPOLOGY_REGION = "topology.kubernetes.io/region"
LABEL_CAPACITY_TYPE = "karpenter.sh/capacity-type"
CAPACITY_TYPE_ON_DEMAND = "on-demand"

_OCI_LABEL_GROUP = "karpenter.k8s.oracle"
LABEL_INSTANCE_SHAPE_NAME = f"{_OCI_LABEL_GROUP}/instance-shape-name"
LABEL_INSTANCE_CPU = f"{_OCI_LABEL_GROUP}/instance-cpu"
LABEL_IS_FLEXIBLE = f"{_OCI_LABEL_GROUP}/is-flexible"
LABEL_INSTANCE_GPU = f"{_OCI_LABEL_GROUP}/instance-gpu"
LABEL_INSTANCE_GPU_DESCRIPTION = f"{_OCI_LABEL_GROUP}/instance-gpu-description"
LABEL_INSTANCE_MEMORY = f"{_OCI_LABEL_GROUP}/instance-memory"
LABEL_INSTANCE_NETWORK_BANDWIDTH = f"{_OCI_LABEL_GROUP}/instance-network-bandwidth"
LABEL_INSTANCE_MAX_VNICS = f"{_OCI_LABEL_GROUP}/instance-max-vnics"

# Label key -> permitted values. An empty set means the label must be absent.
Requirements = Dict[str, Set[str]]
ResourceList = Dict[str, Quantity]


@dataclass(frozen=True)
class TaxBracket:
    """One bracket: a fixed recommended amount plus a rate above the lower bound."""

    lower_bound: float = 0.0
    recommended: float = 0.0
    rate: float = 0.0
    upper_bound: float = 0.0


class TaxBrackets(tuple):
    """An ordered sequence of tax brackets."""

    def __new__(cls, brackets: Sequence[TaxBracket] = ()) -> "TaxBrackets":
        return super().__new__(cls, brackets)

    def calculate(self, amount: float) -> float:
        """Tax for an amount (memory in Gi or CPU in cores)."""
        tax = 0.0
        for bracket in self:
            if bracket.lower_bound > amount:
                break
            tax = bracket.recommended + bracket.rate * (amount - bracket.lower_bound)
        return tax


RESERVED_MEMORY_TAX_GI = TaxBrackets(
    [
        TaxBracket(lower_bound=2, recommended=1),
        TaxBracket(lower_bound=4, recommended=1),
        TaxBracket(lower_bound=8, recommended=1),
        TaxBracket(lower_bound=16, recommended=2),
        TaxBracket(lower_bound=128, recommended=9, rate=0.02),
    ]
)

RESERVED_CPU_TAX_VCPU = TaxBrackets(
    [
        TaxBracket(lower_bound=1, recommended=0.06),
        TaxBracket(lower_bound=2, recommended=0.07),
        TaxBracket(lower_bound=3, recommended=0.08),
        TaxBracket(lower_bound=4, recommended=0.085),
        TaxBracket(lower_bound=5, recommended=0.09, rate=0.0025),
    ]
)


@dataclass
class Offering:
    """A place an instance type can be launched, with its price and availability."""

    zone: str
    price: float
    available: bool = True
    capacity_type: str = CAPACITY_TYPE_ON_DEMAND


@dataclass
class InstanceTypeOverhead:
    """Resources held back from pods on a node."""

    kube_reserved: ResourceList = field(default_factory=dict)
    system_reserved: ResourceList = field(default_factory=dict)
    eviction_threshold: ResourceList = field(default_factory=dict)


@dataclass
class InstanceType:
    """A launchable instance type with its scheduling requirements and resources."""

    name: str
    requirements: Requirements
    offerings: list[Offering]
    capacity: ResourceList
    overhead: InstanceTypeOverhead

    def allocatable(self) -> ResourceList:
        """Capacity less the total of all overhead."""
        total = _sum_resources(
            self.overhead.kube_reserved,
            self.overhead.system_reserved,
            self.overhead.eviction_threshold,
        )
        return {
            name: quantity - total[name] if name in total else quantity
            for name, quantity in self.capacity.items()
        }


def _sum_resources(*lists: Mapping[str, Quantity]) -> ResourceList:
    merged: ResourceList = {}
    for resources in lists:
        for name, quantity in resources.items():
            merged[name] = merged[name] + quantity if name in merged else quantity
    return merged


def _format_number(value: float) -> str:
    """Write a float the shortest way, switching to exponent form for large or tiny values."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == 0:
        return "0"
    sign, digit_tuple, exponent = Decimal(repr(float(value))).normalize().as_tuple()
    digits = "".join(str(d) for d in digit_tuple)
    exp10 = len(digits) + exponent - 1
    prefix = "-" if sign else ""
    if exp10 < -4 or exp10 >= 6:
        mantissa = digits[0] + ("." + digits[1:] if len(digits) > 1 else "")
        return f"{prefix}{mantissa}e{'+' if exp10 >= 0 else '-'}{abs(exp10):02d}"
    if exponent >= 0:
        return prefix + digits + "0" * exponent
    if exp10 >= 0:
        return f"{prefix}{digits[:exp10 + 1]}.{digits[exp10 + 1:]}"
    return f"{prefix}0.{'0' * (-exp10 - 1)}{digits}"


def _available(offerings: Sequence[Offering]) -> list[Offering]:
    return [offering for offering in offerings if offering.available]


def _gibibytes(amount: int) -> Quantity:
    return parse_quantity(f"{amount}Gi")


def _cpu(cores: int) -> Quantity:
    return parse_quantity(str(cores))


def _memory(memory_in_gbs: int, vm_memory_overhead_percent: float) -> Quantity:
    mem = _gibibytes(memory_in_gbs)
    overhead_mi = math.ceil(float(mem.value) * vm_memory_overhead_percent / 1024 / 1024)
    return mem - parse_quantity(f"{overhead_mi}Mi")


def _nvidia_gpus(shape: WrapShape) -> Quantity:
    return parse_quantity(str(shape.gpus if shape.gpus is not None else 0))


def new_instance_type(
    shape: WrapShape,
    kubelet: Optional[KubeletConfiguration],
    boot_volume_size_in_gbs: int,
    region: str,
    zones: Sequence[str],
    offerings: Sequence[Offering],
    vm_memory_overhead_percent: float,
) -> InstanceType:
    """Build an instance type for a sized shape."""
    memory = _gibibytes(shape.cal_mem_in_gbs)
    return InstanceType(
        name=shape.name,
        requirements=compute_requirements(shape, offerings, zones, region),
        offerings=list(offerings),
        capacity=compute_capacity(
            shape, kubelet, boot_volume_size_in_gbs, vm_memory_overhead_percent
        ),
        overhead=InstanceTypeOverhead(
            kube_reserved=kube_reserved_resources(kubelet, _cpu(shape.calc_cpu), memory),
            system_reserved=system_reserved_resources(kubelet),
            eviction_threshold=eviction_threshold(
                memory, _gibibytes(boot_volume_size_in_gbs), kubelet
            ),
        ),
    )


def compute_requirements(
    shape: WrapShape,
    offerings: Sequence[Offering],
    zones: Sequence[str],
    region: str,
) -> Requirements:
    """Scheduling labels an instance of this shape will carry."""
    arch = "arm64" if shape.name in ARM_SHAPES else "amd64"
    requirements: Requirements = {
        LABEL_INSTANCE_TYPE: {shape.name},
        LABEL_ARCH: {arch},
        LABEL_OS: {"linux"},
        LABEL_TOPOLOGY_ZONE: set(zones),
        LABEL_TOPOLOGY_REGION: {region},
        LABEL_CAPACITY_TYPE: {o.capacity_type for o in _available(offerings)},
        LABEL_INSTANCE_SHAPE_NAME: {shape.name},
        LABEL_INSTANCE_CPU: {str(shape.calc_cpu)},
        LABEL_IS_FLEXIBLE: {"true" if shape.is_flexible else "false"},
        LABEL_INSTANCE_GPU: set(),
        LABEL_INSTANCE_GPU_DESCRIPTION: set(),
        LABEL_INSTANCE_MEMORY: {str(shape.cal_mem_in_gbs * 1024)},
        LABEL_INSTANCE_NETWORK_BANDWIDTH: set(),
        LABEL_INSTANCE_MAX_VNICS: set(),
    }
    if shape.networking_bandwidth_in_gbps is not None:
        requirements[LABEL_INSTANCE_NETWORK_BANDWIDTH].add(
            _format_number(shape.networking_bandwidth_in_gbps)
        )
    if shape.max_vnic_attachments is not None:
        requirements[LABEL_INSTANCE_MAX_VNICS].add(str(shape.cal_max_vnic))
    if shape.gpus:
        requirements[LABEL_INSTANCE_GPU].add(str(_nvidia_gpus(shape).value))
        requirements[LABEL_INSTANCE_GPU_DESCRIPTION].add(
            sanitize_label_value(shape.gpu_description or "")
        )
    return requirements


def compute_capacity(
    shape: WrapShape,
    kubelet: Optional[KubeletConfiguration],
    boot_volume_size_in_gbs: int,
    vm_memory_overhead_percent: float,
) -> ResourceList:
    """Raw resources of an instance of this shape."""
    return {
        RESOURCE_CPU: _cpu(shape.calc_cpu),
        RESOURCE_MEMORY: _memory(shape.cal_mem_in_gbs, vm_memory_overhead_percent),
        RESOURCE_EPHEMERAL_STORAGE: _gibibytes(boot_volume_size_in_gbs),
        RESOURCE_PODS: pods(shape, kubelet),
        RESOURCE_NVIDIA_GPU: _nvidia_gpus(shape),
    }


def pods(shape: WrapShape, kubelet: Optional[KubeletConfiguration]) -> Quantity:
    """Maximum pods: kubelet limits, capped at (VNICs - 1) * 31."""
    if kubelet is not None and kubelet.max_pods is not None:
        count = kubelet.max_pods
    else:
        count = 110  # the Kubernetes default limit
    if kubelet is not None and kubelet.pods_per_core is not None:
        count = min(kubelet.pods_per_core * shape.calc_cpu, count)
    return parse_quantity(str(min(count, (shape.cal_max_vnic - 1) * 31)))


def system_reserved_resources(kubelet: Optional[KubeletConfiguration]) -> ResourceList:
    """System-reserved resources from the kubelet, or 100m CPU and 100Mi memory."""
    if kubelet is not None and kubelet.system_reserved is not None:
        return {name: parse_quantity(value) for name, value in kubelet.system_reserved.items()}
    return {
        RESOURCE_CPU: Quantity.scaled(100, -3),
        RESOURCE_MEMORY: Quantity(100 * 1024 * 1024, Format.BINARY_SI),
    }


def kube_reserved_resources(
    kubelet: Optional[KubeletConfiguration],
    cpu: Quantity,
    memory: Quantity,
) -> ResourceList:
    """Kube-reserved resources from the kubelet, or derived from the tax brackets."""
    if kubelet is not None and kubelet.kube_reserved:
        return {name: parse_quantity(value) for name, value in kubelet.kube_reserved.items()}
    reserved_memory_mi = int(1024 * RESERVED_MEMORY_TAX_GI.calculate(float(memory.value // GI)))
    reserved_cpu_milli = int(1000 * RESERVED_CPU_TAX_VCPU.calculate(float(cpu.value)))
    return {
        RESOURCE_CPU: Quantity.scaled(reserved_cpu_milli, -3),
        RESOURCE_MEMORY: Quantity(reserved_memory_mi * 1024 * 1024, Format.BINARY_SI),
        RESOURCE_EPHEMERAL_STORAGE: parse_quantity("1Gi"),
    }


def eviction_threshold(
    memory: Quantity,
    storage: Quantity,
    kubelet: Optional[KubeletConfiguration],
) -> ResourceList:
    """Hard eviction thresholds: 100Mi memory and 10% storage unless overridden."""
    overhead: ResourceList = {
        RESOURCE_MEMORY: parse_quantity("100Mi"),
        RESOURCE_EPHEMERAL_STORAGE: parse_quantity(
            _format_number(float(math.ceil(float(storage.value) / 100 * 10)))
        ),
    }
    signals = []
    if kubelet is not None and kubelet.eviction_hard is not None:
        signals.append(kubelet.eviction_hard)

    override: ResourceList = {}
    for signal in signals:
        current: ResourceList = {}
        if MEMORY_AVAILABLE in signal:
            current[RESOURCE_MEMORY] = compute_eviction_signal(memory, signal[MEMORY_AVAILABLE])
        if NODEFS_AVAILABLE in signal:
            current[RESOURCE_EPHEMERAL_STORAGE] = compute_eviction_signal(
                storage, signal[NODEFS_AVAILABLE]
            )
        override = max_resources(override, current)
    return {**overhead, **override}


def compute_eviction_signal(capacity: Quantity, signal_value: str) -> Quantity:
    """A signal as a quantity; percentages are taken of the capacity."""
    if signal_value.endswith("%"):
        percent = parse_percentage(signal_value)
        return parse_quantity(
            _format_number(float(math.ceil(capacity.as_float() / 100 * percent)))
        )
    return parse_quantity(signal_value)


def parse_percentage(value: str) -> float:
    """Parse "N%"; 100% means the threshold is disabled and yields 0."""
    text = value.strip("%")
    if not text or "_" in text or text != text.strip():
        raise ValueError(f"expected percentage value to be a float but got {value}")
    try:
        percent = float(text)
    except ValueError as err:
        raise ValueError(
            f"expected percentage value to be a float but got {value}, {err}"
        ) from err
    if percent == 100:
        percent = 0.0
    return percent