# karpoci

Building blocks for a node autoscaler on Oracle Cloud Infrastructure. The package
turns compute shapes into schedulable instance types, estimates their hourly price,
and finds the subnets and network security groups that new nodes should use.

## Installation

From a checkout of the project:

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Modules

- `karpoci.models`: dataclasses `Shape` (with `ShapeOcpuOptions`, `ShapeMemoryOptions`
  and `ShapeMaxVnicAttachmentOptions`), `WrapShape` and `KubeletConfiguration`. A
  `WrapShape` holds a shape together with the vCPU count, memory size, availability
  domains and VNIC limit chosen for it. `KubeletConfiguration.copy()` returns a deep copy.
- `karpoci.quantity`: `Quantity`, `parse_quantity` and `max_resources`. These handle
  exact Kubernetes-style resource amounts such as `100Mi`, `70m`, `1Gi` or `1e3`.
  `Quantity.parse` raises `ValueError` on malformed input.
- `karpoci.utils`:
  - `convert_launch_options` resolves a `LaunchOptions` to an `OciLaunchOptions`. It
    raises `LaunchOptionsError`, which carries the partial result, when a value is not
    supported.
  - `sanitize_label_value`, `safe_tag_key`, `pretty_slice`, `filter_map` and
    `with_default_float` are small helpers.
  - `parse_kubelet_configuration`, `kubelet_configuration_with_node_pool` and
    `kubelet_configuration_with_node_claim` take the kubelet settings from the
    compatibility annotation, or else from a copy of the node class settings.
  - `hash_kubelet` gives a stable hash of a configuration.
- `karpoci.instance_types`:
  - `new_instance_type` builds an `InstanceType` with its scheduling requirements,
    capacity and overhead. The overhead covers kube-reserved, system-reserved and the
    eviction threshold.
  - `InstanceType.allocatable()` returns the capacity less all overhead.
  - The parts are also available on their own: `compute_requirements`,
    `compute_capacity`, `pods`, `system_reserved_resources`,
    `kube_reserved_resources`, `eviction_threshold` and `TaxBrackets`.
- `karpoci.metrics`: in-process `Gauge` objects for instance type vCPUs, memory,
  offering availability and estimated price. `find_metric(name, labels)` looks a
  value up by gauge name and a subset of labels.
- `karpoci.pricing`:
  - `PriceCatalog` can be built with `PriceCatalog.from_json`, and
    `find_price_items` looks up the items for a shape.
  - `parse_shape` splits a shape name into its parts, and `calculate` estimates a
    shape's hourly price.
  - `PriceListSyncer` loads a catalog from a document you supply, or downloads it from
    an endpoint and refreshes it in a background thread until `stop()` is called.
- `karpoci.instancetype_provider`:
  - `InstanceTypeProvider` lists the shapes of every configured availability domain
    and merges identical sizes across zones. It caches the result, which `flush()`
    clears, and prices each offering.
  - `to_wrap_shapes` and `split_flex_cpu_mem` expand flexible shapes into the CPU
    counts and memory ratios set in `ProviderOptions`.
- `karpoci.network`: `SubnetProvider` and `SecurityGroupProvider` find available
  subnets and network security groups of a VCN by display name and cache the result.
  They also resolve the subnets or groups of attached VNICs.

## Example

```python
from karpoci.models import Shape, WrapShape
from karpoci.instance_types import new_instance_type

shape = Shape(
    shape="VM.Standard.E4.Flex",
    is_flexible=True,
    ocpus=2,
    memory_in_gbs=16,
    max_vnic_attachments=2,
)
wrapped = WrapShape(
    shape=shape,
    calc_cpu=4,
    cal_mem_in_gbs=16,
    available_domains=["US-ASHBURN-AD-1"],
    cal_max_vnic=2,
)

it = new_instance_type(
    wrapped,
    kubelet=None,
    boot_volume_size_in_gbs=100,
    region="us-ashburn-1",
    zones=["US-ASHBURN-AD-1"],
    offerings=[],
    vm_memory_overhead_percent=0.075,
)
print(it.name, it.allocatable())
```

Pass a `PriceCatalog` to `karpoci.pricing.calculate` to estimate prices. Without a
catalog, the function uses a simple formula based on CPU and memory. A shape that the
catalog does not list gets `MAX_FLOAT32` as its price, so it is never preferred.

## What the package does not do

- It contains no cloud API client. `InstanceTypeProvider` expects a compute client
  that has a `list_shapes` method. The network providers expect a virtual network
  client with `list_subnets`, `get_subnet`, `get_vnic`,
  `list_network_security_groups` and `get_network_security_group`. You supply both.
- It ships no price list. `PriceListSyncer` with `use_local_price_list=True` needs the
  document passed as `local_price_list`.
- It does not track capacity errors itself. Pass an `is_unavailable` callable to
  `InstanceTypeProvider` to mark offerings as unavailable.
- It has no controller, no command-line program and no metrics exporter. The gauges
  live only in the running process.