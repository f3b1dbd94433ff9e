from dataclasses import fields

from karpoci.models import (
    KubeletConfiguration,
    Shape,
    ShapeMaxVnicAttachmentOptions,
    ShapeMemoryOptions,
    ShapeOcpuOptions,
    WrapShape,
)


def _flex_shape():
    return Shape(
        shape="VM.Standard.E4.Flex",
        is_flexible=True,
        ocpus=2,
        memory_in_gbs=8,
        networking_bandwidth_in_gbps=10,
        max_vnic_attachments=2,
        max_vnic_attachment_options=ShapeMaxVnicAttachmentOptions(min=2, max=24, default_per_ocpu=1),
        ocpu_options=ShapeOcpuOptions(min=1, max=16),
        memory_options=ShapeMemoryOptions(min_in_gbs=2, max_in_gbs=4096),
    )


def test_wrap_shape_exposes_shape_fields():
    shape = _flex_shape()
    wrapped = WrapShape(shape=shape, calc_cpu=4, cal_mem_in_gbs=8)
    assert wrapped.name == "VM.Standard.E4.Flex"
    assert wrapped.is_flexible is True
    assert wrapped.max_vnic_attachments == shape.max_vnic_attachments
    assert wrapped.networking_bandwidth_in_gbps == shape.networking_bandwidth_in_gbps
    assert wrapped.memory_in_gbs == shape.memory_in_gbs
    assert wrapped.gpus is None
    assert wrapped.gpu_description is None


def test_wrap_shape_domains_are_not_shared():
    first = WrapShape(shape=Shape(shape="shape-1"))
    second = WrapShape(shape=Shape(shape="shape-2"))
    first.available_domains.append("US-ASHBURN-AD-1")
    assert second.available_domains == []
    assert first.available_domains == ["US-ASHBURN-AD-1"]


def test_kubelet_copy_is_deep():
    config = KubeletConfiguration(max_pods=100, cluster_dns=["10.96.5.5"], system_reserved={"cpu": "2"})
    clone = config.copy()
    assert clone == config
    assert clone is not config
    clone.system_reserved["cpu"] = "1"
    clone.cluster_dns.append("10.0.0.10")
    assert config.system_reserved == {"cpu": "2"}
    assert config.cluster_dns == ["10.96.5.5"]


def test_kubelet_defaults_are_unset():
    config = KubeletConfiguration()
    assert all(getattr(config, spec.name) is None for spec in fields(config))