"""Subnet and network security group discovery for node classes."""

from __future__ import annotations

import hashlib
import json
import threading
from dataclasses import dataclass, field
from typing import Iterable, MutableMapping, Optional, Protocol, Sequence

from cachetools import TTLCache

LIFECYCLE_STATE_AVAILABLE = "AVAILABLE"
DEFAULT_CACHE_TTL = 60.0


@dataclass
class Subnet:
    """A subnet of a virtual cloud network."""

    id: str
    display_name: Optional[str] = None
    compartment_id: Optional[str] = None
    lifecycle_state: Optional[str] = None
    vcn_id: Optional[str] = None


@dataclass
class NetworkSecurityGroup:
    """A network security group of a virtual cloud network."""

    id: str
    display_name: Optional[str] = None
    compartment_id: Optional[str] = None
    lifecycle_state: Optional[str] = None
    vcn_id: Optional[str] = None


@dataclass
class Vnic:
    """A virtual network interface."""

    id: str
    is_primary: Optional[bool] = None
    nsg_ids: list[str] = field(default_factory=list)
    subnet_id: Optional[str] = None


@dataclass
class VnicAttachment:
    """The attachment of a VNIC to an instance."""

    vnic_id: str
    subnet_id: Optional[str] = None


class _VirtualNetworkClient(Protocol):
    def list_subnets(
        self, *, compartment_id: str, vcn_id: str, display_name: str, lifecycle_state: str
    ) -> list[Subnet]: ...

    def get_subnet(self, subnet_id: Optional[str]) -> Subnet: ...

    def get_vnic(self, vnic_id: str) -> Vnic: ...

    def list_network_security_groups(
        self, *, compartment_id: str, vcn_id: str, display_name: str, lifecycle_state: str
    ) -> list[NetworkSecurityGroup]: ...

    def get_network_security_group(self, nsg_id: str) -> NetworkSecurityGroup: ...


def _cache_key(vcn_id: str, names: Sequence[str]) -> str:
    payload = json.dumps(sorted(names)).encode("utf-8")
    digest = hashlib.sha256(payload).digest()
    return f"{vcn_id}:{int.from_bytes(digest[:8], 'big')}"


class _CachedLister:
    def __init__(
        self,
        client: _VirtualNetworkClient,
        compartment_id: str,
        cache: Optional[MutableMapping[str, list]] = None,
    ) -> None:
        self._client = client
        self.compartment_id = compartment_id
        self.cache = cache if cache is not None else TTLCache(maxsize=1024, ttl=DEFAULT_CACHE_TTL)
        self._lock = threading.Lock()


class SubnetProvider(_CachedLister):
    """Finds the subnets a node class selects by name."""

    def list(self, vcn_id: str, selector_names: Sequence[str]) -> list[Subnet]:
        """Available subnets of the VCN matching any of the names; results are cached."""
        names = list(selector_names)
        key = _cache_key(vcn_id, names)
        with self._lock:
            cached = self.cache.get(key)
            if cached is not None:
                return list(cached)
            subnets: list[Subnet] = []
            for name in names:
                subnets.extend(
                    self._client.list_subnets(
                        compartment_id=self.compartment_id,
                        vcn_id=vcn_id,
                        display_name=name,
                        lifecycle_state=LIFECYCLE_STATE_AVAILABLE,
                    )
                )
            self.cache[key] = subnets
            return list(subnets)

    def get_subnets(self, vnics: Iterable[VnicAttachment], only_primary: bool) -> list[Subnet]:
        """Subnets of the attached VNICs, without duplicates.

        With only_primary, secondary VNICs are skipped, and once one has been
        seen the next subnet found ends the search.
        """
        subnets: list[Subnet] = []
        saw_secondary = False
        for attachment in vnics:
            if only_primary:
                vnic = self._client.get_vnic(attachment.vnic_id)
                if not vnic.is_primary:
                    saw_secondary = True
                    continue
            subnets.append(self._client.get_subnet(attachment.subnet_id))
            if saw_secondary:
                break
        unique: dict[str, Subnet] = {}
        for subnet in subnets:
            unique.setdefault(subnet.id, subnet)
        return list(unique.values())


class SecurityGroupProvider(_CachedLister):
    """Finds the network security groups a node class selects by name."""

    def list(self, vcn_id: str, selector_names: Sequence[str]) -> list[NetworkSecurityGroup]:
        """Available groups of the VCN matching any of the names; results are cached."""
        names = list(selector_names)
        if not names:
            return []
        key = _cache_key(vcn_id, names)
        with self._lock:
            cached = self.cache.get(key)
            if cached is not None:
                return list(cached)
            groups: list[NetworkSecurityGroup] = []
            for name in names:
                groups.extend(
                    self._client.list_network_security_groups(
                        compartment_id=self.compartment_id,
                        vcn_id=vcn_id,
                        display_name=name,
                        lifecycle_state=LIFECYCLE_STATE_AVAILABLE,
                    )
                )
            self.cache[key] = groups
            return list(groups)

    def get_security_groups(
        self, vnics: Iterable[VnicAttachment], only_primary_vnic: bool
    ) -> list[NetworkSecurityGroup]:
        """Security groups of the attached VNICs, optionally of the primary VNIC only."""
        groups: list[NetworkSecurityGroup] = []
        for attachment in vnics:
            vnic = self._client.get_vnic(attachment.vnic_id)
            if only_primary_vnic and not vnic.is_primary:
                continue
            for nsg_id in vnic.nsg_ids:
                groups.append(self._client.get_network_security_group(nsg_id))
        return groups