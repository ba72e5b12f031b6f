"""Hosts of a cluster and the ring of hosts the driver knows about."""

from __future__ import annotations

import enum
import ipaddress
import threading
from dataclasses import dataclass, field
from typing import Union

__all__ = ["NodeState", "HostInfo", "Ring", "ClusterMetadata"]

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def _as_ip(value) -> IPAddress | None:
    """Normalise an address; IPv4-mapped IPv6 addresses become IPv4."""
    if value is None:
        return None
    address = ipaddress.ip_address(value)
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        return address.ipv4_mapped
    return address


class NodeState(enum.Enum):
    """Whether a host is reachable."""

    UP = 0
    DOWN = 1

    def __str__(self) -> str:
        return self.name


@dataclass(eq=False)
class HostInfo:
    """A node of the cluster, compared by identity unless ``equal`` is used."""

    host_id: str = ""
    connect_address: IPAddress | None = None
    port: int = 0
    hostname: str = ""
    data_center: str = ""
    rack: str = ""
    tokens: list[str] = field(default_factory=list)
    state: NodeState = NodeState.UP

    def __post_init__(self) -> None:
        self.connect_address = _as_ip(self.connect_address)
        self._lock = threading.Lock()

    def is_up(self) -> bool:
        """Return True when the host is marked up."""
        return self.state is NodeState.UP

    def equal(self, other: HostInfo) -> bool:
        """Return True for the same host or a host with the same connect address."""
        return self is other or self.connect_address == other.connect_address

    def update(self, other: HostInfo) -> None:
        """Fill fields that are still empty with the values from ``other``."""
        if self is other:
            return
        with self._lock:
            if not self.tokens:
                self.tokens = list(other.tokens)
            if not self.host_id:
                self.host_id = other.host_id
            if not self.hostname:
                self.hostname = other.hostname
            if not self.data_center:
                self.data_center = other.data_center
            if not self.rack:
                self.rack = other.rack
            if not self.port:
                self.port = other.port

    def set_state(self, state: NodeState) -> None:
        """Mark the host up or down."""
        with self._lock:
            self.state = state

    def _has_invalid_address(self) -> bool:
        return self.connect_address is None or self.connect_address.is_unspecified


class Ring:
    """The set of known hosts, keyed by connect address."""

    def __init__(self) -> None:
        self.endpoints: list[HostInfo] = []
        self._lock = threading.Lock()
        self._hosts: dict[str, HostInfo] = {}
        self._host_list: list[HostInfo] = []
        self._pos = 0

    def rr_host(self) -> HostInfo | None:
        """Return the hosts one after another in insertion order, cycling."""
        with self._lock:
            if not self._host_list:
                return None
            pos = self._pos
            self._pos = (pos + 1) & 0xFFFFFFFF
            return self._host_list[pos % len(self._host_list)]

    def get_host(self, ip) -> HostInfo | None:
        """Return the host with the given address, or None."""
        key = str(_as_ip(ip))
        with self._lock:
            return self._hosts.get(key)

    def all_hosts(self) -> list[HostInfo]:
        """Return a list of all known hosts."""
        with self._lock:
            return list(self._hosts.values())

    def current_hosts(self) -> dict[str, HostInfo]:
        """Return a copy of the address to host mapping."""
        with self._lock:
            return dict(self._hosts)

    def add_host(self, host: HostInfo) -> bool:
        """Store the host, replacing any with the same address; return whether one existed."""
        if host._has_invalid_address():
            raise ValueError(f"invalid host: {host}")
        key = str(host.connect_address)
        with self._lock:
            existed = key in self._hosts
            if not existed:
                self._host_list.append(host)
            self._hosts[key] = host
        return existed

    def add_or_update(self, host: HostInfo) -> HostInfo:
        """Add the host, or update the known host with its details and return that."""
        existing, existed = self.add_host_if_missing(host)
        if existed:
            existing.update(host)
            return existing
        return host

    def add_host_if_missing(self, host: HostInfo) -> tuple[HostInfo, bool]:
        """Add the host unless known; return the stored host and whether it existed."""
        if host._has_invalid_address():
            raise ValueError(f"invalid host: {host}")
        key = str(host.connect_address)
        with self._lock:
            existing = self._hosts.get(key)
            if existing is not None:
                return existing, True
            self._hosts[key] = host
            self._host_list.append(host)
            return host, False

    def remove_host(self, ip) -> bool:
        """Remove the host with the given address; return whether it was known."""
        address = _as_ip(ip)
        key = str(address)
        with self._lock:
            existed = key in self._hosts
            if existed:
                for index, host in enumerate(self._host_list):
                    if host.connect_address == address:
                        del self._host_list[index]
                        break
            self._hosts.pop(key, None)
        return existed


class ClusterMetadata:
    """Metadata shared by the whole cluster."""

    def __init__(self, partitioner: str = "") -> None:
        self._lock = threading.Lock()
        self.partitioner = partitioner

    def set_partitioner(self, partitioner: str) -> None:
        """Record the partitioner the cluster uses."""
        with self._lock:
            if self.partitioner != partitioner:
                self.partitioner = partitioner