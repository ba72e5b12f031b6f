"""Host selection policies: which hosts a query is sent to, and in what order."""

from __future__ import annotations

import dataclasses
import ipaddress
import logging
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Iterator, Protocol

from .ring import HostInfo
from .token import TokenRing, new_token_ring
from .topology import KeyspaceMetadata, TokenRingReplicas, get_strategy

__all__ = [
    "CowHostList",
    "KeyspaceUpdateEvent",
    "SelectedHost",
    "RoundRobinHostPolicy",
    "TokenAwareHostPolicy",
    "SimpleHostPool",
    "HostPoolHostPolicy",
    "SelectedHostPoolHost",
    "DCAwareRoundRobinPolicy",
]

_log = logging.getLogger(__name__)


def _address(ip: Any):
    if ip is None:
        return None
    address = ipaddress.ip_address(ip)
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        return address.ipv4_mapped
    return address


class RoutableQuery(Protocol):
    """What a host selection policy needs to know about a query."""

    def get_routing_key(self) -> bytes | None: ...

    def keyspace(self) -> str: ...


class CowHostList:
    """A copy-on-write list of hosts without duplicates."""

    def __init__(self, hosts: Iterable[HostInfo] = ()) -> None:
        self._lock = threading.Lock()
        self._hosts: tuple[HostInfo, ...] = tuple(hosts)

    def __repr__(self) -> str:
        return f"CowHostList({list(self._hosts)!r})"

    def __len__(self) -> int:
        return len(self._hosts)

    def get(self) -> tuple[HostInfo, ...]:
        """Return a snapshot of the hosts."""
        return self._hosts

    def set(self, hosts: Iterable[HostInfo]) -> None:
        """Replace all hosts."""
        with self._lock:
            self._hosts = tuple(hosts)

    def add(self, host: HostInfo) -> bool:
        """Append the host unless an equal one is present; return whether it was added."""
        with self._lock:
            if any(host.equal(existing) for existing in self._hosts):
                return False
            self._hosts = self._hosts + (host,)
            return True

    def update(self, host: HostInfo) -> None:
        """Replace every host equal to ``host`` with it."""
        with self._lock:
            if not self._hosts:
                return
            found = False
            replaced = []
            for existing in self._hosts:
                if host.equal(existing):
                    replaced.append(host)
                    found = True
                else:
                    replaced.append(existing)
            if found:
                self._hosts = tuple(replaced)

    def remove(self, ip: Any) -> bool:
        """Remove the host with the given connect address; return whether one was removed."""
        address = _address(ip)
        with self._lock:
            kept = tuple(h for h in self._hosts if h.connect_address != address)
            if len(kept) == len(self._hosts):
                return False
            self._hosts = kept
            return True


@dataclass(frozen=True)
class KeyspaceUpdateEvent:
    """A change to a keyspace's schema."""

    keyspace: str
    change: str = ""


@dataclass(unsafe_hash=True)
class SelectedHost:
    """A host picked by a policy, with the outcome it was last marked with."""

    info: HostInfo
    marked: bool = field(default=False, compare=False, hash=False)
    error: BaseException | None = field(default=None, compare=False, hash=False)

    def mark(self, error: BaseException | None) -> None:
        """Record the outcome of using the host."""
        self.marked = True
        self.error = error


def _round_robin(hosts: Iterable[HostInfo]) -> Iterator[SelectedHost]:
    for host in hosts:
        if host.is_up():
            yield SelectedHost(host)


def _in_dc(local_dc: str | None, host: HostInfo) -> bool:
    return local_dc is None or host.data_center == local_dc


class RoundRobinHostPolicy:
    """Try every known host once per query, in random order.

    Without ``local_dc`` every host counts as local.
    """

    def __init__(self, *, local_dc: str | None = None) -> None:
        self.local_dc = local_dc
        self.partitioner = ""
        self.last_keyspace_event: KeyspaceUpdateEvent | None = None
        self._hosts = CowHostList()

    def is_local(self, host: HostInfo) -> bool:
        """Return True unless a local data centre was given that the host is not in."""
        return _in_dc(self.local_dc, host)

    def keyspace_changed(self, event: KeyspaceUpdateEvent) -> None:
        """Remember the event; the order of hosts does not depend on it."""
        self.last_keyspace_event = event

    def set_partitioner(self, partitioner: str) -> None:
        """Remember the partitioner; the order of hosts does not depend on it."""
        self.partitioner = partitioner

    def pick(self, query: RoutableQuery | None = None) -> Iterator[SelectedHost]:
        """Yield the hosts that are up, shuffled."""
        hosts = list(self._hosts.get())
        random.shuffle(hosts)
        return _round_robin(hosts)

    def add_host(self, host: HostInfo) -> None:
        """Add a host."""
        self._hosts.add(host)

    def remove_host(self, host: HostInfo) -> None:
        """Remove a host."""
        self._hosts.remove(host.connect_address)

    def host_up(self, host: HostInfo) -> None:
        """Add a host that came up."""
        self.add_host(host)

    def host_down(self, host: HostInfo) -> None:
        """Remove a host that went down."""
        self.remove_host(host)


@dataclass
class _ClusterMeta:
    replicas: dict[str, TokenRingReplicas] = field(default_factory=dict)
    token_ring: TokenRing | None = None

    def reset_token_ring(self, partitioner: str, hosts: Iterable[HostInfo]) -> None:
        if not partitioner:
            return
        try:
            self.token_ring = new_token_ring(partitioner, list(hosts))
        except ValueError as error:
            _log.warning("Unable to update the token ring due to error: %s", error)


class TokenAwareHostPolicy:
    """Send queries to the replicas owning the partition, then to the fallback.

    With ``non_local_replicas_fallback`` the replicas that the fallback does
    not consider local are tried before the fallback's other hosts.
    """

    def __init__(
        self,
        fallback: Any,
        *,
        shuffle_replicas: bool = False,
        non_local_replicas_fallback: bool = False,
        get_keyspace_metadata: Callable[[str], KeyspaceMetadata | None] | None = None,
        get_keyspace_name: Callable[[], str] | None = None,
    ) -> None:
        self.fallback = fallback
        self.shuffle_replicas = shuffle_replicas
        self.non_local_replicas_fallback = non_local_replicas_fallback
        self.get_keyspace_metadata = get_keyspace_metadata
        self.get_keyspace_name = get_keyspace_name or (lambda: "")
        self._lock = threading.Lock()
        self._hosts = CowHostList()
        self._partitioner = ""
        self._metadata: _ClusterMeta | None = None

    def _metadata_for_update(self) -> _ClusterMeta:
        current = self._metadata
        return dataclasses.replace(current) if current is not None else _ClusterMeta()

    def _lookup_keyspace(self, keyspace: str) -> KeyspaceMetadata | None:
        if self.get_keyspace_metadata is None:
            return None
        try:
            return self.get_keyspace_metadata(keyspace)
        except Exception as error:  # metadata is unavailable; keep the other keyspaces
            _log.debug("no metadata for keyspace %r: %s", keyspace, error)
            return None

    def _update_replicas(self, meta: _ClusterMeta, keyspace: str) -> None:
        replicas: dict[str, TokenRingReplicas] = {}
        metadata = self._lookup_keyspace(keyspace)
        if metadata is not None:
            strategy = get_strategy(metadata)
            if strategy is not None and meta.token_ring is not None:
                replicas[keyspace] = strategy.replica_map(meta.token_ring)
        for name, entries in meta.replicas.items():
            if name != keyspace:
                replicas[name] = entries
        meta.replicas = replicas

    def _rebuild(self) -> None:
        meta = self._metadata_for_update()
        meta.reset_token_ring(self._partitioner, self._hosts.get())
        self._update_replicas(meta, self.get_keyspace_name())
        self._metadata = meta

    def is_local(self, host: HostInfo) -> bool:
        """Ask the fallback whether the host is local."""
        return self.fallback.is_local(host)

    def keyspace_changed(self, event: KeyspaceUpdateEvent) -> None:
        """Recompute the replicas of the changed keyspace."""
        with self._lock:
            meta = self._metadata_for_update()
            self._update_replicas(meta, event.keyspace)
            self._metadata = meta

    def set_partitioner(self, partitioner: str) -> None:
        """Set the partitioner and rebuild the token ring."""
        with self._lock:
            if self._partitioner != partitioner:
                self.fallback.set_partitioner(partitioner)
                self._partitioner = partitioner
                self._rebuild()

    def add_host(self, host: HostInfo) -> None:
        """Add a host to the ring and to the fallback."""
        with self._lock:
            if self._hosts.add(host):
                self._rebuild()
        self.fallback.add_host(host)

    def add_hosts(self, hosts: Iterable[HostInfo]) -> None:
        """Add several hosts, rebuilding the ring once."""
        hosts = list(hosts)
        with self._lock:
            for host in hosts:
                self._hosts.add(host)
            self._rebuild()
        for host in hosts:
            self.fallback.add_host(host)

    def remove_host(self, host: HostInfo) -> None:
        """Remove a host from the ring and from the fallback."""
        with self._lock:
            if self._hosts.remove(host.connect_address):
                self._rebuild()
        self.fallback.remove_host(host)

    def host_up(self, host: HostInfo) -> None:
        """Tell the fallback a host came up."""
        self.fallback.host_up(host)

    def host_down(self, host: HostInfo) -> None:
        """Tell the fallback a host went down."""
        self.fallback.host_down(host)

    def replicas(self) -> dict[str, TokenRingReplicas]:
        """Return the current replica maps by keyspace."""
        meta = self._metadata
        return dict(meta.replicas) if meta is not None else {}

    def pick(self, query: RoutableQuery | None = None) -> Iterator[Any]:
        """Yield replicas of the query's partition, then the fallback's other hosts."""
        if query is None:
            return self.fallback.pick(query)
        try:
            routing_key = query.get_routing_key()
        except Exception:
            return self.fallback.pick(query)
        if routing_key is None:
            return self.fallback.pick(query)

        meta = self._metadata
        if meta is None or meta.token_ring is None:
            return self.fallback.pick(query)

        ring = meta.token_ring
        token = ring.partitioner.hash(routing_key)
        keyspace_replicas = meta.replicas.get(query.keyspace())
        entry = keyspace_replicas.replicas_for(token) if keyspace_replicas is not None else None

        if entry is None:
            host, _ = ring.get_host_for_token(token)
            replicas = [host] if host is not None else []
        elif self.shuffle_replicas:
            replicas = random.sample(entry.hosts, len(entry.hosts))
        else:
            replicas = list(entry.hosts)
        return self._select(query, replicas)

    def _select(self, query: RoutableQuery, replicas: list[HostInfo]) -> Iterator[Any]:
        used: set[HostInfo] = set()
        remote: list[HostInfo] = []
        for host in replicas:
            if not self.fallback.is_local(host):
                remote.append(host)
                continue
            if host.is_up():
                used.add(host)
                yield SelectedHost(host)

        if self.non_local_replicas_fallback:
            for host in remote:
                if host.is_up():
                    used.add(host)
                    yield SelectedHost(host)

        for selected in self.fallback.pick(query):
            if selected.info not in used:
                used.add(selected.info)
                yield selected


@dataclass
class _PoolEntry:
    host: str
    dead: bool = False
    next_retry: float = 0.0
    retry_count: int = 0
    retry_delay: float = 0.0


class _PoolResponse:
    """A host handed out by a SimpleHostPool, to be marked once used."""

    def __init__(self, pool: SimpleHostPool, host: str) -> None:
        self._pool = pool
        self.host = host

    def mark(self, error: BaseException | None) -> None:
        """Record success or failure of the host."""
        self._pool._mark(self.host, error)


class SimpleHostPool:
    """Round-robin over host addresses, avoiding hosts that recently failed.

    A failed host is retried after ``initial_retry_delay`` seconds, the delay
    doubling on each retry up to ``max_retry_interval``.  When every host is
    down, all are revived.
    """

    def __init__(
        self,
        hosts: Iterable[str] = (),
        *,
        initial_retry_delay: float = 30.0,
        max_retry_interval: float = 900.0,
    ) -> None:
        self.initial_retry_delay = initial_retry_delay
        self.max_retry_interval = max_retry_interval
        self._lock = threading.Lock()
        self._entries: dict[str, _PoolEntry] = {}
        self._order: list[_PoolEntry] = []
        self._next = 0
        self.set_hosts(hosts)

    def set_hosts(self, hosts: Iterable[str]) -> None:
        """Replace the hosts, all starting as alive."""
        with self._lock:
            self._entries = {}
            self._order = []
            for host in hosts:
                if host not in self._entries:
                    entry = _PoolEntry(host)
                    self._entries[host] = entry
                    self._order.append(entry)
            self._next = 0

    def get(self) -> _PoolResponse:
        """Return the next usable host."""
        with self._lock:
            if not self._order:
                raise LookupError("host pool is empty")
            now = time.monotonic()
            count = len(self._order)
            for offset in range(count):
                index = (offset + self._next) % count
                entry = self._order[index]
                if not entry.dead:
                    self._next = index + 1
                    return _PoolResponse(self, entry.host)
                if entry.next_retry < now:
                    entry.retry_count += 1
                    entry.retry_delay = min(entry.retry_delay * 2, self.max_retry_interval)
                    entry.next_retry = now + entry.retry_delay
                    self._next = index + 1
                    return _PoolResponse(self, entry.host)
            for entry in self._order:
                entry.dead = False
            self._next = 0
            return _PoolResponse(self, self._order[0].host)

    def _mark(self, host: str, error: BaseException | None) -> None:
        with self._lock:
            entry = self._entries.get(host)
            if entry is None:
                return
            if error is None:
                entry.dead = False
            elif not entry.dead:
                entry.dead = True
                entry.retry_count = 0
                entry.retry_delay = self.initial_retry_delay
                entry.next_retry = time.monotonic() + entry.retry_delay


@dataclass(frozen=True)
class SelectedHostPoolHost:
    """A host picked by a HostPoolHostPolicy; marking it feeds the pool."""

    policy: HostPoolHostPolicy
    info: HostInfo
    response: Any

    def mark(self, error: BaseException | None) -> None:
        """Report the outcome to the pool unless the host was removed meanwhile."""
        key = str(self.info.connect_address)
        with self.policy._lock:
            if key not in self.policy._host_map:
                return
            self.response.mark(error)


class HostPoolHostPolicy:
    """Distribute queries with a host pool that avoids unresponsive hosts.

    Without ``local_dc`` every host counts as local.
    """

    def __init__(self, pool: Any = None, *, local_dc: str | None = None) -> None:
        self.pool = pool if pool is not None else SimpleHostPool()
        self.local_dc = local_dc
        self.partitioner = ""
        self.last_keyspace_event: KeyspaceUpdateEvent | None = None
        self._lock = threading.RLock()
        self._host_map: dict[str, HostInfo] = {}

    def set_hosts(self, hosts: Iterable[HostInfo]) -> None:
        """Replace the hosts, keeping their order in the pool."""
        hosts = list(hosts)
        peers = [str(host.connect_address) for host in hosts]
        host_map = dict(zip(peers, hosts))
        with self._lock:
            self.pool.set_hosts(peers)
            self._host_map = host_map

    def is_local(self, host: HostInfo) -> bool:
        """Return True unless a local data centre was given that the host is not in."""
        return _in_dc(self.local_dc, host)

    def keyspace_changed(self, event: KeyspaceUpdateEvent) -> None:
        """Remember the event; the pool does not depend on it."""
        self.last_keyspace_event = event

    def set_partitioner(self, partitioner: str) -> None:
        """Remember the partitioner; the pool does not depend on it."""
        self.partitioner = partitioner

    def add_host(self, host: HostInfo) -> None:
        """Add a host unless its address is already known."""
        key = str(host.connect_address)
        with self._lock:
            if self._host_map.get(key) is not None:
                return
            self._host_map[key] = host
            self.pool.set_hosts(list(self._host_map))

    def remove_host(self, host: HostInfo) -> None:
        """Remove the host with the same address."""
        key = str(host.connect_address)
        with self._lock:
            if key not in self._host_map:
                return
            del self._host_map[key]
            self.pool.set_hosts([str(h.connect_address) for h in self._host_map.values()])

    def host_up(self, host: HostInfo) -> None:
        """Add a host that came up."""
        self.add_host(host)

    def host_down(self, host: HostInfo) -> None:
        """Remove a host that went down."""
        self.remove_host(host)

    def pick(self, query: RoutableQuery | None = None) -> Iterator[SelectedHostPoolHost]:
        """Yield hosts from the pool until it is empty or hands out an unknown host."""
        while True:
            with self._lock:
                if not self._host_map:
                    return
                response = self.pool.get()
                host = self._host_map.get(response.host)
                if host is None:
                    return
                selected = SelectedHostPoolHost(policy=self, info=host, response=response)
            yield selected


class DCAwareRoundRobinPolicy:
    """Offer hosts of the local data centre, shuffled, before all others."""

    def __init__(self, local_dc: str) -> None:
        self.local_dc = local_dc
        self.partitioner = ""
        self.last_keyspace_event: KeyspaceUpdateEvent | None = None
        self._local = CowHostList()
        self._remote = CowHostList()

    def is_local(self, host: HostInfo) -> bool:
        """Return True for hosts in the local data centre."""
        return host.data_center == self.local_dc

    def keyspace_changed(self, event: KeyspaceUpdateEvent) -> None:
        """Remember the event; the order of hosts does not depend on it."""
        self.last_keyspace_event = event

    def set_partitioner(self, partitioner: str) -> None:
        """Remember the partitioner; the order of hosts does not depend on it."""
        self.partitioner = partitioner

    def add_host(self, host: HostInfo) -> None:
        """Add a host to the local or remote list."""
        (self._local if self.is_local(host) else self._remote).add(host)

    def remove_host(self, host: HostInfo) -> None:
        """Remove a host from the local or remote list."""
        (self._local if self.is_local(host) else self._remote).remove(host.connect_address)

    def host_up(self, host: HostInfo) -> None:
        """Add a host that came up."""
        self.add_host(host)

    def host_down(self, host: HostInfo) -> None:
        """Remove a host that went down."""
        self.remove_host(host)

    def pick(self, query: RoutableQuery | None = None) -> Iterator[SelectedHost]:
        """Yield local hosts that are up, then remote ones, each group shuffled."""
        local = list(self._local.get())
        remote = list(self._remote.get())
        random.shuffle(local)
        random.shuffle(remote)
        return _round_robin(local + remote)