"""Replica placement strategies of keyspaces."""

from __future__ import annotations

import bisect
import re
from dataclasses import dataclass, field
from typing import Any, Union

from .ring import HostInfo
from .token import Token, TokenRing

__all__ = [
    "KeyspaceMetadata",
    "HostTokens",
    "TokenRingReplicas",
    "SimpleStrategy",
    "NetworkTopology",
    "replication_factor_from_options",
    "get_strategy",
]

_INTEGER = re.compile(r"[+-]?[0-9]+")


@dataclass
class KeyspaceMetadata:
    """The replication settings of a keyspace."""

    name: str
    strategy_class: str = ""
    strategy_options: dict[str, Any] = field(default_factory=dict)


@dataclass
class HostTokens:
    """A token and the hosts that hold replicas of it."""

    token: Token
    hosts: list[HostInfo]


class TokenRingReplicas(list):
    """Replica sets ordered by token."""

    def replicas_for(self, token: Token) -> HostTokens | None:
        """Return the entry for ``token``, or the one before it, wrapping round."""
        if not self:
            return None
        position = bisect.bisect_left(self, token, key=lambda ht: ht.token)
        if position < len(self) and self[position].token == token:
            return self[position]
        position -= 1
        if position < 0:
            position = len(self) - 1
        return self[position]


def replication_factor_from_options(keyspace: str, value: Any) -> int:
    """Read a replication factor given as an int or a decimal string."""
    if isinstance(value, int):
        factor = value
    elif isinstance(value, str):
        if not _INTEGER.fullmatch(value):
            raise ValueError(
                f'invalid replication_factor. Is the "{keyspace}" keyspace '
                f"configured correctly? {value!r} is not a number"
            )
        factor = int(value)
    else:
        raise TypeError(f"unknown replication_factor type {type(value).__name__}")
    if factor <= 0:
        raise ValueError(
            f'invalid replication_factor {factor}. Is the "{keyspace}" keyspace '
            "configured correctly?"
        )
    return factor


@dataclass
class SimpleStrategy:
    """Replicas are the next distinct hosts round the ring."""

    rf: int

    def replication_factor(self, dc: str) -> int:
        """Return the replication factor, the same in every data centre."""
        return self.rf

    def replica_map(self, ring: TokenRing) -> TokenRingReplicas:
        """Return the replicas of every token of the ring."""
        tokens = ring.tokens
        entries = []
        for i, owner in enumerate(tokens):
            replicas: list[HostInfo] = []
            for j in range(len(tokens)):
                if len(replicas) >= self.rf:
                    break
                host = tokens[(i + j) % len(tokens)].host
                if not any(host is seen for seen in replicas):
                    replicas.append(host)
            entries.append(HostTokens(owner.token, replicas))
        return TokenRingReplicas(sorted(entries, key=lambda ht: ht.token))


@dataclass
class NetworkTopology:
    """Replicas chosen per data centre, spread across racks."""

    dcs: dict[str, int]

    def replication_factor(self, dc: str) -> int:
        """Return the replication factor of a data centre, 0 if unknown."""
        return self.dcs.get(dc, 0)

    def have_rf(self, counts: dict[str, int]) -> bool:
        """Return True when every data centre has exactly its replicas."""
        if len(counts) != len(self.dcs):
            return False
        return all(counts.get(dc, 0) == rf for dc, rf in self.dcs.items())

    def replica_map(self, ring: TokenRing) -> TokenRingReplicas:
        """Return the replicas of every token of the ring."""
        dc_racks: dict[str, set[str]] = {}
        for host in ring.hosts:
            dc_racks.setdefault(host.data_center, set()).add(host.rack)

        replicas_in_dc: dict[str, int] = {dc: 0 for dc in dc_racks}
        seen_dc_racks: dict[str, set[str]] = {dc: set() for dc in dc_racks}
        skipped: dict[str, list[HostInfo]] = {}

        tokens = ring.tokens
        total_rf = sum(self.dcs.values())
        entries: list[HostTokens] = []

        for i, owner in enumerate(tokens):
            for dc in skipped:
                skipped[dc] = []
            for dc in self.dcs:
                replicas_in_dc[dc] = 0
                racks = seen_dc_racks.get(dc)
                if racks is not None:
                    racks.clear()

            replicas: list[HostInfo] = []
            for j in range(len(tokens)):
                if len(replicas) >= total_rf or self.have_rf(replicas_in_dc):
                    break
                host = tokens[(i + j) % len(tokens)].host
                dc, rack = host.data_center, host.rack

                rf = self.dcs.get(dc)
                if rf is None:
                    continue
                if replicas_in_dc[dc] >= rf:
                    if replicas_in_dc[dc] > rf:
                        raise RuntimeError(
                            f'replica overflow. rf={rf} have={replicas_in_dc[dc]} in dc "{dc}"'
                        )
                    continue
                known_racks = dc_racks.get(dc, set())
                if rack not in known_racks:
                    continue

                racks = seen_dc_racks.get(dc)
                seen = racks is not None and rack in racks
                if seen and len(racks) == len(known_racks):
                    # every rack visited without reaching rf: take this host
                    replicas.append(host)
                    replicas_in_dc[dc] += 1
                elif not seen:
                    if racks is None:
                        racks = set()
                        seen_dc_racks[dc] = racks
                    racks.add(rack)
                    replicas.append(host)
                    count = replicas_in_dc[dc] + 1
                    if len(racks) == len(known_racks):
                        # all racks visited: drain held-back hosts until rf
                        held = skipped.get(dc, [])
                        taken = held[: max(0, rf - count)]
                        replicas.extend(taken)
                        count += len(taken)
                        skipped[dc] = held[len(taken) :]
                    replicas_in_dc[dc] = count
                else:
                    skipped.setdefault(dc, []).append(host)

            if not replicas:
                raise RuntimeError(f"no replicas for token: {owner.token!r}")
            if not replicas[0].equal(owner.host):
                raise RuntimeError(
                    "first replica is not the primary replica for the token: "
                    f"expected {replicas[0].connect_address} got {owner.host.connect_address}"
                )
            entries.append(HostTokens(owner.token, replicas))

        return TokenRingReplicas(entries)


PlacementStrategy = Union[SimpleStrategy, NetworkTopology]


def get_strategy(keyspace: KeyspaceMetadata) -> PlacementStrategy | None:
    """Return the placement strategy of a keyspace, None for local keyspaces."""
    strategy_class = keyspace.strategy_class
    options = keyspace.strategy_options
    if "SimpleStrategy" in strategy_class:
        return SimpleStrategy(
            rf=replication_factor_from_options(keyspace.name, options.get("replication_factor"))
        )
    if "NetworkTopologyStrategy" in strategy_class:
        dcs = {
            dc: replication_factor_from_options(f"{keyspace.name}:dc={dc}", rf)
            for dc, rf in options.items()
            if dc != "class"
        }
        return NetworkTopology(dcs=dcs)
    if "LocalStrategy" in strategy_class:
        return None
    raise ValueError(f"unsupported strategy class: {strategy_class}")