"""Partitioners, tokens and the ring that maps tokens to hosts."""

from __future__ import annotations

import bisect
import hashlib
import re
from dataclasses import dataclass, field
from typing import Union

from .ring import HostInfo

__all__ = [
    "Murmur3Partitioner",
    "OrderedPartitioner",
    "RandomPartitioner",
    "HostToken",
    "TokenRing",
    "murmur3_h1",
    "new_token_ring",
]

# Murmur3 tokens and random tokens are ints, ordered tokens are bytes.
Token = Union[int, bytes]

_MASK64 = (1 << 64) - 1
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1
_C1 = 0x87C37B91114253D5
_C2 = 0x4CF5AD432745937F
_MAX_HASH_INT = 1 << 128
_INTEGER = re.compile(r"[+-]?[0-9]+")


def _rotl(value: int, shift: int) -> int:
    return ((value << shift) | (value >> (64 - shift))) & _MASK64


def _fmix(k: int) -> int:
    k ^= k >> 33
    k = (k * 0xFF51AFD7ED558CCD) & _MASK64
    k ^= k >> 33
    k = (k * 0xC4CEB9FE1A85EC53) & _MASK64
    k ^= k >> 33
    return k


def _mix_k1(k1: int) -> int:
    k1 = (k1 * _C1) & _MASK64
    k1 = _rotl(k1, 31)
    return (k1 * _C2) & _MASK64


def _mix_k2(k2: int) -> int:
    k2 = (k2 * _C2) & _MASK64
    k2 = _rotl(k2, 33)
    return (k2 * _C1) & _MASK64


def murmur3_h1(data: bytes) -> int:
    """Return the first 64-bit half of the x64 128-bit Murmur3 hash, signed.

    Trailing bytes are sign-extended, as Cassandra does.
    """
    data = bytes(data)
    length = len(data)
    h1 = h2 = 0
    block_end = length - length % 16

    for offset in range(0, block_end, 16):
        k1 = int.from_bytes(data[offset : offset + 8], "little")
        k2 = int.from_bytes(data[offset + 8 : offset + 16], "little")

        h1 ^= _mix_k1(k1)
        h1 = _rotl(h1, 27)
        h1 = (h1 + h2) & _MASK64
        h1 = (h1 * 5 + 0x52DCE729) & _MASK64

        h2 ^= _mix_k2(k2)
        h2 = _rotl(h2, 31)
        h2 = (h2 + h1) & _MASK64
        h2 = (h2 * 5 + 0x38495AB5) & _MASK64

    tail = data[block_end:]
    k1 = k2 = 0
    for index, byte in enumerate(tail):
        signed = byte - 256 if byte > 127 else byte
        part = (signed << (8 * (index % 8))) & _MASK64
        if index >= 8:
            k2 ^= part
        else:
            k1 ^= part
    if len(tail) > 8:
        h2 ^= _mix_k2(k2)
    if tail:
        h1 ^= _mix_k1(k1)

    h1 ^= length
    h2 ^= length
    h1 = (h1 + h2) & _MASK64
    h2 = (h2 + h1) & _MASK64
    h1 = _fmix(h1)
    h2 = _fmix(h2)
    h1 = (h1 + h2) & _MASK64

    return h1 - (1 << 64) if h1 >= 1 << 63 else h1


@dataclass(frozen=True)
class Murmur3Partitioner:
    """Partitioner whose tokens are signed 64-bit Murmur3 hashes."""

    name: str = field(default="Murmur3Partitioner", init=False)

    def hash(self, key: bytes) -> int:
        """Return the token of a partition key."""
        return murmur3_h1(key)

    def parse_string(self, text: str) -> int:
        """Parse a decimal token; unparsable text gives 0, out of range is clamped."""
        if not _INTEGER.fullmatch(text):
            return 0
        return max(_INT64_MIN, min(_INT64_MAX, int(text)))


@dataclass(frozen=True)
class OrderedPartitioner:
    """Partitioner whose token is the partition key itself."""

    name: str = field(default="OrderedPartitioner", init=False)

    def hash(self, key: bytes) -> bytes:
        """Return the token of a partition key."""
        return bytes(key)

    def parse_string(self, text: str) -> bytes:
        """Return the token written as ``text``."""
        return text.encode("utf-8")


@dataclass(frozen=True)
class RandomPartitioner:
    """Partitioner whose tokens are absolute values of signed MD5 digests."""

    name: str = field(default="RandomPartitioner", init=False)

    def hash(self, key: bytes) -> int:
        """Return the token of a partition key."""
        digest = hashlib.md5(bytes(key)).digest()
        value = int.from_bytes(digest, "big")
        if digest[0] > 127:
            value = abs(value - _MAX_HASH_INT)
        return value

    def parse_string(self, text: str) -> int:
        """Parse a decimal token."""
        if not _INTEGER.fullmatch(text):
            raise ValueError(f"invalid token {text!r}")
        return int(text)


Partitioner = Union[Murmur3Partitioner, OrderedPartitioner, RandomPartitioner]


def _token_str(token: Token) -> str:
    if isinstance(token, (bytes, bytearray)):
        return bytes(token).decode("utf-8", errors="replace")
    return str(token)


@dataclass
class HostToken:
    """A token owned by a host."""

    token: Token
    host: HostInfo

    def __str__(self) -> str:
        return f"{{token={_token_str(self.token)} host={self.host.host_id}}}"


@dataclass
class TokenRing:
    """Tokens of all hosts, kept sorted, for finding the owner of a token."""

    partitioner: Partitioner | None = None
    tokens: list[HostToken] = field(default_factory=list)
    hosts: list[HostInfo] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.tokens = sorted(self.tokens, key=lambda ht: ht.token)

    def __len__(self) -> int:
        return len(self.tokens)

    def __str__(self) -> str:
        name = self.partitioner.name if self.partitioner is not None else ""
        entries = ",".join(
            f"\n\t[{index}]{_token_str(ht.token)}:{ht.host.connect_address}"
            for index, ht in enumerate(self.tokens)
        )
        return f"TokenRing({name}){{{entries}\n}}"

    def get_host_for_partition_key(self, key: bytes) -> tuple[HostInfo | None, Token | None]:
        """Return the primary host for a partition key and the token it owns."""
        if self.partitioner is None:
            return None, None
        return self.get_host_for_token(self.partitioner.hash(key))

    def get_host_for_token(self, token: Token) -> tuple[HostInfo | None, Token | None]:
        """Return the first host whose token is not below ``token``, wrapping round."""
        if not self.tokens:
            return None, None
        position = bisect.bisect_left(self.tokens, token, key=lambda ht: ht.token)
        if position == len(self.tokens):
            position = 0
        found = self.tokens[position]
        return found.host, found.token


def new_token_ring(partitioner: str, hosts: list[HostInfo]) -> TokenRing:
    """Build the ring for the named partitioner from the tokens of ``hosts``."""
    chosen: Partitioner
    if partitioner.endswith("Murmur3Partitioner"):
        chosen = Murmur3Partitioner()
    elif partitioner.endswith("OrderedPartitioner"):
        chosen = OrderedPartitioner()
    elif partitioner.endswith("RandomPartitioner"):
        chosen = RandomPartitioner()
    else:
        raise ValueError(f"Unsupported partitioner '{partitioner}'")

    tokens = [
        HostToken(chosen.parse_string(text), host) for host in hosts for text in host.tokens
    ]
    return TokenRing(partitioner=chosen, tokens=tokens, hosts=list(hosts))