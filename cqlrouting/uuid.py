"""RFC 4122 UUIDs as used for CQL ``uuid`` and ``timeuuid`` values."""

from __future__ import annotations

import enum
import os
import threading
import uuid as _stdlib_uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

__all__ = [
    "Variant",
    "UUID",
    "parse_uuid",
    "uuid_from_bytes",
    "random_uuid",
    "time_uuid",
    "uuid_from_time",
    "min_time_uuid",
    "max_time_uuid",
    "time_uuid_with",
    "MIN_CLOCK",
    "MAX_CLOCK",
    "MIN_NODE",
    "MAX_NODE",
]

# Start of the Gregorian calendar, the epoch of version 1 timestamps.
_TIME_BASE = datetime(1582, 10, 15, tzinfo=timezone.utc)

# Cassandra compares the clock and node parts as signed bytes, so the
# smallest byte is 0x80 and the largest is 0x7f.
MIN_CLOCK = 0x8080
MAX_CLOCK = 0x7F7F
MIN_NODE = bytes([0x80] * 6)
MAX_NODE = bytes([0x7F] * 6)

_HEX_DIGITS = "0123456789abcdefABCDEF"


class Variant(enum.IntEnum):
    """The variant field of a UUID."""

    NCS_COMPAT = 0
    IETF = 2
    MICROSOFT = 6
    FUTURE = 7


class _ClockSequence:
    """A thread-safe 32-bit counter seeded from a random 16-bit value."""

    def __init__(self) -> None:
        self._value = int.from_bytes(os.urandom(2), "little")
        self._lock = threading.Lock()

    def advance(self) -> int:
        with self._lock:
            self._value = (self._value + 1) & 0xFFFFFFFF
            return self._value


def _hardware_address() -> bytes:
    # getnode() falls back to random bytes with the multicast bit set.
    return _stdlib_uuid.getnode().to_bytes(6, "big")


_CLOCK_SEQUENCE = _ClockSequence()
_HARDWARE_ADDRESS = _hardware_address()


@dataclass(frozen=True)
class UUID:
    """A 128-bit universally unique identifier."""

    data: bytes = bytes(16)

    def __post_init__(self) -> None:
        raw = bytes(self.data)
        if len(raw) != 16:
            raise ValueError("UUIDs must be exactly 16 bytes long")
        object.__setattr__(self, "data", raw)

    def __str__(self) -> str:
        h = self.data.hex()
        return f"{h[:8]}-{h[8:12]}-{h[12:16]}-{h[16:20]}-{h[20:]}"

    def __repr__(self) -> str:
        return f"UUID('{self}')"

    def __bytes__(self) -> bytes:
        return self.data

    def variant(self) -> Variant:
        """Return the variant encoded in the UUID."""
        x = self.data[8]
        if x & 0x80 == 0:
            return Variant.NCS_COMPAT
        if x & 0x40 == 0:
            return Variant.IETF
        if x & 0x20 == 0:
            return Variant.MICROSOFT
        return Variant.FUTURE

    def version(self) -> int:
        """Return the version number of the UUID."""
        return (self.data[6] & 0xF0) >> 4

    def node(self) -> bytes | None:
        """Return the node of a version 1 UUID, or None for other versions."""
        if self.version() != 1:
            return None
        return self.data[10:]

    def clock(self) -> int:
        """Return the 14-bit clock sequence of a version 1 UUID, else 0."""
        if self.version() != 1:
            return 0
        return (self.data[8] & 0x3F) << 8 | self.data[9]

    def timestamp(self) -> int:
        """Return the 100ns intervals since 1582-10-15 of a version 1 UUID, else 0."""
        if self.version() != 1:
            return 0
        d = self.data
        return (
            int.from_bytes(d[0:4], "big")
            | int.from_bytes(d[4:6], "big") << 32
            | d[7] << 48
            | (d[6] & 0x0F) << 56
        )

    def time(self) -> datetime | None:
        """Return the UTC time of a version 1 UUID, or None for other versions."""
        if self.version() != 1:
            return None
        return _TIME_BASE + timedelta(microseconds=self.timestamp() // 10)

    def to_json(self) -> str:
        """Return the UUID as a JSON string literal."""
        return f'"{self}"'

    @classmethod
    def from_json(cls, data: str | bytes) -> UUID:
        """Parse a UUID from a JSON string literal."""
        if isinstance(data, (bytes, bytearray)):
            data = bytes(data).decode("utf-8")
        text = data.strip('"')
        if len(text) > 36:
            raise ValueError(f"invalid JSON UUID {text}")
        return parse_uuid(text)

    def to_text(self) -> str:
        """Return the canonical text form."""
        return str(self)

    @classmethod
    def from_text(cls, text: str | bytes) -> UUID:
        """Parse a UUID from its text form."""
        if isinstance(text, (bytes, bytearray)):
            text = bytes(text).decode("utf-8")
        return parse_uuid(text)


def parse_uuid(text: str) -> UUID:
    """Parse 32 hexadecimal digits, optionally separated by hyphens."""
    out = bytearray(16)
    count = 0
    for ch in text:
        if ch == "-" and count % 2 == 0:
            continue
        if count >= 32 or ch not in _HEX_DIGITS:
            raise ValueError(f'invalid UUID "{text}"')
        shift = 4 if count % 2 == 0 else 0
        out[count // 2] |= int(ch, 16) << shift
        count += 1
    if count != 32:
        raise ValueError(f'invalid UUID "{text}"')
    return UUID(bytes(out))


def uuid_from_bytes(data: bytes) -> UUID:
    """Build a UUID from exactly 16 raw bytes."""
    return UUID(bytes(data))


def random_uuid() -> UUID:
    """Generate a random (version 4) UUID."""
    raw = bytearray(os.urandom(16))
    raw[6] = (raw[6] & 0x0F) | 0x40
    raw[8] = (raw[8] & 0x3F) | 0x80
    return UUID(bytes(raw))


def _timestamp(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    delta = moment - _TIME_BASE
    return (delta.days * 86400 + delta.seconds) * 10_000_000 + delta.microseconds * 10


def time_uuid() -> UUID:
    """Generate a time based (version 1) UUID for the current time."""
    return uuid_from_time(datetime.now(timezone.utc))


def uuid_from_time(moment: datetime) -> UUID:
    """Generate a version 1 UUID for the given time; naive times are taken as UTC."""
    return time_uuid_with(_timestamp(moment), _CLOCK_SEQUENCE.advance(), _HARDWARE_ADDRESS)


def min_time_uuid(moment: datetime) -> UUID:
    """Return the smallest version 1 UUID for the given time."""
    return time_uuid_with(_timestamp(moment), MIN_CLOCK, MIN_NODE)


def max_time_uuid(moment: datetime) -> UUID:
    """Return the largest version 1 UUID for the given time."""
    return time_uuid_with(_timestamp(moment), MAX_CLOCK, MAX_NODE)


def time_uuid_with(timestamp: int, clock: int, node: bytes) -> UUID:
    """Build a version 1 UUID from a timestamp, clock sequence and node (up to 6 bytes)."""
    t = timestamp & 0xFFFF_FFFF_FFFF_FFFF
    raw = bytearray(16)
    raw[0:4] = (t & 0xFFFFFFFF).to_bytes(4, "big")
    raw[4:6] = ((t >> 32) & 0xFFFF).to_bytes(2, "big")
    raw[6] = (t >> 56) & 0x0F
    raw[7] = (t >> 48) & 0xFF
    raw[8] = (clock >> 8) & 0xFF
    raw[9] = clock & 0xFF
    node_bytes = bytes(node)[:6]
    raw[10 : 10 + len(node_bytes)] = node_bytes
    raw[6] |= 0x10
    raw[8] = (raw[8] & 0x3F) | 0x80
    return UUID(bytes(raw))