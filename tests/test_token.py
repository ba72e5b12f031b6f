import pytest

from cqlrouting.ring import HostInfo
from cqlrouting.token import (
    HostToken,
    Murmur3Partitioner,
    OrderedPartitioner,
    RandomPartitioner,
    TokenRing,
    murmur3_h1,
    new_token_ring,
)


def _ordered_hosts():
    return [
        HostInfo(host_id="0", connect_address="10.0.0.1", tokens=["00"]),
        HostInfo(host_id="1", connect_address="10.0.0.2", tokens=["25"]),
        HostInfo(host_id="2", connect_address="10.0.0.3", tokens=["50"]),
        HostInfo(host_id="3", connect_address="10.0.0.4", tokens=["75"]),
    ]


def test_murmur3_empty_input_hashes_to_zero():
    assert murmur3_h1(b"") == 0


@pytest.mark.parametrize("size", [1, 7, 8, 9, 15, 16, 17, 31, 32, 40])
def test_murmur3_is_deterministic_and_signed_64_bit(size):
    data = bytes(range(100, 100 + size))
    value = murmur3_h1(data)
    assert value == murmur3_h1(bytearray(data))
    assert -(1 << 63) <= value < (1 << 63)


def test_murmur3_distinguishes_inputs():
    values = {murmur3_h1(bytes([b]) * n) for b in (1, 200) for n in range(1, 20)}
    assert len(values) == 38


def test_murmur3_partitioner_hash_and_parse():
    p = Murmur3Partitioner()
    assert p.name == "Murmur3Partitioner"
    assert p.hash(b"hello") == murmur3_h1(b"hello")
    assert p.parse_string("-42") == -42
    assert p.parse_string("9223372036854775807") == 9223372036854775807
    assert p.parse_string("not a number") == 0


def test_ordered_partitioner_token_is_key():
    p = OrderedPartitioner()
    assert p.name == "OrderedPartitioner"
    assert p.hash(b"abc") == b"abc"
    assert p.parse_string("25") == b"25"
    assert p.parse_string("20") < p.parse_string("25")


def test_random_partitioner_range_and_parse():
    p = RandomPartitioner()
    assert p.name == "RandomPartitioner"
    for n in range(50):
        value = p.hash(str(n).encode())
        assert 0 <= value <= 1 << 127
        assert value == p.hash(str(n).encode())
    assert p.parse_string("340282366920938463463374607431768211456") == 1 << 128
    with pytest.raises(ValueError):
        p.parse_string("abc")


@pytest.mark.parametrize(
    "name, cls",
    [
        ("org.apache.cassandra.dht.Murmur3Partitioner", Murmur3Partitioner),
        ("org.apache.cassandra.dht.ByteOrderedPartitioner", OrderedPartitioner),
        ("OrderedPartitioner", OrderedPartitioner),
        ("org.apache.cassandra.dht.RandomPartitioner", RandomPartitioner),
    ],
)
def test_new_token_ring_picks_partitioner_by_suffix(name, cls):
    ring = new_token_ring(name, [])
    assert isinstance(ring.partitioner, cls)
    assert len(ring) == 0


def test_new_token_ring_rejects_unknown_partitioner():
    with pytest.raises(ValueError, match="Unsupported partitioner 'Nope'"):
        new_token_ring("Nope", [])


def test_token_ring_is_sorted_and_includes_every_token():
    hosts = _ordered_hosts()
    hosts[0].tokens = ["90", "00"]
    ring = new_token_ring("OrderedPartitioner", list(reversed(hosts)))
    tokens = [ht.token for ht in ring.tokens]
    assert tokens == sorted(tokens)
    assert len(ring) == 5
    assert [ht.host for ht in ring.tokens if ht.token in (b"00", b"90")] == [hosts[0], hosts[0]]


def test_get_host_for_token_exact_next_and_wraparound():
    hosts = _ordered_hosts()
    ring = new_token_ring("OrderedPartitioner", hosts)
    assert ring.get_host_for_token(b"25") == (hosts[1], b"25")
    assert ring.get_host_for_token(b"20") == (hosts[1], b"25")
    assert ring.get_host_for_token(b"76") == (hosts[0], b"00")


def test_get_host_for_partition_key_uses_partitioner():
    hosts = _ordered_hosts()
    ring = new_token_ring("OrderedPartitioner", hosts)
    assert ring.get_host_for_partition_key(b"30") == (hosts[2], b"50")


def test_empty_ring_has_no_host():
    ring = TokenRing(partitioner=OrderedPartitioner())
    assert ring.get_host_for_token(b"10") == (None, None)
    assert TokenRing().get_host_for_partition_key(b"10") == (None, None)


def test_ring_and_host_token_strings():
    hosts = _ordered_hosts()
    ring = new_token_ring("OrderedPartitioner", hosts[:2])
    text = str(ring)
    assert text.startswith("TokenRing(OrderedPartitioner){")
    assert "\n\t[0]00:10.0.0.1" in text
    assert "\n\t[1]25:10.0.0.2" in text
    assert text.endswith("\n}")
    assert str(HostToken(b"25", hosts[1])) == "{token=25 host=1}"