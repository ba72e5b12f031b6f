import pytest

from cqlrouting.host_policies import (
    CowHostList,
    DCAwareRoundRobinPolicy,
    HostPoolHostPolicy,
    KeyspaceUpdateEvent,
    RoundRobinHostPolicy,
    SimpleHostPool,
    TokenAwareHostPolicy,
)
from cqlrouting.ring import HostInfo, NodeState
from cqlrouting.topology import HostTokens, KeyspaceMetadata

KEYSPACE = "myKeyspace"


class FakeQuery:
    def __init__(self, routing_key=None, keyspace=KEYSPACE):
        self.routing_key = routing_key
        self._keyspace = keyspace

    def get_routing_key(self):
        return self.routing_key

    def keyspace(self):
        return self._keyspace


def not_initialised(name):
    raise RuntimeError("not initialized")


def metadata_for(strategy_class, **options):
    def lookup(name):
        if name != KEYSPACE:
            raise KeyError(f"unknown keyspace: {name}")
        return KeyspaceMetadata(
            name=KEYSPACE,
            strategy_class=strategy_class,
            strategy_options={"class": strategy_class, **options},
        )

    return lookup


def ids(iterator, count):
    return [next(iterator).info.host_id for _ in range(count)]


DCS = ["remote1", "local", "remote2"]


def twelve_hosts():
    return [
        HostInfo(
            host_id=str(i),
            connect_address=f"10.0.0.{i + 1}",
            tokens=[f"{(i + 1) * 5:02d}"],
            data_center=DCS[i % 3],
        )
        for i in range(12)
    ]


def test_round_robin_returns_each_host_once():
    policy = RoundRobinHostPolicy()
    hosts = [
        HostInfo(host_id="0", connect_address="0.0.0.1"),
        HostInfo(host_id="1", connect_address="0.0.0.2"),
    ]
    for host in hosts:
        policy.add_host(host)
    got = [selected.info.host_id for selected in policy.pick(None)]
    assert sorted(got) == ["0", "1"]


def test_round_robin_single_host_then_exhausted():
    policy = RoundRobinHostPolicy()
    host = HostInfo(host_id="host-1")
    policy.add_host(host)
    it = policy.pick(None)
    first = next(it, None)
    assert first is not None
    assert first.info.host_id == "host-1"
    assert next(it, None) is None


def test_round_robin_host_down_removes_host():
    policy = RoundRobinHostPolicy()
    a = HostInfo(host_id="a", connect_address="10.0.0.1")
    b = HostInfo(host_id="b", connect_address="10.0.0.2")
    policy.host_up(a)
    policy.host_up(b)
    policy.host_down(a)
    assert [s.info.host_id for s in policy.pick()] == ["b"]


def test_round_robin_skips_hosts_that_are_down():
    policy = RoundRobinHostPolicy()
    a = HostInfo(host_id="a", connect_address="10.0.0.1")
    b = HostInfo(host_id="b", connect_address="10.0.0.2")
    policy.add_host(a)
    policy.add_host(b)
    b.set_state(NodeState.DOWN)
    assert [s.info.host_id for s in policy.pick()] == ["a"]


def test_cow_list_add():
    cow = CowHostList()
    addresses = ["10.0.0.1", "10.0.0.2", "10.0.0.3"]
    for address in addresses:
        assert cow.add(HostInfo(connect_address=address))
    hosts = cow.get()
    assert len(hosts) == 3
    assert {str(h.connect_address) for h in hosts} == set(addresses)


def test_cow_list_rejects_duplicate_address():
    cow = CowHostList()
    assert cow.add(HostInfo(connect_address="10.0.0.1"))
    assert not cow.add(HostInfo(connect_address="10.0.0.1"))
    assert len(cow.get()) == 1


def test_cow_list_remove():
    cow = CowHostList()
    cow.add(HostInfo(connect_address="10.0.0.1"))
    cow.add(HostInfo(connect_address="10.0.0.2"))
    assert cow.remove("10.0.0.1")
    assert not cow.remove("10.0.0.1")
    assert [str(h.connect_address) for h in cow.get()] == ["10.0.0.2"]


def test_cow_list_update_replaces_equal_host():
    cow = CowHostList()
    old = HostInfo(host_id="old", connect_address="10.0.0.1")
    cow.add(old)
    new = HostInfo(host_id="new", connect_address="10.0.0.1")
    cow.update(new)
    assert cow.get()[0] is new


def test_cow_list_snapshot_unchanged_by_later_writes():
    cow = CowHostList()
    cow.add(HostInfo(connect_address="10.0.0.1"))
    snapshot = cow.get()
    cow.add(HostInfo(connect_address="10.0.0.2"))
    assert len(snapshot) == 1
    assert len(cow.get()) == 2


def test_token_aware_simple_strategy():
    policy = TokenAwareHostPolicy(
        RoundRobinHostPolicy(),
        get_keyspace_name=lambda: KEYSPACE,
        get_keyspace_metadata=not_initialised,
    )
    assert next(policy.pick(None), None) is None

    hosts = [
        HostInfo(host_id=str(i), connect_address=f"10.0.0.{i + 1}", tokens=[token])
        for i, token in enumerate(["00", "25", "50", "75"])
    ]
    for host in hosts:
        policy.add_host(host)
    policy.set_partitioner("OrderedPartitioner")

    policy.get_keyspace_metadata = metadata_for("SimpleStrategy", replication_factor=2)
    policy.keyspace_changed(KeyspaceUpdateEvent(keyspace=KEYSPACE))

    assert policy.replicas() == {
        KEYSPACE: [
            HostTokens(b"00", [hosts[0], hosts[1]]),
            HostTokens(b"25", [hosts[1], hosts[2]]),
            HostTokens(b"50", [hosts[2], hosts[3]]),
            HostTokens(b"75", [hosts[3], hosts[0]]),
        ]
    }

    it = policy.pick(FakeQuery(b"20"))
    assert ids(it, 2) == ["0", "1"]


def test_token_aware_shuffled_replicas_come_first():
    policy = TokenAwareHostPolicy(
        RoundRobinHostPolicy(),
        shuffle_replicas=True,
        get_keyspace_name=lambda: KEYSPACE,
        get_keyspace_metadata=metadata_for("SimpleStrategy", replication_factor=2),
    )
    hosts = [
        HostInfo(host_id=str(i), connect_address=f"10.0.0.{i + 1}", tokens=[token])
        for i, token in enumerate(["00", "25", "50", "75"])
    ]
    policy.add_hosts(hosts)
    policy.set_partitioner("OrderedPartitioner")
    got = [s.info.host_id for s in policy.pick(FakeQuery(b"20"))]
    assert set(got[:2]) == {"0", "1"}
    assert sorted(got) == ["0", "1", "2", "3"]


def test_token_aware_nil_host_info():
    policy = TokenAwareHostPolicy(
        RoundRobinHostPolicy(),
        get_keyspace_name=lambda: KEYSPACE,
        get_keyspace_metadata=not_initialised,
    )
    hosts = [
        HostInfo(connect_address=f"10.0.0.{i}", tokens=[token])
        for i, token in enumerate(["00", "25", "50", "75"])
    ]
    for host in hosts:
        policy.add_host(host)
    policy.set_partitioner("OrderedPartitioner")

    it = policy.pick(FakeQuery(b"20"))
    first = next(it, None)
    assert first is not None
    assert first.info.connect_address == hosts[1].connect_address

    for host in hosts:
        policy.remove_host(host)
    assert next(it, None) is None


def test_token_aware_unsupported_partitioner_uses_fallback():
    policy = TokenAwareHostPolicy(RoundRobinHostPolicy())
    host = HostInfo(host_id="0", connect_address="10.0.0.1", tokens=["00"])
    policy.add_host(host)
    policy.set_partitioner("UnknownPartitioner")
    assert policy.replicas() == {}
    assert [s.info.host_id for s in policy.pick(FakeQuery(b"20"))] == ["0"]


def test_token_aware_network_topology():
    policy = TokenAwareHostPolicy(
        DCAwareRoundRobinPolicy("local"),
        get_keyspace_name=lambda: KEYSPACE,
        get_keyspace_metadata=not_initialised,
    )
    assert next(policy.pick(None), None) is None

    hosts = twelve_hosts()
    for host in hosts:
        policy.add_host(host)

    assert next(policy.pick(None), None) is not None
    assert next(policy.pick(FakeQuery(b"30")), None) is not None

    policy.set_partitioner("OrderedPartitioner")
    policy.get_keyspace_metadata = metadata_for(
        "NetworkTopologyStrategy", local=1, remote1=1, remote2=1
    )
    policy.keyspace_changed(KeyspaceUpdateEvent(keyspace=KEYSPACE))

    expected = [
        HostTokens(f"{(i + 1) * 5:02d}".encode(), [hosts[(i + k) % 12] for k in range(3)])
        for i in range(12)
    ]
    assert policy.replicas() == {KEYSPACE: expected}

    it = policy.pick(FakeQuery(b"23"))
    assert ids(it, 1) == ["4"]


def test_token_aware_network_strategy_non_local_fallback():
    policy = TokenAwareHostPolicy(
        DCAwareRoundRobinPolicy("local"),
        non_local_replicas_fallback=True,
        get_keyspace_name=lambda: KEYSPACE,
        get_keyspace_metadata=not_initialised,
    )
    assert next(policy.pick(None), None) is None

    hosts = twelve_hosts()
    for host in hosts:
        policy.add_host(host)
    policy.set_partitioner("OrderedPartitioner")
    policy.get_keyspace_metadata = metadata_for(
        "NetworkTopologyStrategy", local=2, remote1=2, remote2=2
    )
    policy.keyspace_changed(KeyspaceUpdateEvent(keyspace=KEYSPACE))

    expected = [
        HostTokens(f"{(i + 1) * 5:02d}".encode(), [hosts[(i + k) % 12] for k in range(6)])
        for i in range(12)
    ]
    assert policy.replicas() == {KEYSPACE: expected}

    it = policy.pick(FakeQuery(b"23"))
    assert ids(it, 6) == ["4", "7", "3", "5", "6", "8"]


def test_token_aware_fallback_hosts_not_repeated():
    policy = TokenAwareHostPolicy(
        DCAwareRoundRobinPolicy("local"),
        get_keyspace_name=lambda: KEYSPACE,
        get_keyspace_metadata=metadata_for(
            "NetworkTopologyStrategy", local=1, remote1=1, remote2=1
        ),
    )
    policy.add_hosts(twelve_hosts())
    policy.set_partitioner("OrderedPartitioner")
    got = [s.info.host_id for s in policy.pick(FakeQuery(b"23"))]
    assert len(got) == len(set(got)) == 12
    assert got[0] == "4"


def test_host_pool_policy_sequence():
    policy = HostPoolHostPolicy(SimpleHostPool())
    hosts = [
        HostInfo(host_id="0", connect_address="10.0.0.0"),
        HostInfo(host_id="1", connect_address="10.0.0.1"),
    ]
    policy.set_hosts(hosts)

    it = policy.pick(None)
    a = next(it)
    assert a.info.host_id == "0"
    a.mark(None)

    b = next(it)
    assert b.info.host_id == "1"
    b.mark(RuntimeError("error"))

    c = next(it)
    assert c.info.host_id == "0"
    c.mark(None)

    d = next(it)
    assert d.info.host_id == "0"
    d.mark(None)


def test_host_pool_policy_empty_after_removal():
    policy = HostPoolHostPolicy()
    host = HostInfo(host_id="0", connect_address="10.0.0.1")
    policy.add_host(host)
    assert next(policy.pick()).info is host
    policy.remove_host(host)
    assert next(policy.pick(), None) is None


def test_host_pool_all_dead_revives_hosts():
    pool = SimpleHostPool(["a", "b"])
    pool.get().mark(RuntimeError("down"))
    pool.get().mark(RuntimeError("down"))
    assert pool.get().host == "a"


def test_host_pool_empty_raises():
    with pytest.raises(LookupError):
        SimpleHostPool().get()


def test_dc_aware_local_hosts_first():
    policy = DCAwareRoundRobinPolicy("local")
    hosts = [
        HostInfo(host_id="0", connect_address="10.0.0.1", data_center="local"),
        HostInfo(host_id="1", connect_address="10.0.0.2", data_center="local"),
        HostInfo(host_id="2", connect_address="10.0.0.3", data_center="remote"),
        HostInfo(host_id="3", connect_address="10.0.0.4", data_center="remote"),
    ]
    for host in hosts:
        policy.add_host(host)

    picked = list(policy.pick(None))
    got = [s.info.host_id for s in picked]
    assert sorted(got) == ["0", "1", "2", "3"]
    dcs = [s.info.data_center for s in picked]
    assert dcs == ["local", "local", "remote", "remote"]


def test_dc_aware_is_local_and_remove():
    policy = DCAwareRoundRobinPolicy("local")
    local = HostInfo(host_id="0", connect_address="10.0.0.1", data_center="local")
    remote = HostInfo(host_id="1", connect_address="10.0.0.2", data_center="remote")
    assert policy.is_local(local)
    assert not policy.is_local(remote)
    policy.host_up(local)
    policy.host_up(remote)
    policy.host_down(local)
    assert [s.info.host_id for s in policy.pick()] == ["1"]