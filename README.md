# cqlrouting

Client-side routing building blocks for CQL clusters: UUIDs, the ring of known
hosts, partitioners and token rings, replica placement strategies, host
selection policies, retry and reconnection policies, and a prepared statement
cache. It has no dependencies outside the standard library.

## Modules

- `cqlrouting.uuid`: the `UUID` class (`variant()`, `version()`, `node()`,
  `clock()`, `timestamp()`, `time()`, `to_json()` / `UUID.from_json()`,
  `to_text()` / `UUID.from_text()`), the `Variant` enum, and the functions
  `parse_uuid`, `uuid_from_bytes`, `random_uuid`, `time_uuid`, `uuid_from_time`,
  `min_time_uuid`, `max_time_uuid` and `time_uuid_with`.
- `cqlrouting.ring`: `HostInfo`, `NodeState`, the `Ring` of hosts keyed by
  connect address, and `ClusterMetadata`.
- `cqlrouting.token`: `Murmur3Partitioner`, `OrderedPartitioner`,
  `RandomPartitioner`, `HostToken`, `TokenRing`, `murmur3_h1` and
  `new_token_ring`, which picks the partitioner by the end of its name.
- `cqlrouting.topology`: `KeyspaceMetadata`, `SimpleStrategy`, `NetworkTopology`,
  `TokenRingReplicas` (with `replicas_for`), `get_strategy` and
  `replication_factor_from_options`.
- `cqlrouting.retry`: `RetryType`, `SimpleRetryPolicy`,
  `ExponentialBackoffRetryPolicy`, `DowngradingConsistencyRetryPolicy`,
  `SimpleConvictionPolicy`, `ConstantReconnectionPolicy`,
  `ExponentialReconnectionPolicy`, `NonSpeculativeExecution`,
  `SimpleSpeculativeExecution`, `exponential_time`, and the errors
  `RequestErrUnavailable`, `RequestErrWriteTimeout`, `RequestErrReadTimeout` and
  `UnknownRetryTypeError`. Durations are in seconds.
- `cqlrouting.prepared_cache`: `PreparedLRU`, a thread-safe bounded LRU cache.
- `cqlrouting.host_policies`: `RoundRobinHostPolicy`, `DCAwareRoundRobinPolicy`,
  `HostPoolHostPolicy` (over a `SimpleHostPool` by default),
  `TokenAwareHostPolicy`, `CowHostList`, `SelectedHost`, `SelectedHostPoolHost`
  and `KeyspaceUpdateEvent`.

## Installation

```
pip install cqlrouting
```

## Examples

UUIDs:

```python
from datetime import datetime, timezone
from cqlrouting.uuid import parse_uuid, max_time_uuid, min_time_uuid

u = parse_uuid("486f3a88-775b-11e3-ae07-d231feb1dc81")
print(u.version(), u.time())   # 1 2014-01-07 05:19:29.222516+00:00

start = min_time_uuid(datetime(2024, 1, 1, tzinfo=timezone.utc))
end = max_time_uuid(datetime(2024, 2, 1, tzinfo=timezone.utc))
```

Token-aware routing. The policy learns keyspace replication settings through
the `get_keyspace_metadata` callable; without it, queries go to the primary
owner of the token and then to the fallback policy. A query passed to `pick`
needs `get_routing_key()` and `keyspace()` methods.

```python
from cqlrouting.host_policies import (
    DCAwareRoundRobinPolicy,
    KeyspaceUpdateEvent,
    TokenAwareHostPolicy,
)
from cqlrouting.ring import HostInfo
from cqlrouting.topology import KeyspaceMetadata


def keyspace_metadata(name):
    return KeyspaceMetadata(
        name=name,
        strategy_class="NetworkTopologyStrategy",
        strategy_options={"class": "NetworkTopologyStrategy", "dc1": 2},
    )


class Query:
    def get_routing_key(self):
        return b"user-42"

    def keyspace(self):
        return "app"


policy = TokenAwareHostPolicy(
    DCAwareRoundRobinPolicy("dc1"),
    get_keyspace_metadata=keyspace_metadata,
    get_keyspace_name=lambda: "app",
)
policy.add_hosts([
    HostInfo(host_id="a", connect_address="10.0.0.1", data_center="dc1", tokens=["-4611686018427387904"]),
    HostInfo(host_id="b", connect_address="10.0.0.2", data_center="dc1", tokens=["0"]),
    HostInfo(host_id="c", connect_address="10.0.0.3", data_center="dc1", tokens=["4611686018427387904"]),
])
policy.set_partitioner("org.apache.cassandra.dht.Murmur3Partitioner")
policy.keyspace_changed(KeyspaceUpdateEvent(keyspace="app"))

for selected in policy.pick(Query()):
    print(selected.info.host_id)
    selected.mark(None)
```

Retry decisions:

```python
from cqlrouting.retry import (
    DowngradingConsistencyRetryPolicy,
    RequestErrWriteTimeout,
    RetryType,
)

policy = DowngradingConsistencyRetryPolicy(["THREE", "TWO", "ONE"])
error = RequestErrWriteTimeout(write_type="UNLOGGED_BATCH")
assert policy.get_retry_type(error) is RetryType.RETRY
```

Prepared statement cache:

```python
from cqlrouting.prepared_cache import PreparedLRU

cache = PreparedLRU(max_entries=2)
key = cache.key_for("10.0.0.1", "app", "SELECT * FROM users WHERE id = ?")
value, cached = cache.exec_if_missing(key, lambda lru: "prepared-id")
```

## What this package does not do

It opens no connections and speaks no wire protocol: there are no sessions,
queries, batches or query execution here. Host selection policies only order
the `HostInfo` objects they are given; keyspace metadata and partitioner names
must be supplied by the caller, and nothing marks hosts up or down by itself.

## Running the tests

```
pip install -e ".[test]"
pytest
```