"""UUIDs, token rings, replica placement, host selection, retry policies and a prepared statement cache for CQL clients."""

__version__ = "0.1.0"

__all__ = [
    "uuid",
    "ring",
    "token",
    "topology",
    "retry",
    "prepared_cache",
    "host_policies",
]