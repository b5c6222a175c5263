from savekeeper.common.models import (
    Eviction,
    EvictionReason,
    RetentionPolicy,
    SaveRecord,
    Tier,
)

__all__ = [
    "Eviction",
    "EvictionReason",
    "RetentionPolicy",
    "SaveRecord",
    "Tier",
]
