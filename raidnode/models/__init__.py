"""Data models for the RAID maintenance engine."""

from .models import (
    BlockLocation,
    Codec,
    FileSnapshot,
    ParityAssociation,
    PolicyInfo,
    PolicyState,
    Statistics,
    WorkerStatus,
    TARGET_REPLICATION,
    META_REPLICATION,
    SIMULATE,
    MOD_TIME_PERIOD,
)

__all__ = [
    'BlockLocation',
    'Codec',
    'FileSnapshot',
    'ParityAssociation',
    'PolicyInfo',
    'PolicyState',
    'Statistics',
    'WorkerStatus',
    'TARGET_REPLICATION',
    'META_REPLICATION',
    'SIMULATE',
    'MOD_TIME_PERIOD',
]
