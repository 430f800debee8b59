"""Metrics for the RAID daemon."""

from .metrics import RaidMetrics

__all__ = ["RaidMetrics"]
