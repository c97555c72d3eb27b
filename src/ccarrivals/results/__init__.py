"""Per-replication statistics collected from arrival processes."""

from ccarrivals.results.collector import ArrivalCounter

__all__ = ["ArrivalCounter"]
