"""Replication runners."""

from ccarrivals.experiment.runner import run_day, simulate_daily_counts

__all__ = ["run_day", "simulate_daily_counts"]
