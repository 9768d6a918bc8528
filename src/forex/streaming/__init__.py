"""Streaming layer -- watched-instrument registry, connectivity and rate aggregation."""

from forex.streaming.aggregator import RateAggregator
from forex.streaming.monitor import ConnectionMonitor
from forex.streaming.rate_table import RateTable
from forex.streaming.registry import WatchRegistry

__all__ = ["ConnectionMonitor", "RateAggregator", "RateTable", "WatchRegistry"]
