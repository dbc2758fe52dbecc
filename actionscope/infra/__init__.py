"""
actionscope/infra

Access to captured traffic:
- TrafficSource: Abstract paginated source with body search helpers
- TrafficDataStore: JSONL-backed source
"""

from actionscope.infra.traffic_data_store import TrafficDataStore, TrafficStats
from actionscope.infra.traffic_source import TrafficSource

__all__ = [
    "TrafficDataStore",
    "TrafficSource",
    "TrafficStats",
]
