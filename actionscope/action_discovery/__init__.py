"""
actionscope/action_discovery/__init__.py

Server action discovery and correlation - extracts declared actions from
Next.js chunks, records executed actions from captured traffic, classifies
them against each other and flags security-sensitive invocations.
"""

from actionscope.action_discovery.analyzer import ActionAnalyzer
from actionscope.action_discovery.events import EventBus
from actionscope.action_discovery.models import (
    ActionInvocation,
    ActionStatus,
    DiscoveryResult,
    ExportOptions,
)
from actionscope.action_discovery.observer import InMemoryFindingsSink, LiveObserver
from actionscope.action_discovery.store import CorrelationStore

__all__ = [
    "ActionAnalyzer",
    "ActionInvocation",
    "ActionStatus",
    "CorrelationStore",
    "DiscoveryResult",
    "EventBus",
    "ExportOptions",
    "InMemoryFindingsSink",
    "LiveObserver",
]
