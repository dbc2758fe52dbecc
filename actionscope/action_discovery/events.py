"""
actionscope/action_discovery/events.py

Fire-and-forget notification streams for the analyzer.

Streams:
- status: single most-recent status string (e.g. "Scanning requests... 400")
- action-added: one ActionInvocation per newly recorded invocation
- data-changed: bulk change signal after scans, note edits and resets

Delivery is synchronous, so a subscriber has seen an event before the
emitting call returns. A failing subscriber is logged and skipped.
"""

from collections.abc import Callable

from actionscope.action_discovery.models import ActionInvocation
from actionscope.utils.logger import get_logger

logger = get_logger(name=__name__)

StatusListener = Callable[[str], None]
ActionAddedListener = Callable[[ActionInvocation], None]
DataChangedListener = Callable[[], None]


class EventBus:
    """Subscription registry for analyzer notifications."""

    def __init__(self) -> None:
        self._status_listeners: list[StatusListener] = []
        self._action_added_listeners: list[ActionAddedListener] = []
        self._data_changed_listeners: list[DataChangedListener] = []
        self._latest_status: str = ""

    @property
    def latest_status(self) -> str:
        """The most recently emitted status string."""
        return self._latest_status

    def subscribe_status(self, listener: StatusListener) -> Callable[[], None]:
        """Register a status listener. Returns a callable that unsubscribes it."""
        self._status_listeners.append(listener)
        return lambda: self._remove(self._status_listeners, listener)

    def subscribe_action_added(self, listener: ActionAddedListener) -> Callable[[], None]:
        self._action_added_listeners.append(listener)
        return lambda: self._remove(self._action_added_listeners, listener)

    def subscribe_data_changed(self, listener: DataChangedListener) -> Callable[[], None]:
        self._data_changed_listeners.append(listener)
        return lambda: self._remove(self._data_changed_listeners, listener)

    def send_status(self, status: str) -> None:
        self._latest_status = status
        logger.debug("Status: %s", status)
        for listener in list(self._status_listeners):
            self._deliver(listener, status)

    def send_action_added(self, entry: ActionInvocation) -> None:
        for listener in list(self._action_added_listeners):
            self._deliver(listener, entry.model_copy())

    def send_data_changed(self) -> None:
        for listener in list(self._data_changed_listeners):
            self._deliver(listener)

    @staticmethod
    def _remove(listeners: list, listener: Callable) -> None:
        if listener in listeners:
            listeners.remove(listener)

    @staticmethod
    def _deliver(listener: Callable, *args: object) -> None:
        try:
            listener(*args)
        except Exception:
            logger.exception("Event listener %r failed", listener)
