"""
actionscope/action_discovery/store.py

Correlation store for executed and declared server actions.

Owns every mutable mapping of the engine:
- invocations: append-only list of ActionInvocation, one per request id
- usages: append-only ActionUsage history per action id
- notes: note text per action id (auto "Function: <name>" prefix + analyst text)
- names: action id -> function name, add-only
- declared: action id -> DeclaredAction, replaced on every full discovery pass

Classification views are derived from these mappings on every read and are
never cached.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

from actionscope.action_discovery.models import (
    ActionInvocation,
    ActionStatus,
    ActionUsage,
    DeclaredAction,
    DiscoveredActionRow,
    DiscoveryResult,
)
from actionscope.action_discovery.security import analyze_security, format_security_notes, safe_json_parse
from actionscope.config import Config
from actionscope.data_models.result import OperationResult
from actionscope.data_models.traffic import HttpRequest, HttpResponse
from actionscope.utils.logger import get_logger

logger = get_logger(name=__name__)

UNKNOWN_FUNCTION = "Unknown"
UNKNOWN_CHUNK = "Not found"


def to_iso(value: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a trailing Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def function_note_prefix(function_name: str) -> str:
    return f"Function: {function_name}"


class CorrelationStore:
    """
    Single owner of the engine's state.

    Every public method takes the store lock, so one request/response pair is
    admitted in full before any other caller observes the store.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._invocations: list[ActionInvocation] = []
        self._usages_by_id: dict[str, list[ActionUsage]] = {}
        self._notes_by_id: dict[str, str] = {}
        self._names_by_id: dict[str, str] = {}
        self._declared_by_id: dict[str, DeclaredAction] = {}
        self._seen_request_ids: set[str] = set()

    @contextmanager
    def batch(self) -> Iterator["CorrelationStore"]:
        """Hold the store lock across several calls (e.g. a discovery page)."""
        with self._lock:
            yield self

    # Invocations _________________________________________________________________________________

    def has_seen(self, request_id: str) -> bool:
        with self._lock:
            return request_id in self._seen_request_ids

    def usage_count(self, action_id: str) -> int:
        with self._lock:
            return len(self._usages_by_id.get(action_id, []))

    def record_invocation(
        self,
        request: HttpRequest,
        response: HttpResponse,
        action_id: str,
    ) -> ActionInvocation | None:
        """
        Admit one request/response pair carrying an action id.

        Security notes see the usage count from before this invocation.

        Returns:
            The new invocation, or None when the request id was already processed.
        """
        with self._lock:
            request_id = request.request_id
            if request_id in self._seen_request_ids:
                logger.debug("Skipping already processed request %s", request_id)
                return None

            parameters = request.body or ""
            notes = analyze_security(
                request,
                response,
                action_id,
                parameters,
                prior_usage_count=len(self._usages_by_id.get(action_id, [])),
            )
            security_notes = format_security_notes(notes)
            timestamp = to_iso(response.created_at)

            entry = ActionInvocation(
                id=len(self._invocations) + 1,
                request_id=request_id,
                method=request.method,
                url=request.url,
                action_id=action_id,
                parameters=parameters,
                request_size=request.raw_size,
                response_size=response.raw_size,
                status_code=response.status_code,
                timestamp=timestamp,
                security_notes=security_notes,
                action_notes=self.ensure_action_notes(action_id),
            )
            usage = ActionUsage(
                timestamp=timestamp,
                url=entry.url,
                method=entry.method,
                status_code=entry.status_code,
                parameters=parameters,
                security_notes=security_notes,
                request_id=request_id,
            )

            self._seen_request_ids.add(request_id)
            self._invocations.append(entry)
            self._usages_by_id.setdefault(action_id, []).append(usage)
            return entry.model_copy()

    def get_invocations(self) -> list[ActionInvocation]:
        """
        Snapshot of every invocation in processing order.
        action_notes is looked up from the note table at read time.
        """
        with self._lock:
            return [
                entry.model_copy(update={"action_notes": self._notes_by_id.get(entry.action_id, entry.action_notes)})
                for entry in self._invocations
            ]

    def get_usages(self, action_id: str) -> list[ActionUsage]:
        with self._lock:
            return [usage.model_copy() for usage in self._usages_by_id.get(action_id, [])]

    def executed_action_ids(self) -> list[str]:
        """Executed action ids in order of first execution."""
        with self._lock:
            return list(dict.fromkeys(entry.action_id for entry in self._invocations))

    def latest_request_id_for(self, action_id: str) -> str | None:
        """
        Request id to use as a template for invoking action_id: its last usage,
        else the most recent invocation of any action.
        """
        with self._lock:
            usages = self._usages_by_id.get(action_id)
            if usages:
                return usages[-1].request_id
            if self._invocations:
                return self._invocations[-1].request_id
            return None

    # Names and notes _____________________________________________________________________________

    def get_function_name(self, action_id: str) -> str | None:
        with self._lock:
            return self._names_by_id.get(action_id)

    def learn_function_name(self, action_id: str, function_name: str) -> bool:
        """Record a name for an id that has none yet. Returns True if the name was new."""
        with self._lock:
            if action_id in self._names_by_id:
                return False
            self._names_by_id[action_id] = function_name
            return True

    def named_action_ids(self) -> list[str]:
        with self._lock:
            return list(self._names_by_id)

    def ensure_action_notes(self, action_id: str) -> str:
        """
        Make sure the note for action_id starts with its "Function: <name>" line.

        Returns:
            The current note text ("" when there is neither a note nor a name).
        """
        with self._lock:
            existing = self._notes_by_id.get(action_id)
            function_name = self._names_by_id.get(action_id)
            if function_name is None:
                return existing or ""

            prefix = function_note_prefix(function_name)
            if existing is None:
                self._notes_by_id[action_id] = prefix
                return prefix
            if prefix in existing:
                return existing

            updated = f"{prefix}\n{existing}"
            self._notes_by_id[action_id] = updated
            return updated

    def get_action_note(self, action_id: str) -> str:
        with self._lock:
            return self._notes_by_id.get(action_id, "")

    def set_action_note(self, action_id: str, note: str) -> None:
        """
        Replace the whole note for action_id with analyst text.
        The function prefix comes back only when a later pass touches the id.
        """
        with self._lock:
            self._notes_by_id[action_id] = note

    def get_notes(self) -> dict[str, str]:
        with self._lock:
            return dict(self._notes_by_id)

    # Declared actions ____________________________________________________________________________

    def replace_declared_actions(self) -> None:
        """Start a fresh discovery inventory."""
        with self._lock:
            self._declared_by_id = {}

    def add_declared_action(
        self,
        action_id: str,
        function_name: str,
        chunk_file: str,
        chunk_request_id: str,
    ) -> bool:
        """
        Record a declared action if its id is new to the current inventory.
        Also back-fills the name table and the note prefix.

        Returns:
            True if the action was added.
        """
        with self._lock:
            if action_id in self._declared_by_id:
                return False
            self._declared_by_id[action_id] = DeclaredAction(
                action_id=action_id,
                function_name=function_name,
                chunk_file=chunk_file,
                first_seen=now_iso(),
                chunk_request_id=chunk_request_id,
            )
            if self.learn_function_name(action_id, function_name):
                self.ensure_action_notes(action_id)
            return True

    def get_declared_actions(self) -> list[DeclaredAction]:
        with self._lock:
            return [declared.model_copy() for declared in self._declared_by_id.values()]

    def get_chunk_request_id(self, action_id: str) -> OperationResult[str]:
        """Request id of the chunk that declared action_id."""
        with self._lock:
            declared = self._declared_by_id.get(action_id)
            if declared is None:
                return OperationResult.failure("No chunk request found for action")
            return OperationResult.success(declared.chunk_request_id)

    # Derived views _______________________________________________________________________________

    def _executed_function_names(self, executed_ids: list[str]) -> set[str]:
        return {self._names_by_id[action_id] for action_id in executed_ids if self._names_by_id.get(action_id)}

    def get_discovery(self, status: str = "") -> DiscoveryResult:
        """
        Classify every known action id.

        Declared ids are reported in discovery order; executed ids without a
        declaration follow in order of first execution.
        """
        with self._lock:
            executed_ids = self.executed_action_ids()
            executed_set = set(executed_ids)
            executed_names = self._executed_function_names(executed_ids)

            all_rows: list[DiscoveredActionRow] = []
            unused_rows: list[DiscoveredActionRow] = []
            for declared in self._declared_by_id.values():
                if declared.action_id in executed_set:
                    action_status = ActionStatus.EXECUTED
                elif declared.function_name in executed_names:
                    action_status = ActionStatus.UNUSED_RENAMED
                else:
                    action_status = ActionStatus.NEVER_EXECUTED

                row = DiscoveredActionRow(
                    action_id=declared.action_id,
                    function_name=declared.function_name,
                    status=action_status,
                    chunk_file=declared.chunk_file,
                    executed_count=len(self._usages_by_id.get(declared.action_id, [])),
                    notes=self._notes_by_id.get(declared.action_id, ""),
                )
                all_rows.append(row)
                if action_status == ActionStatus.NEVER_EXECUTED:
                    unused_rows.append(row)

            unknown_rows = [
                DiscoveredActionRow(
                    action_id=action_id,
                    function_name=self._names_by_id.get(action_id, UNKNOWN_FUNCTION),
                    status=ActionStatus.NO_SOURCE,
                    chunk_file=UNKNOWN_CHUNK,
                    executed_count=len(self._usages_by_id.get(action_id, [])),
                    notes=self._notes_by_id.get(action_id, ""),
                )
                for action_id in executed_ids
                if action_id not in self._declared_by_id
            ]

            return DiscoveryResult(status=status, all=all_rows, unused=unused_rows, unknown=unknown_rows)

    def get_unused_actions(self) -> dict[str, dict[str, str]]:
        """Declared actions whose function name was never executed, keyed by id."""
        with self._lock:
            executed_names = self._executed_function_names(self.executed_action_ids())
            return {
                action_id: {
                    "functionName": declared.function_name,
                    "chunkFile": declared.chunk_file,
                    "discoveryTime": declared.first_seen,
                    "status": ActionStatus.NEVER_EXECUTED.value,
                }
                for action_id, declared in self._declared_by_id.items()
                if declared.function_name not in executed_names
            }

    def get_action_summaries(
        self,
        include_security: bool = True,
        include_full_details: bool = True,
        sample_size: int | None = None,
    ) -> dict[str, dict[str, Any]]:
        """Per-action usage summary for exports, keyed by action id."""
        samples = Config.EXPORT_SAMPLE_SIZE if sample_size is None else sample_size
        with self._lock:
            summaries: dict[str, dict[str, Any]] = {}
            for action_id, usages in self._usages_by_id.items():
                summary: dict[str, Any] = {
                    "functionName": self._names_by_id.get(action_id, UNKNOWN_FUNCTION),
                    "count": len(usages),
                    "endpoints": list(dict.fromkeys(u.url for u in usages)),
                    "methods": list(dict.fromkeys(u.method for u in usages)),
                    "statusCodes": list(dict.fromkeys(u.status_code for u in usages)),
                    "parameters": _parameter_keys(usages),
                }
                if include_security:
                    summary["securityNotes"] = list(dict.fromkeys(u.security_notes for u in usages if u.security_notes))
                summary["userNotes"] = self._notes_by_id.get(action_id, "")
                if include_full_details:
                    summary["requests"] = [
                        {
                            "timestamp": u.timestamp,
                            "url": u.url,
                            "method": u.method,
                            "statusCode": u.status_code,
                            "parameters": u.parameters,
                            "requestId": u.request_id,
                        }
                        for u in usages[:samples]
                    ]
                summaries[action_id] = summary
            return summaries

    def counts(self) -> dict[str, int]:
        with self._lock:
            return {
                "totalRequests": len(self._invocations),
                "uniqueActions": len(self._usages_by_id),
                "totalDiscovered": len(self._declared_by_id),
            }

    # Reset _______________________________________________________________________________________

    def clear(self) -> None:
        """
        Drop invocations, usage history and the processed-request set.
        Names, notes and the declared inventory survive a clear.
        """
        with self._lock:
            self._invocations = []
            self._usages_by_id = {}
            self._seen_request_ids = set()
            logger.info("Cleared invocations and usage history")

    def reset_all(self) -> None:
        """Drop every mapping, returning the store to its initial state."""
        with self._lock:
            self.clear()
            self._notes_by_id = {}
            self._names_by_id = {}
            self._declared_by_id = {}


def _parameter_keys(usages: list[ActionUsage]) -> list[str]:
    """Distinct keys of JSON object bodies, and of objects inside JSON array bodies."""
    keys: dict[str, None] = {}
    for usage in usages:
        parsed = safe_json_parse(usage.parameters)
        objects: list[Any]
        if isinstance(parsed, dict):
            objects = [parsed]
        elif isinstance(parsed, list):
            objects = [item for item in parsed if isinstance(item, dict)]
        else:
            continue
        for obj in objects:
            for key in obj:
                keys.setdefault(str(key), None)
    return list(keys)
