"""
actionscope/infra/traffic_data_store.py

JSONL-backed traffic source for captured browser/proxy sessions.

Each line holds one request/response pair, either nested:
    {"request": {...HttpRequest...}, "response": {...HttpResponse...}}
or flat, as written by capture tools:
    {"request_id", "method", "url", "request_headers", "request_body",
     "status", "response_headers", "response_body", "timestamp", ...}
"""

import json
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from actionscope.config import Config
from actionscope.data_models.traffic import HttpRequest, HttpResponse, RequestResponsePair, TrafficPage
from actionscope.infra.traffic_source import TrafficSource
from actionscope.utils.exceptions import InvalidCursorError
from actionscope.utils.logger import get_logger

logger = get_logger(name=__name__)


@dataclass
class TrafficStats:
    """Summary statistics for a traffic capture."""

    total_pairs: int = 0
    with_response: int = 0
    action_requests: int = 0
    chunk_responses: int = 0
    total_bytes: int = 0
    hosts: dict[str, int] = field(default_factory=dict)

    def to_summary(self) -> str:
        """Generate a human-readable summary."""
        lines = [
            f"Total Requests: {self.total_pairs}",
            f"With Response: {self.with_response}",
            f"Action Requests: {self.action_requests}",
            f"Chunk Responses: {self.chunk_responses}",
            f"Total Size: {self._format_bytes(self.total_bytes)}",
            "",
            "Top Hosts:",
        ]
        for host, count in sorted(self.hosts.items(), key=lambda x: -x[1])[:10]:
            lines.append(f"  {host}: {count}")
        return "\n".join(lines)

    @staticmethod
    def _format_bytes(num_bytes: float) -> str:
        """Format bytes as human-readable string."""
        for unit in ["B", "KB", "MB", "GB"]:
            if abs(num_bytes) < 1_024:
                return f"{num_bytes:.1f} {unit}"
            num_bytes = num_bytes / 1_024
        return f"{num_bytes:.1f} TB"


def _pair_from_flat_record(data: dict[str, Any], line_num: int) -> RequestResponsePair:
    """Build a pair from the flat capture record layout."""
    request_id = str(data.get("request_id") or f"line-{line_num}")
    created_at = data.get("timestamp") or data.get("created_at")

    request_fields: dict[str, Any] = {
        "request_id": request_id,
        "method": data.get("method", "GET"),
        "url": data["url"],
        "headers": data.get("request_headers") or {},
        "body": data.get("request_body") or data.get("post_data") or "",
        "raw": data.get("request_raw"),
    }
    if created_at is not None:
        request_fields["created_at"] = created_at
    request = HttpRequest.model_validate(request_fields)

    response: HttpResponse | None = None
    if data.get("status") is not None or data.get("response_body") is not None:
        response_fields: dict[str, Any] = {
            "status_code": data.get("status") or 0,
            "headers": data.get("response_headers") or {},
            "body": data.get("response_body") or "",
            "raw": data.get("response_raw"),
        }
        if created_at is not None:
            response_fields["created_at"] = created_at
        response = HttpResponse.model_validate(response_fields)

    return RequestResponsePair(request=request, response=response)


class TrafficDataStore(TrafficSource):
    """
    Traffic source holding every pair of a JSONL capture in memory.

    Pairs keep file order; the pagination cursor is the offset of the next
    pair. Pairs appended later (e.g. by a live capture) join the end.
    """

    def __init__(self, jsonl_path: str | None = None) -> None:
        """
        Initialize the store, optionally loading a JSONL capture.

        Args:
            jsonl_path: Path to a JSONL capture file.

        Raises:
            FileNotFoundError: If jsonl_path does not exist.
        """
        self._entries: list[RequestResponsePair] = []
        self._entry_index: dict[str, RequestResponsePair] = {}
        self._stats: TrafficStats = TrafficStats()

        if jsonl_path is not None:
            self._load(Path(jsonl_path))

        self._compute_stats()
        logger.debug("TrafficDataStore initialized with %d pairs", len(self._entries))

    @property
    def entries(self) -> list[RequestResponsePair]:
        return self._entries

    @property
    def stats(self) -> TrafficStats:
        return self._stats

    def _load(self, path: Path) -> None:
        if not path.exists():
            raise FileNotFoundError(f"JSONL file not found: {path}")

        with open(path, mode="r", encoding="utf-8") as f:
            for line_num, line in enumerate(f):
                line = line.strip()
                if not line:
                    continue
                try:
                    data = json.loads(line)
                    if not isinstance(data, dict):
                        logger.warning("Skipping line %d: expected a JSON object, got %s", line_num + 1, type(data).__name__)
                        continue
                    if "request" in data:
                        pair = RequestResponsePair.model_validate(data)
                    else:
                        pair = _pair_from_flat_record(data, line_num + 1)
                except (json.JSONDecodeError, ValueError, KeyError, TypeError, RecursionError) as e:
                    logger.warning("Failed to parse line %d: %s", line_num + 1, e)
                    continue
                self._add(pair)

    def _add(self, pair: RequestResponsePair) -> None:
        request_id = pair.request.request_id
        if request_id in self._entry_index:
            logger.warning("Duplicate request id %s in capture, keeping the first", request_id)
            return
        self._entries.append(pair)
        self._entry_index[request_id] = pair

    def append(self, pair: RequestResponsePair) -> None:
        """Add a newly captured pair at the end of the store."""
        self._add(pair)
        self._compute_stats()

    def _compute_stats(self) -> None:
        """Compute aggregate statistics."""
        from actionscope.action_discovery.patterns import is_bundle_request

        hosts: Counter[str] = Counter()
        with_response = 0
        action_requests = 0
        chunk_responses = 0
        total_bytes = 0

        for pair in self._entries:
            hosts[urlparse(pair.request.url).netloc] += 1
            if pair.request.has_header(Config.ACTION_HEADER):
                action_requests += 1
            if pair.response is not None:
                with_response += 1
                total_bytes += len(pair.response.body)
                if is_bundle_request(pair.request):
                    chunk_responses += 1

        self._stats = TrafficStats(
            total_pairs=len(self._entries),
            with_response=with_response,
            action_requests=action_requests,
            chunk_responses=chunk_responses,
            total_bytes=total_bytes,
            hosts=dict(hosts),
        )

    # TrafficSource implementation

    def query_page(self, first: int, after: str | None = None) -> TrafficPage:
        if first <= 0:
            raise ValueError(f"Page size must be positive, got {first}")

        start = 0
        if after is not None:
            if not after.isdigit():
                raise InvalidCursorError(f"Unknown cursor: {after!r}")
            start = int(after)

        items = self._entries[start:start + first]
        end = start + len(items)
        return TrafficPage(
            items=list(items),
            end_cursor=str(end),
            has_next_page=end < len(self._entries),
        )

    def get_pair(self, request_id: str) -> RequestResponsePair | None:
        return self._entry_index.get(request_id)

    def iter_pairs(self) -> list[RequestResponsePair]:
        return list(self._entries)

    def list_requests(self) -> list[dict[str, Any]]:
        """
        List all requests with summary info.

        Returns:
            List of dicts with keys: request_id, method, url, status.
        """
        return [
            {
                "request_id": pair.request.request_id,
                "method": pair.request.method,
                "url": pair.request.url,
                "status": pair.response.status_code if pair.response else None,
            }
            for pair in self._entries
        ]
