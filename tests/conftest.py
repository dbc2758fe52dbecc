"""
tests/conftest.py

Configuration for pytest.
"""

import json
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from actionscope.action_discovery.analyzer import ActionAnalyzer
from actionscope.action_discovery.store import CorrelationStore
from actionscope.data_models.traffic import HttpRequest, HttpResponse, RequestResponsePair
from actionscope.infra.traffic_data_store import TrafficDataStore


APP_ORIGIN = "https://app.example.com"
CHUNK_URL = f"{APP_ORIGIN}/_next/static/chunks/app/dashboard/page-3f2a9c.js"


@pytest.fixture(scope="session")
def tests_root() -> Path:
    """
    Root directory for tests.
    Returns:
        Path to the tests directory.
    """
    return Path(__file__).parent.resolve()


@pytest.fixture
def make_pair() -> Callable[..., RequestResponsePair]:
    """
    Factory fixture to create a request/response pair with hardcoded defaults.

    By default the request is an authenticated POST without an action header.

    Usage:
        pair = make_pair(request_id="r1", action_id="ab" * 20, body='["ab..."]')
        pair = make_pair(headers={"Host": "app.example.com"}, response_body="oops")
    """
    def _make(
        request_id: str = "req-1",
        method: str = "POST",
        url: str = f"{APP_ORIGIN}/dashboard",
        action_id: str | None = None,
        headers: dict[str, str] | None = None,
        body: str = "",
        status_code: int = 200,
        response_body: str = "0:{}",
        with_response: bool = True,
        created_at: datetime | None = None,
    ) -> RequestResponsePair:
        request_headers: dict[str, str] = {"Host": "app.example.com", "Cookie": "session=abc"}
        if headers is not None:
            request_headers = dict(headers)
        if action_id is not None:
            request_headers["Next-Action"] = action_id

        timestamp = created_at or datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
        request = HttpRequest(
            request_id=request_id,
            method=method,
            url=url,
            headers=request_headers,
            body=body,
            created_at=timestamp,
        )
        response = None
        if with_response:
            response = HttpResponse(
                status_code=status_code,
                headers={"Content-Type": "text/x-component"},
                body=response_body,
                created_at=timestamp,
            )
        return RequestResponsePair(request=request, response=response)

    return _make


@pytest.fixture
def make_chunk_body() -> Callable[..., str]:
    """
    Factory fixture rendering minified chunk text that registers server actions.

    Usage:
        body = make_chunk_body([("ab" * 20, "deleteUser"), ("cd" * 20, "updateRole")])
    """
    def _make(actions: list[tuple[str, str]]) -> str:
        calls = [
            f'let a{i}=(0,r.createServerReference)("{action_id}",r.callServer,void 0,r.findSourceMapURL,"{name}");'
            for i, (action_id, name) in enumerate(actions)
        ]
        return '"use strict";(self.webpackChunk_N_E=self.webpackChunk_N_E||[]).push([[931],{4821:(e,t,r)=>{' + "".join(calls) + "}}]);"

    return _make


@pytest.fixture
def make_chunk_pair(
    make_pair: Callable[..., RequestResponsePair],
    make_chunk_body: Callable[..., str],
) -> Callable[..., RequestResponsePair]:
    """Factory fixture for a GET of a Next.js chunk declaring the given actions."""
    def _make(
        request_id: str,
        actions: list[tuple[str, str]],
        url: str = CHUNK_URL,
    ) -> RequestResponsePair:
        return make_pair(
            request_id=request_id,
            method="GET",
            url=url,
            response_body=make_chunk_body(actions),
        )

    return _make


@pytest.fixture
def traffic_store() -> TrafficDataStore:
    """An empty in-memory traffic source."""
    return TrafficDataStore()


@pytest.fixture
def correlation_store() -> CorrelationStore:
    return CorrelationStore()


@pytest.fixture
def analyzer(traffic_store: TrafficDataStore, correlation_store: CorrelationStore) -> ActionAnalyzer:
    """Analyzer over traffic_store with a small page size to exercise pagination."""
    return ActionAnalyzer(traffic_store, store=correlation_store, page_size=2)


@pytest.fixture
def write_jsonl(tmp_path: Path) -> Callable[..., Path]:
    """Factory fixture writing records (dicts or raw strings) to a JSONL file."""
    def _write(records: list[dict[str, Any] | str], name: str = "capture.jsonl") -> Path:
        path = tmp_path / name
        with open(path, mode="w", encoding="utf-8") as f:
            for record in records:
                line = record if isinstance(record, str) else json.dumps(record)
                f.write(line + "\n")
        return path

    return _write
