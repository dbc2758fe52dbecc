"""
tests/unit/action_discovery/test_analyzer.py

Unit tests for the ActionAnalyzer pipeline: history scans over a paginated
source, name extraction, full discovery, lookups and test-request building.
"""

import json

import pytest

from actionscope.action_discovery.analyzer import ActionAnalyzer, get_action_id
from actionscope.action_discovery.models import ActionStatus, ExportOptions
from actionscope.data_models.traffic import HttpRequest, TrafficPage
from actionscope.infra.traffic_data_store import TrafficDataStore
from actionscope.utils.exceptions import TrafficSourceError


ACTION_ID = "deadbeef" * 5
OTHER_ID = "0123456789abcdef" * 3
NESTED_BODY = "[" * 100_000 + "]" * 100_000


class RecordingSource(TrafficDataStore):
    """Traffic store remembering the cursor of every page request."""

    def __init__(self) -> None:
        super().__init__()
        self.cursors: list[str | None] = []

    def query_page(self, first: int, after: str | None = None) -> TrafficPage:
        self.cursors.append(after)
        return super().query_page(first, after)


class FailingSource(TrafficDataStore):
    """Traffic store that fails to serve any page after the first."""

    def query_page(self, first: int, after: str | None = None) -> TrafficPage:
        if after is not None:
            raise TrafficSourceError("proxy history unavailable")
        return super().query_page(first, after)


@pytest.fixture
def statuses(analyzer: ActionAnalyzer) -> list[str]:
    received: list[str] = []
    analyzer.events.subscribe_status(received.append)
    return received


class TestGetActionId:
    def test_trimmed_first_value(self) -> None:
        request = HttpRequest(request_id="r", url="https://x/", headers=[("next-action", f"  {ACTION_ID} "), ("Next-Action", "x")])
        assert get_action_id(request) == ACTION_ID

    def test_blank_or_missing(self) -> None:
        assert get_action_id(HttpRequest(request_id="r", url="https://x/", headers={"Next-Action": "  "})) is None
        assert get_action_id(HttpRequest(request_id="r", url="https://x/")) is None


# ===========================================================================
# History scan
# ===========================================================================

class TestScanHistory:
    @pytest.fixture
    def recording_analyzer(self, make_pair, make_chunk_pair) -> tuple[ActionAnalyzer, RecordingSource]:
        source = RecordingSource()
        source.append(make_pair(request_id="r1", action_id=ACTION_ID))
        source.append(make_pair(request_id="r2"))
        source.append(make_pair(request_id="r3", action_id=ACTION_ID))
        source.append(make_chunk_pair("c1", [(ACTION_ID, "deleteUser")]))
        source.append(make_pair(request_id="r5", action_id=OTHER_ID))
        return ActionAnalyzer(source, page_size=2), source

    def test_follows_cursors_to_the_end(self, recording_analyzer) -> None:
        analyzer, source = recording_analyzer
        summary = analyzer.scan_history().unwrap()

        assert source.cursors == [None, "2", "4"]
        assert summary.scanned == 5
        assert summary.found == 3
        assert [entry.request_id for entry in analyzer.get_actions()] == ["r1", "r3", "r5"]

    def test_status_progression(self, recording_analyzer) -> None:
        analyzer, _ = recording_analyzer
        received: list[str] = []
        analyzer.events.subscribe_status(received.append)

        analyzer.scan_history()

        assert received == [
            "Scanning requests...",
            "Scanning requests... 2",
            "Scanning requests... 4",
            "Scanning requests... 5",
            "Scanned 5 requests (3 actions)",
        ]
        assert analyzer.events.latest_status == "Scanned 5 requests (3 actions)"

    def test_rescan_is_idempotent(self, recording_analyzer) -> None:
        analyzer, _ = recording_analyzer
        added: list[str] = []
        analyzer.events.subscribe_action_added(lambda entry: added.append(entry.request_id))

        analyzer.scan_history()
        analyzer.scan_history()

        assert len(analyzer.get_actions()) == 3
        assert added == ["r1", "r3", "r5"]

    def test_found_counts_header_presence(self, analyzer, traffic_store, make_pair) -> None:
        traffic_store.append(make_pair(request_id="r1", action_id=ACTION_ID))
        traffic_store.append(make_pair(request_id="r2", action_id=ACTION_ID, with_response=False))

        summary = analyzer.scan_history().unwrap()

        assert summary.found == 2
        assert len(analyzer.get_actions()) == 1

    def test_deeply_nested_body_does_not_abort_scan(self, analyzer, traffic_store, make_pair) -> None:
        traffic_store.append(make_pair(request_id="r1", action_id=ACTION_ID, body=NESTED_BODY))
        traffic_store.append(make_pair(request_id="r2", action_id=OTHER_ID, body=f'["{OTHER_ID}",{{"userId":7}}]'))

        result = analyzer.scan_history()

        assert result.ok
        assert [entry.request_id for entry in analyzer.get_actions()] == ["r1", "r2"]
        assert "Direct ID: userId=7" in analyzer.get_actions()[1].security_notes.split("; ")

    def test_failure_keeps_earlier_pages(self, make_pair) -> None:
        source = FailingSource()
        for i in range(4):
            source.append(make_pair(request_id=f"r{i}", action_id=ACTION_ID))
        analyzer = ActionAnalyzer(source, page_size=2)

        result = analyzer.scan_history()

        assert not result.ok
        assert result.error == "proxy history unavailable"
        assert analyzer.events.latest_status == "Scan failed"
        assert [entry.request_id for entry in analyzer.get_actions()] == ["r0", "r1"]

    def test_failing_listener_does_not_abort_scan(self, analyzer, traffic_store, make_pair) -> None:
        def _broken(_status: str) -> None:
            raise RuntimeError("listener bug")

        analyzer.events.subscribe_status(_broken)
        traffic_store.append(make_pair(request_id="r1", action_id=ACTION_ID))

        assert analyzer.scan_history().ok
        assert len(analyzer.get_actions()) == 1

    def test_unsubscribe(self, analyzer, traffic_store, make_pair) -> None:
        received: list[str] = []
        unsubscribe = analyzer.events.subscribe_status(received.append)
        unsubscribe()

        traffic_store.append(make_pair(request_id="r1", action_id=ACTION_ID))
        analyzer.scan_history()

        assert received == []


# ===========================================================================
# Name extraction vs. full discovery
# ===========================================================================

class TestNameExtraction:
    def test_attaches_names_to_executed_actions(self, analyzer, traffic_store, make_pair, make_chunk_pair) -> None:
        traffic_store.append(make_pair(request_id="r1", action_id=ACTION_ID))
        traffic_store.append(make_chunk_pair("c1", [(ACTION_ID, "deleteUser")]))
        analyzer.scan_history()

        summary = analyzer.extract_action_names().unwrap()

        assert summary.scanned_chunks == 1
        assert summary.names_extracted == 1
        assert analyzer.get_actions()[0].action_notes == "Function: deleteUser"

        view = analyzer.get_discovery()
        assert view.all == []
        assert view.unknown[0].function_name == "deleteUser"

    def test_is_add_only(self, analyzer, correlation_store, traffic_store, make_chunk_pair) -> None:
        correlation_store.learn_function_name(ACTION_ID, "foo")
        traffic_store.append(make_chunk_pair("c1", [(ACTION_ID, "bar")]))

        summary = analyzer.extract_action_names().unwrap()

        assert summary.names_extracted == 0
        assert correlation_store.get_function_name(ACTION_ID) == "foo"

    def test_status(self, analyzer, statuses, traffic_store, make_chunk_pair) -> None:
        traffic_store.append(make_chunk_pair("c1", [(ACTION_ID, "deleteUser"), (OTHER_ID, "updateRole")]))
        analyzer.extract_action_names()

        assert statuses[0] == "Scanning chunk files..."
        assert statuses[-1] == "Extracted 2 action names (1 chunks scanned)"


class TestFindAllActions:
    def test_classifies_declared_actions(self, analyzer, traffic_store, make_pair, make_chunk_pair) -> None:
        traffic_store.append(make_pair(request_id="r1", action_id=ACTION_ID))
        traffic_store.append(make_chunk_pair("c1", [(ACTION_ID, "deleteUser"), (OTHER_ID, "updateRole")]))
        analyzer.scan_history()

        view = analyzer.find_all_actions().unwrap()

        assert view.status == "Found 2 actions (1 unused)"
        assert [(row.action_id, row.status) for row in view.all] == [
            (ACTION_ID, ActionStatus.EXECUTED),
            (OTHER_ID, ActionStatus.NEVER_EXECUTED),
        ]
        assert view.all[0].chunk_file == "page-3f2a9c.js"
        assert analyzer.get_chunk_request_id_for_action(OTHER_ID).unwrap() == "c1"
        assert analyzer.events.latest_status == "Found 2 actions (1 unused)"

    def test_declared_name_comes_from_the_chunk(self, analyzer, correlation_store, traffic_store, make_chunk_pair) -> None:
        correlation_store.learn_function_name(ACTION_ID, "foo")
        traffic_store.append(make_chunk_pair("c1", [(ACTION_ID, "bar")]))

        view = analyzer.find_all_actions().unwrap()

        assert view.all[0].function_name == "bar"
        assert correlation_store.get_function_name(ACTION_ID) == "foo"

    def test_first_chunk_wins(self, analyzer, traffic_store, make_chunk_pair) -> None:
        traffic_store.append(make_chunk_pair("c1", [(ACTION_ID, "deleteUser")], url="https://app.example.com/_next/static/chunks/a.js"))
        traffic_store.append(make_chunk_pair("c2", [(ACTION_ID, "removeUser")], url="https://app.example.com/_next/static/chunks/b.js"))

        view = analyzer.find_all_actions().unwrap()

        assert [(row.function_name, row.chunk_file) for row in view.all] == [("deleteUser", "a.js")]

    def test_replaces_previous_inventory(self, analyzer, correlation_store, traffic_store, make_chunk_pair) -> None:
        traffic_store.append(make_chunk_pair("c1", [(ACTION_ID, "deleteUser")]))
        analyzer.find_all_actions()

        rerun = ActionAnalyzer(TrafficDataStore(), store=correlation_store).find_all_actions().unwrap()

        assert rerun.all == []
        assert rerun.status == "Found 0 actions (0 unused)"

    def test_ignores_non_chunk_responses(self, analyzer, traffic_store, make_pair, make_chunk_body) -> None:
        traffic_store.append(make_pair(
            request_id="js1",
            method="GET",
            url="https://app.example.com/static/app.js",
            response_body=make_chunk_body([(ACTION_ID, "deleteUser")]),
        ))

        assert analyzer.find_all_actions().unwrap().all == []

    def test_failure(self, make_chunk_pair) -> None:
        source = FailingSource()
        for i in range(3):
            source.append(make_chunk_pair(f"c{i}", [(ACTION_ID, "deleteUser")]))
        analyzer = ActionAnalyzer(source, page_size=1)

        result = analyzer.find_all_actions()

        assert not result.ok
        assert analyzer.events.latest_status == "Discovery failed"


# ===========================================================================
# Targeted analysis and lookups
# ===========================================================================

class TestLookups:
    def test_analyze_requests_by_id(self, analyzer, traffic_store, make_pair) -> None:
        traffic_store.append(make_pair(request_id="r1", action_id=ACTION_ID))
        traffic_store.append(make_pair(request_id="r2"))

        summary = analyzer.analyze_requests_by_id(["r1", "missing", "r2"]).unwrap()

        assert summary.analyzed == 3
        assert summary.found == 1
        assert len(analyzer.get_actions()) == 1

    def test_lookup_action_for_request(self, analyzer, traffic_store, make_pair) -> None:
        traffic_store.append(make_pair(request_id="r1", action_id=ACTION_ID))
        traffic_store.append(make_pair(request_id="r2"))

        lookup = analyzer.lookup_action_for_request("r1").unwrap()
        assert lookup.action_id == ACTION_ID
        assert lookup.function_name == "Unknown"

        assert analyzer.lookup_action_for_request("nope").error == "Request not found"
        assert analyzer.lookup_action_for_request("r2").error == "No Next-Action header"

    def test_get_request_response_raw(self, analyzer, traffic_store, make_pair) -> None:
        traffic_store.append(make_pair(request_id="r1", body="[]"))
        traffic_store.append(make_pair(request_id="r2", with_response=False))

        raw = analyzer.get_request_response_raw("r1").unwrap()
        assert raw.request_raw.startswith("POST /dashboard HTTP/1.1\r\n")
        assert raw.request_raw.endswith("\r\n\r\n[]")
        assert raw.response_raw.startswith("HTTP/1.1 200\r\n")

        assert analyzer.get_request_response_raw("r2").error == "Request/response not found"

    def test_locate_function_source(self, analyzer, traffic_store, make_pair, make_chunk_pair) -> None:
        traffic_store.append(make_chunk_pair("c1", [(ACTION_ID, "deleteUser")]))
        traffic_store.append(make_pair(request_id="p1", response_body="deleteUser was called"))

        matches = analyzer.locate_function_source("deleteUser")

        assert [m.request_id for m in matches] == ["c1"]
        assert analyzer.locate_function_source("deleteuser") == []

    def test_locate_function_pattern(self, analyzer, traffic_store, make_pair, make_chunk_pair) -> None:
        traffic_store.append(make_chunk_pair("c1", [(ACTION_ID, "deleteUser"), (OTHER_ID, "deleteTeam")]))
        traffic_store.append(make_pair(request_id="p1", response_body="deleteUser was called"))

        result = analyzer.locate_function_pattern(r"delete[A-Z]\w*").unwrap()

        assert [hit.request_id for hit in result.hits] == ["c1"]
        assert [match.text for match in result.hits[0].matches] == ["deleteUser", "deleteTeam"]
        assert not result.timed_out

    def test_locate_function_pattern_invalid(self, analyzer) -> None:
        result = analyzer.locate_function_pattern(r"delete(")

        assert not result.ok
        assert result.error.startswith("Invalid regex")


class TestBuildTestRequest:
    def test_no_template(self, analyzer) -> None:
        assert analyzer.build_test_request(ACTION_ID).error == "No template request available"

    def test_rewrites_header_and_first_argument(self, analyzer, traffic_store, make_pair) -> None:
        traffic_store.append(make_pair(
            request_id="r1",
            action_id=ACTION_ID,
            headers={"Host": "app.example.com", "Content-Length": "99"},
            body=f'["{ACTION_ID}", {{"userId": 1}}]',
        ))
        analyzer.scan_history()

        request = analyzer.build_test_request(OTHER_ID).unwrap()
        expected_body = f'["{OTHER_ID}",{{"userId":1}}]'

        assert request.get_header("Next-Action") == [OTHER_ID]
        assert request.body == expected_body
        assert request.get_header("Content-Length") == [str(len(expected_body))]
        assert request.header_names()[:2] == ["host", "content-length"]

    def test_non_ascii_arguments_kept_verbatim(self, analyzer, traffic_store, make_pair) -> None:
        traffic_store.append(make_pair(
            request_id="r1",
            action_id=ACTION_ID,
            headers={"Host": "app.example.com", "Content-Length": "1"},
            body=f'["{ACTION_ID}",{{"name":"José"}}]',
        ))
        analyzer.scan_history()

        request = analyzer.build_test_request(OTHER_ID).unwrap()
        expected_body = f'["{OTHER_ID}",{{"name":"José"}}]'

        assert request.body == expected_body
        assert request.get_header("Content-Length") == [str(len(expected_body.encode("utf-8")))]

    def test_non_array_body_left_alone(self, analyzer, traffic_store, make_pair) -> None:
        traffic_store.append(make_pair(request_id="r1", action_id=ACTION_ID, body='{"a":1}'))
        analyzer.scan_history()

        request = analyzer.build_test_request(ACTION_ID).unwrap()

        assert request.body == '{"a":1}'
        assert not request.has_header("Content-Length")

    def test_template_missing_from_source(self, analyzer, make_pair) -> None:
        analyzer.process_pair(make_pair(request_id="gone", action_id=ACTION_ID))
        assert analyzer.build_test_request(ACTION_ID).error == "Template request not found"


# ===========================================================================
# Notes, reset and export
# ===========================================================================

class TestEditsAndExport:
    def test_set_action_note_emits_data_changed(self, analyzer) -> None:
        changes: list[bool] = []
        analyzer.events.subscribe_data_changed(lambda: changes.append(True))

        analyzer.set_action_note(ACTION_ID, "interesting")

        assert changes == [True]
        assert analyzer.store.get_action_note(ACTION_ID) == "interesting"

    def test_clear_all(self, analyzer, traffic_store, make_pair) -> None:
        traffic_store.append(make_pair(request_id="r1", action_id=ACTION_ID))
        analyzer.scan_history()

        analyzer.clear_all()

        assert analyzer.get_actions() == []
        assert analyzer.events.latest_status == "Cleared"

    def test_export_totals_match_invocations(self, analyzer, traffic_store, make_pair, make_chunk_pair) -> None:
        traffic_store.append(make_pair(request_id="r1", action_id=ACTION_ID))
        traffic_store.append(make_pair(request_id="r2", action_id=ACTION_ID))
        traffic_store.append(make_chunk_pair("c1", [(ACTION_ID, "deleteUser"), (OTHER_ID, "updateRole")]))
        analyzer.scan_history()
        analyzer.find_all_actions()

        artifact = analyzer.export_analysis(ExportOptions()).unwrap()
        data = json.loads(artifact.json_text)

        assert data["exportInfo"]["totalRequests"] == len(analyzer.get_actions()) == 2
        assert data["exportInfo"]["uniqueActions"] == 1
        assert data["exportInfo"]["totalDiscovered"] == 2
        assert list(data["unusedActions"]) == [OTHER_ID]
        assert data["actionSummary"][ACTION_ID]["functionName"] == "deleteUser"
        assert artifact.filename.startswith("nextjs_actions_")
