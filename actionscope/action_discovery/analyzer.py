"""
actionscope/action_discovery/analyzer.py

Main orchestrator for server action discovery and correlation.

Pipeline:
1. Per-pair processing: requests carrying a Next-Action header become
   ActionInvocations (deduplicated by request id) with security notes
2. History scan: cursor-paginated traversal of the traffic source, feeding
   every pair to the per-pair routine
3. Name extraction: add-only pass attaching function names found in chunks
4. Full discovery: replace-all pass rebuilding the declared action inventory,
   followed by classification against executed actions

Every fallible operation returns an OperationResult instead of raising.
"""

import json
from collections.abc import Callable, Iterator

from actionscope.action_discovery.events import EventBus
from actionscope.action_discovery.models import (
    ActionInvocation,
    ActionLookup,
    AnalyzeSummary,
    DiscoveryResult,
    ExportArtifact,
    ExportOptions,
    ExtractionSummary,
    RawExchange,
    ScanSummary,
)
from actionscope.action_discovery.patterns import (
    DISCOVERY_PATTERNS,
    EXTRACTION_PATTERNS,
    SERVER_REFERENCE_MARKER,
    PatternMatcher,
    chunk_file_name,
    is_bundle_request,
)
from actionscope.action_discovery.reporter import build_export
from actionscope.action_discovery.security import safe_json_parse
from actionscope.action_discovery.store import UNKNOWN_FUNCTION, CorrelationStore
from actionscope.config import Config
from actionscope.data_models.result import OperationResult
from actionscope.data_models.traffic import HttpRequest, RequestResponsePair, TrafficPage
from actionscope.infra.traffic_source import ContentMatch, PatternSearchResult, TrafficSource
from actionscope.utils.logger import get_logger

logger = get_logger(name=__name__)


def get_action_id(request: HttpRequest) -> str | None:
    """First value of the action header, trimmed; None when absent or blank."""
    values = request.get_header(Config.ACTION_HEADER)
    if not values:
        return None
    value = values[0].strip()
    return value or None


def _error_message(error: Exception) -> str:
    return str(error) or type(error).__name__


class ActionAnalyzer:
    """
    Correlates executed server actions with the actions declared in JS chunks.

    Usage:
        source = TrafficDataStore("capture.jsonl")
        analyzer = ActionAnalyzer(source)
        analyzer.scan_history()
        result = analyzer.find_all_actions()
        print(result.value.model_dump_json(indent=2))
    """

    def __init__(
        self,
        source: TrafficSource,
        store: CorrelationStore | None = None,
        events: EventBus | None = None,
        page_size: int | None = None,
        discovery_matcher: PatternMatcher | None = None,
        extraction_matcher: PatternMatcher | None = None,
    ) -> None:
        """
        Initialize the analyzer.

        Args:
            source: Where captured traffic is read from.
            store: Correlation store; a fresh one is created when omitted.
            events: Notification bus; a fresh one is created when omitted.
            page_size: Pairs requested per traversal page.
            discovery_matcher: Matcher for full discovery passes.
            extraction_matcher: Matcher for incremental name extraction.
        """
        self._source = source
        self._store = store or CorrelationStore()
        self._events = events or EventBus()
        self._page_size = page_size or Config.PAGE_SIZE
        self._discovery_matcher = discovery_matcher or PatternMatcher(DISCOVERY_PATTERNS)
        self._extraction_matcher = extraction_matcher or PatternMatcher(EXTRACTION_PATTERNS)

    @property
    def store(self) -> CorrelationStore:
        return self._store

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def source(self) -> TrafficSource:
        return self._source

    # Per-pair processing _________________________________________________________________________

    def process_pair(self, pair: RequestResponsePair) -> ActionInvocation | None:
        """
        Record the pair as an invocation if it carries an action id and is new.

        Returns:
            The new invocation, or None for non-action, incomplete or repeated pairs.
        """
        if pair.response is None:
            return None
        action_id = get_action_id(pair.request)
        if action_id is None:
            return None

        entry = self._store.record_invocation(pair.request, pair.response, action_id)
        if entry is None:
            return None

        logger.debug("Recorded invocation #%d of %s from %s", entry.id, action_id, entry.request_id)
        self._events.send_action_added(entry)
        return entry

    # Traversal ___________________________________________________________________________________

    def iter_pages(self) -> Iterator[TrafficPage]:
        """Walk the whole traffic source, one page at a time, following end cursors."""
        cursor: str | None = None
        while True:
            page = self._source.query_page(first=self._page_size, after=cursor)
            yield page
            if not page.has_next_page:
                return
            cursor = page.end_cursor

    def paginate_all(self, on_page: Callable[[TrafficPage], None]) -> None:
        for page in self.iter_pages():
            on_page(page)

    def _iter_chunks(self, page: TrafficPage) -> Iterator[tuple[RequestResponsePair, str]]:
        """Chunk pairs of a page whose bodies register server actions."""
        for item in page.items:
            if item.response is None or not is_bundle_request(item.request):
                continue
            body = item.response.body or ""
            if SERVER_REFERENCE_MARKER not in body:
                continue
            yield item, body

    # Scans _______________________________________________________________________________________

    def scan_history(self) -> OperationResult[ScanSummary]:
        """
        Process every pair in the traffic source.

        Mutations made before a failure are kept; rerunning is safe because
        processing is idempotent per request id.
        """
        summary = ScanSummary()
        logger.info("Scanning traffic history for server action invocations")
        try:
            self._events.send_status("Scanning requests...")

            def _on_page(page: TrafficPage) -> None:
                for item in page.items:
                    summary.scanned += 1
                    self.process_pair(item)
                    if get_action_id(item.request) is not None:
                        summary.found += 1
                self._events.send_status(f"Scanning requests... {summary.scanned}")

            self.paginate_all(_on_page)
        except Exception as e:
            logger.exception("History scan failed after %d requests", summary.scanned)
            self._events.send_status("Scan failed")
            return OperationResult.failure(_error_message(e))

        self._events.send_status(f"Scanned {summary.scanned} requests ({summary.found} actions)")
        self._events.send_data_changed()
        logger.info("Scanned %d requests, %d carried an action id", summary.scanned, summary.found)
        return OperationResult.success(summary)

    def extract_action_names(self) -> OperationResult[ExtractionSummary]:
        """
        Attach function names found in chunks to action ids that have none yet.

        Never touches the declared action inventory.
        """
        summary = ExtractionSummary()
        logger.info("Extracting action names from chunks")
        try:
            self._events.send_status("Scanning chunk files...")

            def _on_page(page: TrafficPage) -> None:
                with self._store.batch():
                    for _item, body in self._iter_chunks(page):
                        summary.scanned_chunks += 1
                        for extracted in self._extraction_matcher.extract(body):
                            if self._store.learn_function_name(extracted.action_id, extracted.function_name):
                                summary.names_extracted += 1
                self._events.send_status(f"Scanning chunk files... {summary.scanned_chunks}")

            self.paginate_all(_on_page)

            with self._store.batch():
                for action_id in self._store.named_action_ids():
                    self._store.ensure_action_notes(action_id)
        except Exception as e:
            logger.exception("Action name extraction failed")
            self._events.send_status("Action name extraction failed")
            return OperationResult.failure(_error_message(e))

        self._events.send_data_changed()
        self._events.send_status(
            f"Extracted {summary.names_extracted} action names ({summary.scanned_chunks} chunks scanned)"
        )
        return OperationResult.success(summary)

    def find_all_actions(self) -> OperationResult[DiscoveryResult]:
        """
        Rebuild the declared action inventory from every chunk and classify it.

        The previous inventory is discarded first; within this pass the first
        extraction of an id wins.
        """
        chunks_found = 0
        logger.info("Running full server action discovery")
        try:
            self._store.replace_declared_actions()
            self._events.send_status("Scanning chunks for server actions...")

            def _on_page(page: TrafficPage) -> None:
                nonlocal chunks_found
                with self._store.batch():
                    for item, body in self._iter_chunks(page):
                        chunks_found += 1
                        chunk_file = chunk_file_name(item.request.path)
                        for extracted in self._discovery_matcher.extract(body):
                            self._store.add_declared_action(
                                action_id=extracted.action_id,
                                function_name=extracted.function_name,
                                chunk_file=chunk_file,
                                chunk_request_id=item.request.request_id,
                            )
                self._events.send_status(f"Scanning chunks... {chunks_found}")

            self.paginate_all(_on_page)

            view = self._store.get_discovery()
            status = f"Found {len(view.all)} actions ({len(view.unused)} unused)"
            view.status = status
        except Exception as e:
            logger.exception("Discovery failed after %d chunks", chunks_found)
            self._events.send_status("Discovery failed")
            return OperationResult.failure(_error_message(e))

        logger.info("%s across %d chunks", status, chunks_found)
        self._events.send_status(status)
        self._events.send_data_changed()
        return OperationResult.success(view)

    def analyze_requests_by_id(self, request_ids: list[str]) -> OperationResult[AnalyzeSummary]:
        """Process specific requests by id (e.g. a selection from the proxy history)."""
        summary = AnalyzeSummary()
        try:
            for request_id in request_ids:
                pair = self._source.get_pair(request_id)
                summary.analyzed += 1
                if pair is None or pair.response is None:
                    continue
                if get_action_id(pair.request) is None:
                    continue
                summary.found += 1
                self.process_pair(pair)
        except Exception as e:
            logger.exception("Analyzing selected requests failed")
            return OperationResult.failure(_error_message(e))

        self._events.send_data_changed()
        return OperationResult.success(summary)

    # Queries and edits ___________________________________________________________________________

    def get_actions(self) -> list[ActionInvocation]:
        return self._store.get_invocations()

    def get_discovery(self) -> DiscoveryResult:
        return self._store.get_discovery()

    def get_chunk_request_id_for_action(self, action_id: str) -> OperationResult[str]:
        return self._store.get_chunk_request_id(action_id)

    def set_action_note(self, action_id: str, note: str) -> None:
        self._store.set_action_note(action_id, note)
        self._events.send_data_changed()

    def clear_all(self) -> None:
        self._store.clear()
        self._events.send_status("Cleared")
        self._events.send_data_changed()

    def get_request_response_raw(self, request_id: str) -> OperationResult[RawExchange]:
        try:
            pair = self._source.get_pair(request_id)
        except Exception as e:
            logger.exception("Lookup of request %s failed", request_id)
            return OperationResult.failure(_error_message(e))

        if pair is None or pair.response is None:
            return OperationResult.failure("Request/response not found")
        return OperationResult.success(RawExchange(
            request_raw=pair.request.raw_text(),
            response_raw=pair.response.raw_text(),
        ))

    def lookup_action_for_request(self, request_id: str) -> OperationResult[ActionLookup]:
        try:
            pair = self._source.get_pair(request_id)
        except Exception as e:
            logger.exception("Lookup of request %s failed", request_id)
            return OperationResult.failure(_error_message(e))

        if pair is None:
            return OperationResult.failure("Request not found")
        action_id = get_action_id(pair.request)
        if action_id is None:
            return OperationResult.failure(f"No {Config.ACTION_HEADER} header")
        return OperationResult.success(ActionLookup(
            action_id=action_id,
            function_name=self._store.get_function_name(action_id) or UNKNOWN_FUNCTION,
        ))

    def build_test_request(self, action_id: str) -> OperationResult[HttpRequest]:
        """
        Build a request invoking action_id, using a previously captured action
        request as the template.

        The action header is set to action_id and, when the body is a non-empty
        JSON array, its first element is replaced by action_id as well.
        """
        template_id = self._store.latest_request_id_for(action_id)
        if template_id is None:
            return OperationResult.failure("No template request available")

        try:
            pair = self._source.get_pair(template_id)
        except Exception as e:
            logger.exception("Lookup of template request %s failed", template_id)
            return OperationResult.failure(_error_message(e))
        if pair is None:
            return OperationResult.failure("Template request not found")

        request = pair.request.with_header(Config.ACTION_HEADER, action_id)
        body = safe_json_parse(request.body)
        if isinstance(body, list) and body:
            updated = [action_id, *body[1:]]
            request = request.with_body(json.dumps(updated, separators=(",", ":"), ensure_ascii=False), update_content_length=True)
        return OperationResult.success(request)

    def locate_function_source(self, function_name: str) -> list[ContentMatch]:
        """Find chunks whose text mentions function_name."""
        return self._source.search_content(function_name, case_sensitive=True, bundles_only=True)

    def locate_function_pattern(self, pattern: str) -> OperationResult[PatternSearchResult]:
        """
        Find chunks matching a regular expression, e.g. r"delete\\w+" to catch
        every variant of a function name. Case-sensitive, chunks only.

        A search that ran out of time still succeeds with the hits found so far
        and timed_out set.
        """
        try:
            result = self._source.search_by_pattern(pattern, case_sensitive=True, bundles_only=True)
        except Exception as e:
            logger.exception("Pattern search for %r failed", pattern)
            return OperationResult.failure(_error_message(e))

        if result.error is not None:
            return OperationResult.failure(result.error)
        logger.info("Pattern %r matched %d chunks", pattern, len(result.hits))
        return OperationResult.success(result)

    def export_analysis(self, options: ExportOptions | None = None) -> OperationResult[ExportArtifact]:
        try:
            artifact = build_export(self._store, options or ExportOptions())
        except Exception as e:
            logger.exception("Export failed")
            return OperationResult.failure(_error_message(e))
        return OperationResult.success(artifact)
