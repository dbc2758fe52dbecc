"""
actionscope/action_discovery/observer.py

Live observation of intercepted responses.

Each intercepted request/response pair goes through the same per-pair routine
as a history scan, so live traffic and an in-progress scan never double count.
Invocations without authorization headers are reported as security findings.
"""

from abc import ABC, abstractmethod

from actionscope.action_discovery.analyzer import ActionAnalyzer
from actionscope.action_discovery.models import ActionInvocation, SecurityFinding
from actionscope.action_discovery.security import NO_AUTH_NOTE, NOTE_SEPARATOR
from actionscope.data_models.traffic import HttpRequest, HttpResponse, RequestResponsePair
from actionscope.utils.logger import get_logger

logger = get_logger(name=__name__)

FINDING_REPORTER = "actionscope"


class FindingsSink(ABC):
    """Destination for security findings."""

    @abstractmethod
    def create(self, finding: SecurityFinding) -> None:
        ...


class InMemoryFindingsSink(FindingsSink):
    """Keeps the first finding per dedupe key."""

    def __init__(self) -> None:
        self._findings: dict[str, SecurityFinding] = {}

    def create(self, finding: SecurityFinding) -> None:
        if finding.dedupe_key in self._findings:
            logger.debug("Finding %s already reported", finding.dedupe_key)
            return
        self._findings[finding.dedupe_key] = finding
        logger.info("New finding: %s", finding.title)

    @property
    def findings(self) -> list[SecurityFinding]:
        return list(self._findings.values())


def build_unauthenticated_finding(request: HttpRequest, entry: ActionInvocation) -> SecurityFinding:
    return SecurityFinding(
        title=f"Next.js Server Action without auth: {entry.action_id[:8]}",
        description=entry.security_notes,
        reporter=FINDING_REPORTER,
        dedupe_key=f"{request.host}-{request.path}-{entry.action_id}",
        request_id=entry.request_id,
    )


class LiveObserver:
    """
    Feeds intercepted traffic into an ActionAnalyzer.

    Usage:
        observer = LiveObserver(analyzer, InMemoryFindingsSink())
        observer.on_intercept_response(request, response)
    """

    def __init__(self, analyzer: ActionAnalyzer, findings: FindingsSink | None = None) -> None:
        self._analyzer = analyzer
        self._findings = findings or InMemoryFindingsSink()

    @property
    def findings(self) -> FindingsSink:
        return self._findings

    def on_intercept_response(self, request: HttpRequest, response: HttpResponse) -> ActionInvocation | None:
        """
        Process exactly one intercepted pair.

        Returns:
            The recorded invocation, or None when the pair was not a new action call.
        """
        entry = self._analyzer.process_pair(RequestResponsePair(request=request, response=response))
        if entry is None:
            return None

        if NO_AUTH_NOTE in entry.security_notes.split(NOTE_SEPARATOR):
            self._findings.create(build_unauthenticated_finding(request, entry))
        return entry
