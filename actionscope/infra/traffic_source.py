"""
actionscope/infra/traffic_source.py

Abstract interface to the captured traffic the analyzer reads from.

A traffic source supplies request/response pairs through cursor pagination
and point lookup. It is read-only from the analyzer's point of view.

Besides the abstract contract, this module provides the body search helpers
shared by concrete sources:
- search_content(): Substring search with context
- search_by_pattern(): Regex search bounded by an overall deadline
"""

import time
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from itertools import islice

import regex
from pydantic import BaseModel, Field

from actionscope.data_models.traffic import RequestResponsePair, TrafficPage
from actionscope.utils.logger import get_logger

logger = get_logger(name=__name__)


class ContentMatch(BaseModel):
    """A substring hit inside one response body."""
    request_id: str
    url: str
    count: int = Field(description="Occurrences of the value in the body")
    sample: str = Field(description="Context around the first occurrence")


class PatternMatch(BaseModel):
    """One regex match inside a response body."""
    text: str
    position: int = Field(description="Offset of the match in the body")
    snippet: str = Field(description="The match with surrounding context")


class PatternHit(BaseModel):
    """Regex matches found in one response body."""
    request_id: str
    url: str
    matches: list[PatternMatch] = Field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.matches)


class PatternSearchResult(BaseModel):
    pattern: str
    hits: list[PatternHit] = Field(default_factory=list)
    timed_out: bool = Field(default=False, description="Whether some bodies were skipped for running out of time")
    error: str | None = Field(default=None, description="Set when the pattern does not compile")


def _snippet(content: str, start: int, end: int, context_chars: int) -> str:
    """content[start:end] widened by context_chars, with "..." marking cut ends."""
    left = max(0, start - context_chars)
    right = min(len(content), end + context_chars)
    prefix = "..." if left > 0 else ""
    suffix = "..." if right < len(content) else ""
    return f"{prefix}{content[left:right]}{suffix}"


class TrafficSource(ABC):
    """
    Read-only access to captured request/response pairs.

    Subclasses must implement:
    - query_page(first, after) -> TrafficPage
    - get_pair(request_id) -> RequestResponsePair | None
    - iter_pairs() -> Iterable[RequestResponsePair]
    """

    @abstractmethod
    def query_page(self, first: int, after: str | None = None) -> TrafficPage:
        """
        Fetch one page of traffic.

        Args:
            first: Maximum number of pairs in the page.
            after: Cursor returned as end_cursor by the previous page, None for the first page.

        Returns:
            The page, with has_next_page False on the last one.

        Raises:
            TrafficSourceError: If the page cannot be served.
        """
        ...

    @abstractmethod
    def get_pair(self, request_id: str) -> RequestResponsePair | None:
        """Look up one pair by request id; None when unknown."""
        ...

    @abstractmethod
    def iter_pairs(self) -> Iterable[RequestResponsePair]:
        """Every stored pair, in storage order. Used by the search helpers."""
        ...

    def _searchable_bodies(self, bundles_only: bool) -> Iterator[tuple[RequestResponsePair, str]]:
        """Pairs with a non-empty response body, optionally only Next.js chunks."""
        from actionscope.action_discovery.patterns import is_bundle_request

        for pair in self.iter_pairs():
            if pair.response is None or not pair.response.body:
                continue
            if bundles_only and not is_bundle_request(pair.request):
                continue
            yield pair, pair.response.body

    def search_content(
        self,
        value: str,
        case_sensitive: bool = False,
        context_chars: int = 50,
        bundles_only: bool = False,
    ) -> list[ContentMatch]:
        """
        Search response bodies for a value and return matches with context.

        Args:
            value: The value to search for.
            case_sensitive: Whether the search should be case-sensitive.
            context_chars: Characters of context around the first match.
            bundles_only: Restrict the search to Next.js chunk responses.
        """
        results: list[ContentMatch] = []
        if not value:
            return results

        needle = value if case_sensitive else value.lower()
        for pair, content in self._searchable_bodies(bundles_only):
            haystack = content if case_sensitive else content.lower()
            count = haystack.count(needle)
            if count == 0:
                continue

            pos = haystack.find(needle)
            results.append(ContentMatch(
                request_id=pair.request.request_id,
                url=pair.request.url,
                count=count,
                sample=_snippet(content, pos, pos + len(value), context_chars),
            ))
        return results

    def search_by_pattern(
        self,
        pattern: str,
        case_sensitive: bool = False,
        bundles_only: bool = False,
        max_hits: int = 20,
        max_matches_per_body: int = 10,
        context_chars: int = 80,
        timeout_seconds: float = 15.0,
    ) -> PatternSearchResult:
        """
        Search response bodies with a regular expression.

        Minified bundles can trigger catastrophic backtracking, so every body is
        matched with the time left until an overall deadline as its timeout.
        A body that runs out of time is skipped and the result is marked timed_out.

        Args:
            pattern: Regular expression, `regex` module syntax.
            case_sensitive: Whether matching is case-sensitive.
            bundles_only: Restrict the search to Next.js chunk responses.
            max_hits: Stop after this many bodies with matches.
            max_matches_per_body: Matches kept per body.
            context_chars: Characters of context around each match.
            timeout_seconds: Budget for the whole search.
        """
        flags = 0 if case_sensitive else regex.IGNORECASE
        try:
            compiled = regex.compile(pattern, flags=flags)
        except regex.error as e:
            logger.error("Invalid regex %r: %s", pattern, e)
            return PatternSearchResult(pattern=pattern, error=f"Invalid regex: {e}")

        result = PatternSearchResult(pattern=pattern)
        deadline = time.monotonic() + timeout_seconds

        for pair, content in self._searchable_bodies(bundles_only):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning("Pattern search ran out of time after %d hits", len(result.hits))
                result.timed_out = True
                break

            try:
                found = list(islice(compiled.finditer(content, timeout=remaining), max_matches_per_body))
            except TimeoutError:
                logger.warning("Pattern search timed out on request %s, skipping", pair.request.request_id)
                result.timed_out = True
                continue

            if not found:
                continue
            result.hits.append(PatternHit(
                request_id=pair.request.request_id,
                url=pair.request.url,
                matches=[
                    PatternMatch(
                        text=match.group(),
                        position=match.start(),
                        snippet=_snippet(content, match.start(), match.end(), context_chars),
                    )
                    for match in found
                ],
            ))
            if len(result.hits) >= max_hits:
                break

        return result
