"""
actionscope/action_discovery/patterns.py

Regex-based extraction of server action registrations from Next.js chunks.

Client bundles register every server action with a call of the form

    (0, m.createServerReference)("7f3a...", m.callServer, void 0, m.findSourceMapURL, "deleteUser")

Minifiers rewrite this call in several mutually exclusive shapes, so each
shape is a ServerReferencePattern and a PatternMatcher runs all of them, in
priority order, over the same text. No source maps and no AST: only text.
"""

import re
from collections.abc import Iterator
from dataclasses import dataclass
from urllib.parse import urlparse

from pydantic import BaseModel

from actionscope.config import Config
from actionscope.data_models.traffic import HttpRequest

# Literal present in every chunk that registers server actions
SERVER_REFERENCE_MARKER = "createServerReference"


class ExtractedAction(BaseModel):
    """An (action id, function name) pair captured from chunk text."""
    action_id: str
    function_name: str


@dataclass(frozen=True)
class ServerReferencePattern:
    """
    One minifier shape of a createServerReference call.

    The regex must capture the action id in group 1 and the function name in group 2.
    """
    name: str
    regex: re.Pattern[str]
    description: str = ""

    def finditer(self, text: str) -> Iterator[tuple[str, str]]:
        for match in self.regex.finditer(text):
            yield match.group(1), match.group(2)


# ---------------------------------------------------------------------------
# Pattern sets
# ---------------------------------------------------------------------------

# Used by full discovery: double-quoted lowercase ids, most specific shape first
DISCOVERY_PATTERNS: tuple[ServerReferencePattern, ...] = (
    ServerReferencePattern(
        name="compact",
        regex=re.compile(
            r'createServerReference\)\("([a-f0-9]{40,})",\w+\.callServer,void 0,\w+\.findSourceMapURL,"([^"]+)"\)'
        ),
        description='createServerReference)("id",x.callServer,void 0,x.findSourceMapURL,"name")',
    ),
    ServerReferencePattern(
        name="indexed_call",
        regex=re.compile(
            r'\(\d+,\s*\w+\.createServerReference\)\s*\(\s*"([a-f0-9]{40,})",\s*\w+\.callServer,'
            r'\s*void\s+0,\s*\w+\.findSourceMapURL,\s*"([^"]+)"\s*\)'
        ),
        description='(0, x.createServerReference)("id", ...)',
    ),
    ServerReferencePattern(
        name="spaced",
        regex=re.compile(
            r'createServerReference\)\s*\(\s*"([a-f0-9]{40,})",\s*\w+\.callServer,'
            r'\s*void\s+0,\s*\w+\.findSourceMapURL,\s*"([^"]+)"\s*\)'
        ),
        description="whitespace-tolerant form without the numeric index",
    ),
    ServerReferencePattern(
        name="loose",
        regex=re.compile(r'createServerReference[^"]*"([a-f0-9]{40,})"[^"]*"([^"]+)"\s*\)'),
        description="any call whose first and last string arguments are id and name",
    ),
)

# Used by incremental name extraction: mixed-case ids, either quote style
EXTRACTION_PATTERNS: tuple[ServerReferencePattern, ...] = (
    ServerReferencePattern(
        name="spaced",
        regex=re.compile(
            r'createServerReference\)\s*\(\s*["\']([a-fA-F0-9]{40,})["\']\s*,\s*\w+\.callServer\s*,'
            r'\s*void\s+0\s*,\s*\w+\.findSourceMapURL\s*,\s*["\']([^"\']+)["\']\s*\)'
        ),
        description="whitespace-tolerant form",
    ),
    ServerReferencePattern(
        name="indexed_call",
        regex=re.compile(
            r'\(\d+\s*,\s*\w+\.createServerReference\)\s*\(\s*["\']([a-fA-F0-9]{40,})["\']\s*,'
            r'\s*\w+\.callServer\s*,\s*void\s+0\s*,\s*\w+\.findSourceMapURL\s*,\s*["\']([^"\']+)["\']\s*\)'
        ),
        description='(0, x.createServerReference)("id", ...)',
    ),
    ServerReferencePattern(
        name="compact",
        regex=re.compile(
            r'createServerReference\)\(\s*["\']([a-fA-F0-9]{40,})["\']\s*,\s*\w+\.callServer\s*,'
            r'\s*void\s+0\s*,\s*\w+\.findSourceMapURL\s*,\s*["\']([^"\']+)["\']\s*\)'
        ),
        description="no space between the reference and its argument list",
    ),
    ServerReferencePattern(
        name="indexed_skip_args",
        regex=re.compile(
            r'\(\d+\s*,\s*\w+\.createServerReference\)\s*\(\s*["\']([a-fA-F0-9]{40,})["\']'
            r'(?:[^"\']*?,){4}\s*["\']([^"\']+)["\']\s*\)'
        ),
        description="numeric-indexed call with four arbitrary arguments before the name",
    ),
)


def _is_meaningful_name(function_name: str) -> bool:
    # $ and _ prefixes mark bundler-internal re-exports
    return not function_name.startswith(("$", "_"))


class PatternMatcher:
    """
    Applies an ordered set of ServerReferencePatterns to chunk text.

    Every pattern runs over the whole text; captures are merged in pattern
    order and deduplicated by action id, first match wins.
    """

    def __init__(self, patterns: tuple[ServerReferencePattern, ...] = DISCOVERY_PATTERNS) -> None:
        self._patterns = patterns

    @property
    def patterns(self) -> tuple[ServerReferencePattern, ...]:
        return self._patterns

    def with_pattern(self, pattern: ServerReferencePattern) -> "PatternMatcher":
        """Return a matcher with an extra, lowest-priority pattern."""
        return PatternMatcher(self._patterns + (pattern,))

    def extract(self, text: str) -> list[ExtractedAction]:
        """
        Extract (action id, function name) pairs from chunk text.

        Args:
            text: Response body of a JS chunk.

        Returns:
            Extracted pairs in discovery order, one per action id.
        """
        if not text or SERVER_REFERENCE_MARKER not in text:
            return []

        found: dict[str, ExtractedAction] = {}
        for pattern in self._patterns:
            for action_id, function_name in pattern.finditer(text):
                if not action_id or not function_name:
                    continue
                if not _is_meaningful_name(function_name):
                    continue
                if action_id in found:
                    continue
                found[action_id] = ExtractedAction(action_id=action_id, function_name=function_name)
        return list(found.values())


_discovery_matcher = PatternMatcher(DISCOVERY_PATTERNS)
_extraction_matcher = PatternMatcher(EXTRACTION_PATTERNS)


def extract_declared_actions(text: str) -> list[ExtractedAction]:
    """Extract actions with the full-discovery pattern set."""
    return _discovery_matcher.extract(text)


def extract_action_names(text: str) -> list[ExtractedAction]:
    """Extract actions with the incremental name-extraction pattern set."""
    return _extraction_matcher.extract(text)


# ---------------------------------------------------------------------------
# Chunk detection
# ---------------------------------------------------------------------------

def is_bundle_request(request: HttpRequest) -> bool:
    """True for requests that fetched a Next.js static JS chunk."""
    path = request.path
    if Config.CHUNK_PATH_MARKER not in path:
        return False
    return path.split("?")[0].endswith(".js")


def chunk_file_name(path_or_url: str) -> str:
    """Last path segment of a chunk URL, or "Unknown"."""
    path = urlparse(path_or_url).path if "://" in path_or_url else path_or_url.split("?")[0]
    name = path.rsplit("/", 1)[-1]
    return name or "Unknown"
