"""
actionscope/action_discovery/security.py

Security signal analysis for server action invocations.

Every rule runs independently against the request/response pair and appends
its notes; nothing short-circuits. The only non-local input is the number of
prior recorded usages of the action, which the caller reads from the store
before recording the invocation being analyzed.
"""

import json
import re
from typing import Any

from actionscope.config import Config
from actionscope.data_models.traffic import HttpRequest, HttpResponse

NO_AUTH_NOTE = "No auth headers"
NOTE_SEPARATOR = "; "

# Parameter names worth a second look when they appear anywhere in the body
SENSITIVE_PARAMS: tuple[str, ...] = (
    "id",
    "userId",
    "user_id",
    "role",
    "admin",
    "delete",
    "update",
    "team",
    "teamId",
)

DEV_MODE_MARKER = "__NEXT_DATA__"

_ERROR_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r'"error"\s*:\s*"[^"]+', re.IGNORECASE),
    re.compile(r'"error"\s*:\s*\{', re.IGNORECASE),
    re.compile(r'"error"\s*:\s*\[', re.IGNORECASE),
    re.compile(r'exception', re.IGNORECASE),
    re.compile(r'stack\s*trace', re.IGNORECASE),
    re.compile(r'stacktrace', re.IGNORECASE),
    re.compile(r'at\s+\w+\.\w+\(', re.IGNORECASE),
    re.compile(r'File\s+"[^"]+",\s+line\s+\d+', re.IGNORECASE),
    re.compile(r'(TypeError:|ReferenceError:|SyntaxError:)', re.IGNORECASE),
    re.compile(r'undefined method', re.IGNORECASE),
    re.compile(r'Call to undefined function', re.IGNORECASE),
)

_DB_MARKERS: tuple[str, ...] = ("mssql", "postgres", "mysql", "database error")

_SCHEME_RE = re.compile(r'^https?://')
_DIGITS_RE = re.compile(r'[0-9]+')


def safe_json_parse(text: str) -> Any | None:
    """Parse JSON, returning None for empty, malformed or too deeply nested input."""
    if not text:
        return None
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError, RecursionError):
        return None


def _first_header(message: HttpRequest | HttpResponse, name: str) -> str:
    values = message.get_header(name)
    return values[0].strip() if values else ""


def _is_integer_value(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


def _format_id_value(value: Any) -> str:
    if isinstance(value, float):
        return str(int(value))
    return str(value)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

def check_missing_auth(request: HttpRequest) -> list[str]:
    header_names = request.header_names()
    if "authorization" in header_names or "cookie" in header_names:
        return []
    return [NO_AUTH_NOTE]


def check_sensitive_params(parameters: str) -> list[str]:
    lowered = parameters.lower()
    return [f"Contains: {term}" for term in SENSITIVE_PARAMS if term.lower() in lowered]


def check_direct_object_refs(parameters: str) -> list[str]:
    """
    Flag numeric ids passed in the action's argument objects.

    Action bodies are JSON arrays; element 0 is skipped and every later element
    that is a plain object is inspected for id-like keys with integer values.
    """
    body = safe_json_parse(parameters)
    if not isinstance(body, list) or len(body) <= 1:
        return []

    notes: list[str] = []
    for element in body[1:]:
        if not isinstance(element, dict):
            continue
        for key, value in element.items():
            if "id" not in key.lower():
                continue
            if _is_integer_value(value):
                notes.append(f"Direct ID: {key}={_format_id_value(value)}")
            elif isinstance(value, str) and _DIGITS_RE.fullmatch(value):
                notes.append(f"Direct ID: {key}={value}")
    return notes


def check_dev_mode(response_body: str) -> list[str]:
    if "development" in response_body.lower() or DEV_MODE_MARKER in response_body:
        return ["Dev mode indicators"]
    return []


def check_error_leakage(response_body: str) -> list[str]:
    if any(pattern.search(response_body) for pattern in _ERROR_PATTERNS):
        return ["Error in response"]
    return []


def check_db_mention(response_body: str) -> list[str]:
    lowered = response_body.lower()
    if any(marker in lowered for marker in _DB_MARKERS):
        return ["DB mention"]
    return []


def check_origin_host(request: HttpRequest) -> list[str]:
    origin = _first_header(request, "Origin")
    host = _first_header(request, "Host")
    if not origin or not host:
        return []
    origin_host = _SCHEME_RE.sub("", origin).split("/")[0]
    if origin_host and origin_host != host:
        return ["Origin/Host mismatch"]
    return []


def check_reuse(prior_usage_count: int, threshold: int | None = None) -> list[str]:
    limit = Config.REUSE_THRESHOLD if threshold is None else threshold
    if prior_usage_count > limit:
        return [f"Action reused {prior_usage_count}x"]
    return []


def check_bind_usage(parameters: str) -> list[str]:
    if ".bind(" in parameters:
        return ["Potential .bind() usage"]
    return []


def check_method(request: HttpRequest) -> list[str]:
    if request.method.upper() != "POST":
        return ["Non-POST action"]
    return []


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def analyze_security(
    request: HttpRequest,
    response: HttpResponse,
    action_id: str,
    parameters: str,
    prior_usage_count: int = 0,
) -> list[str]:
    """
    Compute the ordered security notes for one action invocation.

    Args:
        request: The captured request.
        response: The response paired with it.
        action_id: The invoked action id.
        parameters: Request body text.
        prior_usage_count: Usages of action_id recorded before this invocation.

    Returns:
        Notes in rule order; empty when nothing stands out.
    """
    response_body = response.body or ""
    notes: list[str] = []
    notes.extend(check_missing_auth(request))
    notes.extend(check_sensitive_params(parameters))
    notes.extend(check_direct_object_refs(parameters))
    notes.extend(check_dev_mode(response_body))
    notes.extend(check_error_leakage(response_body))
    notes.extend(check_db_mention(response_body))
    notes.extend(check_origin_host(request))
    notes.extend(check_reuse(prior_usage_count))
    notes.extend(check_bind_usage(parameters))
    notes.extend(check_method(request))
    return notes


def format_security_notes(notes: list[str]) -> str:
    return NOTE_SEPARATOR.join(notes)
