"""
actionscope/data_models/traffic.py

Data models for captured HTTP traffic.

Contains Pydantic models for:
- HttpRequest / HttpResponse: One captured message with case-insensitive header access
- RequestResponsePair: A request and its (optional) response
- TrafficPage: One page of a cursor-paginated traffic traversal
"""

from abc import abstractmethod
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class HttpMessage(BaseModel):
    """
    Fields and header helpers shared by requests and responses.
    Abstract: subclasses supply the start line of the raw message.
    """
    headers: list[tuple[str, str]] = Field(
        default_factory=list,
        description="Headers in wire order as (name, value) pairs; names keep their original case",
    )
    body: str = Field(default="", description="Body decoded as text")
    raw: str | None = Field(
        default=None,
        description="Full raw message text, if the capture recorded it",
    )
    created_at: datetime = Field(default_factory=_utc_now, description="When the message was captured")

    @field_validator("headers", mode="before")
    @classmethod
    def _coerce_headers(cls, value: Any) -> Any:
        """Accept a plain {name: value} mapping as well as a list of pairs."""
        if isinstance(value, dict):
            pairs: list[tuple[str, str]] = []
            for name, header_value in value.items():
                if isinstance(header_value, list):
                    pairs.extend((name, str(v)) for v in header_value)
                else:
                    pairs.append((name, str(header_value)))
            return pairs
        return value

    def get_header(self, name: str) -> list[str]:
        """Return every value of a header, matching the name case-insensitively."""
        wanted = name.lower()
        return [value for key, value in self.headers if key.lower() == wanted]

    def has_header(self, name: str) -> bool:
        return bool(self.get_header(name))

    def header_names(self) -> list[str]:
        """Header names, lowercased."""
        return [key.lower() for key, _ in self.headers]

    @abstractmethod
    def _start_line(self) -> str:
        ...

    def raw_text(self) -> str:
        """The raw message, rebuilt from its parts when the capture did not keep it."""
        if self.raw is not None:
            return self.raw
        lines = [self._start_line()]
        lines.extend(f"{key}: {value}" for key, value in self.headers)
        return "\r\n".join(lines) + "\r\n\r\n" + self.body

    @property
    def raw_size(self) -> int:
        """Byte length of the raw message."""
        return len(self.raw_text().encode("utf-8"))


class HttpRequest(HttpMessage):
    """A captured HTTP request."""
    request_id: str = Field(description="Identifier assigned by the traffic source, unique per record")
    method: str = Field(default="GET", description="HTTP method")
    url: str = Field(description="Absolute request URL")

    @property
    def host(self) -> str:
        """Host header value, falling back to the URL's network location."""
        values = self.get_header("Host")
        if values and values[0].strip():
            return values[0].strip()
        return urlparse(self.url).netloc

    @property
    def path(self) -> str:
        """URL path without the query string."""
        return urlparse(self.url).path or "/"

    def _start_line(self) -> str:
        parsed = urlparse(self.url)
        target = parsed.path or "/"
        if parsed.query:
            target = f"{target}?{parsed.query}"
        return f"{self.method} {target} HTTP/1.1"

    def with_header(self, name: str, value: str) -> "HttpRequest":
        """
        Return a copy with a header set, replacing any existing values.
        The header keeps the position (and spelling) of its first occurrence.
        """
        wanted = name.lower()
        headers: list[tuple[str, str]] = []
        replaced = False
        for key, existing in self.headers:
            if key.lower() != wanted:
                headers.append((key, existing))
            elif not replaced:
                headers.append((key, value))
                replaced = True
        if not replaced:
            headers.append((name, value))
        return self.model_copy(update={"headers": headers, "raw": None})

    def with_body(self, body: str, update_content_length: bool = True) -> "HttpRequest":
        """Return a copy with a new body, optionally fixing up Content-Length."""
        updated = self.model_copy(update={"body": body, "raw": None})
        if update_content_length:
            updated = updated.with_header("Content-Length", str(len(body.encode("utf-8"))))
        return updated


class HttpResponse(HttpMessage):
    """A captured HTTP response."""
    status_code: int = Field(default=200, description="HTTP status code")

    def _start_line(self) -> str:
        return f"HTTP/1.1 {self.status_code}"


class RequestResponsePair(BaseModel):
    """A request and the response the server returned for it, if any."""
    request: HttpRequest
    response: HttpResponse | None = Field(default=None, description="Missing when the request never completed")


class TrafficPage(BaseModel):
    """One page of a cursor-paginated traversal over captured traffic."""
    items: list[RequestResponsePair] = Field(default_factory=list)
    end_cursor: str | None = Field(default=None, description="Cursor to pass to fetch the following page")
    has_next_page: bool = Field(default=False)
