"""
actionscope/action_discovery/models.py

Data models for the action discovery pipeline.

Contains Pydantic models for:
- ActionInvocation: One observed execution of a server action
- DeclaredAction: An action id / function name pair found in a JS chunk
- ActionUsage: Lightweight usage record kept per action id
- DiscoveredActionRow / DiscoveryResult: The derived classification view
- ExportOptions, SecurityFinding and the operation summaries
"""

from enum import StrEnum

from pydantic import BaseModel, Field


class ActionStatus(StrEnum):
    """Classification of an action id in the discovery view."""
    EXECUTED = "Executed"
    UNUSED_RENAMED = "Unused (Function executed with different ID)"
    NEVER_EXECUTED = "Never Executed"
    NO_SOURCE = "Executed (No source found)"


class ActionInvocation(BaseModel):
    """One observed client call to a server action."""
    id: int = Field(description="Sequence number, assigned in processing order starting at 1")
    request_id: str = Field(description="Identifier of the captured request")
    method: str = Field(description="HTTP method of the request")
    url: str = Field(description="Request URL")
    action_id: str = Field(description="Value of the Next-Action header")
    parameters: str = Field(default="", description="Request body text")
    request_size: int = Field(default=0, description="Raw request size in bytes")
    response_size: int = Field(default=0, description="Raw response size in bytes")
    status_code: int = Field(default=0, description="Response status code")
    timestamp: str = Field(description="ISO-8601 time the response was captured")
    security_notes: str = Field(default="", description="Security notes joined with '; '")
    action_notes: str = Field(default="", description="Current note text for the action")


class DeclaredAction(BaseModel):
    """An action id and function name extracted from a served JS chunk."""
    action_id: str
    function_name: str
    chunk_file: str = Field(description="File name of the chunk the action was found in")
    first_seen: str = Field(description="ISO-8601 time of extraction")
    chunk_request_id: str = Field(description="Request that served the chunk")


class ActionUsage(BaseModel):
    """Usage record appended for every invocation of an action id."""
    timestamp: str
    url: str
    method: str
    status_code: int
    parameters: str
    security_notes: str
    request_id: str


class DiscoveredActionRow(BaseModel):
    """A row of the classification view."""
    action_id: str
    function_name: str
    status: ActionStatus
    chunk_file: str
    executed_count: int = 0
    notes: str = ""


class DiscoveryResult(BaseModel):
    """Partitioned classification of every known action id."""
    status: str = Field(default="", description="Free-text summary of the pass that produced this view")
    all: list[DiscoveredActionRow] = Field(default_factory=list, description="Every declared action")
    unused: list[DiscoveredActionRow] = Field(
        default_factory=list,
        description="Declared actions never executed under any id",
    )
    unknown: list[DiscoveredActionRow] = Field(
        default_factory=list,
        description="Executed action ids with no declaration in any scanned chunk",
    )


class ExportOptions(BaseModel):
    """Sections to include in an analysis export."""
    include_executed: bool = True
    include_unused: bool = True
    include_security: bool = True
    include_full_details: bool = True


class ExportArtifact(BaseModel):
    """A rendered export document and its suggested file name."""
    json_text: str
    filename: str


class SecurityFinding(BaseModel):
    """A finding raised for a live-observed invocation."""
    title: str
    description: str
    reporter: str
    dedupe_key: str = Field(description="Findings with the same key collapse into one")
    request_id: str


class ScanSummary(BaseModel):
    scanned: int = 0
    found: int = 0


class ExtractionSummary(BaseModel):
    scanned_chunks: int = 0
    names_extracted: int = 0


class AnalyzeSummary(BaseModel):
    analyzed: int = 0
    found: int = 0


class ActionLookup(BaseModel):
    action_id: str
    function_name: str


class RawExchange(BaseModel):
    request_raw: str
    response_raw: str
