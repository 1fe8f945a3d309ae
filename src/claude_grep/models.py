"""Data models for claude-grep."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path


def to_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime. Naive values are assumed to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SortField(str, Enum):
    RELEVANCE = "relevance"
    DATE = "date"
    MESSAGE_COUNT = "message_count"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class OutputFormat(str, Enum):
    TABLE = "table"
    LIST = "list"
    CSV = "csv"
    MARKDOWN = "markdown"
    JSON = "json"


@dataclass(frozen=True)
class ParsedMessage:
    """A single chat turn extracted from one transcript line."""

    session_id: str
    timestamp: datetime | None
    content: str
    message_id: str
    role: str  # "user" | "assistant"
    files: list[str] = field(default_factory=list)
    branch: str | None = None
    has_error: bool = False
    has_tool_call: bool = False


@dataclass(frozen=True)
class ConversationFile:
    """A transcript file discovered on disk."""

    path: Path
    session_id: str
    last_modified: datetime
    project_name: str


@dataclass(frozen=True)
class SearchResultMetadata:
    total_messages: int
    has_errors: bool = False
    has_tool_calls: bool = False
    git_branch: str | None = None
    project_path: str | None = None


@dataclass(frozen=True)
class SearchResult:
    """The scored aggregate for one matching conversation."""

    session_id: str
    timestamp: datetime
    matched_content: str
    files: list[str]
    score: float
    project_name: str
    branch: str | None = None
    match_count: int = 0
    metadata: SearchResultMetadata = field(
        default_factory=lambda: SearchResultMetadata(total_messages=0)
    )


@dataclass(frozen=True)
class ConversationResult(SearchResult):
    """A full conversation lookup: the result shape plus every message."""

    content: str = ""
    messages: list[ParsedMessage] = field(default_factory=list)


@dataclass(frozen=True)
class RankingWeights:
    """Coefficients for the composite relevance score."""

    keyword_match: float = 0.4
    recency: float = 0.2
    message_type_match: float = 0.2
    error_presence: float = 0.1
    tool_call_presence: float = 0.1


@dataclass(frozen=True)
class TimeRange:
    start: datetime | None = None
    end: datetime | None = None


@dataclass
class SearchOptions:
    """Parameters for a single search call.

    ``include_errors`` and ``include_tool_calls`` are tri-state: None means
    no filter, True keeps only flagged messages, False keeps only unflagged.
    """

    query: str = ""
    project_context: str | None = None
    file_patterns: list[str] | None = None
    time_range: TimeRange | None = None
    exhaustive: bool = False
    limit: int | None = None
    include_errors: bool | None = None
    include_tool_calls: bool | None = None
    message_types: list[str] | None = None
    sort_by: SortField | None = None
    sort_order: SortOrder = SortOrder.DESC
