"""
Proxy log line parsing.

Turns one raw log line into nothing, a model-correlation hint, or a
structured request event. Parsing is best-effort over a live,
semi-structured stream: unrecognized lines are ignored, never raised.

Classification is an ordered table of (predicate, extractor) rules evaluated
top to bottom; the first predicate that matches decides the result. A new
log format is added by appending a rule.
"""

import re
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional, Tuple

from .correlation import CorrelationCache
from .providers import UNKNOWN_PROVIDER, extract_model_from_path, resolve_provider
from proxy_usage.storage.models import RequestEvent

UNKNOWN_MODEL = "unknown"
NO_REQUEST_ID = "--------"

# Management, internal and telemetry routes never count as usage
UNTRACKED_ROUTES: Tuple[str, ...] = (
    "/v0/management/",
    "/v1/models",
    "?uploadThread",
    "?getCreditsByRequestId",
    "?threadDisplayCostInfo",
    "/api/internal",
    "/api/telemetry",
    "/api/otel",
)

# Inference calls worth tracking
TRACKABLE_ROUTES: Tuple[str, ...] = (
    "/chat/completions",
    "/v1/messages",
    "/completions",
    "/v1beta",
    ":generateContent",
    ":streamGenerateContent",
)

# | f803bb77 | Use OAuth user@example.com for model claude-opus-4-5-thinking
CORRELATION_RE = re.compile(r"\|\s+([a-f0-9]{8})\s+\|.*for model\s+(\S+)")

# | f803bb77 | 200 | 12.453s | 127.0.0.1 | POST "/v1/messages"
NEW_FORMAT_RE = re.compile(
    r'\|\s+([a-f0-9]{8}|-{8})\s+\|\s+(\d+)\s+\|\s+(\S+)\s+\|\s+\S+\s+\|\s+(\w+)\s+"([^"]+)"'
)

# [GIN] 2025/12/04 - 20:51:48 | 200 | 6.656s | ::1 | POST "/v1/messages" | model=claude-...
LEGACY_FORMAT_RE = re.compile(
    r'\[\w+\]\s+(\d{4}/\d{2}/\d{2})\s+-\s+(\d{2}:\d{2}:\d{2})\s+\|\s+(\d+)\s+\|\s+(\S+)'
    r'\s+\|\s+\S+\s+\|\s+(\w+)\s+"([^"]+)"(?:\s+\|\s+model=(\S+))?'
)

# 2025-12-24 15:14:21 anywhere in a new-format line
EMBEDDED_TIMESTAMP_RE = re.compile(r"(\d{4}-\d{2}-\d{2})\s+(\d{2}:\d{2}:\d{2})")


class ParseKind(Enum):
    """Outcome of classifying one log line."""
    IGNORED = "ignored"
    CORRELATION_HINT = "correlation_hint"
    REQUEST = "request"


@dataclass(frozen=True)
class ParseResult:
    """Result of parsing one line; which fields are set depends on kind."""
    kind: ParseKind
    event: Optional[RequestEvent] = None
    request_id: Optional[str] = None
    model: Optional[str] = None

    @property
    def is_request(self) -> bool:
        return self.kind == ParseKind.REQUEST


IGNORED = ParseResult(kind=ParseKind.IGNORED)


def parse_duration(duration: str) -> int:
    """Convert a duration token to milliseconds.

    "65ms" -> 65, "6.656s" -> 6656. Any other suffix or an unparseable
    number yields 0.
    """
    duration = duration.strip()
    try:
        if duration.endswith("ms"):
            return int(float(duration[:-2]))
        if duration.endswith("s"):
            return int(round(float(duration[:-1]) * 1000))
    except (ValueError, OverflowError):
        return 0
    return 0


def _local_timestamp_ms(date_str: str, time_str: str, date_format: str) -> Optional[int]:
    """Interpret a date/time pair in the local timezone as epoch milliseconds."""
    try:
        parsed = datetime.strptime(f"{date_str} {time_str}", f"{date_format} %H:%M:%S")
    except ValueError:
        return None
    return int(parsed.timestamp() * 1000)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _has_model_marker(line: str) -> bool:
    return "for model " in line


def _is_untracked_route(line: str) -> bool:
    return any(route in line for route in UNTRACKED_ROUTES)


def _is_not_trackable(line: str) -> bool:
    return not any(route in line for route in TRACKABLE_ROUTES)


def _ignore(line: str, match: Any) -> ParseResult:
    return IGNORED


class LineParser:
    """Classifies proxy log lines and builds RequestEvents.

    Correlation hints are written to the cache as a side effect of parsing,
    so the parser must be fed lines in file order.
    """

    def __init__(
        self,
        cache: CorrelationCache,
        next_id: Callable[[], int],
        clock: Callable[[], int] = _now_ms,
    ):
        """Initialize the parser.

        Args:
            cache: Correlation cache shared with nothing else but this parser
            next_id: Monotonic counter source, usually WatcherContext.next_id
            clock: Returns the observation time in epoch milliseconds
        """
        self.cache = cache
        self._next_id = next_id
        self._clock = clock
        self._rules: Tuple[Tuple[Callable[[str], Any], Callable[[str, Any], ParseResult]], ...] = (
            (_has_model_marker, self._correlation_hint),
            (_is_untracked_route, _ignore),
            (_is_not_trackable, _ignore),
            (NEW_FORMAT_RE.search, self._new_format_event),
            (LEGACY_FORMAT_RE.search, self._legacy_format_event),
        )

    def parse(self, line: str) -> ParseResult:
        """Classify one line. Never raises for malformed input."""
        line = line.rstrip("\r\n")
        for predicate, extract in self._rules:
            match = predicate(line)
            if match:
                return extract(line, match)
        return IGNORED

    def _correlation_hint(self, line: str, _: Any) -> ParseResult:
        match = CORRELATION_RE.search(line)
        if not match:
            return IGNORED
        request_id, model = match.group(1), match.group(2)
        self.cache.put(request_id, model)
        return ParseResult(
            kind=ParseKind.CORRELATION_HINT,
            request_id=request_id,
            model=model,
        )

    def _new_format_event(self, line: str, match) -> ParseResult:
        request_id, status, duration, method, path = match.groups()

        timestamp = None
        embedded = EMBEDDED_TIMESTAMP_RE.search(line)
        if embedded:
            timestamp = _local_timestamp_ms(embedded.group(1), embedded.group(2), "%Y-%m-%d")

        model = None
        if request_id != NO_REQUEST_ID:
            model = self.cache.get(request_id)
        if model is None:
            model = extract_model_from_path(path)

        return self._build_event(timestamp, model, method, path, status, duration)

    def _legacy_format_event(self, line: str, match) -> ParseResult:
        date_str, time_str, status, duration, method, path, inline_model = match.groups()
        timestamp = _local_timestamp_ms(date_str, time_str, "%Y/%m/%d")
        model = inline_model or extract_model_from_path(path)
        return self._build_event(timestamp, model, method, path, status, duration)

    def _build_event(
        self,
        timestamp: Optional[int],
        model: Optional[str],
        method: str,
        path: str,
        status: str,
        duration: str,
    ) -> ParseResult:
        if timestamp is None:
            timestamp = self._clock()
        model = model or UNKNOWN_MODEL
        provider = resolve_provider(model, path) or UNKNOWN_PROVIDER

        event = RequestEvent(
            id=f"req_{timestamp}_{self._next_id()}",
            timestamp=timestamp,
            provider=provider,
            model=model,
            method=method,
            path=path,
            status=int(status),
            duration_ms=parse_duration(duration),
        )
        return ParseResult(kind=ParseKind.REQUEST, event=event)
