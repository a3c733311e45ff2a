"""
Data models for storage layer.

Defines the request events, time series and cumulative records that are
persisted as JSON. On-disk keys are camelCase.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


HISTORY_MAX_ENTRIES = 500
MAX_HOURLY_POINTS = 168  # 7 days of hourly buckets
UNKNOWN = "unknown"


def _as_int(value: Any, default: int = 0) -> int:
    """Coerce a JSON number to int, falling back to default for anything else."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return int(value)


def _as_float(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value)


def _as_optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    return _as_int(value)


@dataclass(frozen=True)
class RequestEvent:
    """One API call observed in the proxy log.

    Created once by the line parser and never mutated afterwards. Token fields
    stay None on the tail path; the log never carries token counts.
    """
    id: str
    timestamp: int  # milliseconds since epoch
    provider: str
    model: str
    method: str
    path: str
    status: int
    duration_ms: int
    tokens_in: Optional[int] = None
    tokens_out: Optional[int] = None
    tokens_cached: Optional[int] = None

    @property
    def success(self) -> bool:
        """Whether the upstream call succeeded (HTTP status below 400)."""
        return self.status < 400

    @property
    def total_tokens(self) -> int:
        return (self.tokens_in or 0) + (self.tokens_out or 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "provider": self.provider,
            "model": self.model,
            "method": self.method,
            "path": self.path,
            "status": self.status,
            "durationMs": self.duration_ms,
            "tokensIn": self.tokens_in,
            "tokensOut": self.tokens_out,
            "tokensCached": self.tokens_cached,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RequestEvent":
        return cls(
            id=str(data["id"]),
            timestamp=_as_int(data.get("timestamp")),
            provider=str(data.get("provider") or UNKNOWN),
            model=str(data.get("model") or UNKNOWN),
            method=str(data.get("method", "")),
            path=str(data.get("path", "")),
            status=_as_int(data.get("status")),
            duration_ms=_as_int(data.get("durationMs")),
            tokens_in=_as_optional_int(data.get("tokensIn")),
            tokens_out=_as_optional_int(data.get("tokensOut")),
            tokens_cached=_as_optional_int(data.get("tokensCached")),
        )


@dataclass
class TimeSeriesPoint:
    """A single bucket of a time series, labelled YYYY-MM-DD or YYYY-MM-DDTHH."""
    label: str
    value: int

    def to_dict(self) -> Dict[str, Any]:
        return {"label": self.label, "value": self.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimeSeriesPoint":
        return cls(label=str(data["label"]), value=_as_int(data.get("value")))


@dataclass
class ModelStats:
    """Per-model or per-provider counters."""
    requests: int = 0
    success_count: int = 0
    tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cached_tokens: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requests": self.requests,
            "successCount": self.success_count,
            "tokens": self.tokens,
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "cachedTokens": self.cached_tokens,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelStats":
        return cls(
            requests=_as_int(data.get("requests")),
            success_count=_as_int(data.get("successCount")),
            tokens=_as_int(data.get("tokens")),
            input_tokens=_as_int(data.get("inputTokens")),
            output_tokens=_as_int(data.get("outputTokens")),
            cached_tokens=_as_int(data.get("cachedTokens")),
        )


def _series_to_list(series: List[TimeSeriesPoint]) -> List[Dict[str, Any]]:
    return [point.to_dict() for point in series]


def _series_from_list(data: Any) -> List[TimeSeriesPoint]:
    if not isinstance(data, list):
        return []
    return [TimeSeriesPoint.from_dict(item) for item in data]


def _stats_from_map(data: Any) -> Dict[str, ModelStats]:
    if not isinstance(data, dict):
        return {}
    return {str(name): ModelStats.from_dict(stats) for name, stats in data.items()}


@dataclass
class Aggregate:
    """Cumulative analytics record, the source of truth for usage history.

    Scalars only ever grow, except through an explicit user clear. Hourly
    series hold at most MAX_HOURLY_POINTS buckets; daily series are uncapped.
    """
    total_requests: int = 0
    total_success_count: int = 0
    total_failure_count: int = 0
    total_tokens_in: int = 0
    total_tokens_out: int = 0
    total_tokens_cached: int = 0
    total_cost_usd: float = 0.0
    requests_by_day: List[TimeSeriesPoint] = field(default_factory=list)
    tokens_by_day: List[TimeSeriesPoint] = field(default_factory=list)
    requests_by_hour: List[TimeSeriesPoint] = field(default_factory=list)
    tokens_by_hour: List[TimeSeriesPoint] = field(default_factory=list)
    model_stats: Dict[str, ModelStats] = field(default_factory=dict)
    provider_stats: Dict[str, ModelStats] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalRequests": self.total_requests,
            "totalSuccessCount": self.total_success_count,
            "totalFailureCount": self.total_failure_count,
            "totalTokensIn": self.total_tokens_in,
            "totalTokensOut": self.total_tokens_out,
            "totalTokensCached": self.total_tokens_cached,
            "totalCostUsd": self.total_cost_usd,
            "requestsByDay": _series_to_list(self.requests_by_day),
            "tokensByDay": _series_to_list(self.tokens_by_day),
            "requestsByHour": _series_to_list(self.requests_by_hour),
            "tokensByHour": _series_to_list(self.tokens_by_hour),
            "modelStats": {name: s.to_dict() for name, s in self.model_stats.items()},
            "providerStats": {name: s.to_dict() for name, s in self.provider_stats.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Aggregate":
        return cls(
            total_requests=_as_int(data.get("totalRequests")),
            total_success_count=_as_int(data.get("totalSuccessCount")),
            total_failure_count=_as_int(data.get("totalFailureCount")),
            total_tokens_in=_as_int(data.get("totalTokensIn")),
            total_tokens_out=_as_int(data.get("totalTokensOut")),
            total_tokens_cached=_as_int(data.get("totalTokensCached")),
            total_cost_usd=_as_float(data.get("totalCostUsd")),
            requests_by_day=_series_from_list(data.get("requestsByDay")),
            tokens_by_day=_series_from_list(data.get("tokensByDay")),
            requests_by_hour=_series_from_list(data.get("requestsByHour")),
            tokens_by_hour=_series_from_list(data.get("tokensByHour")),
            model_stats=_stats_from_map(data.get("modelStats")),
            provider_stats=_stats_from_map(data.get("providerStats")),
        )


@dataclass
class RequestHistory:
    """Bounded display cache of the most recent requests.

    Distinct from Aggregate: trimming the request list never reduces the
    cumulative analytics.
    """
    requests: List[RequestEvent] = field(default_factory=list)
    total_request_count: int = 0
    total_success_count: int = 0
    total_tokens_in: int = 0
    total_tokens_out: int = 0
    total_tokens_cached: int = 0
    total_cost_usd: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requests": [event.to_dict() for event in self.requests],
            "totalRequestCount": self.total_request_count,
            "totalSuccessCount": self.total_success_count,
            "totalTokensIn": self.total_tokens_in,
            "totalTokensOut": self.total_tokens_out,
            "totalTokensCached": self.total_tokens_cached,
            "totalCostUsd": self.total_cost_usd,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RequestHistory":
        raw_requests = data.get("requests")
        requests = []
        if isinstance(raw_requests, list):
            requests = [RequestEvent.from_dict(item) for item in raw_requests]

        history = cls(
            requests=requests,
            total_request_count=_as_int(data.get("totalRequestCount")),
            total_success_count=_as_int(data.get("totalSuccessCount")),
            total_tokens_in=_as_int(data.get("totalTokensIn")),
            total_tokens_out=_as_int(data.get("totalTokensOut")),
            total_tokens_cached=_as_int(data.get("totalTokensCached")),
            total_cost_usd=_as_float(data.get("totalCostUsd")),
        )

        # Files written before the rolling counters existed only carry requests
        if history.total_request_count == 0 and history.requests:
            history.total_request_count = len(history.requests)
        if history.total_success_count == 0 and history.requests:
            history.total_success_count = sum(1 for r in history.requests if r.success)
        return history
