"""Data source metrics schemas."""

from pydantic import BaseModel, Field


class SourceStats(BaseModel):
    count: int = Field(..., ge=0, description="Successful calls")
    avg_duration_ms: int = Field(..., ge=0, description="Average latency")


class PerformanceStats(BaseModel):
    total_requests: int
    catalog: SourceStats
    ganjoor: SourceStats
    fallback_rate: int = Field(
        ..., ge=0, le=100, description="Percent of calls that fell back to Ganjoor"
    )


class RequestMetricResponse(BaseModel):
    source: str
    endpoint: str
    duration_ms: float
    success: bool
    is_fallback: bool
    timestamp: str


class CacheStats(BaseModel):
    size: int
    pending_requests: int
    keys: list[str]


class DataSourceMetricsResponse(BaseModel):
    """Hybrid dispatcher statistics plus response cache contents.

    ``stats`` is null until the first dispatched request. ``catalog`` holds
    row counts when the catalog is enabled and reachable.
    """

    stats: PerformanceStats | None = None
    recent: list[RequestMetricResponse] = Field(default_factory=list)
    cache: CacheStats
    catalog: dict[str, int] | None = None
