"""Data models for the endpoint monitor."""

import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class HealthState(str, Enum):
    """Classification of an endpoint's last check outcome."""

    UNKNOWN = "unknown"
    CHECKING = "checking"
    HEALTHY = "healthy"
    DEGRADING = "degrading"
    DOWN = "down"
    ERROR = "error"

    @property
    def is_failure(self) -> bool:
        return self in (HealthState.DOWN, HealthState.ERROR)

    @property
    def is_alert_eligible(self) -> bool:
        return self in (HealthState.DEGRADING, HealthState.DOWN, HealthState.ERROR)

    @property
    def is_latency_eligible(self) -> bool:
        return self in (HealthState.HEALTHY, HealthState.DEGRADING)

    @property
    def is_persistable(self) -> bool:
        """Transient states never reach durable history."""
        return self.is_alert_eligible or self.is_latency_eligible


class AnomalyTrend(str, Enum):
    """Verdict of the anomaly detector on recent latency."""

    UNKNOWN = "unknown"
    STABLE = "stable"
    DEGRADING = "degrading"


class CheckSample(BaseModel):
    """One immutable check outcome."""

    model_config = ConfigDict(frozen=True)

    at: datetime = Field(..., description="When the check completed (UTC)")
    state: HealthState = Field(..., description="Resulting health state")
    status_code: Optional[int] = Field(None, description="HTTP status code, if a response arrived")
    response_time_ms: Optional[int] = Field(None, description="Measured latency including injected delay")
    message: Optional[str] = Field(None, description="Human readable outcome")
    is_simulated: bool = Field(default=False, description="Whether artificial latency was injected")


class EndpointConfig(BaseModel):
    """User-defined endpoint definition."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Stable unique identifier")
    name: str = Field(..., description="Display name")
    url: str = Field(default="", description="Target URL to probe")


class EndpointStatus(BaseModel):
    """In-memory status of a monitored endpoint, mutated by the orchestrator."""

    id: str = Field(..., description="Endpoint identifier")
    name: str = Field(..., description="Display name")
    endpoint: Optional[str] = Field(None, description="Validated target URL, None when not configured")
    state: HealthState = Field(default=HealthState.UNKNOWN, description="Current health state")
    last_checked_at: Optional[datetime] = Field(None, description="Timestamp of the last completed check")
    message: Optional[str] = Field(None, description="Last outcome message")
    samples: list[CheckSample] = Field(default_factory=list, description="Recent samples, oldest first")


class CheckOutcome(BaseModel):
    """Transition produced by a single endpoint check."""

    endpoint_id: str
    name: str
    endpoint: Optional[str] = None
    previous_state: HealthState
    state: HealthState
    message: Optional[str] = None
    newly_failed: bool = Field(default=False, description="Entered down/error from a non-failure state")
    newly_degrading: bool = Field(default=False, description="Entered degrading from another state")


class HealthSummary(BaseModel):
    """Counts of endpoints per state."""

    total: int = 0
    healthy: int = 0
    degrading: int = 0
    down: int = 0
    error: int = 0
    checking: int = 0
    unknown: int = 0


class DigestCacheEntry(BaseModel):
    """Last generated digest text."""

    text: str
    generated_at: datetime


class HealthResponse(BaseModel):
    """Model for health check responses."""

    status: str = Field(..., description="Health status")
    timestamp: datetime = Field(..., description="Response timestamp")
    uptime_seconds: float = Field(..., description="Service uptime in seconds")
    monitored_endpoints: int = Field(..., description="Number of endpoints being monitored")
