"""Cooldown-gated alert dispatch for endpoint failures and latency degradation."""

import asyncio
import logging
import threading
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Protocol, Sequence

import httpx
from pydantic import BaseModel, Field

from .config import NotificationConfig
from .models import utc_now
from .storage import read_json, write_json_atomic

logger = logging.getLogger(__name__)

GROUPED_OUTAGE_KEY = "groupedOutage"
GROUPED_DEGRADING_KEY = "groupedDegrading"
TEST_ALERT_KEY = "testAlert"
MAX_PREVIEW_NAMES = 4


class AlertKind(str, Enum):
    DOWN = "down"
    DEGRADING = "degrading"
    GROUPED_OUTAGE = "grouped_outage"
    GROUPED_DEGRADING = "grouped_degrading"


class AlertCategory(str, Enum):
    """Category tag attached to alerts; grouped alerts offer a check-now action."""

    SERVICE_DOWN = "SERVICE_DOWN"
    GROUP_OUTAGE = "GROUP_OUTAGE"


class Alert(BaseModel):
    """A notification ready for delivery."""

    id: str = Field(..., description="Unique request identifier, prefixed by alert kind")
    kind: AlertKind
    category: AlertCategory
    title: str
    body: str
    cooldown_key: str
    endpoint_ids: list[str] = Field(default_factory=list)
    created_at: datetime


class AlertChannel(Protocol):
    async def deliver(self, alert: Alert) -> None: ...


class LogAlertChannel:
    """Delivers alerts to the log only."""

    async def deliver(self, alert: Alert) -> None:
        logger.warning(f"ALERT [{alert.category.value}] {alert.title} - {alert.body}")


class WebhookAlertChannel:
    """Posts alerts as JSON to a webhook with retry logic."""

    def __init__(
        self,
        url: str,
        retry_attempts: int = 3,
        retry_delay_seconds: float = 5,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay_seconds = retry_delay_seconds
        self._client = client or httpx.AsyncClient(timeout=30.0)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def deliver(self, alert: Alert) -> None:
        payload = alert.model_dump(mode="json")

        for attempt in range(self.retry_attempts):
            try:
                logger.debug(f"Posting alert attempt {attempt + 1}/{self.retry_attempts} - alert_id: {alert.id}")
                response = await self._client.post(self.url, json=payload)
                if response.is_success:
                    logger.info(f"Alert delivered - alert_id: {alert.id}, title: {alert.title}")
                    return
                logger.error(f"Webhook request failed - status: {response.status_code}, text: {response.text}")
            except httpx.HTTPError as e:
                logger.error(f"Error posting alert {alert.id} (attempt {attempt + 1}): {str(e)}")

            if attempt < self.retry_attempts - 1:
                await asyncio.sleep(self.retry_delay_seconds)

        raise RuntimeError(f"Webhook delivery failed after {self.retry_attempts} attempts")


class CooldownStore:
    """Durable map of cooldown key to the last time an alert fired."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path
        self._last_fired: dict[str, float] = {}
        self._lock = threading.Lock()
        self._load()

    def get(self, key: str) -> Optional[datetime]:
        with self._lock:
            seconds = self._last_fired.get(key)
        if seconds is None:
            return None
        return datetime.fromtimestamp(seconds, tz=timezone.utc)

    def record(self, key: str, fired_at: datetime) -> None:
        with self._lock:
            self._last_fired[key] = fired_at.timestamp()
            self._save()

    def clear(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key:
                self._last_fired.pop(key, None)
            else:
                self._last_fired.clear()
            self._save()

    def snapshot(self) -> dict[str, float]:
        with self._lock:
            return dict(self._last_fired)

    def _load(self) -> None:
        raw = read_json(self.path)
        if not isinstance(raw, dict):
            return
        for key, value in raw.items():
            if isinstance(key, str) and key and isinstance(value, (int, float)):
                self._last_fired[key] = float(value)

    def _save(self) -> None:
        if self.path is None:
            return
        try:
            write_json_atomic(self.path, self._last_fired)
        except OSError as e:
            logger.error(f"Failed to persist cooldowns - path: {self.path}, error: {e}", exc_info=True)


def _preview_names(names: Sequence[str]) -> tuple[list[str], str]:
    normalized = [name.strip() for name in names if name and name.strip()]
    preview = ", ".join(normalized[:MAX_PREVIEW_NAMES])
    if len(normalized) > MAX_PREVIEW_NAMES:
        preview += f", +{len(normalized) - MAX_PREVIEW_NAMES} more"
    return normalized, preview


class NotificationDispatcher:
    """Emits alerts, suppressing repeats that share a cooldown key within the window.

    The cooldown timestamp is recorded before delivery is attempted, and delivery
    failures are logged and swallowed so that alerting never breaks a check cycle.
    """

    def __init__(
        self,
        channel: AlertChannel,
        cooldowns: CooldownStore,
        cooldown_seconds: int = 60,
        enabled: bool = True,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.channel = channel
        self.cooldowns = cooldowns
        self.cooldown_seconds = cooldown_seconds
        self.enabled = enabled
        self._now = now
        logger.info(
            f"NotificationDispatcher initialized - enabled: {enabled}, cooldown: {cooldown_seconds}s, "
            f"channel: {type(channel).__name__}"
        )

    @classmethod
    def from_config(
        cls,
        config: NotificationConfig,
        cooldowns: CooldownStore,
        channel: Optional[AlertChannel] = None,
        now: Callable[[], datetime] = utc_now,
    ) -> "NotificationDispatcher":
        if channel is None:
            if config.webhook_url:
                channel = WebhookAlertChannel(
                    config.webhook_url,
                    retry_attempts=config.retry_attempts,
                    retry_delay_seconds=config.retry_delay_seconds,
                )
            else:
                channel = LogAlertChannel()
        return cls(channel, cooldowns, cooldown_seconds=config.cooldown_seconds, enabled=config.enabled, now=now)

    async def close(self) -> None:
        close = getattr(self.channel, "close", None)
        if close is not None:
            await close()

    async def notify_endpoint_down(
        self, endpoint_id: str, name: str, url: Optional[str], detail: Optional[str]
    ) -> bool:
        return await self._notify(
            cooldown_key=endpoint_id,
            kind=AlertKind.DOWN,
            title=f"Service down: {name}",
            body_parts=[url or "—", detail],
            endpoint_ids=[endpoint_id],
        )

    async def notify_endpoint_degrading(
        self, endpoint_id: str, name: str, url: Optional[str], detail: Optional[str]
    ) -> bool:
        return await self._notify(
            cooldown_key=f"{endpoint_id}.{AlertKind.DEGRADING.value}",
            kind=AlertKind.DEGRADING,
            title=f"Service degrading: {name}",
            body_parts=[url or "—", detail],
            endpoint_ids=[endpoint_id],
        )

    async def notify_grouped_outage(self, names: Sequence[str], endpoint_ids: Sequence[str] = ()) -> bool:
        normalized, preview = _preview_names(names)
        if not normalized:
            return False
        return await self._notify(
            cooldown_key=GROUPED_OUTAGE_KEY,
            kind=AlertKind.GROUPED_OUTAGE,
            title="Possible outage",
            body_parts=[f"Possible outage - {len(normalized)} services affected: {preview}"],
            category=AlertCategory.GROUP_OUTAGE,
            endpoint_ids=list(endpoint_ids),
        )

    async def notify_grouped_degrading(self, names: Sequence[str], endpoint_ids: Sequence[str] = ()) -> bool:
        normalized, preview = _preview_names(names)
        if not normalized:
            return False
        return await self._notify(
            cooldown_key=GROUPED_DEGRADING_KEY,
            kind=AlertKind.GROUPED_DEGRADING,
            title="Performance degrading",
            body_parts=[f"Latency issues - {len(normalized)} services degrading: {preview}"],
            category=AlertCategory.GROUP_OUTAGE,
            endpoint_ids=list(endpoint_ids),
        )

    async def send_test_alert(self) -> bool:
        """Send a test alert through the configured channel."""
        return await self._notify(
            cooldown_key=TEST_ALERT_KEY,
            kind=AlertKind.DOWN,
            title="Service down: test-endpoint",
            body_parts=["This is a test notification from the endpoint monitor"],
        )

    async def _notify(
        self,
        cooldown_key: str,
        kind: AlertKind,
        title: str,
        body_parts: Sequence[Optional[str]],
        category: AlertCategory = AlertCategory.SERVICE_DOWN,
        endpoint_ids: Sequence[str] = (),
    ) -> bool:
        if not self.enabled:
            logger.debug(f"Notifications disabled - skipping alert, cooldown_key: {cooldown_key}")
            return False

        now = self._now()
        last = self.cooldowns.get(cooldown_key)
        if last is not None and (now - last).total_seconds() < self.cooldown_seconds:
            logger.debug(
                f"Cooldown active - cooldown_key: {cooldown_key}, "
                f"elapsed: {(now - last).total_seconds():.1f}s < {self.cooldown_seconds}s"
            )
            return False

        self.cooldowns.record(cooldown_key, now)

        alert = Alert(
            id=f"{kind.value}.{uuid.uuid4()}",
            kind=kind,
            category=category,
            title=title,
            body=" • ".join(part for part in body_parts if part),
            cooldown_key=cooldown_key,
            endpoint_ids=list(endpoint_ids),
            created_at=now,
        )

        try:
            await self.channel.deliver(alert)
        except Exception as e:
            logger.error(f"Failed to deliver alert - cooldown_key: {cooldown_key}, error: {str(e)}", exc_info=True)
        else:
            logger.info(f"Alert sent - kind: {kind.value}, cooldown_key: {cooldown_key}, title: {title}")
        return True
