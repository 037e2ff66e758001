"""Daily digest: per-endpoint statistics and cross-endpoint outage correlation.

The digest text produced here is the *input* for an external summarization
step. ``DigestBuilder`` turns the current endpoint statuses into a
line-oriented report covering a trailing window (24h by default):

- one line per endpoint with its state, mean and latest latency, a latency
  trend label and the number of outages,
- a correlation section listing time buckets (5 minutes by default) in which
  two or more endpoints started failing.

``DigestGenerator`` sends that input to a ``Summarizer`` and caches the result
for the rest of the calendar day.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional, Protocol, Sequence

import httpx
from pydantic import ValidationError

from .config import DigestConfig
from .models import CheckSample, DigestCacheEntry, EndpointStatus, utc_now
from .storage import read_json, write_json_atomic

logger = logging.getLogger(__name__)

TREND_MIN_POINTS = 6
TREND_WINDOW = 3
TREND_CHANGE_RATIO = 0.15

PROMPT_INSTRUCTIONS = (
    "Write a 2-3 sentence plain English summary of overall infrastructure health.\n"
    "Highlight concerning patterns and likely shared-cause incidents when applicable.\n"
    "Keep it concise and actionable."
)


@dataclass(frozen=True)
class CorrelationBucket:
    start: datetime
    names: list[str]


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values)


def latency_trend(samples: Sequence[CheckSample]) -> str:
    """Compare the mean of the last three latencies with the three before them."""
    latencies = [sample.response_time_ms for sample in samples if sample.response_time_ms is not None]
    if len(latencies) < TREND_MIN_POINTS:
        return "insufficient data"

    latest_avg = _mean(latencies[-TREND_WINDOW:])
    previous_avg = _mean(latencies[-2 * TREND_WINDOW : -TREND_WINDOW])
    if previous_avg <= 0:
        return "stable"

    change = (latest_avg - previous_avg) / previous_avg
    percent = round(change * 100)
    if change >= TREND_CHANGE_RATIO:
        return f"increasing (+{percent}%)"
    if change <= -TREND_CHANGE_RATIO:
        return f"decreasing ({percent}%)"
    return f"stable ({percent}%)"


def outage_transition_times(samples: Sequence[CheckSample]) -> list[datetime]:
    """Timestamps at which the sequence enters down/error from a non-outage state."""
    times = []
    previously_outage = False
    for sample in samples:
        currently_outage = sample.state.is_failure
        if currently_outage and not previously_outage:
            times.append(sample.at)
        previously_outage = currently_outage
    return times


def outage_count(samples: Sequence[CheckSample]) -> int:
    return len(outage_transition_times(samples))


def window_samples(status: EndpointStatus, window_start: datetime) -> list[CheckSample]:
    return sorted((sample for sample in status.samples if sample.at >= window_start), key=lambda s: s.at)


def correlated_buckets(
    statuses: Sequence[EndpointStatus],
    window_start: datetime,
    bucket_seconds: int = 300,
) -> list[CorrelationBucket]:
    """Group outage onsets into fixed-width buckets shared by two or more endpoints."""
    buckets: dict[int, set[str]] = {}
    for status in statuses:
        for at in outage_transition_times(window_samples(status, window_start)):
            bucket = int(at.timestamp() // bucket_seconds)
            buckets.setdefault(bucket, set()).add(status.name)

    return [
        CorrelationBucket(
            start=datetime.fromtimestamp(bucket * bucket_seconds, tz=timezone.utc),
            names=sorted(names),
        )
        for bucket, names in sorted(buckets.items())
        if len(names) >= 2
    ]


class DigestBuilder:
    """Builds the digest input text from endpoint statuses."""

    def __init__(
        self,
        now: Callable[[], datetime] = utc_now,
        window_hours: int = 24,
        bucket_minutes: int = 5,
        max_lines: int = 20,
    ) -> None:
        self._now = now
        self.window = timedelta(hours=window_hours)
        self.bucket_seconds = bucket_minutes * 60
        self.bucket_minutes = bucket_minutes
        self.max_lines = max_lines

    @classmethod
    def from_config(cls, config: DigestConfig, now: Callable[[], datetime] = utc_now) -> "DigestBuilder":
        return cls(
            now=now,
            window_hours=config.window_hours,
            bucket_minutes=config.bucket_minutes,
            max_lines=config.max_endpoint_lines,
        )

    def window_start(self) -> datetime:
        return self._now() - self.window

    def endpoint_lines(self, statuses: Sequence[EndpointStatus]) -> list[str]:
        window_start = self.window_start()
        lines = []
        for status in statuses:
            recent = window_samples(status, window_start)
            latencies = [sample.response_time_ms for sample in recent if sample.response_time_ms is not None]
            avg_latency = f"{round(_mean(latencies))}ms" if latencies else "n/a"
            latest_latency = f"{latencies[-1]}ms" if latencies else "n/a"
            lines.append(
                f"- {status.name} | status: {status.state.value} | avg latency (24h): {avg_latency} | "
                f"latest latency: {latest_latency} | trend: {latency_trend(recent)} | "
                f"outages (24h): {outage_count(recent)}"
            )
        return lines

    def correlation_lines(self, statuses: Sequence[EndpointStatus]) -> list[str]:
        return [
            f"- {len(bucket.names)} services down around {bucket.start.strftime('%H:%M')} UTC: "
            f"{', '.join(bucket.names)}"
            for bucket in correlated_buckets(statuses, self.window_start(), self.bucket_seconds)
        ]

    def build_prompt(self, statuses: Sequence[EndpointStatus]) -> str:
        """Build the full digest input, or an empty string when there is nothing to report."""
        lines = self.endpoint_lines(statuses)
        if not lines:
            return ""

        header = "Daily infrastructure health summary input:"
        hidden = len(lines) - self.max_lines
        if hidden > 0:
            header += f" (showing {self.max_lines} of {len(lines)} services; {hidden} summarized separately)"
            hidden_summary = f"Additional services not listed individually: +{hidden} more"
            lines = lines[: self.max_lines]
        else:
            hidden_summary = "No additional hidden services."

        correlation = self.correlation_lines(statuses)
        correlation_section = (
            "\n".join(correlation)
            if correlation
            else "No correlated multi-service outages detected in the last 24h."
        )

        return "\n".join(
            [
                header,
                *lines,
                hidden_summary,
                "",
                f"Correlated failures (within {self.bucket_minutes}-minute windows):",
                correlation_section,
                "",
                PROMPT_INSTRUCTIONS,
            ]
        )


class DigestCache:
    """Last generated digest and when it was generated."""

    def __init__(self, path: Optional[Path] = None, now: Callable[[], datetime] = utc_now) -> None:
        self.path = path
        self._now = now
        self._entry: Optional[DigestCacheEntry] = None
        raw = read_json(path)
        if raw is not None:
            try:
                self._entry = DigestCacheEntry.model_validate(raw)
            except ValidationError:
                logger.warning(f"Ignoring malformed digest cache - path: {path}")

    def get(self) -> Optional[DigestCacheEntry]:
        return self._entry

    def is_fresh(self) -> bool:
        """A digest is fresh when it was generated on the current calendar day."""
        if self._entry is None:
            return False
        now = self._now()
        generated = self._entry.generated_at
        if now.tzinfo is not None and generated.tzinfo is not None:
            generated = generated.astimezone(now.tzinfo)
        return generated.date() == now.date()

    def store(self, text: str) -> DigestCacheEntry:
        self._entry = DigestCacheEntry(text=text, generated_at=self._now())
        if self.path is not None:
            try:
                write_json_atomic(self.path, self._entry.model_dump(mode="json"))
            except OSError as e:
                logger.error(f"Failed to persist digest cache - path: {self.path}, error: {e}", exc_info=True)
        return self._entry

    def clear(self) -> None:
        self._entry = None
        if self.path is not None:
            try:
                self.path.unlink(missing_ok=True)
            except OSError as e:
                logger.error(f"Failed to remove digest cache - path: {self.path}, error: {e}", exc_info=True)


class Summarizer(Protocol):
    async def summarize(self, prompt: str) -> Optional[str]: ...


class HttpSummarizer:
    """Sends the digest input to an external summarization service."""

    def __init__(self, url: str, timeout: float = 60.0, client: Optional[httpx.AsyncClient] = None) -> None:
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def summarize(self, prompt: str) -> Optional[str]:
        response = await self._client.post(self.url, json={"prompt": prompt})
        response.raise_for_status()
        data = response.json()
        if isinstance(data, dict):
            return data.get("summary") or data.get("text")
        return None


class DigestGenerator:
    """Produces the daily digest, reusing today's cached text when available."""

    def __init__(self, builder: DigestBuilder, cache: DigestCache, summarizer: Optional[Summarizer] = None) -> None:
        self.builder = builder
        self.cache = cache
        self.summarizer = summarizer

    @property
    def is_available(self) -> bool:
        return self.summarizer is not None

    async def generate_daily_digest(self, statuses: Sequence[EndpointStatus], force: bool = False) -> Optional[str]:
        """Return today's digest, generating it when the cache is stale.

        Args:
            statuses: Current endpoint statuses
            force: Regenerate even when a digest already exists for today

        Returns:
            The digest text, or None when no summarizer is available or generation failed
        """
        if not force and self.cache.is_fresh():
            return self.cache.get().text

        if self.summarizer is None:
            logger.debug("Digest requested but no summarizer is configured")
            return None

        prompt = self.builder.build_prompt(statuses)
        if not prompt:
            return None

        try:
            text = await self.summarizer.summarize(prompt)
        except Exception as e:
            logger.error(f"Digest generation failed: {str(e)}", exc_info=True)
            return None

        text = (text or "").strip()
        if not text:
            return None

        self.cache.store(text)
        logger.info(f"Daily digest generated - length: {len(text)}")
        return text

    async def close(self) -> None:
        close = getattr(self.summarizer, "close", None)
        if close is not None:
            await close()
