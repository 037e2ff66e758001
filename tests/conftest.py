"""Shared fixtures for endpoint monitor tests."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

import pytest

from endpoint_monitor.anomaly import AnomalyDetector
from endpoint_monitor.grouping import OutageGrouper
from endpoint_monitor.models import CheckSample, EndpointConfig, HealthState
from endpoint_monitor.notifications import Alert, CooldownStore, NotificationDispatcher
from endpoint_monitor.orchestrator import CheckOrchestrator
from endpoint_monitor.probe import ProbeResult
from endpoint_monitor.storage import SampleStore

START = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class Slow:
    """A probe result that arrives after a delay."""

    def __init__(self, seconds: float, result: Union[ProbeResult, BaseException]) -> None:
        self.seconds = seconds
        self.result = result


class ScriptedProbe:
    """Probe returning queued results per URL; the last queued result repeats."""

    def __init__(self, default: Optional[ProbeResult] = None) -> None:
        self.default = default or ProbeResult(status_code=200, elapsed_ms=100)
        self.results: dict[str, list] = {}
        self.calls: list[str] = []

    def script(self, url: str, *results) -> None:
        self.results[url] = list(results)

    async def check(self, url: str) -> ProbeResult:
        self.calls.append(url)
        queue = self.results.get(url)
        if queue:
            result = queue.pop(0) if len(queue) > 1 else queue[0]
        else:
            result = self.default

        if isinstance(result, Slow):
            await asyncio.sleep(result.seconds)
            result = result.result
        if isinstance(result, BaseException):
            raise result
        return result


class RecordingChannel:
    """Alert channel that records deliveries and can be told to fail."""

    def __init__(self, fail: bool = False) -> None:
        self.alerts: list[Alert] = []
        self.fail = fail

    async def deliver(self, alert: Alert) -> None:
        self.alerts.append(alert)
        if self.fail:
            raise RuntimeError("delivery failed")


def make_sample(
    at: datetime = START,
    state: HealthState = HealthState.HEALTHY,
    latency: Optional[int] = 100,
    simulated: bool = False,
    message: Optional[str] = None,
    status_code: Optional[int] = 200,
) -> CheckSample:
    return CheckSample(
        at=at,
        state=state,
        status_code=status_code,
        response_time_ms=latency,
        message=message,
        is_simulated=simulated,
    )


def endpoint(name: str, url: Optional[str] = None, endpoint_id: Optional[str] = None) -> EndpointConfig:
    config = EndpointConfig(name=name, url=url if url is not None else f"https://{name}.example.com/health")
    if endpoint_id:
        config = config.model_copy(update={"id": endpoint_id})
    return config


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def probe() -> ScriptedProbe:
    return ScriptedProbe()


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def sample_store(tmp_path) -> SampleStore:
    return SampleStore(tmp_path / "samples.json")


@pytest.fixture
def dispatcher(tmp_path, channel, clock) -> NotificationDispatcher:
    return NotificationDispatcher(channel, CooldownStore(tmp_path / "cooldowns.json"), now=clock)


@pytest.fixture
def orchestrator(probe, sample_store, dispatcher, clock) -> CheckOrchestrator:
    return CheckOrchestrator(
        probe=probe,
        sample_store=sample_store,
        detector=AnomalyDetector(),
        grouper=OutageGrouper(),
        dispatcher=dispatcher,
        probe_timeout=0.5,
        now=clock,
    )
