"""Check orchestration: drives endpoints through checks and alerts on transitions."""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional, Sequence

from .anomaly import AnomalyDetector
from .config import SimulationConfig
from .endpoints import EndpointConfigStore, parse_endpoint_url
from .grouping import GroupingDecision, OutageGrouper
from .models import (
    AnomalyTrend,
    CheckOutcome,
    CheckSample,
    EndpointConfig,
    EndpointStatus,
    HealthState,
    HealthSummary,
    utc_now,
)
from .notifications import NotificationDispatcher
from .probe import DEFAULT_PROBE_TIMEOUT_SECONDS, ProbeClient
from .storage import SampleStore
from .summary import match_endpoint, summarize_counts

logger = logging.getLogger(__name__)

NO_ENDPOINT_MESSAGE = "No endpoint configured"
DEGRADING_HINT = "latency degrading"


def with_degrading_hint(message: Optional[str]) -> str:
    if not message:
        return DEGRADING_HINT
    if DEGRADING_HINT in message.lower():
        return message
    return f"{message} • {DEGRADING_HINT}"


class CheckOrchestrator:
    """Owns the in-memory endpoint statuses and runs checks against them.

    A single ``check_one`` call alerts immediately on a transition, while
    ``check_all`` suppresses per-endpoint alerts and runs one aggregation pass
    after every check in the batch has finished.
    """

    def __init__(
        self,
        probe: ProbeClient,
        sample_store: SampleStore,
        detector: AnomalyDetector,
        grouper: OutageGrouper,
        dispatcher: NotificationDispatcher,
        config_store: Optional[EndpointConfigStore] = None,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.probe = probe
        self.sample_store = sample_store
        self.detector = detector
        self.grouper = grouper
        self.dispatcher = dispatcher
        self.config_store = config_store
        self.probe_timeout = probe_timeout
        self._now = now
        self._statuses: dict[str, EndpointStatus] = {}
        self._configs: dict[str, EndpointConfig] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    # Configuration

    def reload_configs(self, configs: Optional[Sequence[EndpointConfig]] = None) -> list[EndpointStatus]:
        """Rebuild statuses from configuration, rehydrating history from the sample store."""
        if configs is None:
            configs = self.config_store.load_configs() if self.config_store else []

        self._statuses = {
            config.id: EndpointStatus(
                id=config.id,
                name=config.name,
                endpoint=parse_endpoint_url(config.url),
                state=HealthState.UNKNOWN,
                samples=self.sample_store.load_samples(config.id),
            )
            for config in configs
        }
        self._configs = {config.id: config for config in configs}
        self._locks = {endpoint_id: self._locks.get(endpoint_id, asyncio.Lock()) for endpoint_id in self._statuses}
        logger.info(f"Endpoint statuses reloaded - count: {len(self._statuses)}")
        return self.statuses()

    def save_configs(self, configs: Sequence[EndpointConfig]) -> list[EndpointStatus]:
        if self.config_store is None:
            return self.reload_configs(configs)
        self.config_store.save_configs(list(configs))
        return self.reload_configs()

    def reset_configs(self) -> list[EndpointStatus]:
        if self.config_store is None:
            return self.reload_configs([])
        self.config_store.reset_to_defaults()
        return self.reload_configs()

    def current_configs(self) -> list[EndpointConfig]:
        """The endpoint definitions as configured, including URLs that failed validation."""
        return list(self._configs.values())

    # Queries

    def statuses(self) -> list[EndpointStatus]:
        return list(self._statuses.values())

    def get_status(self, endpoint_id: str) -> Optional[EndpointStatus]:
        return self._statuses.get(endpoint_id)

    def summary(self) -> HealthSummary:
        return summarize_counts(self.statuses())

    def find_endpoint(self, query: str) -> Optional[EndpointStatus]:
        return match_endpoint(query, self.statuses())

    def trend(self, endpoint_id: str) -> Optional[AnomalyTrend]:
        status = self._statuses.get(endpoint_id)
        if status is None:
            return None
        return self.detector.classify(status.samples)

    def clear_history(self) -> None:
        """Drop all stored samples and reset every endpoint to unknown."""
        self.sample_store.clear_all_samples()
        for status in self._statuses.values():
            status.state = HealthState.UNKNOWN
            status.message = None
            status.last_checked_at = None
            status.samples = []
        logger.info(f"History cleared - endpoints: {len(self._statuses)}")

    # Checks

    async def check_one(
        self,
        endpoint_id: str,
        simulation: Optional[SimulationConfig] = None,
        notify: bool = True,
    ) -> Optional[CheckOutcome]:
        """Check a single endpoint.

        Args:
            endpoint_id: Identifier of the endpoint to check
            simulation: Artificial latency to inject into the probe
            notify: Alert immediately on a transition

        Returns:
            The transition outcome, or None if the endpoint is unknown
        """
        status = self._statuses.get(endpoint_id)
        if status is None:
            logger.warning(f"Endpoint not found - endpoint_id: {endpoint_id}")
            return None

        async with self._locks.setdefault(endpoint_id, asyncio.Lock()):
            outcome = await self._run_check(status, simulation)

        if notify:
            await self._notify_transition(outcome)
        return outcome

    async def check_all(self, simulation: Optional[SimulationConfig] = None) -> list[CheckOutcome]:
        """Check every endpoint concurrently, then alert once for the whole batch."""
        endpoint_ids = list(self._statuses)
        logger.info(f"Checking all endpoints - count: {len(endpoint_ids)}")

        results = await asyncio.gather(
            *(self.check_one(endpoint_id, simulation=simulation, notify=False) for endpoint_id in endpoint_ids),
            return_exceptions=True,
        )

        outcomes = []
        for endpoint_id, result in zip(endpoint_ids, results):
            if isinstance(result, BaseException):
                logger.error(f"Check failed unexpectedly - endpoint_id: {endpoint_id}, error: {result!r}")
            elif result is not None:
                outcomes.append(result)

        await self._notify_batch(outcomes)
        return outcomes

    async def run_periodic(
        self,
        interval_seconds: float,
        simulation: Optional[Callable[[], SimulationConfig]] = None,
    ) -> None:
        """Background loop checking all endpoints every interval."""
        logger.info(f"Starting periodic checks - interval: {interval_seconds}s")

        while True:
            try:
                await self.check_all(simulation=simulation() if simulation else None)
            except asyncio.CancelledError:
                logger.info("Periodic checks cancelled")
                raise
            except Exception as e:
                logger.error(f"Error in periodic check loop: {str(e)}", exc_info=True)

            await asyncio.sleep(interval_seconds)

    async def _run_check(self, status: EndpointStatus, simulation: Optional[SimulationConfig]) -> CheckOutcome:
        previous_state = status.state
        previous_message = status.message

        status.state = HealthState.CHECKING
        status.message = None

        try:
            if status.endpoint is None:
                status.state = HealthState.ERROR
                status.message = NO_ENDPOINT_MESSAGE
                self._append_sample(status)
            else:
                await self._probe_endpoint(status, simulation.effective_delay_ms if simulation else 0)
        except asyncio.CancelledError:
            status.state = previous_state
            status.message = previous_message
            raise

        status.last_checked_at = self._now()

        outcome = CheckOutcome(
            endpoint_id=status.id,
            name=status.name,
            endpoint=status.endpoint,
            previous_state=previous_state,
            state=status.state,
            message=status.message,
            newly_failed=status.state.is_failure and not previous_state.is_failure,
            newly_degrading=status.state == HealthState.DEGRADING and previous_state != HealthState.DEGRADING,
        )

        if previous_state != status.state:
            logger.info(
                f"Endpoint state changed - endpoint: {status.name}, previous: {previous_state.value}, "
                f"current: {status.state.value}, message: {status.message}"
            )
        return outcome

    async def _probe_endpoint(self, status: EndpointStatus, delay_ms: int) -> None:
        try:
            if delay_ms:
                await asyncio.sleep(delay_ms / 1000)
            result = await asyncio.wait_for(self.probe.check(status.endpoint), timeout=self.probe_timeout)
        except asyncio.TimeoutError:
            status.state = HealthState.ERROR
            status.message = f"Timed out after {self.probe_timeout:g}s"
            self._append_sample(status)
            return
        except Exception as e:
            logger.debug(f"Probe failed - endpoint: {status.name}, error: {e!r}")
            status.state = HealthState.ERROR
            status.message = str(e) or type(e).__name__
            self._append_sample(status)
            return

        code = result.status_code
        status.state = HealthState.HEALTHY if 200 <= code <= 399 else HealthState.DOWN
        status.message = f"HTTP {code}"
        if delay_ms:
            status.message += f" (simulated +{delay_ms}ms)"

        self._append_sample(
            status,
            status_code=code,
            response_time_ms=result.elapsed_ms + delay_ms,
            is_simulated=delay_ms > 0,
        )

        if status.state == HealthState.HEALTHY and self.detector.classify(status.samples) == AnomalyTrend.DEGRADING:
            status.state = HealthState.DEGRADING
            status.message = with_degrading_hint(status.message)

    def _append_sample(
        self,
        status: EndpointStatus,
        status_code: Optional[int] = None,
        response_time_ms: Optional[int] = None,
        is_simulated: bool = False,
    ) -> None:
        sample = CheckSample(
            at=self._now(),
            state=status.state,
            status_code=status_code,
            response_time_ms=response_time_ms,
            message=status.message,
            is_simulated=is_simulated,
        )
        status.samples = self.sample_store.append_sample(status.id, sample)

    # Alerting

    async def _notify_transition(self, outcome: CheckOutcome) -> None:
        try:
            if outcome.newly_failed:
                await self.dispatcher.notify_endpoint_down(
                    outcome.endpoint_id, outcome.name, outcome.endpoint, outcome.message
                )
            if outcome.newly_degrading:
                await self.dispatcher.notify_endpoint_degrading(
                    outcome.endpoint_id, outcome.name, outcome.endpoint, outcome.message
                )
        except Exception as e:
            logger.error(f"Failed to notify transition for {outcome.name}: {str(e)}", exc_info=True)

    async def _notify_batch(self, outcomes: Sequence[CheckOutcome]) -> None:
        failed = [outcome for outcome in outcomes if outcome.newly_failed]
        degrading = [outcome for outcome in outcomes if outcome.newly_degrading]

        try:
            if failed:
                if self.grouper.decide(failed) == GroupingDecision.GROUPED:
                    await self.dispatcher.notify_grouped_outage(
                        [outcome.name for outcome in failed], [outcome.endpoint_id for outcome in failed]
                    )
                else:
                    for outcome in failed:
                        await self.dispatcher.notify_endpoint_down(
                            outcome.endpoint_id, outcome.name, outcome.endpoint, outcome.message
                        )

            if degrading:
                if self.grouper.decide(degrading) == GroupingDecision.GROUPED:
                    await self.dispatcher.notify_grouped_degrading(
                        [outcome.name for outcome in degrading], [outcome.endpoint_id for outcome in degrading]
                    )
                else:
                    for outcome in degrading:
                        await self.dispatcher.notify_endpoint_degrading(
                            outcome.endpoint_id, outcome.name, outcome.endpoint, outcome.message
                        )
        except Exception as e:
            logger.error(f"Failed to send batch notifications: {str(e)}", exc_info=True)
