"""FastAPI application for the endpoint monitor."""

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from .anomaly import AnomalyDetector
from .config import MonitorConfig, SimulationConfig
from .digest import DigestBuilder, DigestCache, DigestGenerator, HttpSummarizer, Summarizer
from .endpoints import EndpointConfigStore
from .grouping import OutageGrouper
from .models import AnomalyTrend, CheckOutcome, EndpointConfig, EndpointStatus, HealthResponse, HealthSummary, utc_now
from .notifications import AlertChannel, CooldownStore, NotificationDispatcher
from .orchestrator import CheckOrchestrator
from .probe import HttpxProbeClient, ProbeClient, SimulatedProbeClient
from .storage import SampleStore
from .summary import check_all_summary, endpoint_summary

logger = logging.getLogger(__name__)


@dataclass
class MonitorServices:
    """The constructed services of one monitor process."""

    config: MonitorConfig
    orchestrator: CheckOrchestrator
    dispatcher: NotificationDispatcher
    digest: DigestGenerator
    simulation: SimulationConfig = field(default_factory=SimulationConfig)

    async def close(self) -> None:
        close = getattr(self.orchestrator.probe, "close", None)
        if close is not None:
            await close()
        await self.dispatcher.close()
        await self.digest.close()


def build_services(
    config: MonitorConfig,
    probe: Optional[ProbeClient] = None,
    channel: Optional[AlertChannel] = None,
    summarizer: Optional[Summarizer] = None,
    now: Callable[[], datetime] = utc_now,
) -> MonitorServices:
    """Construct and wire the monitor services from configuration."""
    storage = config.storage

    if probe is None:
        probe = SimulatedProbeClient() if config.probe.use_mock else HttpxProbeClient(config.probe.timeout_seconds)
    if summarizer is None and config.digest.summarizer_url:
        summarizer = HttpSummarizer(config.digest.summarizer_url)

    dispatcher = NotificationDispatcher.from_config(
        config.notifications, CooldownStore(storage.cooldowns_file), channel=channel, now=now
    )

    orchestrator = CheckOrchestrator(
        probe=probe,
        sample_store=SampleStore(storage.samples_file, max_samples=storage.max_samples_per_endpoint),
        detector=AnomalyDetector.from_config(config.anomaly),
        grouper=OutageGrouper(),
        dispatcher=dispatcher,
        config_store=EndpointConfigStore(storage.endpoints_file, storage.defaults_file),
        probe_timeout=config.probe.timeout_seconds,
        now=now,
    )
    orchestrator.reload_configs()

    digest = DigestGenerator(
        builder=DigestBuilder.from_config(config.digest, now=now),
        cache=DigestCache(storage.digest_file, now=now),
        summarizer=summarizer,
    )

    return MonitorServices(
        config=config,
        orchestrator=orchestrator,
        dispatcher=dispatcher,
        digest=digest,
        simulation=config.simulation.model_copy(),
    )


def create_app(config: Optional[MonitorConfig] = None, services: Optional[MonitorServices] = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        config: Monitor configuration, read from the environment when omitted
        services: Pre-built services, mainly for tests

    Returns:
        The configured application
    """
    if services is None:
        services = build_services(config or MonitorConfig.from_env())

    app = FastAPI(
        title="Endpoint Monitor",
        description="Probes endpoints, detects latency anomalies and correlated outages, and sends alerts",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.services = services
    app.state.start_time = time.time()
    app.state.check_task = None

    orchestrator = services.orchestrator

    def get_status_or_404(endpoint_id: str) -> EndpointStatus:
        endpoint = orchestrator.get_status(endpoint_id)
        if endpoint is None:
            logger.warning(f"Endpoint not found - endpoint_id: {endpoint_id}")
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Endpoint '{endpoint_id}' not found",
            )
        return endpoint

    @app.on_event("startup")
    async def startup_event() -> None:
        """Start the background check loop."""
        interval = services.config.check_interval_seconds
        if interval > 0:
            app.state.check_task = asyncio.create_task(
                orchestrator.run_periodic(interval, simulation=lambda: services.simulation)
            )
            logger.info(f"Started background check loop - interval: {interval}s")

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        """Stop the background loop and close clients."""
        logger.info("Endpoint Monitor shutting down")
        task = app.state.check_task
        if task:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await services.close()

    @app.get("/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Health check endpoint for the monitor itself."""
        return HealthResponse(
            status="healthy",
            timestamp=utc_now(),
            uptime_seconds=time.time() - app.state.start_time,
            monitored_endpoints=len(orchestrator.statuses()),
        )

    @app.get("/endpoints", response_model=list[EndpointStatus])
    async def list_endpoints() -> list[EndpointStatus]:
        return orchestrator.statuses()

    @app.get("/endpoints/{endpoint_id}", response_model=EndpointStatus)
    async def get_endpoint(endpoint_id: str) -> EndpointStatus:
        return get_status_or_404(endpoint_id)

    @app.post("/endpoints/{endpoint_id}/check")
    async def check_endpoint(endpoint_id: str) -> dict:
        """Check one endpoint now; alerts fire immediately on a transition."""
        get_status_or_404(endpoint_id)
        outcome = await orchestrator.check_one(endpoint_id, simulation=services.simulation)
        endpoint = orchestrator.get_status(endpoint_id)
        return {
            "outcome": outcome.model_dump(mode="json"),
            "summary": endpoint_summary(endpoint),
        }

    @app.get("/endpoints/{endpoint_id}/trend")
    async def endpoint_trend(endpoint_id: str) -> dict:
        get_status_or_404(endpoint_id)
        trend = orchestrator.trend(endpoint_id) or AnomalyTrend.UNKNOWN
        return {"endpoint_id": endpoint_id, "trend": trend.value}

    @app.post("/check-all")
    async def check_all() -> dict:
        """Check every endpoint concurrently and alert once for the batch."""
        outcomes: list[CheckOutcome] = await orchestrator.check_all(simulation=services.simulation)
        return {
            "outcomes": [outcome.model_dump(mode="json") for outcome in outcomes],
            "summary": check_all_summary(orchestrator.statuses()),
        }

    @app.get("/summary", response_model=HealthSummary)
    async def summary() -> HealthSummary:
        return orchestrator.summary()

    @app.get("/find")
    async def find_endpoint(q: str) -> dict:
        endpoint = orchestrator.find_endpoint(q)
        if endpoint is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No endpoint matches '{q}'")
        return {"endpoint": endpoint.model_dump(mode="json"), "summary": endpoint_summary(endpoint)}

    @app.get("/configs", response_model=list[EndpointConfig])
    async def get_configs() -> list[EndpointConfig]:
        return orchestrator.current_configs()

    @app.put("/configs", response_model=list[EndpointStatus])
    async def put_configs(configs: list[EndpointConfig]) -> list[EndpointStatus]:
        """Replace the endpoint list; statuses restart as unknown with history kept."""
        logger.info(f"Endpoint configuration replaced - count: {len(configs)}")
        return orchestrator.save_configs(configs)

    @app.post("/configs/reset", response_model=list[EndpointStatus])
    async def reset_configs() -> list[EndpointStatus]:
        return orchestrator.reset_configs()

    @app.delete("/samples", status_code=status.HTTP_204_NO_CONTENT)
    async def clear_samples() -> None:
        """Remove stored samples and the cached digest."""
        orchestrator.clear_history()
        services.digest.cache.clear()

    @app.get("/digest/input")
    async def digest_input() -> dict:
        return {"prompt": services.digest.builder.build_prompt(orchestrator.statuses())}

    @app.get("/digest")
    async def digest(force: bool = False) -> dict:
        text = await services.digest.generate_daily_digest(orchestrator.statuses(), force=force)
        entry = services.digest.cache.get()
        return {
            "available": services.digest.is_available,
            "digest": text,
            "generated_at": entry.generated_at.isoformat() if text and entry else None,
        }

    @app.get("/notifications/cooldowns")
    async def get_cooldowns() -> dict:
        cooldowns = services.dispatcher.cooldowns.snapshot()
        return {"cooldowns": cooldowns, "total": len(cooldowns)}

    @app.delete("/notifications/cooldowns")
    async def clear_cooldowns(key: Optional[str] = None) -> dict:
        services.dispatcher.cooldowns.clear(key)
        return {"success": True, "message": f"Cooldown cleared for {key}" if key else "All cooldowns cleared"}

    @app.post("/notifications/test")
    async def send_test_notification() -> dict:
        sent = await services.dispatcher.send_test_alert()
        return {"success": sent, "message": "Test alert sent" if sent else "Test alert suppressed"}

    @app.get("/simulation", response_model=SimulationConfig)
    async def get_simulation() -> SimulationConfig:
        return services.simulation

    @app.put("/simulation", response_model=SimulationConfig)
    async def put_simulation(simulation: SimulationConfig) -> SimulationConfig:
        services.simulation = simulation
        logger.info(
            f"Latency simulation updated - enabled: {simulation.enabled}, "
            f"additional_latency_ms: {simulation.additional_latency_ms}"
        )
        return simulation

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled errors."""
        logger.error(
            f"Unhandled exception - path: {request.url.path}, method: {request.method}, error: {str(exc)}",
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )

    return app
