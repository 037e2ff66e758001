"""Endpoint Monitor - periodic endpoint probing with anomaly detection and outage correlation.

This package checks a set of user-defined HTTP endpoints concurrently, classifies
their health, detects latency anomalies against a rolling baseline, groups
simultaneous outages into a single alert, and keeps a bounded history per endpoint
from which a daily digest is built.

Key Features:
- Concurrent check-all with one alert aggregation pass per batch
- Latency anomaly detection with simulated-latency support
- Cooldown-gated alerts persisted across restarts
- Bounded, atomically persisted sample history
- Daily digest input with cross-endpoint outage correlation

Example:
    Running a single check cycle:

    ```python
    import asyncio
    from endpoint_monitor.config import MonitorConfig
    from endpoint_monitor.main import build_services

    services = build_services(MonitorConfig.from_env())
    asyncio.run(services.orchestrator.check_all())
    ```
"""

__version__ = "0.1.0"

# Make key classes available at package level
from .anomaly import AnomalyDetector
from .models import CheckOutcome, CheckSample, EndpointConfig, EndpointStatus, HealthState
from .notifications import NotificationDispatcher
from .orchestrator import CheckOrchestrator
from .storage import SampleStore

__all__ = [
    "AnomalyDetector",
    "CheckOrchestrator",
    "CheckOutcome",
    "CheckSample",
    "EndpointConfig",
    "EndpointStatus",
    "HealthState",
    "NotificationDispatcher",
    "SampleStore",
]
