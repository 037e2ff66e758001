"""Configuration management for the endpoint monitor."""

import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

MAX_SIMULATED_LATENCY_MS = 5000


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class ProbeConfig(BaseModel):
    """Configuration for the HTTP probe client."""

    timeout_seconds: float = Field(default=5.0, description="Timeout for each probe attempt")
    use_mock: bool = Field(default=False, description="Use the randomized simulated probe instead of HTTP")


class NotificationConfig(BaseModel):
    """Configuration for alert delivery."""

    enabled: bool = Field(default=True, description="Whether alerts are delivered at all")
    cooldown_seconds: int = Field(default=60, description="Minimum time between alerts sharing a cooldown key")
    webhook_url: Optional[str] = Field(default=None, description="Webhook receiving alert payloads")
    retry_attempts: int = Field(default=3, description="Number of attempts for failed webhook deliveries")
    retry_delay_seconds: float = Field(default=5, description="Delay between webhook attempts in seconds")


class AnomalyConfig(BaseModel):
    """Tuning for the latency anomaly detector."""

    minimum_samples: int = Field(default=10, description="Latency points needed before judging a trend")
    rolling_window_size: int = Field(default=50, description="Most recent latency points considered")
    threshold_multiplier: float = Field(default=2.5, description="Standard deviations above the mean")
    simulated_fallback_degrading_ms: float = Field(
        default=1800, description="Absolute threshold for simulated latency on short histories"
    )
    simulated_margin_ms: float = Field(default=500, description="Margin above the mean that flags simulated latency")


class SimulationConfig(BaseModel):
    """Artificial latency injected into probes for testing alerts."""

    enabled: bool = Field(default=False, description="Whether extra latency is injected")
    additional_latency_ms: int = Field(default=1200, description="Extra latency added to every probe")

    @field_validator("additional_latency_ms")
    @classmethod
    def clamp_latency(cls, value: int) -> int:
        return max(0, min(MAX_SIMULATED_LATENCY_MS, value))

    @property
    def effective_delay_ms(self) -> int:
        return self.additional_latency_ms if self.enabled else 0


class StorageConfig(BaseModel):
    """Locations of durable state."""

    data_dir: Path = Field(
        default_factory=lambda: Path.home() / ".endpoint-monitor", description="Directory for persisted state"
    )
    max_samples_per_endpoint: int = Field(default=200, description="History cap per endpoint")
    defaults_file: Optional[Path] = Field(default=None, description="Bundled endpoint list used when none is saved")

    @property
    def samples_file(self) -> Path:
        return self.data_dir / "samples.json"

    @property
    def cooldowns_file(self) -> Path:
        return self.data_dir / "cooldowns.json"

    @property
    def endpoints_file(self) -> Path:
        return self.data_dir / "endpoints.json"

    @property
    def digest_file(self) -> Path:
        return self.data_dir / "digest.json"


class DigestConfig(BaseModel):
    """Configuration for the daily digest."""

    window_hours: int = Field(default=24, description="Trailing window covered by the digest")
    bucket_minutes: int = Field(default=5, description="Width of correlation buckets")
    max_endpoint_lines: int = Field(default=20, description="Per-endpoint lines listed before truncation")
    summarizer_url: Optional[str] = Field(default=None, description="External summarization endpoint")


class MonitorConfig(BaseModel):
    """Main configuration for the endpoint monitor."""

    probe: ProbeConfig = Field(default_factory=ProbeConfig, description="Probe configuration")
    notifications: NotificationConfig = Field(
        default_factory=NotificationConfig, description="Alert delivery configuration"
    )
    anomaly: AnomalyConfig = Field(default_factory=AnomalyConfig, description="Anomaly detector tuning")
    simulation: SimulationConfig = Field(default_factory=SimulationConfig, description="Latency simulation")
    storage: StorageConfig = Field(default_factory=StorageConfig, description="Durable state locations")
    digest: DigestConfig = Field(default_factory=DigestConfig, description="Digest configuration")
    check_interval_seconds: int = Field(default=60, description="Interval of the background check loop, 0 disables")
    log_level: str = Field(default="INFO", description="Logging level")

    @classmethod
    def from_env(cls) -> "MonitorConfig":
        """Create configuration from environment variables."""
        probe = ProbeConfig(
            timeout_seconds=float(os.getenv("PROBE_TIMEOUT_SECONDS", "5")),
            use_mock=_env_bool("PROBE_USE_MOCK", "false"),
        )
        notifications = NotificationConfig(
            enabled=_env_bool("NOTIFICATIONS_ENABLED", "true"),
            cooldown_seconds=int(os.getenv("NOTIFICATION_COOLDOWN_SECONDS", "60")),
            webhook_url=os.getenv("NOTIFICATION_WEBHOOK_URL") or None,
            retry_attempts=int(os.getenv("NOTIFICATION_RETRY_ATTEMPTS", "3")),
            retry_delay_seconds=float(os.getenv("NOTIFICATION_RETRY_DELAY", "5")),
        )
        simulation = SimulationConfig(
            enabled=_env_bool("SIMULATE_LATENCY", "false"),
            additional_latency_ms=int(os.getenv("SIMULATED_LATENCY_MS", "1200")),
        )
        storage_kwargs = {}
        if os.getenv("MONITOR_DATA_DIR"):
            storage_kwargs["data_dir"] = Path(os.environ["MONITOR_DATA_DIR"]).expanduser()
        if os.getenv("ENDPOINTS_DEFAULTS_FILE"):
            storage_kwargs["defaults_file"] = Path(os.environ["ENDPOINTS_DEFAULTS_FILE"]).expanduser()
        digest = DigestConfig(summarizer_url=os.getenv("DIGEST_SUMMARIZER_URL") or None)

        config = cls(
            probe=probe,
            notifications=notifications,
            simulation=simulation,
            storage=StorageConfig(**storage_kwargs),
            digest=digest,
            check_interval_seconds=int(os.getenv("CHECK_INTERVAL_SECONDS", "60")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

        logger.info(
            f"Configuration loaded - data_dir: {config.storage.data_dir}, "
            f"notifications_enabled: {config.notifications.enabled}, "
            f"check_interval: {config.check_interval_seconds}s"
        )

        return config
