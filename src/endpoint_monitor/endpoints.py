"""Endpoint configuration storage."""

import logging
import uuid
from pathlib import Path
from typing import Optional

import httpx
from pydantic import ValidationError

from .models import EndpointConfig
from .storage import read_json, write_json_atomic

logger = logging.getLogger(__name__)


def parse_endpoint_url(raw: Optional[str]) -> Optional[str]:
    """Return the URL when it is an absolute http(s) URL with a host, else None."""
    if not raw or not raw.strip():
        return None
    try:
        url = httpx.URL(raw.strip())
    except (httpx.InvalidURL, TypeError, ValueError):
        return None
    if url.scheme not in ("http", "https") or not url.host:
        return None
    return str(url)


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def normalize_ids(configs: list[EndpointConfig]) -> list[EndpointConfig]:
    """Give every config a valid, unique id, keeping ids that already are."""
    seen: set[str] = set()
    normalized = []

    for config in configs:
        trimmed = config.id.strip()
        if not (_is_uuid(trimmed) and trimmed not in seen):
            replacement = str(uuid.uuid4())
            logger.warning(f"Regenerated endpoint id - name: {config.name}, old_id: {config.id!r}, new_id: {replacement}")
            trimmed = replacement
        seen.add(trimmed)
        normalized.append(config.model_copy(update={"id": trimmed}))

    return normalized


class EndpointConfigStore:
    """Loads and saves the ordered list of endpoint definitions."""

    def __init__(self, config_file: Path, defaults_file: Optional[Path] = None) -> None:
        """Initialize the endpoint config store.

        Args:
            config_file: JSON file holding the user's endpoint list
            defaults_file: Bundled endpoint list used when nothing is saved yet
        """
        self.config_file = Path(config_file)
        self.defaults_file = Path(defaults_file) if defaults_file else None
        logger.info(f"EndpointConfigStore initialized - config_file: {self.config_file}")

    def load_configs(self) -> list[EndpointConfig]:
        """Load the saved endpoint list, falling back to the bundled defaults.

        Ids are normalized, and any correction is written back.
        """
        saved = self._read(self.config_file)
        if saved:
            normalized = normalize_ids(saved)
            if normalized != saved:
                self.save_configs(normalized)
            return normalized

        bundled = self._read(self.defaults_file)
        if not bundled:
            logger.info(f"No endpoint configuration found at {self.config_file}, starting with empty config")
            return []

        normalized = normalize_ids(bundled)
        self.save_configs(normalized)
        return normalized

    def save_configs(self, configs: list[EndpointConfig]) -> None:
        """Persist the endpoint list."""
        try:
            write_json_atomic(self.config_file, [config.model_dump() for config in configs])
            logger.info(f"Saved {len(configs)} endpoints to {self.config_file}")
        except OSError as e:
            logger.error(f"Failed to save endpoint config: {e}", exc_info=True)

    def reset_to_defaults(self) -> list[EndpointConfig]:
        """Discard the saved list and reload the bundled defaults."""
        try:
            self.config_file.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to remove endpoint config: {e}", exc_info=True)
        return self.load_configs()

    def add_config(self, config: EndpointConfig) -> list[EndpointConfig]:
        """Add an endpoint, or replace the one with the same id."""
        configs = [existing for existing in self.load_configs() if existing.id != config.id]
        configs.append(config)
        configs = normalize_ids(configs)
        self.save_configs(configs)
        return configs

    def remove_config(self, endpoint_id: str) -> bool:
        """Remove an endpoint by id.

        Returns:
            True if the endpoint was removed, False if not found
        """
        configs = self.load_configs()
        remaining = [config for config in configs if config.id != endpoint_id]
        if len(remaining) == len(configs):
            return False
        self.save_configs(remaining)
        return True

    @staticmethod
    def _read(path: Optional[Path]) -> list[EndpointConfig]:
        raw = read_json(path)
        if not isinstance(raw, list):
            return []

        configs = []
        for index, item in enumerate(raw):
            if not isinstance(item, dict):
                logger.warning(f"Skipping endpoint entry - path: {path}, index: {index}, reason: not an object")
                continue
            # A missing or non-string id becomes "" so that normalize_ids replaces it and the fix is saved
            item = {**item, "id": item.get("id") if isinstance(item.get("id"), str) else ""}
            try:
                configs.append(EndpointConfig.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping invalid endpoint entry - path: {path}, index: {index}, error: {e}")
        return configs
