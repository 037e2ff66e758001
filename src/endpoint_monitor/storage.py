"""Storage layer for endpoint check history."""

import json
import logging
import threading
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from .models import CheckSample

logger = logging.getLogger(__name__)

DEFAULT_MAX_SAMPLES_PER_ENDPOINT = 200


def read_json(path: Optional[Path]) -> Any:
    """Read a JSON document, returning None when it is missing or unreadable."""
    if path is None or not path.exists():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.error(f"Failed to read state file - path: {path}, error: {e}")
        return None


def write_json_atomic(path: Path, payload: Any) -> None:
    """Write JSON to a temp file and rename it over the target."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f"{path.name}.tmp")
    tmp.write_text(json.dumps(payload, ensure_ascii=False, sort_keys=True), encoding="utf-8")
    tmp.replace(path)


class SampleStore:
    """Durable, bounded, append-only history of check samples keyed by endpoint id."""

    def __init__(self, path: Optional[Path] = None, max_samples: int = DEFAULT_MAX_SAMPLES_PER_ENDPOINT) -> None:
        """Initialize the sample store.

        Args:
            path: JSON file backing the store, or None to keep history in memory only
            max_samples: Maximum number of samples kept per endpoint
        """
        self.path = path
        self.max_samples = max_samples
        self._samples: dict[str, list[CheckSample]] = {}
        self._lock = threading.Lock()
        self._load_from_disk()
        logger.info(
            f"SampleStore initialized - path: {self.path}, endpoints: {len(self._samples)}, "
            f"max_samples: {self.max_samples}"
        )

    def load_samples(self, endpoint_id: str) -> list[CheckSample]:
        """Get the stored samples for an endpoint, oldest first.

        Args:
            endpoint_id: Identifier of the endpoint

        Returns:
            A copy of the stored history
        """
        with self._lock:
            return list(self._samples.get(endpoint_id, []))

    def append_sample(self, endpoint_id: str, sample: CheckSample) -> list[CheckSample]:
        """Append a sample, evicting the oldest entries beyond the cap.

        Samples in transient states are ignored and the unchanged history is returned.

        Args:
            endpoint_id: Identifier of the endpoint
            sample: The sample to store

        Returns:
            The updated history for the endpoint
        """
        if not sample.state.is_persistable:
            logger.debug(f"Sample not persisted - endpoint_id: {endpoint_id}, state: {sample.state.value}")
            return self.load_samples(endpoint_id)

        with self._lock:
            updated = self._samples.get(endpoint_id, []) + [sample]
            if len(updated) > self.max_samples:
                del updated[: len(updated) - self.max_samples]
            self._samples[endpoint_id] = updated
            self._save_to_disk()
            return list(updated)

    def clear_all_samples(self) -> None:
        """Remove every stored sample."""
        with self._lock:
            self._samples = {}
            self._save_to_disk()
        logger.info("All samples cleared")

    def endpoint_ids(self) -> list[str]:
        """Get the identifiers that have stored history."""
        with self._lock:
            return list(self._samples.keys())

    def _load_from_disk(self) -> None:
        raw = read_json(self.path)
        if not isinstance(raw, dict):
            self._samples = {}
            return

        skipped = 0
        for endpoint_id, items in raw.items():
            if not isinstance(endpoint_id, str) or not isinstance(items, list):
                continue
            samples = []
            for item in items:
                try:
                    samples.append(CheckSample.model_validate(item))
                except ValidationError:
                    skipped += 1
            if samples:
                self._samples[endpoint_id] = samples[-self.max_samples :]

        if skipped:
            logger.warning(f"Skipped malformed samples while loading - path: {self.path}, count: {skipped}")

    def _save_to_disk(self) -> None:
        if self.path is None:
            return
        payload = {
            endpoint_id: [sample.model_dump(mode="json") for sample in samples]
            for endpoint_id, samples in self._samples.items()
        }
        try:
            write_json_atomic(self.path, payload)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to persist samples - path: {self.path}, error: {e}", exc_info=True)
