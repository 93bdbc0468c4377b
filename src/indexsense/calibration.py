"""
Persistent scoring calibration.

The scoring weights are user-tunable and survive across sessions. They are
stored as one JSON object under a single key of a key-value store:

    {"impact": {"size": 0.5, "usage": 0.35, "width": 0.15},
     "risk":   {"usage": 0.6, "unique": 0.25, "primary": 0.15}}

Loading never fails: a missing, partial or corrupt stored object is merged
field by field against the defaults, so the result is always a fully
populated, clamped ScoringConfig. Saving returns a PersistError instead of
raising; calibration is a convenience, not a correctness requirement.

Usage:
    from indexsense.calibration import CalibrationStore, JsonFileStore

    store = CalibrationStore(JsonFileStore("~/.indexsense/calibration.json"))
    config = store.load()
    config, error = store.set_weight("risk", "usage", 0.8)
    store.reset()
"""

from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Any, Protocol

from indexsense.exceptions import PersistError
from indexsense.models import ImpactWeights, RiskWeights, ScoringConfig

logger = logging.getLogger(__name__)

DEFAULT_CALIBRATION_KEY = "indexsense_index_scoring_v1"

DEFAULT_WEIGHTS: dict[str, dict[str, float]] = {
    "impact": ImpactWeights().model_dump(),
    "risk": RiskWeights().model_dump(),
}


class KeyValueStore(Protocol):
    """Scoped key-value persistence. No transactional guarantees."""

    def get(self, key: str) -> Any | None: ...
    def set(self, key: str, value: Any) -> None: ...


class InMemoryStore:
    """Dict-backed store, for tests and ephemeral sessions."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self.data: dict[str, Any] = dict(initial or {})

    def get(self, key: str) -> Any | None:
        return self.data.get(key)

    def set(self, key: str, value: Any) -> None:
        self.data[key] = value


class JsonFileStore:
    """
    Store backed by a single JSON document on disk.

    Each key maps to one top-level entry of the document. A missing or
    unreadable file reads as empty.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Failed to read calibration store %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str) -> Any | None:
        return self._read().get(key)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            json.dumps(data, indent=2, sort_keys=True) + "\n",
            encoding="utf-8",
        )


def _coerce_weight(value: Any, default: float) -> float:
    """A finite number (or numeric string), else the default."""
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            return default
    else:
        return default
    if not math.isfinite(number):
        return default
    return number


def merge_with_defaults(stored: Any) -> ScoringConfig:
    """
    Merge a stored calibration object against the defaults.

    Accepts the decoded object or its JSON text. Unknown keys are ignored;
    every known weight that is missing or invalid takes its default.
    """
    if isinstance(stored, str):
        try:
            stored = json.loads(stored)
        except json.JSONDecodeError:
            stored = None
    if not isinstance(stored, dict):
        stored = {}

    merged: dict[str, dict[str, float]] = {}
    for scope, defaults in DEFAULT_WEIGHTS.items():
        section = stored.get(scope)
        if not isinstance(section, dict):
            section = {}
        merged[scope] = {
            key: _coerce_weight(section.get(key), default)
            for key, default in defaults.items()
        }
    return ScoringConfig.model_validate(merged)


class CalibrationStore:
    """Loads and persists the ScoringConfig under one key."""

    def __init__(
        self,
        store: KeyValueStore,
        key: str = DEFAULT_CALIBRATION_KEY,
    ) -> None:
        self.store = store
        self.key = key

    def load(self) -> ScoringConfig:
        """Read the stored calibration; falls back to defaults on any failure."""
        try:
            stored = self.store.get(self.key)
        except Exception as e:
            logger.warning("Failed to load scoring calibration (%s): %s", self.key, e)
            stored = None
        return merge_with_defaults(stored)

    def save(self, config: ScoringConfig) -> PersistError | None:
        """
        Persist a calibration.

        Returns:
            None on success, or a PersistError the caller may ignore.
        """
        try:
            self.store.set(self.key, config.model_dump())
        except Exception as e:
            logger.warning("Failed to save scoring calibration (%s): %s", self.key, e)
            return PersistError(f"Failed to save scoring calibration: {e}", key=self.key)
        return None

    def set_weight(
        self, scope: str, key: str, value: float,
    ) -> tuple[ScoringConfig, PersistError | None]:
        """
        Update one weight (clamped to [0, 1]) and persist it.

        Returns:
            The new config and the persistence error, if any.

        Raises:
            ValueError: If the scope or key is unknown.
        """
        config = self.load().with_weight(scope, key, value)
        return config, self.save(config)

    def reset(self) -> ScoringConfig:
        """Restore the default weights and persist them."""
        config = ScoringConfig()
        self.save(config)
        return config
