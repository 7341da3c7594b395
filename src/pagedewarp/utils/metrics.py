"""Diagnostic counters collected while a page is processed.

A ``MetricsCollector`` is created by the caller and passed explicitly to
each stage. Nothing is stored globally, so independent pages can be
processed side by side.
"""

from __future__ import annotations

import copy
import json
import logging
from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any

import numpy as np

logger = logging.getLogger(__name__)


def _serialize(value: Any) -> Any:
    """Convert numpy values and nested containers to JSON-compatible data."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, Mapping):
        return {str(k): _serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_serialize(v) for v in value]
    if isinstance(value, Path):
        return str(value)
    return repr(value)


class MetricsCollector:
    """Accumulates diagnostic values keyed by name."""

    def __init__(self) -> None:
        self._metrics: dict[str, Any] = {}

    def add(self, key: str, value: Any) -> None:
        """Record ``value`` under ``key``, replacing any previous value."""
        self._metrics[key] = _serialize(value)

    def increment(self, key: str, amount: int = 1) -> None:
        """Add ``amount`` to an integer counter, starting from zero."""
        self._metrics[key] = int(self._metrics.get(key, 0)) + amount

    def get(self, key: str, default: Any = None) -> Any:
        return self._metrics.get(key, default)

    def reset(self) -> None:
        self._metrics.clear()

    def snapshot(self) -> Mapping[str, Any]:
        """Return a read-only copy of everything recorded so far."""
        return MappingProxyType(copy.deepcopy(self._metrics))

    def save(self, path: Path | str) -> Path:
        """Write the collected metrics as JSON.

        Args:
            path: Destination file; parent directories are created.

        Returns:
            The path written.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self._metrics, indent=2), encoding="utf-8")
        logger.info(f"Debug metrics saved to {path}")
        return path

    def __contains__(self, key: object) -> bool:
        return key in self._metrics

    def __len__(self) -> int:
        return len(self._metrics)
