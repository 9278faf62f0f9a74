"""Durable "recent checkout" marker shared across client sessions."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class CheckoutMarkerStore(Protocol):
    def load(self) -> float | None:
        ...

    def save(self, timestamp: float) -> None:
        ...

    def clear(self) -> None:
        ...


class InMemoryMarkerStore(CheckoutMarkerStore):
    def __init__(self, timestamp: float | None = None) -> None:
        self._timestamp = timestamp

    def load(self) -> float | None:
        return self._timestamp

    def save(self, timestamp: float) -> None:
        self._timestamp = timestamp

    def clear(self) -> None:
        self._timestamp = None


class JsonFileMarkerStore(CheckoutMarkerStore):
    """Persist the marker as ``{"checkout_at": <epoch seconds>}``.

    An unreadable or malformed file counts as no marker.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    def load(self) -> float | None:
        if not self._path.exists():
            return None
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("reconciliation.marker.unreadable", extra={"path": str(self._path)})
            return None
        value = payload.get("checkout_at") if isinstance(payload, dict) else None
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return float(value)

    def save(self, timestamp: float) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps({"checkout_at": timestamp}), encoding="utf-8")

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)
