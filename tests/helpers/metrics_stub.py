from __future__ import annotations

from typing import Any


class StubMetrics:
    """Test double that captures emitted metrics for assertions."""

    def __init__(self) -> None:
        self.increment_calls: list[dict[str, Any]] = []
        self.alert_calls: list[dict[str, Any]] = []

    def increment(
        self, metric: str, value: float = 1.0, *, tags: dict[str, Any] | None = None
    ) -> None:
        self.increment_calls.append({"metric": metric, "value": value, "tags": tags or {}})

    def alert(
        self,
        metric: str,
        *,
        value: float,
        threshold: float,
        severity: str,
        tags: dict[str, Any] | None = None,
    ) -> None:
        self.alert_calls.append(
            {
                "metric": metric,
                "value": value,
                "threshold": threshold,
                "severity": severity,
                "tags": tags or {},
            }
        )

    def counted(self, metric: str) -> list[dict[str, Any]]:
        return [call for call in self.increment_calls if call["metric"] == metric]

    def alerted(self, metric: str) -> list[dict[str, Any]]:
        return [call for call in self.alert_calls if call["metric"] == metric]
