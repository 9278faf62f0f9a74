from __future__ import annotations

import logging
import secrets
from typing import Any

from statsd import StatsClient

from dayssupply.config import settings

logger = logging.getLogger("dayssupply.metrics")


class MetricsReporter:
    """Counters and alert payloads, logged to stdout and optionally mirrored to StatsD."""

    def __init__(self) -> None:
        self._disabled = settings.metrics_disable
        self._namespace = settings.metrics_namespace or "dayssupply"
        self._backend = (settings.metrics_backend or "stdout").lower()
        self._sample_rate = max(0.0, min(settings.metrics_sample_rate, 1.0))
        self._schema_version = settings.metrics_schema_version
        self._statsd: StatsClient | None = None
        if self._backend == "statsd" and not self._disabled:
            try:
                self._statsd = StatsClient(
                    host=settings.metrics_statsd_host,
                    port=settings.metrics_statsd_port,
                    prefix="",
                )
            except Exception as exc:  # pragma: no cover - socket setup failure
                self._log_backend_error("statsd.init", exc)

    def increment(
        self, metric: str, value: float = 1.0, *, tags: dict[str, Any] | None = None
    ) -> None:
        if self._disabled or not self._sampled():
            return
        name = self._qualified(metric)
        payload: dict[str, Any] = {
            "metric": name,
            "value": round(float(value), 4),
            "type": "counter",
            "tags": tags or {},
        }
        if self._sample_rate < 1.0:
            payload["sample_rate"] = round(self._sample_rate, 4)
        logger.debug("dayssupply.metric", extra={"metrics": payload})
        if self._statsd is not None:
            try:
                self._statsd.incr(name, value, rate=self._sample_rate)
            except Exception as exc:  # pragma: no cover - network failure
                self._log_backend_error(name, exc)

    def alert(
        self,
        metric: str,
        *,
        value: float,
        threshold: float,
        severity: str,
        tags: dict[str, Any] | None = None,
    ) -> None:
        """Emit a structured alert payload for log-based alerting; never sampled."""
        if self._disabled:
            return
        payload = {
            "metric": self._qualified(metric),
            "value": round(float(value), 4),
            "threshold": round(float(threshold), 4),
            "severity": severity,
            "schema_version": self._schema_version,
            "tags": tags or {},
        }
        logger.debug("dayssupply.alert", extra={"metrics": payload})

    def _sampled(self) -> bool:
        if self._sample_rate >= 1.0:
            return True
        return secrets.randbelow(1_000_000) / 1_000_000 <= self._sample_rate

    def _qualified(self, metric: str) -> str:
        trimmed = (metric or "").strip()
        if trimmed.startswith(f"{self._namespace}."):
            return trimmed
        return f"{self._namespace}.{trimmed}" if trimmed else self._namespace

    def _log_backend_error(self, metric: str, exc: Exception) -> None:
        logger.warning(
            "metrics.backend_error",
            extra={"metric": metric, "backend": self._backend, "error": type(exc).__name__},
        )


metrics = MetricsReporter()
