"""Counters and alerts for billing and admin events, logged or sent to StatsD."""

from __future__ import annotations

import logging
import secrets
from typing import Any

from statsd import StatsClient

from tablebill.config import settings

logger = logging.getLogger("tablebill.metrics")


class MetricsReporter:
    """Emit counters to the log stream and, optionally, to StatsD."""

    def __init__(self) -> None:
        self._disabled = settings.metrics_disable
        self._namespace = settings.metrics_namespace or "tablebill"
        self._backend = (settings.metrics_backend or "stdout").lower()
        self._sample_rate = max(0.0, min(settings.metrics_sample_rate, 1.0))
        self._schema_version = settings.metrics_schema_version
        self._statsd = self._connect_statsd() if self._backend == "statsd" else None

    def _connect_statsd(self) -> StatsClient | None:
        if self._disabled:
            return None
        try:
            return StatsClient(
                host=settings.metrics_statsd_host, port=settings.metrics_statsd_port, prefix=""
            )
        except OSError as exc:
            self._log_backend_error("statsd.init", exc)
            return None

    def increment(
        self, metric: str, value: float = 1.0, *, tags: dict[str, Any] | None = None
    ) -> None:
        if self._disabled or self._dropped_by_sampling():
            return
        name = self._qualify(metric)
        payload: dict[str, Any] = {"metric": name, "value": float(value), "tags": tags or {}}
        if self._sample_rate < 1.0:
            payload["sample_rate"] = self._sample_rate
        logger.info("tablebill.metric", extra={"metrics": payload})
        if self._statsd is None:
            return
        try:
            self._statsd.incr(name, value, rate=self._sample_rate)
        except OSError as exc:
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
        """Log an alert payload; alerts are never sampled."""
        if self._disabled:
            return
        payload = {
            "metric": self._qualify(metric),
            "value": float(value),
            "threshold": float(threshold),
            "severity": severity,
            "schema_version": self._schema_version,
            "tags": tags or {},
        }
        logger.info("tablebill.alert", extra={"metrics": payload})

    def _dropped_by_sampling(self) -> bool:
        if self._sample_rate >= 1.0:
            return False
        return secrets.randbelow(1_000_000) / 1_000_000 > self._sample_rate

    def _qualify(self, metric: str) -> str:
        trimmed = (metric or "").strip()
        if not trimmed:
            return self._namespace
        if trimmed.startswith(f"{self._namespace}."):
            return trimmed
        return f"{self._namespace}.{trimmed}"

    def _log_backend_error(self, metric: str, exc: Exception) -> None:
        logger.warning(
            "metrics.backend_error",
            extra={"metric": metric, "backend": self._backend, "error": type(exc).__name__},
        )


metrics = MetricsReporter()
