"""Observability metrics.

In-process counters for postings and outbox outcomes, plus gauges read from
the database so ledger lag is visible (unprocessed outbox events, age of the
oldest pending event).

Usage:
    await collect_outbox_gauges(session, REGISTRY)
    print(REGISTRY.to_prometheus())
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from bookkeeping_engine.outbox.service import OutboxService


@dataclass
class Counter:
    """A counter metric (monotonically increasing)."""

    name: str
    value: int = 0
    labels: dict[str, str] = field(default_factory=dict)
    help_text: str = ""


@dataclass
class Gauge:
    """A gauge metric (can go up or down)."""

    name: str
    value: float | int | Decimal = 0
    labels: dict[str, str] = field(default_factory=dict)
    help_text: str = ""


def _key(name: str, labels: dict[str, str]) -> tuple[str, tuple[tuple[str, str], ...]]:
    return name, tuple(sorted(labels.items()))


class MetricsRegistry:
    """Holds counters and gauges keyed by name and labels."""

    def __init__(self) -> None:
        self._counters: dict[tuple[str, tuple[tuple[str, str], ...]], Counter] = {}
        self._gauges: dict[tuple[str, tuple[tuple[str, str], ...]], Gauge] = {}

    def inc(self, name: str, amount: int = 1, help_text: str = "", **labels: str) -> Counter:
        key = _key(name, labels)
        counter = self._counters.get(key)
        if counter is None:
            counter = Counter(name=name, labels=dict(labels), help_text=help_text)
            self._counters[key] = counter
        counter.value += amount
        return counter

    def set_gauge(
        self, name: str, value: float | int | Decimal, help_text: str = "", **labels: str
    ) -> Gauge:
        key = _key(name, labels)
        gauge = self._gauges.get(key)
        if gauge is None:
            gauge = Gauge(name=name, labels=dict(labels), help_text=help_text)
            self._gauges[key] = gauge
        gauge.value = value
        return gauge

    def counter_value(self, name: str, **labels: str) -> int:
        counter = self._counters.get(_key(name, labels))
        return counter.value if counter else 0

    def gauge_value(self, name: str, **labels: str) -> float | int | Decimal | None:
        gauge = self._gauges.get(_key(name, labels))
        return gauge.value if gauge else None

    def reset(self) -> None:
        self._counters.clear()
        self._gauges.clear()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "counters": [self._metric_to_dict(m) for m in self._counters.values()],
            "gauges": [self._metric_to_dict(m) for m in self._gauges.values()],
        }

    def _metric_to_dict(self, metric: Counter | Gauge) -> dict[str, Any]:
        """Convert single metric to dict."""
        return {
            "name": metric.name,
            "value": float(metric.value) if isinstance(metric.value, Decimal) else metric.value,
            "labels": metric.labels,
            "help": metric.help_text,
        }

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), indent=2)

    def to_prometheus(self) -> str:
        """Convert to Prometheus text format."""
        lines: list[str] = []
        seen: set[str] = set()

        def emit(metric: Counter | Gauge, metric_type: str) -> None:
            labels = ""
            if metric.labels:
                label_parts = [f'{k}="{v}"' for k, v in sorted(metric.labels.items())]
                labels = "{" + ",".join(label_parts) + "}"
            value = float(metric.value) if isinstance(metric.value, Decimal) else metric.value

            if metric.name not in seen:
                if metric.help_text:
                    lines.append(f"# HELP {metric.name} {metric.help_text}")
                lines.append(f"# TYPE {metric.name} {metric_type}")
                seen.add(metric.name)
            lines.append(f"{metric.name}{labels} {value}")

        for counter in self._counters.values():
            emit(counter, "counter")
        for gauge in self._gauges.values():
            emit(gauge, "gauge")
        return "\n".join(lines)


REGISTRY = MetricsRegistry()


async def collect_outbox_gauges(
    session: AsyncSession, registry: MetricsRegistry = REGISTRY
) -> MetricsRegistry:
    """Refresh outbox backlog gauges from the database."""
    stats = await OutboxService(session).stats()
    registry.set_gauge("outbox_events_pending", stats.pending, "Events awaiting dispatch")
    registry.set_gauge("outbox_events_processing", stats.processing, "Events claimed by a worker")
    registry.set_gauge("outbox_events_failed", stats.failed, "Events that need manual attention")
    registry.set_gauge(
        "outbox_events_unprocessed", stats.unprocessed, "Events with processed_at IS NULL"
    )
    registry.set_gauge(
        "outbox_oldest_pending_seconds",
        stats.oldest_pending_age_seconds(),
        "Age of the oldest pending event",
    )
    return registry
