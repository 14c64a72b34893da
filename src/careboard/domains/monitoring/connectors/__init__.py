"""Sample feeds: sources of metric readings pushed into the engine."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from careboard.core.storage.models import MetricType


@runtime_checkable
class SampleFeed(Protocol):
    """Anything that produces readings for a set of subjects.

    Each reading is a dict with ``subject_id``, ``metric_type``, ``value``,
    ``unit``, ``timestamp``, ``source`` and ``device_id`` keys, ready for
    ``MonitoringService.ingest``.
    """

    def generate(
        self,
        subject_ids: Sequence[str],
        at: datetime | None = None,
        previous: Mapping[str, Mapping[MetricType, float]] | None = None,
    ) -> list[dict[str, Any]]:
        """Produce one reading per metric type for every subject."""
        ...

    @property
    def data_source(self) -> str:
        """Label for the feed, e.g. 'simulator'."""
        ...
