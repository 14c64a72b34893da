"""MCP tools for metric ingestion and per-subject views.

Readings arrive from patients (manual entry), apps and devices. Each new
reading is classified against the range table and may raise an alert.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from careboard.core.errors import MonitoringError
from careboard.domains.monitoring.domain_logic.classifier import classify

if TYPE_CHECKING:
    from careboard.core.audit.logger import AuditLogger
    from careboard.domains.monitoring.domain_logic.service import MonitoringService

logger = logging.getLogger(__name__)


def register_metric_tools(
    mcp: FastMCP,
    service: MonitoringService,
    audit_logger: AuditLogger,
) -> None:
    """Register metric ingestion and subject status tools on the MCP server."""

    @mcp.tool
    async def register_subject(
        ctx: Context,
        subject_id: str,
        display_name: str,
        email: str = "",
        role: str = "patient",
    ) -> str:
        """Add or update a patient or staff member in the directory.

        Args:
            subject_id: Stable identifier of the subject.
            display_name: Name shown in alerts and dashboards.
            email: Optional contact email.
            role: 'patient', 'provider', 'doctor' or 'admin'.
        """
        try:
            with audit_logger.tool_call(
                "register_subject", {"subject_id": subject_id, "role": role}, subject_id=subject_id,
            ):
                subject = service.register_subject(
                    subject_id, display_name, email=email, role=role,
                )
        except MonitoringError as exc:
            return json.dumps(exc.to_dict())

        return json.dumps({
            "status": "saved",
            "subject_id": subject.id,
            "role": subject.role.value,
        })

    @mcp.tool
    async def ingest_metric(
        ctx: Context,
        subject_id: str,
        metric_type: str,
        value: float,
        unit: str = "",
        timestamp: str = "",
        source: str = "manual",
        notes: str = "",
        device_id: str = "",
    ) -> str:
        """Record one health reading and evaluate it for alerts.

        Args:
            subject_id: Patient the reading belongs to.
            metric_type: e.g. 'heart_rate', 'blood_pressure_systolic', 'glucose'.
            value: Numeric reading.
            unit: Unit of measurement. Defaults to the metric type's usual unit.
            timestamp: When the reading was taken (ISO 8601). Defaults to now.
            source: 'manual', 'device', 'app' or 'imported'.
            notes: Optional free-text notes (encrypted at rest, max 500 chars).
            device_id: Optional identifier of the reporting device.
        """
        try:
            with audit_logger.tool_call(
                "ingest_metric",
                {"subject_id": subject_id, "metric_type": metric_type, "source": source},
                actor_id=subject_id,
                subject_id=subject_id,
            ) as meta:
                sample, alert = service.ingest(
                    subject_id,
                    metric_type,
                    value,
                    unit=unit or None,
                    timestamp=timestamp or None,
                    source=source,
                    notes=notes,
                    device_id=device_id or None,
                )
                meta["alert_created"] = alert is not None
        except MonitoringError as exc:
            return json.dumps(exc.to_dict())

        severity = classify(sample.metric_type, sample.value, service.range_table)
        result = {
            "status": "saved",
            "sample": sample.to_dict(),
            "classification": severity.value,
            "alert": alert.to_dict() if alert is not None else None,
        }
        return json.dumps(result, indent=2)

    @mcp.tool
    async def list_metrics(
        ctx: Context,
        subject_id: str,
        metric_type: str = "",
        start_date: str = "",
        end_date: str = "",
        limit: int = 100,
        offset: int = 0,
    ) -> str:
        """List a subject's readings, newest first.

        Args:
            subject_id: Patient whose readings to list.
            metric_type: Optional metric type filter.
            start_date: Optional ISO 8601 lower bound.
            end_date: Optional ISO 8601 upper bound.
            limit: Page size (default 100).
            offset: Rows to skip.
        """
        try:
            with audit_logger.tool_call(
                "list_metrics",
                {"subject_id": subject_id, "metric_type": metric_type},
                subject_id=subject_id,
            ):
                samples, total = service.list_samples(
                    subject_id,
                    metric_type=metric_type or None,
                    start=start_date or None,
                    end=end_date or None,
                    limit=limit,
                    offset=offset,
                )
        except MonitoringError as exc:
            return json.dumps(exc.to_dict())

        return json.dumps({
            "status": "ok",
            "total": total,
            "count": len(samples),
            "offset": offset,
            "metrics": [s.to_dict() for s in samples],
        }, indent=2)

    @mcp.tool
    async def delete_metric(
        ctx: Context,
        subject_id: str,
        sample_id: str,
    ) -> str:
        """Delete one of your own readings. The reading is deactivated, not erased.

        Args:
            subject_id: Owner of the reading.
            sample_id: ID of the reading to delete.
        """
        try:
            service.delete_sample(subject_id, sample_id)
        except MonitoringError as exc:
            return json.dumps({**exc.to_dict(), "sample_id": sample_id})

        audit_logger.log_data_delete(
            tool_name="delete_metric",
            subject_id=subject_id,
            count=1,
        )
        return json.dumps({"status": "deleted", "sample_id": sample_id})

    @mcp.tool
    async def subject_status(
        ctx: Context,
        subject_id: str,
        as_of: str = "",
    ) -> str:
        """Current health status of a patient from their latest readings.

        Args:
            subject_id: Patient to assess.
            as_of: Optional ISO 8601 time; only readings at or before it count.
        """
        try:
            with audit_logger.tool_call(
                "subject_status", {"subject_id": subject_id, "as_of": as_of}, subject_id=subject_id,
            ) as meta:
                status = service.subject_status(subject_id, as_of or None)
                meta["status_tag"] = status.status
        except MonitoringError as exc:
            return json.dumps(exc.to_dict())

        return json.dumps({"subject_id": subject_id, **status.to_dict()})

    @mcp.tool
    async def metric_summary(
        ctx: Context,
        subject_id: str,
        period: str = "week",
    ) -> str:
        """Per-metric statistics (average, min, max, median, latest, trend) for a patient.

        Args:
            subject_id: Patient to summarize.
            period: 'day', 'week', 'month' or 'year'.
        """
        try:
            with audit_logger.tool_call(
                "metric_summary", {"subject_id": subject_id, "period": period}, subject_id=subject_id,
            ):
                summary = service.subject_summary(subject_id, period)
        except MonitoringError as exc:
            return json.dumps(exc.to_dict())

        return json.dumps({"status": "ok", **summary}, indent=2)
