"""MCP tools for clinician dashboards: fleet overview and device simulation.

Dashboards poll ``hospital_overview`` on a fixed interval. A failure is
reported as ``{"status": "error", "error": "unavailable", "retryable": true}``
so the dashboard can show a retry state instead of an empty fleet.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from careboard.core.errors import MonitoringError
from careboard.domains.monitoring.connectors.simulator import DeviceSimulator

if TYPE_CHECKING:
    from careboard.core.audit.logger import AuditLogger
    from careboard.domains.monitoring.domain_logic.service import MonitoringService

logger = logging.getLogger(__name__)


def _parse_ids(subject_ids: str) -> list[str] | None:
    ids = [part.strip() for part in subject_ids.split(",") if part.strip()]
    return ids or None


def register_rollup_tools(
    mcp: FastMCP,
    service: MonitoringService,
    audit_logger: AuditLogger,
    *,
    poll_interval_seconds: int = 60,
) -> None:
    """Register fleet rollup and simulation tools on the MCP server."""

    @mcp.tool
    async def hospital_overview(
        ctx: Context,
        requester_id: str,
        period: str = "",
        start_date: str = "",
        end_date: str = "",
        subject_ids: str = "",
    ) -> str:
        """Fleet-wide health overview for clinicians.

        Returns patient status counts, per-metric statistics over each
        patient's latest reading, and a daily time series of all readings
        in the window.

        Args:
            requester_id: Clinician asking; must have a provider, doctor or admin role.
            period: 'day', 'week', 'month' or 'year'; the server default when empty
                (ignored when both dates are given).
            start_date: Optional ISO 8601 window start.
            end_date: Optional ISO 8601 window end.
            subject_ids: Optional comma-separated patient IDs; all active patients if empty.
        """
        ids = _parse_ids(subject_ids)
        try:
            with audit_logger.tool_call(
                "hospital_overview",
                {"period": period or service.default_period, "start": start_date, "end": end_date,
                 "subject_ids": ids},
                actor_id=requester_id,
            ) as meta:
                service.require_clinician(requester_id)
                rollup = await service.fleet_rollup(
                    ids,
                    period=period or None,
                    start=start_date or None,
                    end=end_date or None,
                )
                meta["total_patients"] = rollup.total_patients
        except MonitoringError as exc:
            if exc.retryable:
                await ctx.warning(f"Fleet overview unavailable: {exc}")
            return json.dumps(exc.to_dict())

        return json.dumps({
            "status": "ok",
            "poll_interval_seconds": poll_interval_seconds,
            **rollup.to_dict(),
        }, indent=2)

    @mcp.tool
    async def simulate_device_readings(
        ctx: Context,
        seed: int | None = None,
        subject_ids: str = "",
    ) -> str:
        """Generate one round of synthetic wearable readings and ingest them.

        About 46 % of patients get healthy readings, 31 % warning-level
        readings and the rest at least one critical reading.

        Args:
            seed: Optional random seed for reproducible readings.
            subject_ids: Optional comma-separated patient IDs; all active patients if empty.
        """
        ids = _parse_ids(subject_ids)
        simulator = DeviceSimulator(service.range_table, seed=seed)
        try:
            with audit_logger.tool_call(
                "simulate_device_readings", {"seed": seed, "subject_ids": ids},
            ) as meta:
                result = service.ingest_feed(simulator, ids)
                meta["samples"] = result["samples"]
        except MonitoringError as exc:
            return json.dumps(exc.to_dict())

        return json.dumps({"status": "ok", **result}, indent=2)
