"""MCP tools for the alert inbox and alert lifecycle.

Alerts belong to the subject they were raised for; only that subject can
acknowledge, resolve, dismiss or mark them read. Every change is recorded
in the alert's action history and in the audit trail.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Callable

from fastmcp import Context, FastMCP

from careboard.core.errors import MonitoringError
from careboard.core.storage.models import Alert

if TYPE_CHECKING:
    from careboard.core.audit.logger import AuditLogger
    from careboard.domains.monitoring.domain_logic.service import MonitoringService

logger = logging.getLogger(__name__)


def register_alert_tools(
    mcp: FastMCP,
    service: MonitoringService,
    audit_logger: AuditLogger,
) -> None:
    """Register alert inbox and lifecycle tools on the MCP server."""

    def _change(
        tool_name: str,
        action: Callable[[str, str, str], Alert],
        alert_id: str,
        subject_id: str,
        notes: str,
    ) -> str:
        try:
            with audit_logger.tool_call(
                tool_name,
                {"alert_id": alert_id, "subject_id": subject_id},
                actor_id=subject_id,
                subject_id=subject_id,
                alert_id=alert_id,
            ):
                alert = action(alert_id, subject_id, notes)
        except MonitoringError as exc:
            return json.dumps({**exc.to_dict(), "alert_id": alert_id})

        audit_logger.log_alert_change(
            alert_id, alert.actions[-1].action, actor_id=subject_id, tool_name=tool_name,
        )
        return json.dumps({"status": "ok", "alert": alert.to_dict()}, indent=2)

    @mcp.tool
    async def list_alerts(
        ctx: Context,
        subject_id: str,
        status: str = "",
        severity: str = "",
        alert_type: str = "",
        limit: int = 50,
        offset: int = 0,
    ) -> str:
        """List a subject's alerts, newest first.

        Args:
            subject_id: Owner of the alerts.
            status: Optional filter: 'active', 'acknowledged', 'resolved', 'dismissed'.
            severity: Optional filter: 'low', 'medium', 'high', 'critical'.
            alert_type: Optional filter, e.g. 'high_blood_pressure'.
            limit: Page size (default 50).
            offset: Rows to skip.
        """
        try:
            with audit_logger.tool_call(
                "list_alerts", {"subject_id": subject_id, "status": status}, subject_id=subject_id,
            ):
                alerts, total, unread = service.list_alerts(
                    subject_id,
                    status=status or None,
                    severity=severity or None,
                    alert_type=alert_type or None,
                    limit=limit,
                    offset=offset,
                )
        except MonitoringError as exc:
            return json.dumps(exc.to_dict())

        return json.dumps({
            "status": "ok",
            "total": total,
            "unread_count": unread,
            "alerts": [a.to_dict() for a in alerts],
        }, indent=2)

    @mcp.tool
    async def alert_summary(ctx: Context, subject_id: str) -> str:
        """Alert counts for a subject: by status, active by severity, unread, last 7 days.

        Args:
            subject_id: Owner of the alerts.
        """
        try:
            with audit_logger.tool_call(
                "alert_summary", {"subject_id": subject_id}, subject_id=subject_id,
            ):
                summary = service.alert_summary(subject_id)
        except MonitoringError as exc:
            return json.dumps(exc.to_dict())

        return json.dumps({"status": "ok", "subject_id": subject_id, **summary})

    @mcp.tool
    async def acknowledge_alert(
        ctx: Context,
        alert_id: str,
        subject_id: str,
        notes: str = "",
    ) -> str:
        """Acknowledge one of your alerts (also marks it read).

        Args:
            alert_id: Alert to acknowledge.
            subject_id: The subject acting; must own the alert.
            notes: Optional note stored with the action.
        """
        return _change("acknowledge_alert", service.acknowledge_alert, alert_id, subject_id, notes)

    @mcp.tool
    async def resolve_alert(
        ctx: Context,
        alert_id: str,
        subject_id: str,
        notes: str = "",
    ) -> str:
        """Resolve one of your alerts (also marks it read).

        Args:
            alert_id: Alert to resolve.
            subject_id: The subject acting; must own the alert.
            notes: Optional note stored with the action.
        """
        return _change("resolve_alert", service.resolve_alert, alert_id, subject_id, notes)

    @mcp.tool
    async def dismiss_alert(
        ctx: Context,
        alert_id: str,
        subject_id: str,
        notes: str = "",
    ) -> str:
        """Dismiss one of your alerts (also marks it read).

        Args:
            alert_id: Alert to dismiss.
            subject_id: The subject acting; must own the alert.
            notes: Optional note stored with the action.
        """
        return _change("dismiss_alert", service.dismiss_alert, alert_id, subject_id, notes)

    @mcp.tool
    async def mark_alert_read(
        ctx: Context,
        alert_id: str,
        subject_id: str,
    ) -> str:
        """Mark one of your alerts as read without changing its status.

        Args:
            alert_id: Alert to mark.
            subject_id: The subject acting; must own the alert.
        """
        return _change("mark_alert_read", service.mark_alert_read, alert_id, subject_id, "")

    @mcp.tool
    async def notify_new_message(
        ctx: Context,
        receiver_id: str,
        sender_id: str,
        message_id: str,
        content: str = "",
        message_type: str = "text",
    ) -> str:
        """Raise a new-message alert for the receiver of a chat message.

        Repeated notifications for the same message within a few minutes
        are suppressed.

        Args:
            receiver_id: Subject receiving the message.
            sender_id: Subject who sent it.
            message_id: ID of the message in the messaging system.
            content: Message text; the alert shows the first 100 characters.
            message_type: 'text', 'image' or 'file'.
        """
        try:
            with audit_logger.tool_call(
                "notify_new_message",
                {"receiver_id": receiver_id, "message_id": message_id},
                actor_id=sender_id,
                subject_id=receiver_id,
            ) as meta:
                alert = service.notify_new_message(
                    receiver_id, sender_id, message_id, content, message_type=message_type,
                )
                meta["alert_created"] = alert is not None
        except MonitoringError as exc:
            return json.dumps(exc.to_dict())

        if alert is None:
            return json.dumps({"status": "suppressed", "message_id": message_id})
        return json.dumps({"status": "created", "alert": alert.to_dict()}, indent=2)
