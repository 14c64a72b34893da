"""CareBoard monitoring MCP server: application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery (`fastmcp run .../app.py:mcp`)
"""

from __future__ import annotations

import logging

from fastmcp import FastMCP

from careboard.core.audit.logger import AuditLogger
from careboard.core.config.settings import get_settings
from careboard.core.storage.database import MonitoringDatabase
from careboard.core.storage.encryption import FieldEncryptor
from careboard.core.storage.repository import MonitoringRepository
from careboard.domains.monitoring.domain_logic.ranges import RangeTable, load_range_table
from careboard.domains.monitoring.domain_logic.service import MonitoringService
from careboard.domains.monitoring.resources.ranges import register_range_resources
from careboard.domains.monitoring.tools.alert_tools import register_alert_tools
from careboard.domains.monitoring.tools.metric_tools import register_metric_tools
from careboard.domains.monitoring.tools.rollup_tools import register_rollup_tools

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def create_app(
    *,
    repository_override: MonitoringRepository | None = None,
    database_override: MonitoringDatabase | None = None,
    range_table_override: RangeTable | None = None,
) -> FastMCP:
    """Create and configure the CareBoard monitoring MCP server.

    This is the main application factory. It:
    1. Creates the FastMCP server instance
    2. Loads the range table
    3. Initializes the encrypted sample and alert store
    4. Builds the monitoring service and audit logger
    5. Registers all tools and resources
    """
    settings = get_settings()

    # --- Server instance ---
    server = FastMCP(
        "CareBoard Monitoring",
        instructions=(
            "CareBoard health metrics monitoring server. Ingests patient "
            "readings, classifies them against clinical ranges, raises "
            "deduplicated alerts and serves fleet-wide rollups for clinician "
            "dashboards that poll it."
        ),
    )

    # --- Range table ---
    table = range_table_override or load_range_table(settings.range_table_path or None)

    # --- Storage ---
    if repository_override is not None:
        if database_override is None:
            raise ValueError("database_override is required with repository_override")
        database = database_override
        repository = repository_override
    elif settings.encryption_key:
        encryptor = FieldEncryptor(settings.encryption_key)
        database = MonitoringDatabase(settings.db_path)
        database.initialize()
        repository = MonitoringRepository(database, encryptor)
        logger.info(
            "Monitoring store initialized: %s (schema v%d)",
            settings.db_path,
            database.get_schema_version(),
        )
    else:
        logger.warning(
            "No ENCRYPTION_KEY configured; using an in-memory store with an "
            "ephemeral key. Data will not survive a restart."
        )
        database = MonitoringDatabase(":memory:")
        database.initialize()
        repository = MonitoringRepository(database, FieldEncryptor(FieldEncryptor.generate_key()))

    service = MonitoringService(
        repository,
        table,
        message_window_minutes=settings.message_alert_window_minutes,
        rollup_timeout_seconds=settings.rollup_timeout_seconds,
        default_period=settings.default_period,
    )
    audit_logger = AuditLogger(database)
    persistent = database.path != ":memory:"

    # --- Register tools ---
    @server.tool
    async def health_check() -> dict:
        """Check server health and return basic status information."""
        return {
            "status": "ok",
            "server": "CareBoard Monitoring",
            "version": VERSION,
            "persistent_storage": persistent,
            "range_table_version": table.version,
            "metric_types_with_ranges": len(table),
            "subjects": len(repository.list_subjects()),
            "samples_stored": repository.count_samples(),
            "poll_interval_seconds": settings.poll_interval_seconds,
        }

    register_metric_tools(server, service, audit_logger)
    register_alert_tools(server, service, audit_logger)
    register_rollup_tools(
        server, service, audit_logger, poll_interval_seconds=settings.poll_interval_seconds,
    )
    logger.info("Monitoring tools registered")

    # --- Register resources ---
    register_range_resources(server, table)

    return server


# Module-level instance for FastMCP discovery (`fastmcp run .../app.py:mcp`).
# Lazy: only created when this module is loaded directly (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
