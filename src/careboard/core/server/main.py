"""CareBoard server entry point: ``python -m careboard.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from careboard.core.config.settings import get_settings
from careboard.core.server.app import create_app


def _is_loopback_host(host: str) -> bool:
    if host in {"localhost"}:
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def run() -> None:
    """Start the CareBoard MCP server with Streamable HTTP transport."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.careboard_log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logger = logging.getLogger(__name__)
    if not settings.careboard_allow_insecure_bind and not _is_loopback_host(settings.careboard_host):
        raise RuntimeError(
            "Refusing to bind the monitoring server to a non-loopback host without an auth layer. "
            "Set CAREBOARD_ALLOW_INSECURE_BIND=true to override (unsafe)."
        )
    logger.info(
        "Starting CareBoard monitoring server on %s:%d",
        settings.careboard_host,
        settings.careboard_port,
    )

    mcp = create_app()
    mcp.run(
        transport="streamable-http",
        host=settings.careboard_host,
        port=settings.careboard_port,
    )


if __name__ == "__main__":
    run()
