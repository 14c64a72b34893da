"""MCP Resources for range table discovery."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from fastmcp import FastMCP

from careboard.domains.monitoring.domain_logic.ranges import METRIC_CATALOGUE

if TYPE_CHECKING:
    from careboard.domains.monitoring.domain_logic.ranges import RangeTable


def register_range_resources(mcp: FastMCP, table: RangeTable) -> None:
    """Register the range table resource on the MCP server."""

    @mcp.resource("ranges://monitoring/table")
    def range_table_resource() -> str:
        """Normal and critical bands per metric type, with categories and default units."""
        return json.dumps(
            {
                **table.to_dict(),
                "metric_types": {
                    mt.value: {
                        "category": info.category,
                        "default_unit": info.default_unit,
                        "has_range": mt in table,
                    }
                    for mt, info in METRIC_CATALOGUE.items()
                },
            },
            indent=2,
        )
