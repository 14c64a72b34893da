"""Integration tests for the CareBoard monitoring MCP server."""

from __future__ import annotations

import asyncio
import json

import pytest
from fastmcp import Client

from careboard.core.server.app import create_app


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _payload(result) -> dict:
    """Decode the JSON text a tool returned."""
    content = getattr(result, "content", result)
    return json.loads(content[0].text)


ALL_EXPECTED_TOOLS = [
    "health_check",
    "register_subject",
    "ingest_metric",
    "list_metrics",
    "delete_metric",
    "subject_status",
    "metric_summary",
    "list_alerts",
    "alert_summary",
    "acknowledge_alert",
    "resolve_alert",
    "dismiss_alert",
    "mark_alert_read",
    "notify_new_message",
    "hospital_overview",
    "simulate_device_readings",
]


@pytest.fixture
def client():
    """Create an MCP client connected to a fresh in-memory server."""
    return Client(create_app())


async def _seed(client) -> None:
    for subject_id, name, role in [
        ("p1", "Ada Lovelace", "patient"),
        ("p2", "Alan Turing", "patient"),
        ("doc1", "Dr. House", "doctor"),
    ]:
        await client.call_tool(
            "register_subject", {"subject_id": subject_id, "display_name": name, "role": role},
        )


def test_server_starts_and_lists_tools(client):
    """Server should start and expose all registered tools."""
    async def _check():
        async with client:
            tools = await client.list_tools()
            tool_names = [t.name for t in tools]
            for expected in ALL_EXPECTED_TOOLS:
                assert expected in tool_names, f"Missing tool: {expected}"
    _run(_check())


def test_health_check_returns_ok(client):
    """health_check should report an in-memory store and the range table."""
    async def _check():
        async with client:
            data = _payload(await client.call_tool("health_check", {}))
            assert data["status"] == "ok"
            assert data["persistent_storage"] is False
            assert data["metric_types_with_ranges"] == 11
            assert data["samples_stored"] == 0
    _run(_check())


def test_health_check_reads_store_on_every_call(client):
    """health_check shares the server's store connection across calls."""
    async def _check():
        async with client:
            await _seed(client)
            await client.call_tool(
                "ingest_metric", {"subject_id": "p1", "metric_type": "heart_rate", "value": 72},
            )
            for _ in range(3):
                data = _payload(await client.call_tool("health_check", {}))
                assert data["subjects"] == 3
                assert data["samples_stored"] == 1
    _run(_check())


def test_hospital_overview_default_period_from_settings(monkeypatch):
    """An overview without a period uses the configured default."""
    monkeypatch.setenv("DEFAULT_PERIOD", "week")
    client = Client(create_app())

    async def _check():
        async with client:
            await _seed(client)
            data = _payload(await client.call_tool("hospital_overview", {"requester_id": "doc1"}))
            assert data["status"] == "ok"
            assert data["period"] == "week"
    _run(_check())


def test_ingest_abnormal_reading_raises_alert(client):
    """A critical reading returns its alert; a repeat is suppressed."""
    async def _check():
        async with client:
            await _seed(client)
            first = _payload(await client.call_tool(
                "ingest_metric", {"subject_id": "p1", "metric_type": "heart_rate", "value": 165},
            ))
            assert first["status"] == "saved"
            assert first["classification"] == "critical"
            assert first["alert"]["title"] == "Critical Heart Rate Alert"

            second = _payload(await client.call_tool(
                "ingest_metric", {"subject_id": "p1", "metric_type": "heart_rate", "value": 170},
            ))
            assert second["alert"] is None

            alerts = _payload(await client.call_tool("list_alerts", {"subject_id": "p1"}))
            assert alerts["total"] == 1
            assert alerts["unread_count"] == 1
    _run(_check())


def test_invalid_metric_type_is_reported(client):
    """Rejected input comes back as a structured error."""
    async def _check():
        async with client:
            await _seed(client)
            data = _payload(await client.call_tool(
                "ingest_metric", {"subject_id": "p1", "metric_type": "pulse", "value": 70},
            ))
            assert data["status"] == "error"
            assert data["error"] == "invalid_input"
    _run(_check())


def test_alert_lifecycle_over_mcp(client):
    """Only the owner may acknowledge an alert."""
    async def _check():
        async with client:
            await _seed(client)
            ingested = _payload(await client.call_tool(
                "ingest_metric", {"subject_id": "p1", "metric_type": "glucose", "value": 260},
            ))
            alert_id = ingested["alert"]["id"]

            denied = _payload(await client.call_tool(
                "acknowledge_alert", {"alert_id": alert_id, "subject_id": "p2"},
            ))
            assert denied["error"] == "forbidden"

            done = _payload(await client.call_tool(
                "acknowledge_alert", {"alert_id": alert_id, "subject_id": "p1", "notes": "ok"},
            ))
            assert done["alert"]["status"] == "acknowledged"
            assert done["alert"]["is_read"] is True
    _run(_check())


def test_hospital_overview_requires_clinician(client):
    """Patients are refused the fleet view; doctors get the rollup."""
    async def _check():
        async with client:
            await _seed(client)
            await client.call_tool(
                "ingest_metric", {"subject_id": "p1", "metric_type": "heart_rate", "value": 165},
            )
            await client.call_tool(
                "ingest_metric", {"subject_id": "p2", "metric_type": "heart_rate", "value": 72},
            )

            denied = _payload(await client.call_tool("hospital_overview", {"requester_id": "p1"}))
            assert denied["error"] == "forbidden"

            data = _payload(await client.call_tool(
                "hospital_overview", {"requester_id": "doc1", "period": "week"},
            ))
            assert data["status"] == "ok"
            assert data["total_patients"] == 2
            assert data["status_counts"]["critical"] == 1
            assert data["status_counts"]["healthy"] == 1
            assert data["metric_summary"]["heart_rate"]["average"] == 118.5
            assert data["poll_interval_seconds"] == 60
    _run(_check())


def test_simulate_device_readings(client):
    """The simulator feeds every active patient."""
    async def _check():
        async with client:
            await _seed(client)
            data = _payload(await client.call_tool("simulate_device_readings", {"seed": 7}))
            assert data["status"] == "ok"
            assert data["data_source"] == "simulator"
            assert data["subjects"] == 2
            assert data["samples"] == 26
    _run(_check())


def test_notify_new_message_once(client):
    """The same chat message raises a single alert."""
    async def _check():
        async with client:
            await _seed(client)
            args = {"receiver_id": "p1", "sender_id": "doc1", "message_id": "m1", "content": "hi"}
            first = _payload(await client.call_tool("notify_new_message", args))
            second = _payload(await client.call_tool("notify_new_message", args))
            assert first["status"] == "created"
            assert second["status"] == "suppressed"
    _run(_check())


def test_range_table_resource(client):
    """The range table is readable as a resource."""
    async def _check():
        async with client:
            contents = await client.read_resource("ranges://monitoring/table")
            data = json.loads(contents[0].text)
            assert data["ranges"]["heart_rate"]["critical_max"] == 150
            assert data["metric_types"]["steps"]["has_range"] is False
    _run(_check())
