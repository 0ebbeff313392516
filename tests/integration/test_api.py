"""
API tests against an in-memory runtime.

ASGITransport does not run the lifespan, so no Redis or PostgreSQL is
needed; the runtime is handed to create_app directly.
"""

from uuid import uuid4

import httpx
import pytest
import pytest_asyncio

from automation_engine.api.app import create_app


@pytest_asyncio.fixture
async def client(runtime):
    app = create_app(runtime)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def _create(client, graph_json=None, name: str = "Large orders") -> dict:
    body = {"name": name}
    if graph_json is not None:
        body["graph"] = graph_json
    response = await client.post("/v1/workflows", json=body)
    assert response.status_code == 201, response.text
    return response.json()


class TestWorkflowEndpoints:
    """Create, save, validate and change status."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, client, approval_graph_json):
        created = await _create(client, approval_graph_json)

        assert created["status"] == "DRAFT"
        assert created["version"] == 1
        assert created["compiled"]["eventType"] == "ORDER_CREATED"

        response = await client.get(f"/v1/workflows/{created['id']}")
        assert response.status_code == 200
        assert response.json()["graph"]["edges"][0]["sourceNodeId"] == "trigger"

    @pytest.mark.asyncio
    async def test_get_unknown(self, client):
        response = await client.get(f"/v1/workflows/{uuid4()}")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_validate_reports_all_errors(self, client, graph_parts):
        p = graph_parts
        graph = {
            "nodes": [p["condition"]("c", "amount", ">", 1), p["action"]("a", "NOPE")],
            "edges": [p["edge"]("c", "a", "true")],
        }

        response = await client.post("/v1/workflows/validate", json=graph)

        assert response.status_code == 200
        body = response.json()
        assert body["valid"] is False
        codes = {d["code"] for d in body["details"]}
        assert {"MISSING_TRIGGER", "MISSING_BRANCH", "UNKNOWN_ACTION_TYPE"} <= codes
        assert len(body["errors"]) == len(body["details"])

    @pytest.mark.asyncio
    async def test_save_invalid_graph(self, client, approval_graph_json):
        created = await _create(client, approval_graph_json)
        broken = {**approval_graph_json, "edges": approval_graph_json["edges"][:2]}

        response = await client.put(f"/v1/workflows/{created['id']}/graph", json=broken)

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert "MISSING_BRANCH" in {d["code"] for d in detail["details"]}
        assert (await client.get(f"/v1/workflows/{created['id']}")).json()["version"] == 1

    @pytest.mark.asyncio
    async def test_save_valid_graph(self, client, approval_graph_json):
        created = await _create(client)

        response = await client.put(f"/v1/workflows/{created['id']}/graph", json=approval_graph_json)

        assert response.status_code == 200
        assert response.json()["version"] == 1

    @pytest.mark.asyncio
    async def test_status_changes(self, client, approval_graph_json):
        empty = await _create(client, name="empty")
        response = await client.post(f"/v1/workflows/{empty['id']}/status", json={"status": "ACTIVE"})
        assert response.status_code == 409

        created = await _create(client, approval_graph_json)
        response = await client.post(
            f"/v1/workflows/{created['id']}/status",
            json={"status": "ACTIVE", "reason": "Reviewed", "triggeredBy": "ops@example.com"},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "ACTIVE"


class TestEventsAndTraces:
    """Event ingress through to trace queries."""

    @pytest.mark.asyncio
    async def test_event_to_trace(self, client, runtime, approval_graph_json):
        created = await _create(client, approval_graph_json)
        await client.post(f"/v1/workflows/{created['id']}/status", json={"status": "ACTIVE"})

        response = await client.post(
            "/v1/events",
            json={"eventType": "ORDER_CREATED", "context": {"orderId": "o-1", "amount": 5000}},
        )
        assert response.status_code == 202
        assert response.json()["idempotencyToken"] == "ORDER_CREATED:o-1:1"

        await runtime.dispatcher.drain()

        response = await client.get(f"/v1/workflows/{created['id']}/executions")
        [trace] = response.json()
        assert trace["status"] == "success"
        assert [r["nodeId"] for r in trace["results"]] == ["big_order", "approve"]

        response = await client.get(f"/v1/executions/{trace['id']}")
        assert response.json()["idempotencyKey"] == f"ORDER_CREATED:o-1:1:{created['id']}"

        response = await client.get(f"/v1/executions/{trace['id']}/node-status")
        assert response.json() == {
            "trigger": "success",
            "big_order": "success",
            "approve": "success",
            "auto": "idle",
        }

    @pytest.mark.asyncio
    async def test_invalid_event_rejected(self, client):
        response = await client.post("/v1/events", json={"eventType": "ORDER_DELETED"})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_event_without_entity_rejected(self, client, runtime):
        response = await client.post("/v1/events", json={"eventType": "PAYOUT_REQUESTED", "context": {"amount": 1}})

        assert response.status_code == 422
        assert "payOutId" in response.text
        assert runtime.dispatcher.in_flight == 0

    @pytest.mark.asyncio
    async def test_unknown_trace(self, client):
        assert (await client.get(f"/v1/executions/{uuid4()}")).status_code == 404
        assert (await client.get(f"/v1/executions/{uuid4()}/node-status")).status_code == 404

    @pytest.mark.asyncio
    async def test_dry_run_endpoint(self, client, runtime, approval_graph_json, command_sink):
        created = await _create(client, approval_graph_json)

        response = await client.post(
            f"/v1/workflows/{created['id']}/test",
            json={"context": {"orderId": "o-2", "amount": 50}},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["dryRun"] is True
        assert [r["nodeId"] for r in body["results"]] == ["big_order", "auto"]
        assert command_sink.commands == []
        assert (await client.get(f"/v1/workflows/{created['id']}/executions")).json() == []

    @pytest.mark.asyncio
    async def test_dry_run_without_graph(self, client):
        created = await _create(client)

        response = await client.post(f"/v1/workflows/{created['id']}/test", json={"context": {}})

        assert response.status_code == 422


class TestHealth:
    @pytest.mark.asyncio
    async def test_health_in_memory(self, client):
        response = await client.get("/v1/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["services"] == {"redis": "disabled", "postgres": "disabled"}

    @pytest.mark.asyncio
    async def test_root(self, client):
        response = await client.get("/")

        assert response.json()["status"] == "running"
