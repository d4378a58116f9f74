"""Tests for the FastAPI server."""

from __future__ import annotations

import json
from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from conduit_core.api.server import create_app
from conduit_core.engine import Conduit

pytestmark = pytest.mark.anyio


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def client(conduit: Conduit) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=create_app(conduit))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def _register(client: AsyncClient, agent_id: str, role: str, balance: str = "0") -> None:
    response = await client.post(
        "/api/agents",
        json={
            "role": role,
            "capabilities": ["testing"],
            "agent_id": agent_id,
            "initial_balance": balance,
            "encrypted_key": "ciphertext",
        },
    )
    assert response.status_code == 201


async def test_health(client: AsyncClient) -> None:
    response = await client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert "version" in data
    assert "uptime_seconds" in data
    assert data["chains"]["escrow"] == {"backend": "hedera", "mode": "stub"}


async def test_register_and_get_agent(client: AsyncClient) -> None:
    await _register(client, "agent-a", "executor", "5")

    response = await client.get("/api/agents/agent-a")
    assert response.status_code == 200
    agent = response.json()
    assert agent["settlement_balance"] == "5"
    assert agent["backend_registered"] is True
    assert "encrypted_key" not in agent

    listing = await client.get("/api/agents", params={"capability": "testing"})
    assert listing.json()["count"] == 1


async def test_register_validation(client: AsyncClient) -> None:
    response = await client.post("/api/agents", json={"role": "janitor"})
    assert response.status_code == 422


async def test_missing_agent(client: AsyncClient) -> None:
    assert (await client.get("/api/agents/agent-missing")).status_code == 404
    assert (await client.get("/api/agents/agent-missing/balance")).status_code == 404
    assert (await client.get("/api/agents/agent-missing/reputation")).status_code == 404


async def test_update_status(client: AsyncClient) -> None:
    await _register(client, "agent-a", "executor")

    response = await client.patch("/api/agents/agent-a/status", json={"status": "dormant"})
    assert response.status_code == 200
    assert response.json()["status"] == "dormant"

    bad = await client.patch("/api/agents/agent-a/status", json={"status": "asleep"})
    assert bad.status_code == 422


async def test_task_lifecycle(client: AsyncClient) -> None:
    await _register(client, "agent-req", "router", "100")
    await _register(client, "agent-exe", "executor")

    created = await client.post(
        "/api/tasks",
        json={
            "title": "Audit",
            "requester_agent_id": "agent-req",
            "requirements": ["security"],
            "escrow_amount": "40",
        },
    )
    assert created.status_code == 201
    task_id = created.json()["id"]

    dispatched = await client.post(f"/api/tasks/{task_id}/dispatch", json={"agent_id": "agent-exe"})
    assert dispatched.status_code == 200
    assert dispatched.json()["status"] == "dispatched"

    again = await client.post(f"/api/tasks/{task_id}/dispatch", json={"agent_id": "agent-exe"})
    assert again.status_code == 404

    completed = await client.post(
        f"/api/tasks/{task_id}/complete", json={"result": "ok", "attestation_score": 0.8}
    )
    assert completed.status_code == 200
    assert completed.json()["status"] == "completed"

    balance = (await client.get("/api/agents/agent-exe/balance")).json()
    assert balance["balance"] == "40"
    assert balance["pending_escrow"] == "0"

    reputation = (await client.get("/api/agents/agent-exe/reputation")).json()
    assert reputation["score"] == pytest.approx(0.8)

    activity = (await client.get("/api/activity")).json()
    assert [event["type"] for event in activity["events"]] == ["payment", "trust", "hired"]

    vitals = (await client.get("/api/vitals")).json()
    assert vitals["total_value_locked"] == "100"
    assert vitals["active_processes"] == 0

    connections = (await client.get("/api/connections")).json()
    assert connections["count"] == 1


async def test_complete_rejects_bad_score(client: AsyncClient) -> None:
    await _register(client, "agent-req", "router")
    await _register(client, "agent-exe", "executor")
    task_id = (
        await client.post("/api/tasks", json={"title": "Audit", "requester_agent_id": "agent-req"})
    ).json()["id"]
    await client.post(f"/api/tasks/{task_id}/dispatch", json={"agent_id": "agent-exe"})

    response = await client.post(
        f"/api/tasks/{task_id}/complete", json={"attestation_score": 2.0}
    )
    assert response.status_code == 422


async def test_fail_task(client: AsyncClient) -> None:
    await _register(client, "agent-req", "router", "10")
    await _register(client, "agent-exe", "executor")
    task_id = (
        await client.post(
            "/api/tasks",
            json={"title": "Audit", "requester_agent_id": "agent-req", "escrow_amount": "10"},
        )
    ).json()["id"]
    await client.post(f"/api/tasks/{task_id}/dispatch", json={"agent_id": "agent-exe"})

    response = await client.post(f"/api/tasks/{task_id}/fail", json={"reason": "timeout"})
    assert response.status_code == 200
    assert response.json()["status"] == "failed"

    balance = (await client.get("/api/agents/agent-req/balance")).json()
    assert balance["balance"] == "10"


async def test_escrow_payments(client: AsyncClient) -> None:
    await _register(client, "agent-req", "router", "20")
    await _register(client, "agent-exe", "executor")
    task_id = (
        await client.post("/api/tasks", json={"title": "Audit", "requester_agent_id": "agent-req"})
    ).json()["id"]

    locked = await client.post(
        "/api/payments/escrow",
        json={
            "task_id": task_id,
            "payer_agent_id": "agent-req",
            "amount": "15",
            "payee_agent_id": "agent-exe",
        },
    )
    assert locked.status_code == 201
    escrow_id = locked.json()["id"]
    assert locked.json()["status"] == "locked"

    settled = await client.post(f"/api/payments/{escrow_id}/settle")
    assert settled.status_code == 200
    assert settled.json()["status"] == "released"

    refund = await client.post(f"/api/payments/{escrow_id}/refund")
    assert refund.status_code == 404

    bad = await client.post(
        "/api/payments/escrow",
        json={"task_id": task_id, "payer_agent_id": "agent-req", "amount": "-1"},
    )
    assert bad.status_code == 422


async def test_attestations(client: AsyncClient) -> None:
    await _register(client, "agent-a", "executor")

    response = await client.post(
        "/api/attestations",
        json={"agent_id": "agent-a", "attester_id": "agent-b", "score": 0.6},
    )
    assert response.status_code == 201
    assert response.json()["score"] == 0.6

    missing = await client.post(
        "/api/attestations",
        json={"agent_id": "agent-missing", "attester_id": "agent-b", "score": 0.6},
    )
    assert missing.status_code == 404


async def test_txlog(client: AsyncClient) -> None:
    await _register(client, "agent-a", "executor")

    response = await client.get("/api/txlog", params={"agent_id": "agent-a"})
    assert response.status_code == 200
    methods = {entry["method"] for entry in response.json()["transactions"]}
    assert methods == {"mint_identity_token", "register_agent"}


async def test_chain_mirrors_in_stub_mode(client: AsyncClient) -> None:
    agents = (await client.get("/api/chain/agents")).json()
    assert agents == {"agents": [], "count": 0}
    assert (await client.get("/api/chain/jobs/count")).json() == {"count": 0}
    assert (await client.get("/api/chain/jobs/7")).status_code == 404
    assert (await client.get("/api/chain/events")).json()["count"] == 0


async def test_activity_stream_backlog(client: AsyncClient, conduit: Conduit) -> None:
    conduit.activity.record("first", "hired")
    conduit.activity.record("second", "payment")

    response = await client.get("/api/activity/stream", params={"follow": "false"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    frames = [chunk for chunk in response.text.split("\n\n") if chunk]
    payloads = [json.loads(frame.split("data: ", 1)[1]) for frame in frames]
    assert [p["message"] for p in payloads] == ["first", "second"]


async def test_escrow_payment_rejections(client: AsyncClient) -> None:
    await _register(client, "agent-req", "router", "20")
    task_id = (
        await client.post("/api/tasks", json={"title": "Audit", "requester_agent_id": "agent-req"})
    ).json()["id"]

    ghost_payee = await client.post(
        "/api/payments/escrow",
        json={
            "task_id": task_id,
            "payer_agent_id": "agent-req",
            "amount": "5",
            "payee_agent_id": "agent-ghost",
        },
    )
    assert ghost_payee.status_code == 404

    not_finite = await client.post(
        "/api/payments/escrow",
        json={"task_id": task_id, "payer_agent_id": "agent-req", "amount": "NaN"},
    )
    assert not_finite.status_code == 422

    balance = (await client.get("/api/agents/agent-req/balance")).json()
    assert balance["balance"] == "20"


async def test_create_task_rejects_infinite_escrow(client: AsyncClient) -> None:
    await _register(client, "agent-req", "router", "20")

    response = await client.post(
        "/api/tasks",
        json={"title": "Audit", "requester_agent_id": "agent-req", "escrow_amount": "Infinity"},
    )
    assert response.status_code == 422


async def test_attestation_for_unknown_task(client: AsyncClient) -> None:
    await _register(client, "agent-a", "executor")

    response = await client.post(
        "/api/attestations",
        json={"agent_id": "agent-a", "attester_id": "agent-b", "score": 0.7, "task_id": "task-ghost"},
    )
    assert response.status_code == 404
