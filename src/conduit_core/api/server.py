"""FastAPI server for programmatic marketplace access."""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import click
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from conduit_core import __version__
from conduit_core.engine.container import Conduit
from conduit_core.models import Agent, as_dict
from conduit_core.storage.feed import ActivityFeed

STREAM_POLL_SECONDS = 1.0


class RegisterAgentRequest(BaseModel):
    role: str
    capabilities: list[str] = Field(default_factory=list)
    agent_id: str | None = None
    name: str | None = None
    deployed_chain: str = "base"
    wallet_address: str | None = None
    encrypted_key: str | None = None
    initial_balance: str = "0"


class StatusRequest(BaseModel):
    status: str


class CreateTaskRequest(BaseModel):
    title: str
    requester_agent_id: str
    requirements: list[str] = Field(default_factory=list)
    description: str | None = None
    escrow_amount: str | None = None


class DispatchRequest(BaseModel):
    agent_id: str


class CompleteRequest(BaseModel):
    result: str | None = None
    attestation_score: float | None = None


class FailRequest(BaseModel):
    reason: str | None = None


class EscrowPaymentRequest(BaseModel):
    task_id: str
    payer_agent_id: str
    amount: str
    payee_agent_id: str | None = None


class AttestationRequest(BaseModel):
    agent_id: str
    attester_id: str
    score: float
    task_id: str | None = None
    metadata: dict[str, Any] | None = None


def _agent_out(agent: Agent) -> dict[str, Any]:
    data = as_dict(agent)
    data.pop("encrypted_key", None)
    return data


def _found(record: Any, what: str) -> Any:
    if record is None:
        raise HTTPException(status_code=404, detail=f"{what} not found")
    return record


def _invalid(exc: ValueError) -> HTTPException:
    return HTTPException(status_code=422, detail=str(exc))


def create_app(conduit: Conduit | None = None) -> FastAPI:
    """
    Build the API around a Conduit container.

    Without one, the container is built from the environment on first request
    and closed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        if app.state.conduit is not None:
            app.state.conduit.close()

    app = FastAPI(
        title="Conduit API",
        version=__version__,
        description="Task, escrow and reputation coordination for agent marketplaces",
        lifespan=lifespan,
    )
    app.state.conduit = conduit
    app.state.started = time.monotonic()

    def get_conduit(request: Request) -> Conduit:
        if request.app.state.conduit is None:
            request.app.state.conduit = Conduit.from_config()
        return request.app.state.conduit

    @app.get("/api/health")
    async def health(c: Conduit = Depends(get_conduit)) -> dict[str, Any]:
        """Health check with the gateway mode of each capability."""
        uptime = time.monotonic() - app.state.started
        return {
            "status": "ok",
            "version": __version__,
            "uptime_seconds": round(uptime, 1),
            "chains": c.gateway.modes(),
        }

    # Agents

    @app.post("/api/agents", status_code=201)
    def register_agent(
        body: RegisterAgentRequest, c: Conduit = Depends(get_conduit)
    ) -> dict[str, Any]:
        try:
            result = c.registry.register_agent(
                body.role,
                body.capabilities,
                agent_id=body.agent_id,
                deployed_chain=body.deployed_chain,
                wallet_address=body.wallet_address,
                encrypted_key=body.encrypted_key,
                name=body.name,
                initial_balance=body.initial_balance,
            )
        except ValueError as exc:
            raise _invalid(exc) from exc
        return {"agent": _agent_out(result.agent), "warnings": result.warnings}

    @app.get("/api/agents")
    def list_agents(
        role: str | None = None,
        capability: str | None = None,
        min_reputation: float | None = None,
        c: Conduit = Depends(get_conduit),
    ) -> dict[str, Any]:
        capabilities = [cap for cap in (capability or "").split(",") if cap]
        try:
            agents = c.registry.discover_agents(capabilities, role, min_reputation)
        except ValueError as exc:
            raise _invalid(exc) from exc
        return {"agents": [_agent_out(a) for a in agents], "count": len(agents)}

    @app.get("/api/agents/{agent_id}")
    def get_agent(agent_id: str, c: Conduit = Depends(get_conduit)) -> dict[str, Any]:
        return _agent_out(_found(c.registry.get_agent(agent_id), "agent"))

    @app.patch("/api/agents/{agent_id}/status")
    def update_status(
        agent_id: str, body: StatusRequest, c: Conduit = Depends(get_conduit)
    ) -> dict[str, Any]:
        try:
            agent = c.registry.update_agent_status(agent_id, body.status)
        except ValueError as exc:
            raise _invalid(exc) from exc
        return _agent_out(_found(agent, "agent"))

    @app.get("/api/agents/{agent_id}/balance")
    def get_balance(agent_id: str, c: Conduit = Depends(get_conduit)) -> dict[str, Any]:
        return as_dict(_found(c.ledger.get_balance(agent_id), "agent"))

    @app.get("/api/agents/{agent_id}/reputation")
    def get_reputation(agent_id: str, c: Conduit = Depends(get_conduit)) -> dict[str, Any]:
        return as_dict(_found(c.reputation.get_agent_reputation(agent_id), "agent"))

    @app.get("/api/agents/{agent_id}/escrows")
    def get_escrows(
        agent_id: str, status: str | None = None, c: Conduit = Depends(get_conduit)
    ) -> dict[str, Any]:
        try:
            escrows = c.ledger.get_agent_escrows(agent_id, status)
        except ValueError as exc:
            raise _invalid(exc) from exc
        return {"escrows": [as_dict(e) for e in escrows], "count": len(escrows)}

    # Tasks

    @app.post("/api/tasks", status_code=201)
    def create_task(body: CreateTaskRequest, c: Conduit = Depends(get_conduit)) -> dict[str, Any]:
        try:
            task = c.tasks.create_task(
                body.title,
                body.requirements,
                body.requester_agent_id,
                escrow_amount=body.escrow_amount,
                description=body.description,
            )
        except ValueError as exc:
            raise _invalid(exc) from exc
        return as_dict(_found(task, "requester"))

    @app.get("/api/tasks")
    def list_tasks(status: str | None = None, c: Conduit = Depends(get_conduit)) -> dict[str, Any]:
        try:
            tasks = c.tasks.list_tasks(status)
        except ValueError as exc:
            raise _invalid(exc) from exc
        return {"tasks": [as_dict(t) for t in tasks], "count": len(tasks)}

    @app.get("/api/tasks/{task_id}")
    def get_task(task_id: str, c: Conduit = Depends(get_conduit)) -> dict[str, Any]:
        return as_dict(_found(c.tasks.get_task(task_id), "task"))

    @app.post("/api/tasks/{task_id}/dispatch")
    def dispatch_task(
        task_id: str, body: DispatchRequest, c: Conduit = Depends(get_conduit)
    ) -> dict[str, Any]:
        task = c.tasks.dispatch_task(task_id, body.agent_id)
        return as_dict(_found(task, "pending task or agent"))

    @app.post("/api/tasks/{task_id}/complete")
    def complete_task(
        task_id: str, body: CompleteRequest, c: Conduit = Depends(get_conduit)
    ) -> dict[str, Any]:
        try:
            task = c.tasks.complete_task(task_id, body.result, body.attestation_score)
        except ValueError as exc:
            raise _invalid(exc) from exc
        return as_dict(_found(task, "dispatched task"))

    @app.post("/api/tasks/{task_id}/fail")
    def fail_task(
        task_id: str, body: FailRequest, c: Conduit = Depends(get_conduit)
    ) -> dict[str, Any]:
        return as_dict(_found(c.tasks.fail_task(task_id, body.reason), "dispatched task"))

    # Payments

    @app.post("/api/payments/escrow", status_code=201)
    def escrow_payment(
        body: EscrowPaymentRequest, c: Conduit = Depends(get_conduit)
    ) -> dict[str, Any]:
        try:
            escrow = c.ledger.create_escrow(
                body.task_id, body.payer_agent_id, body.amount, body.payee_agent_id
            )
        except ValueError as exc:
            raise _invalid(exc) from exc
        return as_dict(_found(escrow, "task, payer or payee"))

    @app.get("/api/payments/{escrow_id}")
    def get_payment(escrow_id: str, c: Conduit = Depends(get_conduit)) -> dict[str, Any]:
        return as_dict(_found(c.ledger.get_escrow(escrow_id), "escrow"))

    @app.post("/api/payments/{escrow_id}/settle")
    def settle_payment(escrow_id: str, c: Conduit = Depends(get_conduit)) -> dict[str, Any]:
        return as_dict(_found(c.ledger.release_escrow(escrow_id), "locked escrow with payee"))

    @app.post("/api/payments/{escrow_id}/refund")
    def refund_payment(escrow_id: str, c: Conduit = Depends(get_conduit)) -> dict[str, Any]:
        return as_dict(_found(c.ledger.refund_escrow(escrow_id), "locked escrow"))

    # Reputation

    @app.post("/api/attestations", status_code=201)
    def record_attestation(
        body: AttestationRequest, c: Conduit = Depends(get_conduit)
    ) -> dict[str, Any]:
        try:
            attestation = c.reputation.record_attestation(
                body.agent_id, body.attester_id, body.score, body.task_id, body.metadata
            )
        except ValueError as exc:
            raise _invalid(exc) from exc
        return as_dict(_found(attestation, "agent or task"))

    # Network

    @app.get("/api/activity")
    def activity(
        limit: int = 50, type: str | None = None, c: Conduit = Depends(get_conduit)
    ) -> dict[str, Any]:
        try:
            events = c.activity.list(limit=limit, type=type)
        except ValueError as exc:
            raise _invalid(exc) from exc
        return {"events": [as_dict(e) for e in events], "count": len(events)}

    @app.get("/api/activity/stream")
    async def activity_stream(
        follow: bool = True, backlog: int = 20, c: Conduit = Depends(get_conduit)
    ) -> StreamingResponse:
        """SSE feed: recent events oldest first, then new ones as they are appended."""

        async def event_generator() -> AsyncGenerator[str, None]:
            async with ActivityFeed(c.db.db_path) as feed:
                recent = list(reversed(await feed.recent(backlog)))
                cursor = recent[-1][0] if recent else 0
                for seq, event in recent:
                    yield f"id: {seq}\ndata: {json.dumps(as_dict(event))}\n\n"
                while follow:
                    await asyncio.sleep(STREAM_POLL_SECONDS)
                    for seq, event in await feed.since(cursor):
                        cursor = seq
                        yield f"id: {seq}\ndata: {json.dumps(as_dict(event))}\n\n"

        return StreamingResponse(event_generator(), media_type="text/event-stream")

    @app.get("/api/connections")
    def connections(
        agent_id: str | None = None, c: Conduit = Depends(get_conduit)
    ) -> dict[str, Any]:
        found = c.connections.list(agent_id)
        return {"connections": [as_dict(conn) for conn in found], "count": len(found)}

    @app.get("/api/txlog")
    def txlog(
        agent_id: str | None = None,
        status: str | None = None,
        method: str | None = None,
        limit: int = 100,
        c: Conduit = Depends(get_conduit),
    ) -> dict[str, Any]:
        entries = c.gateway.txlog.list(agent_id=agent_id, status=status, method=method, limit=limit)
        return {"transactions": [as_dict(e) for e in entries], "count": len(entries)}

    @app.get("/api/vitals")
    def vitals(c: Conduit = Depends(get_conduit)) -> dict[str, Any]:
        return as_dict(c.vitals())

    # Backend registry read mirrors

    @app.get("/api/chain/agents")
    def chain_agents(c: Conduit = Depends(get_conduit)) -> dict[str, Any]:
        agents = c.gateway.registry.get_onchain_agents()
        return {
            "agents": [as_dict(a) for a in agents],
            "count": c.gateway.registry.get_agent_count(),
        }

    @app.get("/api/chain/agents/{address}")
    def chain_agent(address: str, c: Conduit = Depends(get_conduit)) -> dict[str, Any]:
        return as_dict(_found(c.gateway.registry.get_onchain_agent(address), "on-chain agent"))

    @app.get("/api/chain/agents/{address}/jobs")
    def chain_agent_jobs(
        address: str, open_only: bool = False, c: Conduit = Depends(get_conduit)
    ) -> dict[str, Any]:
        registry = c.gateway.registry
        jobs = registry.get_open_jobs(address) if open_only else registry.get_jobs_for_agent(address)
        return {"jobs": [as_dict(j) for j in jobs], "count": len(jobs)}

    @app.get("/api/chain/jobs/count")
    def chain_job_count(c: Conduit = Depends(get_conduit)) -> dict[str, Any]:
        return {"count": c.gateway.registry.get_job_count()}

    @app.get("/api/chain/jobs/{job_id}")
    def chain_job(job_id: int, c: Conduit = Depends(get_conduit)) -> dict[str, Any]:
        return as_dict(_found(c.gateway.registry.get_job(job_id), "on-chain job"))

    @app.get("/api/chain/balance/{address}")
    def chain_balance(address: str, c: Conduit = Depends(get_conduit)) -> dict[str, Any]:
        return {"address": address, "balance": c.gateway.registry.get_balance(address)}

    @app.get("/api/chain/events")
    def chain_events(
        event_type: str | None = None,
        agent: str | None = None,
        job_id: int | None = None,
        from_block: int = 0,
        limit: int = 100,
        c: Conduit = Depends(get_conduit),
    ) -> dict[str, Any]:
        events = c.gateway.registry.query_events(
            event_type=event_type,
            agent_address=agent,
            job_id=job_id,
            from_block=from_block,
            limit=limit,
        )
        return {"events": [as_dict(e) for e in events], "count": len(events)}

    return app


app = create_app()


@click.command()
@click.option("--port", default=8420, help="Port to listen on")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
def main(port: int, host: str) -> None:
    """Start the Conduit API server."""
    import uvicorn

    uvicorn.run(app, host=host, port=port)
