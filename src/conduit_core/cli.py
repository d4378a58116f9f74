"""CLI entry point for the Conduit coordination core."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, NoReturn

import click
from rich.console import Console
from rich.table import Table

from conduit_core import __version__

if TYPE_CHECKING:
    from conduit_core.engine.container import Conduit
    from conduit_core.models import Task

console = Console()


@click.group()
@click.version_option(version=__version__, prog_name="conduit")
@click.option("-v", "--verbose", is_flag=True, help="Log gateway and ledger activity")
def main(verbose: bool) -> None:
    """Conduit agent marketplace coordination."""
    from conduit_core.logger import configure_logging

    configure_logging(logging.INFO if verbose else logging.WARNING)


def _get_conduit() -> Conduit:
    from conduit_core.engine.container import Conduit

    return Conduit.from_config()


def _fail(message: str) -> NoReturn:
    console.print(f"[red]{message}[/red]")
    raise SystemExit(1)


@main.command()
def init() -> None:
    """Initialize conduit: create the data directory and database."""
    conduit = _get_conduit()
    console.print(f"[green]Conduit initialized at {conduit.db.data_dir}[/green]")
    console.print(f"  Database: {conduit.db.db_path}")


@main.command()
@click.option("--role", type=click.Choice(["router", "executor", "settler"]), default=None)
@click.option("--capability", "-c", "capabilities", multiple=True, help="Match any of these")
@click.option("--min-reputation", type=float, default=None)
def agents(role: str | None, capabilities: tuple[str, ...], min_reputation: float | None) -> None:
    """List registered agents."""
    conduit = _get_conduit()
    found = conduit.registry.discover_agents(list(capabilities), role, min_reputation)

    if not found:
        console.print("[dim]No agents registered.[/dim]")
        return

    table = Table(title="Agents")
    table.add_column("Agent ID", style="cyan")
    table.add_column("Role")
    table.add_column("Capabilities", max_width=40)
    table.add_column("Status", style="yellow")
    table.add_column("Reputation", style="bold")
    table.add_column("Balance", style="green")

    for agent in found:
        table.add_row(
            agent.id,
            agent.role,
            ", ".join(agent.capabilities),
            agent.status,
            f"{agent.attestation_score:.2f}",
            str(agent.settlement_balance),
        )

    console.print(table)


@main.command()
@click.argument("role", type=click.Choice(["router", "executor", "settler"]))
@click.option("--capability", "-c", "capabilities", multiple=True)
@click.option("--id", "agent_id", default=None, help="Agent id (generated if omitted)")
@click.option("--name", default=None)
@click.option("--chain", default="base", help="Deployed chain: base, hedera, zerog, kite")
@click.option("--wallet", default=None, help="Wallet address to fund with gas")
@click.option("--balance", default="0", help="Initial settlement balance")
def register(
    role: str,
    capabilities: tuple[str, ...],
    agent_id: str | None,
    name: str | None,
    chain: str,
    wallet: str | None,
    balance: str,
) -> None:
    """Register a new agent."""
    conduit = _get_conduit()
    try:
        result = conduit.registry.register_agent(
            role,
            list(capabilities),
            agent_id=agent_id,
            deployed_chain=chain,
            wallet_address=wallet,
            name=name,
            initial_balance=balance,
        )
    except ValueError as exc:
        _fail(str(exc))

    agent = result.agent
    console.print(f"[green]Registered {agent.role} {agent.id}[/green]")
    if agent.identity_token_id:
        console.print(f"  Identity token: {agent.identity_token_id}")
    for warning in result.warnings:
        console.print(f"  [yellow]warning:[/yellow] {warning}")


@main.command()
@click.argument("agent_id")
@click.argument("amount")
def credit(agent_id: str, amount: str) -> None:
    """Top up an agent's settlement balance."""
    conduit = _get_conduit()
    try:
        agent = conduit.registry.credit_balance(agent_id, amount)
    except ValueError as exc:
        _fail(str(exc))
    if agent is None:
        _fail(f"Agent {agent_id} not found")
    console.print(f"[green]{agent.id} balance: {agent.settlement_balance}[/green]")


@main.command("task-create")
@click.argument("title")
@click.option("--requester", required=True, help="Requesting agent id")
@click.option("--requirement", "-r", "requirements", multiple=True)
@click.option("--escrow", default=None, help="Amount to lock from the requester")
@click.option("--description", default=None)
def task_create(
    title: str,
    requester: str,
    requirements: tuple[str, ...],
    escrow: str | None,
    description: str | None,
) -> None:
    """Create a pending task."""
    conduit = _get_conduit()
    try:
        task = conduit.tasks.create_task(
            title, list(requirements), requester, escrow_amount=escrow, description=description
        )
    except ValueError as exc:
        _fail(str(exc))
    if task is None:
        _fail(f"Requester {requester} not found")
    _print_task(task)


@main.command()
@click.option(
    "--status",
    type=click.Choice(["pending", "dispatched", "completed", "failed"]),
    default=None,
)
def tasks(status: str | None) -> None:
    """List tasks, newest first."""
    conduit = _get_conduit()
    found = conduit.tasks.list_tasks(status)

    if not found:
        console.print("[dim]No tasks.[/dim]")
        return

    table = Table(title="Tasks")
    table.add_column("Task ID", style="cyan")
    table.add_column("Title", max_width=40)
    table.add_column("Status", style="yellow")
    table.add_column("Requester")
    table.add_column("Assigned")
    table.add_column("Escrow", style="green")

    for task in found:
        table.add_row(
            task.id,
            task.title[:40],
            task.status,
            task.requester_agent_id,
            task.assigned_agent_id or "-",
            str(task.escrow_amount or "-"),
        )

    console.print(table)


@main.command()
@click.argument("task_id")
@click.argument("agent_id")
def dispatch(task_id: str, agent_id: str) -> None:
    """Assign a pending task to an agent."""
    task = _get_conduit().tasks.dispatch_task(task_id, agent_id)
    if task is None:
        _fail(f"Cannot dispatch {task_id} to {agent_id}: not found or not pending")
    _print_task(task)


@main.command()
@click.argument("task_id")
@click.option("--result", default=None)
@click.option("--score", type=float, default=None, help="Attestation score in [0, 1]")
def complete(task_id: str, result: str | None, score: float | None) -> None:
    """Complete a dispatched task and release its escrow."""
    try:
        task = _get_conduit().tasks.complete_task(task_id, result, score)
    except ValueError as exc:
        _fail(str(exc))
    if task is None:
        _fail(f"Cannot complete {task_id}: not found or not dispatched")
    _print_task(task)


@main.command()
@click.argument("task_id")
@click.option("--reason", default=None)
def fail(task_id: str, reason: str | None) -> None:
    """Fail a dispatched task and refund its escrow."""
    task = _get_conduit().tasks.fail_task(task_id, reason)
    if task is None:
        _fail(f"Cannot fail {task_id}: not found or not dispatched")
    _print_task(task)


@main.command()
@click.option("--max-age", type=float, required=True, help="Seconds since dispatch")
def expire(max_age: float) -> None:
    """Fail every task dispatched longer ago than --max-age."""
    expired = _get_conduit().tasks.expire_stale_tasks(max_age)
    if not expired:
        console.print("[dim]No stale tasks.[/dim]")
        return
    for task in expired:
        console.print(f"[yellow]Expired {task.id}[/yellow] ({task.title})")


@main.command()
@click.argument("escrow_id")
def refund(escrow_id: str) -> None:
    """Refund a locked escrow to its payer."""
    escrow = _get_conduit().ledger.refund_escrow(escrow_id)
    if escrow is None:
        _fail(f"Cannot refund {escrow_id}: not found or not locked")
    console.print(f"[green]Refunded {escrow.amount} to {escrow.payer_agent_id}[/green]")
    console.print(f"  Settlement ref: {escrow.settle_tx_ref}")


@main.command()
@click.option("--agent", "agent_id", default=None)
@click.option("--status", type=click.Choice(["pending", "confirmed", "failed"]), default=None)
@click.option("--limit", default=20, help="Number of entries to show")
def txlog(agent_id: str | None, status: str | None, limit: int) -> None:
    """Show the chain transaction audit log."""
    entries = _get_conduit().gateway.txlog.list(agent_id=agent_id, status=status, limit=limit)

    if not entries:
        console.print("[dim]No gateway calls recorded.[/dim]")
        return

    table = Table(title="Transaction Log")
    table.add_column("Agent", style="cyan")
    table.add_column("Method")
    table.add_column("Backend")
    table.add_column("Status")
    table.add_column("Ref", max_width=30)
    table.add_column("When")

    colors = {"confirmed": "green", "pending": "yellow", "failed": "red"}
    for entry in entries:
        color = colors.get(entry.status, "dim")
        table.add_row(
            entry.agent_id,
            entry.method,
            entry.backend or "-",
            f"[{color}]{entry.status}[/{color}]",
            entry.tx_ref or entry.error or "-",
            entry.created_at[:19],
        )

    console.print(table)


@main.command()
def vitals() -> None:
    """Show network-wide value locked, trust and work in flight."""
    result = _get_conduit().vitals()
    console.print(f"[bold]Total value locked:[/bold] {result.total_value_locked}")
    console.print(f"[bold]System attestation:[/bold] {result.system_attestation:.2f}")
    console.print(f"[bold]Active processes:[/bold] {result.active_processes}")


@main.command()
def modes() -> None:
    """Show which backend serves each capability, and whether it is live."""
    table = Table(title="Chain Gateway")
    table.add_column("Capability", style="cyan")
    table.add_column("Backend")
    table.add_column("Mode")

    for capability, info in _get_conduit().gateway.modes().items():
        color = "green" if info["mode"] == "live" else "yellow"
        table.add_row(capability, info["backend"], f"[{color}]{info['mode']}[/{color}]")

    console.print(table)


@main.command()
@click.option("--host", default="127.0.0.1")
@click.option("--port", default=8420, type=int)
def serve(host: str, port: int) -> None:
    """Run the REST API."""
    import uvicorn

    from conduit_core.api.server import app

    uvicorn.run(app, host=host, port=port)


def _print_task(task: Task) -> None:
    """Print a task summary."""
    status_color = {
        "completed": "green",
        "dispatched": "cyan",
        "pending": "yellow",
        "failed": "red",
    }.get(task.status, "dim")

    console.print(f"[bold]{task.id}[/bold] {task.title}")
    console.print(f"  Status: [{status_color}]{task.status}[/{status_color}]")
    console.print(f"  Requester: {task.requester_agent_id}")
    if task.assigned_agent_id:
        console.print(f"  Assigned: {task.assigned_agent_id}")
    if task.escrow_amount:
        console.print(f"  Escrow: {task.escrow_amount}")
    if task.result:
        console.print(f"  Result: {task.result}")
    if task.chain_tx_ref:
        console.print(f"  Settlement ref: {task.chain_tx_ref}")
