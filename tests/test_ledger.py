"""Tests for the escrow ledger."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from conduit_core.chains.base import is_zero_ref
from conduit_core.engine import Conduit
from conduit_core.models import Agent, EscrowStatus


def _total(conduit: Conduit) -> Decimal:
    return conduit.vitals().total_value_locked


def _balance(conduit: Conduit, agent_id: str) -> Decimal:
    agent = conduit.registry.get_agent(agent_id)
    assert agent is not None
    return agent.settlement_balance


class TestEscrowLedger:
    def test_create_escrow_debits_payer(self, conduit: Conduit, requester: Agent) -> None:
        task = conduit.tasks.create_task("Review PR", ["code-review"], requester.id)
        assert task is not None

        escrow = conduit.ledger.create_escrow(task.id, requester.id, "25")

        assert escrow is not None
        assert escrow.status == EscrowStatus.LOCKED
        assert escrow.amount == Decimal("25")
        assert escrow.chain == "hedera"
        assert not is_zero_ref(escrow.tx_ref)
        assert _balance(conduit, requester.id) == Decimal("75")

    def test_create_escrow_rejects_non_positive_amount(
        self, conduit: Conduit, requester: Agent
    ) -> None:
        task = conduit.tasks.create_task("Review PR", [], requester.id)
        assert task is not None

        with pytest.raises(ValueError):
            conduit.ledger.create_escrow(task.id, requester.id, "0")
        with pytest.raises(ValueError):
            conduit.ledger.create_escrow(task.id, requester.id, "-5")
        assert _balance(conduit, requester.id) == Decimal("100")

    def test_create_escrow_unknown_task_or_payer(self, conduit: Conduit, requester: Agent) -> None:
        assert conduit.ledger.create_escrow("task-missing", requester.id, "5") is None

        task = conduit.tasks.create_task("Review PR", [], requester.id)
        assert task is not None
        assert conduit.ledger.create_escrow(task.id, "agent-missing", "5") is None
        assert _balance(conduit, requester.id) == Decimal("100")

    def test_release_credits_payee_once(
        self, conduit: Conduit, requester: Agent, executor: Agent
    ) -> None:
        task = conduit.tasks.create_task("Review PR", [], requester.id)
        assert task is not None
        escrow = conduit.ledger.create_escrow(task.id, requester.id, "10", executor.id)
        assert escrow is not None

        released = conduit.ledger.release_escrow(escrow.id)
        assert released is not None
        assert released.status == EscrowStatus.RELEASED
        assert released.settled_at is not None
        assert not is_zero_ref(released.settle_tx_ref)
        assert _balance(conduit, executor.id) == Decimal("10")

        assert conduit.ledger.release_escrow(escrow.id) is None
        assert conduit.ledger.refund_escrow(escrow.id) is None
        assert _balance(conduit, executor.id) == Decimal("10")
        assert _balance(conduit, requester.id) == Decimal("90")

    def test_release_without_payee_is_refused(self, conduit: Conduit, requester: Agent) -> None:
        task = conduit.tasks.create_task("Review PR", [], requester.id)
        assert task is not None
        escrow = conduit.ledger.create_escrow(task.id, requester.id, "10")
        assert escrow is not None

        assert conduit.ledger.release_escrow(escrow.id) is None
        stored = conduit.ledger.get_escrow(escrow.id)
        assert stored is not None
        assert stored.status == EscrowStatus.LOCKED

    def test_refund_returns_funds_to_payer(self, conduit: Conduit, requester: Agent) -> None:
        task = conduit.tasks.create_task("Review PR", [], requester.id)
        assert task is not None
        escrow = conduit.ledger.create_escrow(task.id, requester.id, "40")
        assert escrow is not None

        refunded = conduit.ledger.refund_escrow(escrow.id)

        assert refunded is not None
        assert refunded.status == EscrowStatus.REFUNDED
        assert _balance(conduit, requester.id) == Decimal("100")

    def test_value_is_conserved(self, conduit: Conduit, requester: Agent, executor: Agent) -> None:
        before = _total(conduit)

        first = conduit.tasks.create_task("One", [], requester.id, escrow_amount="30")
        second = conduit.tasks.create_task("Two", [], requester.id, escrow_amount="12.5")
        assert first is not None and second is not None
        assert _total(conduit) == before

        escrow = conduit.ledger.get_escrow_by_task(first.id)
        assert escrow is not None
        conduit.tasks.dispatch_task(first.id, executor.id)
        conduit.tasks.complete_task(first.id)
        assert _total(conduit) == before

        other = conduit.ledger.get_escrow_by_task(second.id)
        assert other is not None
        conduit.ledger.refund_escrow(other.id)
        assert _total(conduit) == before

    def test_balance_and_pending(self, conduit: Conduit, requester: Agent) -> None:
        conduit.tasks.create_task("One", [], requester.id, escrow_amount="30")
        conduit.tasks.create_task("Two", [], requester.id, escrow_amount="5")

        balance = conduit.ledger.get_balance(requester.id)

        assert balance is not None
        assert balance.balance == Decimal("65")
        assert balance.pending_escrow == Decimal("35")
        assert conduit.ledger.get_balance("agent-missing") is None

    def test_agent_escrows_filter_by_status(self, conduit: Conduit, requester: Agent) -> None:
        conduit.tasks.create_task("One", [], requester.id, escrow_amount="3")
        task = conduit.tasks.create_task("Two", [], requester.id, escrow_amount="4")
        assert task is not None
        escrow = conduit.ledger.get_escrow_by_task(task.id)
        assert escrow is not None
        conduit.ledger.refund_escrow(escrow.id)

        assert len(conduit.ledger.get_agent_escrows(requester.id)) == 2
        locked = conduit.ledger.get_agent_escrows(requester.id, "locked")
        assert [e.amount for e in locked] == [Decimal("3")]

    def test_gateway_calls_are_logged(self, conduit: Conduit, requester: Agent) -> None:
        task = conduit.tasks.create_task("One", [], requester.id, escrow_amount="3")
        assert task is not None

        entries = conduit.gateway.txlog.list(method="lock_funds")

        assert len(entries) == 1
        assert entries[0].status == "confirmed"
        assert entries[0].agent_id == requester.id
        assert entries[0].params == {"task_id": task.id, "amount": "3"}

    def test_unknown_payee_is_not_found(self, conduit: Conduit, requester: Agent) -> None:
        task = conduit.tasks.create_task("Review PR", [], requester.id)
        assert task is not None

        assert conduit.ledger.create_escrow(task.id, requester.id, "5", "agent-ghost") is None
        assert conduit.ledger.get_escrow_by_task(task.id) is None
        assert _balance(conduit, requester.id) == Decimal("100")

    def test_one_escrow_per_task(self, conduit: Conduit, requester: Agent, executor: Agent) -> None:
        task = conduit.tasks.create_task("Review PR", [], requester.id, escrow_amount="10")
        assert task is not None

        assert conduit.ledger.create_escrow(task.id, requester.id, "20") is None

        conduit.tasks.dispatch_task(task.id, executor.id)
        conduit.tasks.fail_task(task.id)
        statuses = [e.status for e in conduit.ledger.get_agent_escrows(requester.id)]
        assert statuses == [EscrowStatus.REFUNDED]
        assert _balance(conduit, requester.id) == Decimal("100")

    def test_escrow_requires_pending_task_and_requester(
        self, conduit: Conduit, requester: Agent, executor: Agent
    ) -> None:
        task = conduit.tasks.create_task("Review PR", [], requester.id)
        assert task is not None

        assert conduit.ledger.create_escrow(task.id, executor.id, "5") is None

        conduit.tasks.dispatch_task(task.id, executor.id)
        conduit.tasks.fail_task(task.id)
        assert conduit.ledger.create_escrow(task.id, requester.id, "5") is None
        assert _balance(conduit, requester.id) == Decimal("100")
        assert _balance(conduit, executor.id) == Decimal("0")

    def test_direct_escrow_sets_task_amount(self, conduit: Conduit, requester: Agent) -> None:
        task = conduit.tasks.create_task("Review PR", [], requester.id)
        assert task is not None

        conduit.ledger.create_escrow(task.id, requester.id, "7.5")

        stored = conduit.tasks.get_task(task.id)
        assert stored is not None
        assert stored.escrow_amount == Decimal("7.5")

    @pytest.mark.parametrize("amount", ["NaN", "sNaN", "Infinity", "-Infinity", "abc"])
    def test_non_finite_amount_rejected(
        self, conduit: Conduit, requester: Agent, amount: str
    ) -> None:
        task = conduit.tasks.create_task("Review PR", [], requester.id)
        assert task is not None

        with pytest.raises(ValueError):
            conduit.ledger.create_escrow(task.id, requester.id, amount)
        assert _balance(conduit, requester.id) == Decimal("100")


class TestConcurrentBalances:
    def test_concurrent_credits_all_apply(self, conduit: Conduit, executor: Agent) -> None:
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(
                pool.map(lambda _: conduit.registry.credit_balance(executor.id, "1.5"), range(40))
            )

        assert all(agent is not None for agent in results)
        assert _balance(conduit, executor.id) == Decimal("60")

    def test_concurrent_escrows_and_refunds_conserve_value(
        self, conduit: Conduit, requester: Agent
    ) -> None:
        before = _total(conduit)
        tasks = [conduit.tasks.create_task(f"Job {n}", [], requester.id) for n in range(12)]
        assert all(task is not None for task in tasks)

        def lock_and_refund(task_id: str) -> None:
            escrow = conduit.ledger.create_escrow(task_id, requester.id, "2")
            assert escrow is not None
            assert conduit.ledger.refund_escrow(escrow.id) is not None

        with ThreadPoolExecutor(max_workers=6) as pool:
            list(pool.map(lock_and_refund, [task.id for task in tasks if task is not None]))

        assert _balance(conduit, requester.id) == Decimal("100")
        assert _total(conduit) == before
        assert conduit.ledger.get_agent_escrows(requester.id, "locked") == []
