"""
Stub adapters.

Used whenever a backend lacks credentials or a valid contract address.
Each call waits ``stub_delay`` seconds, fabricates a reference in the
backend's own format and records it as confirmed. Stubs never fail.
"""

from __future__ import annotations

import secrets
from itertools import count
from typing import Any

from conduit_core.chains.base import (
    AttestationReceipt,
    AttestationService,
    ContractEvent,
    EscrowService,
    IdentityProof,
    IdentityService,
    IdentityTokenService,
    MintReceipt,
    OnChainAgent,
    OnChainJob,
    PaymentGateway,
    PaymentReceipt,
    RegistryService,
    ScheduleService,
    fake_hedera_id,
)

_token_ids = count(1)


class StubEscrow(EscrowService):
    def lock_funds(self, task_id: str, payer_agent_id: str, amount: str) -> str:
        return self._fabricate(
            payer_agent_id, "lock_funds", {"task_id": task_id, "amount": amount}
        )

    def release_funds(self, escrow_id: str, payee_agent_id: str, amount: str) -> str:
        return self._fabricate(
            payee_agent_id, "release_funds", {"escrow_id": escrow_id, "amount": amount}
        )

    def refund_funds(self, escrow_id: str, payer_agent_id: str, amount: str) -> str:
        return self._fabricate(
            payer_agent_id, "refund_funds", {"escrow_id": escrow_id, "amount": amount}
        )


class StubAttestation(AttestationService):
    def record_attestation(
        self,
        agent_id: str,
        attester_id: str,
        score: float,
        metadata: dict[str, Any] | None = None,
    ) -> AttestationReceipt:
        tx_ref = self._fabricate(
            attester_id,
            "record_attestation",
            {"agent_id": agent_id, "score": score, "metadata": metadata},
        )
        # Hedera attestations land on a consensus topic
        topic_id = fake_hedera_id() if self.backend == "hedera" else None
        return AttestationReceipt(tx_ref=tx_ref, topic_id=topic_id)


class StubPayment(PaymentGateway):
    def process_payment(
        self, from_id: str, to: str, amount: str, memo: str | None = None
    ) -> PaymentReceipt:
        tx_ref = self._fabricate(
            from_id, "process_payment", {"to": to, "amount": amount, "memo": memo}
        )
        return PaymentReceipt(tx_ref=tx_ref, payment_id=f"x402-{secrets.token_hex(6)}")


class StubIdentity(IdentityService):
    def verify_identity(self, agent_id: str) -> IdentityProof:
        did = f"did:{self.backend}:stub:{agent_id}"
        self._fabricate(agent_id, "verify_identity", None, tx_ref=did)
        return IdentityProof(verified=True, did=did)


class StubIdentityToken(IdentityTokenService):
    def mint_identity_token(self, agent_id: str, metadata: dict[str, Any]) -> MintReceipt:
        token_id = f"inft-{next(_token_ids)}"
        tx_ref = self._fabricate(
            agent_id, "mint_identity_token", {"token_id": token_id, **metadata}
        )
        return MintReceipt(token_id=token_id, tx_ref=tx_ref)


class StubSchedule(ScheduleService):
    def schedule_recurring(
        self, task_id: str, interval_seconds: int, payload: dict[str, Any]
    ) -> str:
        schedule_id = f"sched-{secrets.token_hex(4)[:7]}"
        self._fabricate(
            task_id,
            "schedule_recurring",
            {"interval_seconds": interval_seconds, **payload},
            tx_ref=schedule_id,
        )
        return schedule_id


class StubRegistry(RegistryService):
    """Writes fabricate references; reads report an empty registry."""

    def register_agent(
        self,
        agent_id: str,
        encrypted_key: str,
        name: str,
        chain: str,
        price_per_minute: str = "0",
        abilities_mask: str = "0",
    ) -> str:
        return self._fabricate(
            agent_id,
            "register_agent",
            {"name": name, "chain": chain, "price_per_minute": price_per_minute},
        )

    def deregister(self, agent_id: str, encrypted_key: str) -> str:
        return self._fabricate(agent_id, "deregister", None)

    def fund_wallet(self, agent_id: str, address: str, amount: str = "0.01") -> str:
        return self._fabricate(agent_id, "fund_wallet", {"address": address, "amount": amount})

    def get_onchain_agent(self, address: str) -> OnChainAgent | None:
        return OnChainAgent(
            address=address,
            exists=False,
            name="",
            chain=0,
            price_per_minute="0",
            reputation=0,
            abilities_mask="0",
        )

    def get_onchain_agents(self) -> list[OnChainAgent]:
        return []

    def get_agent_count(self) -> int:
        return 0

    def get_job(self, job_id: int) -> OnChainJob | None:
        return None

    def get_jobs_for_agent(self, address: str) -> list[OnChainJob]:
        return []

    def get_open_jobs(self, address: str) -> list[OnChainJob]:
        return []

    def get_job_count(self) -> int:
        return 0

    def get_balance(self, address: str) -> str:
        return "0"

    def query_events(
        self,
        event_type: str | None = None,
        agent_address: str | None = None,
        job_id: int | None = None,
        from_block: int = 0,
        to_block: int | str = "latest",
        limit: int = 100,
    ) -> list[ContractEvent]:
        return []


STUBS: dict[str, type] = {
    "escrow": StubEscrow,
    "attestation": StubAttestation,
    "payment": StubPayment,
    "identity": StubIdentity,
    "identity_token": StubIdentityToken,
    "scheduling": StubSchedule,
    "registry": StubRegistry,
}
