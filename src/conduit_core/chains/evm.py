"""
EVM transaction plumbing and the escrow/attestation contract adapters.

Base, Hedera (through its JSON-RPC relay) and 0G all speak the Ethereum
JSON-RPC API, so one web3 client serves all three.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Sequence
from decimal import Decimal
from typing import Any

from eth_account import Account
from web3 import Web3
from web3.contract.contract import Contract, ContractFunction

from conduit_core.chains.base import (
    AttestationReceipt,
    AttestationService,
    ChainCallError,
    ChainMode,
    EscrowService,
)
from conduit_core.chains.txlog import TransactionLog

USDC_DECIMALS = 6


def abi_param(name: str, type_: str, components: Sequence[dict] | None = None, indexed: bool | None = None) -> dict:
    param: dict[str, Any] = {"name": name, "type": type_}
    if components is not None:
        param["components"] = list(components)
    if indexed is not None:
        param["indexed"] = indexed
    return param


def abi_function(
    name: str,
    inputs: Sequence[dict] = (),
    outputs: Sequence[dict] = (),
    mutability: str = "nonpayable",
) -> dict:
    return {
        "type": "function",
        "name": name,
        "stateMutability": mutability,
        "inputs": list(inputs),
        "outputs": list(outputs),
    }


def abi_event(name: str, inputs: Sequence[dict]) -> dict:
    return {"type": "event", "name": name, "anonymous": False, "inputs": list(inputs)}


def _args(*pairs: tuple[str, str]) -> list[dict]:
    return [abi_param(name, type_) for name, type_ in pairs]


ESCROW_ABI = [
    abi_function("lock", _args(("taskKey", "bytes32"), ("payer", "bytes32"), ("amount", "uint256"))),
    abi_function("release", _args(("escrowKey", "bytes32"), ("payee", "bytes32"), ("amount", "uint256"))),
    abi_function("refund", _args(("escrowKey", "bytes32"), ("payer", "bytes32"), ("amount", "uint256"))),
]

ATTESTATION_ABI = [
    abi_function(
        "attest",
        _args(("agent", "bytes32"), ("attester", "bytes32"), ("scoreBps", "uint16"), ("metadata", "string")),
    ),
]


def to_bytes32(text: str) -> bytes:
    """UTF-8 text truncated to 31 bytes and right-padded, like encodeBytes32String."""
    return text.encode("utf-8")[:31].ljust(32, b"\0")


def from_bytes32(raw: bytes) -> str:
    try:
        return raw.rstrip(b"\0").decode("utf-8")
    except UnicodeDecodeError:
        return Web3.to_hex(raw)


def to_base_units(amount: str | Decimal, decimals: int = USDC_DECIMALS) -> int:
    value = Decimal(str(amount)).scaleb(decimals)
    if value != value.to_integral_value():
        raise ChainCallError(f"amount {amount} has more than {decimals} decimals")
    return int(value)


class EvmClient:
    """Signs, sends and waits for transactions from one account."""

    def __init__(self, rpc_url: str, private_key: str, timeout: float = 120.0) -> None:
        self.rpc_url = rpc_url
        self.w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": 30}))
        self.account = Account.from_key(private_key)
        self.timeout = timeout

    @property
    def address(self) -> str:
        return self.account.address

    def with_key(self, private_key: str) -> EvmClient:
        """Client on the same RPC endpoint signing as another account."""
        return EvmClient(self.rpc_url, private_key, self.timeout)

    def contract(self, address: str, abi: list[dict]) -> Contract:
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    def _base_tx(self) -> dict[str, Any]:
        return {
            "from": self.account.address,
            "nonce": self.w3.eth.get_transaction_count(self.account.address, "pending"),
            "chainId": self.w3.eth.chain_id,
        }

    def _send(self, tx: dict[str, Any], on_sent: Callable[[str], None]) -> tuple[str, Any]:
        signed = self.account.sign_transaction(tx)
        tx_hash = Web3.to_hex(self.w3.eth.send_raw_transaction(signed.raw_transaction))
        on_sent(tx_hash)
        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.timeout)
        if receipt["status"] != 1:
            raise ChainCallError(f"transaction {tx_hash} reverted")
        return Web3.to_hex(receipt["transactionHash"]), receipt

    def transact(self, func: ContractFunction, on_sent: Callable[[str], None]) -> tuple[str, Any]:
        """Send a contract call and block until it is mined. Returns (tx hash, receipt)."""
        tx = func.build_transaction(self._base_tx())
        return self._send(tx, on_sent)

    def transfer(self, to: str, amount_ether: str, on_sent: Callable[[str], None]) -> tuple[str, Any]:
        tx = {
            **self._base_tx(),
            "to": Web3.to_checksum_address(to),
            "value": Web3.to_wei(Decimal(amount_ether), "ether"),
            "gas": 21_000,
            "gasPrice": self.w3.eth.gas_price,
        }
        return self._send(tx, on_sent)

    def balance_of(self, address: str) -> str:
        wei = self.w3.eth.get_balance(Web3.to_checksum_address(address))
        return str(Web3.from_wei(wei, "ether"))


class EvmEscrow(EscrowService):
    """Mirrors ledger escrow movements onto an escrow contract."""

    def __init__(self, backend: str, txlog: TransactionLog, client: EvmClient, address: str) -> None:
        super().__init__(backend, txlog, ChainMode.LIVE)
        self.client = client
        self.contract = client.contract(address, ESCROW_ABI)

    def _call(self, agent_id: str, method: str, fn_name: str, key: str, party: str, amount: str) -> str:
        params = {"key": key, "party": party, "amount": amount}

        def call(on_sent: Callable[[str], None]) -> tuple[str, None]:
            func = getattr(self.contract.functions, fn_name)(
                to_bytes32(key), to_bytes32(party), to_base_units(amount)
            )
            tx_ref, _ = self.client.transact(func, on_sent)
            return tx_ref, None

        tx_ref, _ = self._submit(agent_id, method, params, call, None)
        return tx_ref

    def lock_funds(self, task_id: str, payer_agent_id: str, amount: str) -> str:
        return self._call(payer_agent_id, "lock_funds", "lock", task_id, payer_agent_id, amount)

    def release_funds(self, escrow_id: str, payee_agent_id: str, amount: str) -> str:
        return self._call(payee_agent_id, "release_funds", "release", escrow_id, payee_agent_id, amount)

    def refund_funds(self, escrow_id: str, payer_agent_id: str, amount: str) -> str:
        return self._call(payer_agent_id, "refund_funds", "refund", escrow_id, payer_agent_id, amount)


class EvmAttestation(AttestationService):
    """Writes scores (in basis points) to an attestation contract."""

    def __init__(self, backend: str, txlog: TransactionLog, client: EvmClient, address: str) -> None:
        super().__init__(backend, txlog, ChainMode.LIVE)
        self.client = client
        self.contract = client.contract(address, ATTESTATION_ABI)

    def record_attestation(
        self,
        agent_id: str,
        attester_id: str,
        score: float,
        metadata: dict[str, Any] | None = None,
    ) -> AttestationReceipt:
        params = {"agent_id": agent_id, "score": score, "metadata": metadata}

        def call(on_sent: Callable[[str], None]) -> tuple[str, None]:
            func = self.contract.functions.attest(
                to_bytes32(agent_id),
                to_bytes32(attester_id),
                round(score * 10_000),
                json.dumps(metadata or {}, default=str),
            )
            tx_ref, _ = self.client.transact(func, on_sent)
            return tx_ref, None

        tx_ref, _ = self._submit(attester_id, "record_attestation", params, call, None)
        return AttestationReceipt(tx_ref=tx_ref)
