"""
Kite adapters: x402 agent payments and wallet-derived identity.

A payment is an EIP-3009 ``TransferWithAuthorization`` signed by the
agent wallet, wrapped in a base64 ``gokite-aa`` token and settled through
the facilitator's ``/v2/verify`` and ``/v2/settle`` endpoints. Identity is
a ``did:kite:<network>:<address>`` backed by a signed challenge.
"""

from __future__ import annotations

import base64
import json
import os
import time
from collections.abc import Callable
from decimal import Decimal
from urllib.parse import quote

import httpx
from eth_account import Account
from eth_account.messages import encode_defunct, encode_typed_data
from web3 import Web3

from conduit_core.chains.base import (
    ChainCallError,
    ChainMode,
    IdentityProof,
    IdentityService,
    PaymentGateway,
    PaymentReceipt,
)
from conduit_core.chains.txlog import TransactionLog
from conduit_core.logger import get_logger

log = get_logger("chains.kite")

KITE_TOKEN_DECIMALS = 18
AUTHORIZATION_TTL = 300

TRANSFER_WITH_AUTHORIZATION = [
    {"name": "from", "type": "address"},
    {"name": "to", "type": "address"},
    {"name": "value", "type": "uint256"},
    {"name": "validAfter", "type": "uint256"},
    {"name": "validBefore", "type": "uint256"},
    {"name": "nonce", "type": "bytes32"},
]

EIP712_DOMAIN = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]


def build_did(address: str, network: str) -> str:
    return f"did:kite:{network}:{address.lower()}"


def build_payment_token(
    private_key: str,
    to: str,
    value: int,
    asset_address: str,
    network: str,
    chain_id: int,
    from_address: str | None = None,
    valid_for: int = AUTHORIZATION_TTL,
) -> str:
    """Sign a TransferWithAuthorization and encode it as an x402 payment token."""
    account = Account.from_key(private_key)
    sender = from_address or account.address
    nonce = os.urandom(32)
    valid_before = int(time.time()) + valid_for

    typed_data = {
        "types": {
            "EIP712Domain": EIP712_DOMAIN,
            "TransferWithAuthorization": TRANSFER_WITH_AUTHORIZATION,
        },
        "primaryType": "TransferWithAuthorization",
        "domain": {
            "name": "Kite USD",
            "version": "1",
            "chainId": chain_id,
            "verifyingContract": Web3.to_checksum_address(asset_address),
        },
        "message": {
            "from": sender,
            "to": to,
            "value": value,
            "validAfter": 0,
            "validBefore": valid_before,
            "nonce": nonce,
        },
    }
    signed = account.sign_message(encode_typed_data(full_message=typed_data))

    token = {
        "x402Version": 1,
        "scheme": "gokite-aa",
        "network": network,
        "authorization": {
            "from": sender,
            "to": to,
            "value": str(value),
            "validAfter": "0",
            "validBefore": str(valid_before),
            "nonce": Web3.to_hex(nonce),
            "signature": Web3.to_hex(signed.signature),
        },
    }
    return base64.b64encode(json.dumps(token).encode()).decode()


class KitePayment(PaymentGateway):
    """x402 payments settled through a facilitator."""

    def __init__(
        self,
        backend: str,
        txlog: TransactionLog,
        private_key: str,
        pay_to: str,
        asset_address: str,
        network: str = "kite-testnet",
        facilitator_url: str = "https://facilitator.pieverse.io",
        chain_id: int = 2410,
        http: httpx.Client | None = None,
    ) -> None:
        super().__init__(backend, txlog, ChainMode.LIVE)
        self.private_key = private_key
        self.pay_to = pay_to
        self.asset_address = asset_address
        self.network = network
        self.facilitator_url = facilitator_url.rstrip("/")
        self.chain_id = chain_id
        self.http = http or httpx.Client(timeout=30.0)

    def close(self) -> None:
        self.http.close()

    def _verify(self, token: str, resource: str, value: int, to: str) -> bool:
        try:
            response = self.http.post(
                f"{self.facilitator_url}/v2/verify",
                json={
                    "x402Version": 1,
                    "paymentToken": token,
                    "resource": resource,
                    "amount": str(value),
                    "asset": self.asset_address,
                    "payTo": to,
                },
            )
        except httpx.HTTPError as exc:
            # Unreachable facilitator does not block settlement
            log.warning(f"facilitator verify unavailable: {exc}", extra={"backend": self.backend})
            return True
        if response.is_error:
            return False
        return bool(response.json().get("valid", False))

    def _settle(self, token: str, resource: str) -> str:
        response = self.http.post(
            f"{self.facilitator_url}/v2/settle",
            json={"x402Version": 1, "paymentToken": token, "resource": resource},
        )
        if response.is_error:
            raise ChainCallError(
                f"facilitator settle failed ({response.status_code}): {response.text}"
            )
        body = response.json()
        return body.get("txHash") or f"kite-settled-{int(time.time() * 1000)}"

    def process_payment(
        self, from_id: str, to: str, amount: str, memo: str | None = None
    ) -> PaymentReceipt:
        params = {"to": to, "amount": amount, "memo": memo}

        def call(on_sent: Callable[[str], None]) -> tuple[str, str]:
            value = int(Decimal(amount).scaleb(KITE_TOKEN_DECIMALS))
            recipient = Web3.to_checksum_address(to) if Web3.is_address(to) else self.pay_to
            sender = Web3.to_checksum_address(from_id) if Web3.is_address(from_id) else None
            resource = (
                f"kite://agent-payment/{quote(memo, safe='')}"
                if memo
                else f"kite://agent-payment/{int(time.time() * 1000)}"
            )
            token = build_payment_token(
                self.private_key,
                recipient,
                value,
                self.asset_address,
                self.network,
                self.chain_id,
                from_address=sender,
            )
            if not self._verify(token, resource, value, recipient):
                raise ChainCallError("payment verification rejected by facilitator")
            payment_id = f"x402-{token[:12].encode().hex()}"
            on_sent(payment_id)
            return self._settle(token, resource), payment_id

        tx_ref, payment_id = self._submit(from_id, "process_payment", params, call, "")
        return PaymentReceipt(tx_ref=tx_ref, payment_id=payment_id)


class KiteIdentity(IdentityService):
    """Proves control of the agent wallet by signing a per-minute challenge."""

    def __init__(
        self, backend: str, txlog: TransactionLog, private_key: str, network: str = "kite-testnet"
    ) -> None:
        super().__init__(backend, txlog, ChainMode.LIVE)
        self.account = Account.from_key(private_key)
        self.network = network

    def _resolve(self, agent_id: str) -> str | None:
        if Web3.is_address(agent_id):
            return Web3.to_checksum_address(agent_id)
        if agent_id.startswith("did:kite:"):
            segment = agent_id.rsplit(":", 1)[-1]
            if not Web3.is_address(segment):
                return None
            return Web3.to_checksum_address(segment)
        return self.account.address

    def verify_identity(self, agent_id: str) -> IdentityProof:
        resolved = self._resolve(agent_id)
        if resolved is None:
            log.warning(f"invalid DID address segment in {agent_id}", extra={"agent_id": agent_id})
            return IdentityProof(verified=False, did=agent_id)

        def call(on_sent: Callable[[str], None]) -> tuple[str, bool]:
            challenge = Web3.solidity_keccak(
                ["string", "address", "uint256"],
                ["kite-identity-proof:", resolved, int(time.time() // 60)],
            )
            message = encode_defunct(primitive=challenge)
            signed = self.account.sign_message(message)
            recovered = Account.recover_message(message, signature=signed.signature)
            owns_key = recovered.lower() == self.account.address.lower()
            address_match = (
                resolved.lower() == self.account.address.lower()
                or not agent_id.startswith("did:kite:")
            )
            return build_did(resolved, self.network), owns_key and address_match

        did, verified = self._submit(agent_id, "verify_identity", None, call, False)
        if not verified:
            return IdentityProof(verified=False, did=build_did(resolved, self.network))
        return IdentityProof(verified=True, did=did)
