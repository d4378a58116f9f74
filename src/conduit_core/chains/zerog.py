"""0G adapters: identity-token minting and the on-chain agent registry."""

from __future__ import annotations

from collections.abc import Callable
from decimal import Decimal
from typing import Any

from web3 import Web3
from web3.logs import DISCARD

from conduit_core.chains.base import (
    ChainCallError,
    ChainMode,
    ContractEvent,
    IdentityTokenService,
    MintReceipt,
    OnChainAgent,
    OnChainJob,
    RegistryService,
)
from conduit_core.chains.evm import (
    EvmClient,
    abi_event,
    abi_function,
    abi_param,
    from_bytes32,
    to_bytes32,
)
from conduit_core.chains.txlog import TransactionLog
from conduit_core.logger import get_logger

log = get_logger("chains.zerog")

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

AGENT_NFT_ABI = [
    abi_function("mint", [abi_param("to", "address")], [abi_param("tokenId", "uint256")]),
    abi_function("totalSupply", outputs=[abi_param("", "uint256")], mutability="view"),
    abi_event(
        "AgentMinted",
        [abi_param("agentAddress", "address", indexed=True), abi_param("tokenId", "uint256", indexed=True)],
    ),
]

_AGENT_TUPLE = [
    abi_param("agent", "address"),
    abi_param("name", "bytes32"),
    abi_param("price", "uint256"),
    abi_param("reputation", "int256"),
    abi_param("abilities", "uint256"),
    abi_param("chain", "uint8"),
    abi_param("exists", "bool"),
]

_JOB_TUPLE = [
    abi_param("id", "uint256"),
    abi_param("agent", "address"),
    abi_param("renter", "address"),
    abi_param("mins", "uint256"),
    abi_param("amount", "uint256"),
    abi_param("attestation", "bytes32"),
    abi_param("expiry", "uint256"),
    abi_param("rating", "int8"),
    abi_param("accepted", "bool"),
    abi_param("rejected", "bool"),
    abi_param("completed", "bool"),
    abi_param("rated", "bool"),
    abi_param("prompt", "string"),
]


def _indexed(name: str, type_: str) -> dict:
    return abi_param(name, type_, indexed=True)


def _plain(name: str, type_: str) -> dict:
    return abi_param(name, type_, indexed=False)


REGISTRY_ABI = [
    abi_function(
        "register",
        [
            abi_param("name", "bytes32"),
            abi_param("chain", "uint8"),
            abi_param("price", "uint256"),
            abi_param("abilities", "uint256"),
        ],
    ),
    abi_function("deregister"),
    abi_function(
        "getAllAgents",
        outputs=[abi_param("", "tuple[]", _AGENT_TUPLE)],
        mutability="view",
    ),
    abi_function("getAgentCount", outputs=[abi_param("", "uint256")], mutability="view"),
    abi_function(
        "getAgent",
        [abi_param("agent", "address")],
        [abi_param("", "tuple", _AGENT_TUPLE)],
        mutability="view",
    ),
    abi_function(
        "getJob",
        [abi_param("id", "uint256")],
        [abi_param("", "tuple", _JOB_TUPLE)],
        mutability="view",
    ),
    abi_function(
        "getAllJobs",
        [abi_param("agent", "address")],
        [abi_param("", "tuple[]", _JOB_TUPLE)],
        mutability="view",
    ),
    abi_function(
        "getOpenJobs",
        [abi_param("agent", "address")],
        [abi_param("", "tuple[]", _JOB_TUPLE)],
        mutability="view",
    ),
    abi_event(
        "AgentRegistered",
        [
            _indexed("agent", "address"),
            _plain("name", "bytes32"),
            _plain("chain", "uint8"),
            _plain("price", "uint256"),
            _plain("abilities", "uint256"),
        ],
    ),
    abi_event(
        "AgentUpdated",
        [
            _indexed("agent", "address"),
            _plain("name", "bytes32"),
            _plain("chain", "uint8"),
            _plain("price", "uint256"),
            _plain("abilities", "uint256"),
        ],
    ),
    abi_event("AgentDeregistered", [_indexed("agent", "address")]),
    abi_event(
        "JobCreated",
        [
            _indexed("id", "uint256"),
            _indexed("agent", "address"),
            _indexed("renter", "address"),
            _plain("mins", "uint256"),
            _plain("amount", "uint256"),
            _plain("expiry", "uint256"),
        ],
    ),
    abi_event("JobAccepted", [_indexed("id", "uint256"), _plain("expiry", "uint256")]),
    abi_event("JobRejected", [_indexed("id", "uint256")]),
    abi_event("JobCompleted", [_indexed("id", "uint256"), _plain("attestation", "bytes32")]),
    abi_event("JobRefunded", [_indexed("id", "uint256")]),
    abi_event("JobRated", [_indexed("id", "uint256"), _plain("rating", "int8")]),
    abi_event("ReputationUpdated", [_indexed("agent", "address"), _plain("reputation", "int256")]),
]

REGISTRY_EVENTS = tuple(entry["name"] for entry in REGISTRY_ABI if entry["type"] == "event")

# Chain enum in the registry contract
CHAIN_ENUM = {"base": 0, "hedera": 1, "kite": 2, "kiteai": 2, "zerog": 3, "0g": 3}

_JOB_EVENTS = {"JobCreated", "JobAccepted", "JobRejected", "JobCompleted", "JobRefunded", "JobRated"}
_AGENT_EVENTS = {"AgentRegistered", "AgentUpdated", "AgentDeregistered", "ReputationUpdated"}


class AgentNFTMinter(IdentityTokenService):
    """Mints the agent identity NFT to the operator wallet."""

    def __init__(self, backend: str, txlog: TransactionLog, client: EvmClient, address: str) -> None:
        super().__init__(backend, txlog, ChainMode.LIVE)
        self.client = client
        self.contract = client.contract(address, AGENT_NFT_ABI)

    def mint_identity_token(self, agent_id: str, metadata: dict[str, Any]) -> MintReceipt:
        def call(on_sent: Callable[[str], None]) -> tuple[str, str]:
            func = self.contract.functions.mint(self.client.address)
            tx_ref, receipt = self.client.transact(func, on_sent)
            minted = self.contract.events.AgentMinted().process_receipt(receipt, errors=DISCARD)
            token = minted[0]["args"]["tokenId"] if minted else receipt["blockNumber"]
            return tx_ref, f"inft-{token}"

        tx_ref, token_id = self._submit(agent_id, "mint_identity_token", dict(metadata), call, "")
        return MintReceipt(token_id=token_id, tx_ref=tx_ref)


def _parse_agent(raw: Any) -> OnChainAgent:
    return OnChainAgent(
        address=raw[0],
        exists=bool(raw[6]),
        name=from_bytes32(raw[1]),
        chain=int(raw[5]),
        price_per_minute=str(Web3.from_wei(raw[2], "ether")),
        reputation=int(raw[3]),
        abilities_mask=str(raw[4]),
    )


def _parse_job(raw: Any) -> OnChainJob:
    return OnChainJob(
        job_id=int(raw[0]),
        agent=raw[1],
        renter=raw[2],
        mins=int(raw[3]),
        amount=str(Web3.from_wei(raw[4], "ether")),
        attestation=from_bytes32(raw[5]),
        expiry=int(raw[6]),
        rating=int(raw[7]),
        accepted=bool(raw[8]),
        rejected=bool(raw[9]),
        completed=bool(raw[10]),
        rated=bool(raw[11]),
        prompt=raw[12],
    )


class ConduitRegistry(RegistryService):
    """
    Agent registry contract on 0G.

    Writes are signed with the agent's own key, recovered through the
    configured ``key_decryptor``; gas funding is paid from the operator
    wallet. Read mirrors log failures and fall back to empty results.
    """

    def __init__(
        self,
        backend: str,
        txlog: TransactionLog,
        client: EvmClient,
        address: str,
        key_decryptor: Callable[[str], str] | None = None,
    ) -> None:
        super().__init__(backend, txlog, ChainMode.LIVE)
        self.client = client
        self.address = address
        self.contract = client.contract(address, REGISTRY_ABI)
        self.key_decryptor = key_decryptor

    def _signer(self, encrypted_key: str) -> EvmClient:
        if self.key_decryptor is None:
            raise ChainCallError("no key decryptor configured for agent wallets")
        return self.client.with_key(self.key_decryptor(encrypted_key))

    def register_agent(
        self,
        agent_id: str,
        encrypted_key: str,
        name: str,
        chain: str,
        price_per_minute: str = "0",
        abilities_mask: str = "0",
    ) -> str:
        params = {
            "name": name,
            "chain": chain,
            "price_per_minute": price_per_minute,
            "abilities_mask": abilities_mask,
        }

        def call(on_sent: Callable[[str], None]) -> tuple[str, None]:
            signer = self._signer(encrypted_key)
            contract = signer.contract(self.address, REGISTRY_ABI)
            func = contract.functions.register(
                to_bytes32(name),
                CHAIN_ENUM.get(chain, 0),
                Web3.to_wei(Decimal(price_per_minute), "ether"),
                int(abilities_mask),
            )
            tx_ref, _ = signer.transact(func, on_sent)
            return tx_ref, None

        tx_ref, _ = self._submit(agent_id, "register_agent", params, call, None)
        return tx_ref

    def deregister(self, agent_id: str, encrypted_key: str) -> str:
        def call(on_sent: Callable[[str], None]) -> tuple[str, None]:
            signer = self._signer(encrypted_key)
            contract = signer.contract(self.address, REGISTRY_ABI)
            tx_ref, _ = signer.transact(contract.functions.deregister(), on_sent)
            return tx_ref, None

        tx_ref, _ = self._submit(agent_id, "deregister", None, call, None)
        return tx_ref

    def fund_wallet(self, agent_id: str, address: str, amount: str = "0.01") -> str:
        def call(on_sent: Callable[[str], None]) -> tuple[str, None]:
            tx_ref, _ = self.client.transfer(address, amount, on_sent)
            return tx_ref, None

        tx_ref, _ = self._submit(
            agent_id, "fund_wallet", {"address": address, "amount": amount}, call, None
        )
        return tx_ref

    def _read(self, what: str, fn: Callable[[], Any], default: Any) -> Any:
        try:
            return fn()
        except Exception as exc:
            log.error(f"{what} failed: {exc}", extra={"backend": self.backend, "method": what})
            return default

    def get_onchain_agent(self, address: str) -> OnChainAgent | None:
        return self._read(
            "getAgent",
            lambda: _parse_agent(
                self.contract.functions.getAgent(Web3.to_checksum_address(address)).call()
            ),
            None,
        )

    def get_onchain_agents(self) -> list[OnChainAgent]:
        return self._read(
            "getAllAgents",
            lambda: [_parse_agent(raw) for raw in self.contract.functions.getAllAgents().call()],
            [],
        )

    def get_agent_count(self) -> int:
        return self._read(
            "getAgentCount", lambda: int(self.contract.functions.getAgentCount().call()), 0
        )

    def get_job(self, job_id: int) -> OnChainJob | None:
        def fetch() -> OnChainJob | None:
            raw = self.contract.functions.getJob(job_id).call()
            if raw[1] == ZERO_ADDRESS:
                return None
            return _parse_job(raw)

        return self._read("getJob", fetch, None)

    def get_jobs_for_agent(self, address: str) -> list[OnChainJob]:
        return self._read(
            "getAllJobs",
            lambda: [
                _parse_job(raw)
                for raw in self.contract.functions.getAllJobs(Web3.to_checksum_address(address)).call()
            ],
            [],
        )

    def get_open_jobs(self, address: str) -> list[OnChainJob]:
        return self._read(
            "getOpenJobs",
            lambda: [
                _parse_job(raw)
                for raw in self.contract.functions.getOpenJobs(Web3.to_checksum_address(address)).call()
            ],
            [],
        )

    def get_job_count(self) -> int:
        # The job counter is private; count creation events instead
        return self._read(
            "getJobCount",
            lambda: len(self.contract.events.JobCreated().get_logs(from_block=0, to_block="latest")),
            0,
        )

    def get_balance(self, address: str) -> str:
        return self._read("getBalance", lambda: self.client.balance_of(address), "0")

    def query_events(
        self,
        event_type: str | None = None,
        agent_address: str | None = None,
        job_id: int | None = None,
        from_block: int = 0,
        to_block: int | str = "latest",
        limit: int = 100,
    ) -> list[ContractEvent]:
        names = [event_type] if event_type in REGISTRY_EVENTS else list(REGISTRY_EVENTS)

        def fetch() -> list[ContractEvent]:
            raw_events: list[Any] = []
            for name in names:
                filters: dict[str, Any] = {}
                if job_id is not None and name in _JOB_EVENTS:
                    filters["id"] = job_id
                if agent_address and (name in _AGENT_EVENTS or name == "JobCreated"):
                    filters["agent"] = Web3.to_checksum_address(agent_address)
                raw_events.extend(
                    self.contract.events[name]().get_logs(
                        argument_filters=filters or None, from_block=from_block, to_block=to_block
                    )
                )
            raw_events.sort(key=lambda ev: (ev["blockNumber"], ev["logIndex"]))
            return [
                ContractEvent(
                    event_name=ev["event"],
                    block_number=ev["blockNumber"],
                    transaction_hash=Web3.to_hex(ev["transactionHash"]),
                    args={
                        key: Web3.to_hex(value) if isinstance(value, bytes) else str(value)
                        for key, value in ev["args"].items()
                    },
                )
                for ev in raw_events[-limit:]
            ]

        return self._read("queryEvents", fetch, [])
