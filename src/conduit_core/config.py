from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

Capability = Literal[
    "escrow",
    "attestation",
    "payment",
    "identity",
    "identity_token",
    "scheduling",
    "registry",
]

CAPABILITIES: tuple[Capability, ...] = (
    "escrow",
    "attestation",
    "payment",
    "identity",
    "identity_token",
    "scheduling",
    "registry",
)

DEFAULT_CAPABILITY_BACKENDS: dict[str, str] = {
    "escrow": "hedera",
    "attestation": "hedera",
    "scheduling": "hedera",
    "payment": "kite",
    "identity": "kite",
    "identity_token": "zerog",
    "registry": "zerog",
}

DEFAULT_RPC_URLS: dict[str, str] = {
    "base": "https://mainnet.base.org",
    "hedera": "https://testnet.hashio.io/api",
    "zerog": "https://evmrpc-testnet.0g.ai",
    "kite": "https://rpc-testnet.gokite.ai/",
}

DEFAULT_CONDUIT_ADDRESS = "0x403b041783B90d628416A4abe11f280f85049097"
KITE_TESTNET_ASSET = "0x0fF5393387ad2f9f691FD6Fd28e07E3969e27e63"
DEFAULT_FACILITATOR = "https://facilitator.pieverse.io"


@dataclass(frozen=True)
class BackendSettings:
    """Credentials and contract addresses for one settlement backend."""

    rpc_url: str = ""
    private_key: str = ""
    addresses: Mapping[str, str] = field(default_factory=dict)
    options: Mapping[str, str] = field(default_factory=dict)

    def address_for(self, capability: str) -> str:
        return self.addresses.get(capability, "")


@dataclass(frozen=True)
class ConduitConfig:
    """Process-wide configuration, resolved once at startup."""

    data_dir: Path = field(default_factory=lambda: Path.home() / ".conduit")
    stub_delay: float = 0.2
    confirmation_timeout: float = 120.0
    require_live: frozenset[str] = frozenset()
    capability_backends: Mapping[str, str] = field(
        default_factory=lambda: dict(DEFAULT_CAPABILITY_BACKENDS)
    )
    backends: Mapping[str, BackendSettings] = field(default_factory=dict)
    key_decryptor: Callable[[str], str] | None = None

    def backend_for(self, capability: str) -> str:
        return self.capability_backends.get(
            capability, DEFAULT_CAPABILITY_BACKENDS.get(capability, "base")
        )

    def settings_for(self, backend: str) -> BackendSettings:
        return self.backends.get(
            backend, BackendSettings(rpc_url=DEFAULT_RPC_URLS.get(backend, ""))
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ConduitConfig:
        env = os.environ if environ is None else environ

        capability_backends = dict(DEFAULT_CAPABILITY_BACKENDS)
        for capability in CAPABILITIES:
            override = env.get(f"CONDUIT_{capability.upper()}_BACKEND", "").strip()
            if override:
                capability_backends[capability] = override

        require_live = frozenset(
            name.strip() for name in env.get("CONDUIT_REQUIRE_LIVE", "").split(",") if name.strip()
        )

        return cls(
            data_dir=Path(env.get("CONDUIT_HOME", str(Path.home() / ".conduit"))),
            stub_delay=float(env.get("CONDUIT_STUB_DELAY", "0.2")),
            confirmation_timeout=float(env.get("CONDUIT_CONFIRMATION_TIMEOUT", "120")),
            require_live=require_live,
            capability_backends=capability_backends,
            backends=_backends_from_env(env),
        )


def _evm_backend(env: Mapping[str, str], prefix: str, backend: str) -> BackendSettings:
    return BackendSettings(
        rpc_url=env.get(f"{prefix}_RPC_URL", DEFAULT_RPC_URLS[backend]),
        private_key=env.get(f"{prefix}_PRIVATE_KEY", ""),
        addresses={
            "escrow": env.get(f"{prefix}_ESCROW_ADDRESS", ""),
            "attestation": env.get(f"{prefix}_ATTESTATION_ADDRESS", ""),
        },
    )


def _backends_from_env(env: Mapping[str, str]) -> dict[str, BackendSettings]:
    zerog = _evm_backend(env, "ZEROG", "zerog")
    zerog = BackendSettings(
        rpc_url=zerog.rpc_url,
        private_key=zerog.private_key,
        addresses={
            **zerog.addresses,
            "identity_token": env.get("AGENT_NFT_ADDRESS", ""),
            "registry": env.get("CONDUIT_ADDRESS", DEFAULT_CONDUIT_ADDRESS),
        },
    )
    kite = BackendSettings(
        rpc_url=env.get("KITE_RPC_URL", DEFAULT_RPC_URLS["kite"]),
        private_key=env.get("KITE_AGENT_PRIVATE_KEY", ""),
        addresses={
            "payment": env.get("KITE_PAYTO_ADDRESS", ""),
            "asset": env.get("KITE_ASSET_ADDRESS", KITE_TESTNET_ASSET),
        },
        options={
            "network": env.get("KITE_NETWORK", "kite-testnet"),
            "facilitator_url": env.get("KITE_FACILITATOR_URL", DEFAULT_FACILITATOR),
            "chain_id": env.get("KITE_CHAIN_ID", "2410"),
        },
    )
    return {
        "base": _evm_backend(env, "BASE", "base"),
        "hedera": _evm_backend(env, "HEDERA", "hedera"),
        "zerog": zerog,
        "kite": kite,
    }
