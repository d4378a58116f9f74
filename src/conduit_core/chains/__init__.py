"""Chain Gateway: settlement capabilities, live or stubbed, behind one interface."""

from conduit_core.chains.base import (
    ZERO_TX_REF,
    AttestationReceipt,
    ChainMode,
    IdentityProof,
    MintReceipt,
    PaymentReceipt,
    is_zero_ref,
)
from conduit_core.chains.factory import ChainGateway, build_gateway
from conduit_core.chains.txlog import TransactionLog

__all__ = [
    "ZERO_TX_REF",
    "AttestationReceipt",
    "ChainGateway",
    "ChainMode",
    "IdentityProof",
    "MintReceipt",
    "PaymentReceipt",
    "TransactionLog",
    "build_gateway",
    "is_zero_ref",
]
