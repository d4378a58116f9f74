"""Tests for environment-driven configuration."""

from pathlib import Path

from conduit_core.config import (
    DEFAULT_CAPABILITY_BACKENDS,
    DEFAULT_CONDUIT_ADDRESS,
    BackendSettings,
    ConduitConfig,
)


def test_defaults_from_empty_environment() -> None:
    config = ConduitConfig.from_env({})

    assert config.stub_delay == 0.2
    assert config.require_live == frozenset()
    assert dict(config.capability_backends) == DEFAULT_CAPABILITY_BACKENDS
    assert config.backend_for("escrow") == "hedera"
    assert config.backend_for("payment") == "kite"
    assert config.settings_for("zerog").address_for("registry") == DEFAULT_CONDUIT_ADDRESS
    assert config.settings_for("hedera").private_key == ""


def test_overrides(tmp_path: Path) -> None:
    config = ConduitConfig.from_env(
        {
            "CONDUIT_HOME": str(tmp_path),
            "CONDUIT_STUB_DELAY": "0",
            "CONDUIT_ESCROW_BACKEND": "base",
            "CONDUIT_REQUIRE_LIVE": "escrow, attestation,",
            "BASE_PRIVATE_KEY": "0xabc",
            "BASE_ESCROW_ADDRESS": "0x1234",
            "KITE_NETWORK": "kite-mainnet",
        }
    )

    assert config.data_dir == tmp_path
    assert config.stub_delay == 0.0
    assert config.backend_for("escrow") == "base"
    assert config.backend_for("attestation") == "hedera"
    assert config.require_live == frozenset({"escrow", "attestation"})
    assert config.settings_for("base").private_key == "0xabc"
    assert config.settings_for("base").address_for("escrow") == "0x1234"
    assert config.settings_for("kite").options["network"] == "kite-mainnet"


def test_unknown_backend_gets_empty_settings() -> None:
    config = ConduitConfig()

    settings = config.settings_for("mars")

    assert settings == BackendSettings()
    assert settings.address_for("escrow") == ""
