import pytest

from didattest.config import Settings
from didattest.errors import ConfigurationError


def test_defaults_from_empty_environment():
    settings = Settings.from_env({})
    assert settings.active_chain_key == "localhost"
    assert settings.chain.chain_id == 31337
    assert settings.document_timeout == 10.0
    assert settings.rpc_max_attempts == 2
    assert settings.settle_seconds == 3.0
    assert settings.min_confirmations == 0
    assert settings.debug is False
    assert settings.custodial_enabled is False


def test_environment_overrides():
    settings = Settings.from_env(
        {
            "ACTIVE_CHAIN": "omachain-testnet",
            "ACTIVE_RPC_URL": "https://rpc.example/",
            "RESOLVER_ADDRESS": "0xD1220A0cf47c7B9Be7A2E6BA89F429762e7b9aDb",
            "DEBUG_MODE": "true",
            "TRANSFER_MIN_CONFIRMATIONS": "3",
            "ATTEST_SETTLE_SEC": "0",
            "RPC_MAX_ATTEMPTS": "garbage",
        }
    )
    assert settings.chain.chain_id == 66238
    assert settings.chain.rpc_url == "https://rpc.example/"
    assert settings.require_resolver() == "0xD1220A0cf47c7B9Be7A2E6BA89F429762e7b9aDb"
    assert settings.debug is True
    assert settings.min_confirmations == 3
    assert settings.settle_seconds == 0.0
    assert settings.rpc_max_attempts == 2


def test_invalid_active_chain():
    with pytest.raises(ConfigurationError) as excinfo:
        Settings.from_env({"ACTIVE_CHAIN": "moonbase"})
    assert excinfo.value.code == "invalid_active_chain"
    assert excinfo.value.status_code == 500


def test_resolver_required():
    with pytest.raises(ConfigurationError):
        Settings.from_env({}).require_resolver()


def test_custodial_needs_secret_and_address():
    assert not Settings.from_env({"THIRDWEB_SECRET_KEY": "tw-secret-123"}).custodial_enabled
    settings = Settings.from_env(
        {"THIRDWEB_SECRET_KEY": "tw-secret-123", "THIRDWEB_SERVER_WALLET_ADDRESS": "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359"}
    )
    assert settings.custodial_enabled
    assert settings.describe()["signer"] == "custodial"
    assert "tw-secret-123" not in str(settings.describe())


def test_rpc_url_resolution():
    settings = Settings.from_env({"ACTIVE_CHAIN": "omachain-mainnet"})
    assert settings.rpc_url_for(6623) == "https://rpc.chain.oma3.org/"
    assert settings.rpc_url_for(1337) == "http://localhost:8545"
    with pytest.raises(ConfigurationError):
        settings.rpc_url_for(1)

    edge = Settings.from_env({"THIRDWEB_CLIENT_ID": "cid"})
    assert edge.rpc_url_for(8453) == "https://8453.rpc.thirdweb.com/cid"
