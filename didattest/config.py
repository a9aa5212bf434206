"""Runtime configuration read from the environment into an explicit settings object."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .errors import ConfigurationError


_TRUE_VALUES = {"1", "true", "yes", "on"}

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
DEFAULT_SCHEMAS = ("oma3.ownership.v1",)
DEFAULT_CUSTODIAL_API_URL = "https://embedded-wallet.thirdweb.com/api/2023-11-30/transaction/send"
DEFAULT_ISSUER_KEY_FILE = "~/.ssh/local-attestation-key"
_LOCAL_CHAIN_IDS = {31337, 1337}
_LOCAL_RPC_URL = "http://localhost:8545"


@dataclass(frozen=True)
class ChainPreset:
    name: str
    chain_id: int
    rpc_url: str
    resolver_address: Optional[str] = None


CHAIN_PRESETS: Dict[str, ChainPreset] = {
    "localhost": ChainPreset(name="Localhost", chain_id=31337, rpc_url=_LOCAL_RPC_URL),
    "omachain-testnet": ChainPreset(
        name="OMAchain Testnet",
        chain_id=66238,
        rpc_url="https://rpc.testnet.chain.oma3.org/",
    ),
    "omachain-mainnet": ChainPreset(
        name="OMAchain Mainnet",
        chain_id=6623,
        rpc_url="https://rpc.chain.oma3.org/",
    ),
}


def _flag(raw: Optional[str], default: bool = False) -> bool:
    if raw is None:
        return default
    value = raw.strip().lower()
    if value == "":
        return default
    return value in _TRUE_VALUES


def _clean(raw: Optional[str]) -> Optional[str]:
    value = (raw or "").strip()
    return value or None


def _float(raw: Optional[str], default: float) -> float:
    try:
        return float(raw) if raw not in (None, "") else default
    except ValueError:
        return default


def _int(raw: Optional[str], default: int) -> int:
    try:
        return int(raw) if raw not in (None, "") else default
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    active_chain_key: str = "localhost"
    chain: ChainPreset = field(default_factory=lambda: CHAIN_PRESETS["localhost"])
    resolver_address: Optional[str] = None
    thirdweb_client_id: Optional[str] = None
    custodial_secret_key: Optional[str] = None
    custodial_wallet_address: Optional[str] = None
    custodial_api_url: str = DEFAULT_CUSTODIAL_API_URL
    issuer_private_key: Optional[str] = None
    issuer_key_file: str = DEFAULT_ISSUER_KEY_FILE
    debug: bool = False
    dns_record_prefix: str = "_omatrust"
    document_timeout: float = 10.0
    rpc_timeout: float = 15.0
    rpc_max_attempts: int = 2
    rpc_retry_delay: float = 0.5
    min_confirmations: int = 0
    settle_seconds: float = 3.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ

        chain_key = (env.get("ACTIVE_CHAIN") or "localhost").strip().lower()
        preset = CHAIN_PRESETS.get(chain_key)
        if preset is None:
            raise ConfigurationError(
                f"Invalid active chain {chain_key!r}; expected one of {', '.join(CHAIN_PRESETS)}",
                code="invalid_active_chain",
            )
        rpc_override = _clean(env.get("ACTIVE_RPC_URL"))
        if rpc_override:
            preset = replace(preset, rpc_url=rpc_override)

        return cls(
            active_chain_key=chain_key,
            chain=preset,
            resolver_address=_clean(env.get("RESOLVER_ADDRESS")) or preset.resolver_address,
            thirdweb_client_id=_clean(env.get("THIRDWEB_CLIENT_ID")),
            custodial_secret_key=_clean(env.get("THIRDWEB_SECRET_KEY")),
            custodial_wallet_address=_clean(env.get("THIRDWEB_SERVER_WALLET_ADDRESS")),
            custodial_api_url=_clean(env.get("CUSTODIAL_API_URL")) or DEFAULT_CUSTODIAL_API_URL,
            issuer_private_key=_clean(env.get("ISSUER_PRIVATE_KEY")),
            issuer_key_file=_clean(env.get("ISSUER_KEY_FILE")) or DEFAULT_ISSUER_KEY_FILE,
            debug=_flag(env.get("DEBUG_MODE")),
            dns_record_prefix=_clean(env.get("DNS_RECORD_PREFIX")) or "_omatrust",
            document_timeout=_float(env.get("DID_DOCUMENT_TIMEOUT_SEC"), 10.0),
            rpc_timeout=_float(env.get("RPC_TIMEOUT_SEC"), 15.0),
            rpc_max_attempts=max(_int(env.get("RPC_MAX_ATTEMPTS"), 2), 1),
            rpc_retry_delay=_float(env.get("RPC_RETRY_DELAY_SEC"), 0.5),
            min_confirmations=max(_int(env.get("TRANSFER_MIN_CONFIRMATIONS"), 0), 0),
            settle_seconds=max(_float(env.get("ATTEST_SETTLE_SEC"), 3.0), 0.0),
        )

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------
    @property
    def custodial_enabled(self) -> bool:
        return bool(self.custodial_secret_key and self.custodial_wallet_address)

    def require_resolver(self) -> str:
        address = self.resolver_address
        if not address or address.lower() == ZERO_ADDRESS:
            raise ConfigurationError("Resolver not configured", code="resolver_not_configured")
        return address

    def rpc_url_for(self, chain_id: int) -> str:
        """Return the RPC endpoint for ``chain_id``.

        Priority: the active chain, the thirdweb RPC edge, then a local node for dev chain ids.
        """
        if chain_id == self.chain.chain_id and self.chain.rpc_url:
            return self.chain.rpc_url
        if chain_id <= 0:
            raise ConfigurationError(f"Invalid chainId: {chain_id}", code="invalid_chain_id")
        if self.thirdweb_client_id:
            return f"https://{chain_id}.rpc.thirdweb.com/{self.thirdweb_client_id}"
        if chain_id in _LOCAL_CHAIN_IDS:
            return _LOCAL_RPC_URL
        raise ConfigurationError(
            f"No RPC provider configured for chainId {chain_id}. Set THIRDWEB_CLIENT_ID to use the RPC edge.",
            code="rpc_not_configured",
        )

    def issuer_key_path(self) -> Path:
        return Path(self.issuer_key_file).expanduser()

    def describe(self) -> Dict[str, Any]:
        """Non-secret view of the configuration."""
        return {
            "active_chain": self.active_chain_key,
            "chain_name": self.chain.name,
            "chain_id": self.chain.chain_id,
            "rpc_url": self.chain.rpc_url,
            "resolver": self.resolver_address,
            "signer": "custodial" if self.custodial_enabled else "local-key",
            "custodial_enabled": self.custodial_enabled,
            "debug": self.debug,
            "min_confirmations": self.min_confirmations,
        }


__all__ = [
    "CHAIN_PRESETS",
    "ChainPreset",
    "DEFAULT_SCHEMAS",
    "Settings",
    "ZERO_ADDRESS",
]
