"""Transaction signers for resolver writes.

Two backends share one protocol: a custodial managed wallet reached over HTTP, and a
local issuer key that signs with eth-account and relays through the JSON-RPC node.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional, Protocol

import httpx
from eth_account import Account
from web3 import Web3

from ..chain.rpc import JsonRpcClient, hex_to_int
from ..config import Settings
from ..errors import ConfigurationError, DidAttestError, TransientNetworkError
from .resolver import PreparedCall


logger = logging.getLogger("didattest.attest.signers")

SIGNER_CUSTODIAL = "custodial"
SIGNER_LOCAL_KEY = "local-key"

_PRIVATE_KEY_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


class SignerError(DidAttestError):
    code = "signer_error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail, status_code=502)


class Signer(Protocol):
    kind: str
    address: str

    async def send(self, call: PreparedCall) -> str: ...


class CustodialSigner:
    """Managed-wallet backend: the wallet provider signs and broadcasts."""

    kind = SIGNER_CUSTODIAL

    def __init__(
        self,
        *,
        api_url: str,
        secret_key: str,
        wallet_address: str,
        chain_id: int,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._api_url = api_url
        self._secret_key = secret_key
        self.address = wallet_address
        self._chain_id = chain_id
        self._timeout = timeout
        self._client = client

    async def _post(self, body: Dict[str, Any]) -> httpx.Response:
        headers = {"Content-Type": "application/json", "x-secret-key": self._secret_key}
        if self._client is not None:
            return await self._client.post(self._api_url, json=body, headers=headers, timeout=self._timeout)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(self._api_url, json=body, headers=headers)

    async def send(self, call: PreparedCall) -> str:
        body = {
            "chainId": str(self._chain_id),
            "transaction": {"to": call.to, "data": call.data, "value": hex(call.value)},
            "from": self.address,
        }
        try:
            response = await self._post(body)
        except httpx.HTTPError as exc:
            raise TransientNetworkError(f"Custodial wallet request failed: {exc}") from exc

        if not response.is_success:
            logger.error("Custodial wallet API returned HTTP %s", response.status_code)
            raise SignerError(f"Custodial wallet API error: HTTP {response.status_code} {response.text[:200]}")

        data = response.json()
        tx_hash = data.get("transactionHash") if isinstance(data, dict) else None
        if not isinstance(tx_hash, str) or not tx_hash:
            raise SignerError("Custodial wallet API returned no transactionHash")
        logger.info("Transaction sent via custodial wallet: %s", tx_hash)
        return tx_hash


class LocalKeySigner:
    """Issuer-key backend: build, sign locally, relay with ``eth_sendRawTransaction``."""

    kind = SIGNER_LOCAL_KEY

    def __init__(self, private_key: str, rpc: JsonRpcClient) -> None:
        self._account = Account.from_key(private_key)
        self.address = self._account.address
        self._rpc = rpc

    async def _build(self, call: PreparedCall) -> Dict[str, Any]:
        to = Web3.to_checksum_address(call.to)
        nonce = hex_to_int(await self._rpc.request("eth_getTransactionCount", [self.address, "pending"]))
        gas_price = hex_to_int(await self._rpc.request("eth_gasPrice"))
        gas = hex_to_int(
            await self._rpc.request(
                "eth_estimateGas",
                [{"from": self.address, "to": to, "data": call.data, "value": hex(call.value)}],
            )
        )
        return {
            "nonce": nonce,
            "gasPrice": gas_price,
            "gas": gas,
            "to": to,
            "data": call.data,
            "value": call.value,
            "chainId": self._rpc.chain_id,
        }

    async def send(self, call: PreparedCall) -> str:
        tx = await self._build(call)
        signed = self._account.sign_transaction(tx)
        raw = Web3.to_hex(signed.raw_transaction)
        result = await self._rpc.request("eth_sendRawTransaction", [raw])
        if not isinstance(result, str):
            raise SignerError("eth_sendRawTransaction returned no transaction hash")
        logger.info("Transaction sent from %s: %s", self.address, result)
        return result


def _validated_key(raw: str, source: str) -> str:
    key = re.sub(r"\s+", "", raw)
    if not key.startswith("0x"):
        key = f"0x{key}"
    if not _PRIVATE_KEY_RE.match(key):
        raise ConfigurationError(
            f"Invalid private key format in {source}. Expected 0x + 64 hex chars, got: {len(key)} chars",
            code="invalid_issuer_key",
        )
    return key.lower()


def load_issuer_private_key(settings: Settings) -> str:
    """ISSUER_PRIVATE_KEY first, then the key file (``~/.ssh/local-attestation-key`` by default)."""
    if settings.issuer_private_key:
        logger.info("Using issuer key from ISSUER_PRIVATE_KEY")
        return _validated_key(settings.issuer_private_key, "ISSUER_PRIVATE_KEY")

    path = settings.issuer_key_path()
    if not path.is_file():
        raise ConfigurationError(
            f"No private key found. Either set ISSUER_PRIVATE_KEY or create {path} "
            "containing 0x + 64 hex chars (chmod 600).",
            code="issuer_key_missing",
        )
    logger.info("Loaded issuer key from %s", path)
    return _validated_key(path.read_text(encoding="utf-8"), str(path))


def select_signer(settings: Settings, rpc: JsonRpcClient) -> Signer:
    if settings.custodial_enabled:
        return CustodialSigner(
            api_url=settings.custodial_api_url,
            secret_key=settings.custodial_secret_key or "",
            wallet_address=settings.custodial_wallet_address or "",
            chain_id=rpc.chain_id,
            timeout=settings.rpc_timeout,
        )
    return LocalKeySigner(load_issuer_private_key(settings), rpc)


__all__ = [
    "CustodialSigner",
    "LocalKeySigner",
    "SIGNER_CUSTODIAL",
    "SIGNER_LOCAL_KEY",
    "Signer",
    "SignerError",
    "load_issuer_private_key",
    "select_signer",
]
