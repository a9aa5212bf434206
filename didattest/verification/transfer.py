"""Transfer-proof verification (tx-encoded-value).

The claimant proves shared control by having the contract's controlling wallet send
them an exact, deterministic amount of the native token. The amount is

    BASE(purpose, chain) + uint256(keccak256(Seed)) mod RANGE(purpose, chain)

where Seed is the JCS-canonical JSON of the two DID hashes and the proof purpose,
and RANGE defaults to BASE // 10.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict

import rfc8785
from web3 import Web3

from ..chain.rpc import ChainReader, hex_to_int
from ..errors import DidAttestError, FormatError
from ..utils.caip10 import addresses_equal
from ..utils.did import build_pkh_did, canonical_did_hash
from .outcome import (
    KIND_FORMAT,
    KIND_MISMATCH,
    KIND_NOT_FOUND,
    KIND_TRANSIENT,
    METHOD_TRANSFER,
    VerificationOutcome,
)


logger = logging.getLogger("didattest.verification.transfer")

PURPOSE_SHARED_CONTROL = "shared-control"
PURPOSE_COMMERCIAL_TX = "commercial-tx"

AMOUNT_DOMAIN = "OMATrust:Amount:v1"


@dataclass(frozen=True)
class TransferChainConfig:
    decimals: int
    symbol: str
    explorer: str
    shared_control_base: int
    commercial_tx_base: int

    def base_for(self, purpose: str) -> int:
        if purpose == PURPOSE_SHARED_CONTROL:
            return self.shared_control_base
        if purpose == PURPOSE_COMMERCIAL_TX:
            return self.commercial_tx_base
        raise FormatError(f"Unknown proof purpose: {purpose}", code="unknown_proof_purpose")


_EVM_DEFAULT = dict(decimals=18, shared_control_base=10**14, commercial_tx_base=10**12)
_OMA_DEFAULT = dict(decimals=18, shared_control_base=10**16, commercial_tx_base=10**14)

CHAIN_CONFIGS: Dict[int, TransferChainConfig] = {
    1: TransferChainConfig(symbol="ETH", explorer="https://etherscan.io", **_EVM_DEFAULT),
    11155111: TransferChainConfig(symbol="ETH", explorer="https://sepolia.etherscan.io", **_EVM_DEFAULT),
    137: TransferChainConfig(symbol="POL", explorer="https://polygonscan.com", **_EVM_DEFAULT),
    8453: TransferChainConfig(symbol="ETH", explorer="https://basescan.org", **_EVM_DEFAULT),
    10: TransferChainConfig(symbol="ETH", explorer="https://optimistic.etherscan.io", **_EVM_DEFAULT),
    42161: TransferChainConfig(symbol="ETH", explorer="https://arbiscan.io", **_EVM_DEFAULT),
    6623: TransferChainConfig(symbol="OMA", explorer="https://explorer.chain.oma3.org", **_OMA_DEFAULT),
    66238: TransferChainConfig(symbol="OMA", explorer="https://explorer.testnet.chain.oma3.org", **_OMA_DEFAULT),
}


class UnsupportedChainError(FormatError):
    def __init__(self, chain_id: int) -> None:
        supported = ", ".join(str(c) for c in CHAIN_CONFIGS)
        super().__init__(
            f"tx-encoded-value not supported for chain {chain_id}. Supported chains: {supported}",
            code="unsupported_chain",
        )
        self.chain_id = chain_id


def get_chain_config(chain_id: int) -> TransferChainConfig:
    config = CHAIN_CONFIGS.get(chain_id)
    if config is None:
        raise UnsupportedChainError(chain_id)
    return config


def chain_constants(chain_id: int, purpose: str):
    base = get_chain_config(chain_id).base_for(purpose)
    return base, base // 10


def construct_seed(subject_did_hash: str, counterparty_did_hash: str, purpose: str) -> bytes:
    return rfc8785.dumps(
        {
            "domain": AMOUNT_DOMAIN,
            "subjectDidHash": subject_did_hash,
            "counterpartyIdHash": counterparty_did_hash,
            "proofPurpose": purpose,
        }
    )


def calculate_transfer_amount(
    subject_did: str,
    counterparty_did: str,
    chain_id: int,
    purpose: str = PURPOSE_SHARED_CONTROL,
) -> int:
    """Exact amount, in the chain's smallest unit, that proves control for this pair."""
    base, value_range = chain_constants(chain_id, purpose)
    seed = construct_seed(canonical_did_hash(subject_did), canonical_did_hash(counterparty_did), purpose)
    digest = Web3.keccak(seed)
    return base + int.from_bytes(bytes(digest), "big") % value_range


def format_transfer_amount(amount: int, chain_id: int) -> Dict[str, str]:
    config = get_chain_config(chain_id)
    formatted = Decimal(amount).scaleb(-config.decimals).normalize()
    return {"formatted": format(formatted, "f"), "symbol": config.symbol, "wei": str(amount)}


def explorer_tx_url(chain_id: int, tx_hash: str) -> str:
    return f"{get_chain_config(chain_id).explorer}/tx/{tx_hash}"


class TransferProofVerifier:
    """Checks a transaction from the controlling wallet to the claimant for the expected amount."""

    def __init__(self, reader: ChainReader, *, min_confirmations: int = 0) -> None:
        self._reader = reader
        self._min_confirmations = max(int(min_confirmations or 0), 0)

    async def verify(
        self,
        did: str,
        controller: str,
        claimant: str,
        chain_id: int,
        tx_ref: str,
    ) -> VerificationOutcome:
        try:
            return await self._verify(did, controller, claimant, chain_id, tx_ref)
        except UnsupportedChainError as exc:
            return VerificationOutcome.fail("Unsupported chain for transfer proof", exc.detail, kind=KIND_FORMAT)
        except DidAttestError as exc:
            logger.warning("Transfer verification for %s failed: %s", tx_ref, exc.detail)
            return VerificationOutcome.fail("Transfer verification failed", exc.detail, kind=KIND_TRANSIENT)

    async def _verify(
        self,
        did: str,
        controller: str,
        claimant: str,
        chain_id: int,
        tx_ref: str,
    ) -> VerificationOutcome:
        tx = await self._reader.get_transaction(tx_ref)
        if not tx:
            return VerificationOutcome.fail(
                "Transaction not found",
                f"Transaction {tx_ref} not found on chain {chain_id}",
                kind=KIND_NOT_FOUND,
            )

        receipt = await self._reader.get_transaction_receipt(tx_ref)
        if not receipt:
            return VerificationOutcome.fail(
                "Transaction not confirmed",
                "Transaction exists but is not yet confirmed. Please wait for confirmation.",
                kind=KIND_NOT_FOUND,
            )

        receipt_block = hex_to_int(receipt.get("blockNumber"))
        logger.info("Transfer %s mined in block %s on chain %s", tx_ref, receipt_block, chain_id)
        if self._min_confirmations > 0:
            head = await self._reader.block_number()
            depth = head - receipt_block + 1
            if depth < self._min_confirmations:
                return VerificationOutcome.fail(
                    "Transaction not confirmed",
                    f"Transaction has {depth} confirmations; {self._min_confirmations} required.",
                    kind=KIND_NOT_FOUND,
                    expected=str(self._min_confirmations),
                    actual=str(depth),
                )

        sender = tx.get("from") or ""
        if not addresses_equal(sender, controller):
            return VerificationOutcome.fail(
                "Wrong sender",
                f"Transaction sender is {sender}, but expected controlling wallet {controller}",
                kind=KIND_MISMATCH,
                expected=controller,
                actual=sender,
            )

        recipient = tx.get("to")
        if not addresses_equal(recipient, claimant):
            return VerificationOutcome.fail(
                "Wrong recipient",
                f"Transaction recipient is {recipient}, but expected minting wallet {claimant}",
                kind=KIND_MISMATCH,
                expected=claimant,
                actual=str(recipient),
            )

        counterparty_did = build_pkh_did(chain_id, claimant)
        expected_amount = calculate_transfer_amount(did, counterparty_did, chain_id, PURPOSE_SHARED_CONTROL)
        value = hex_to_int(tx.get("value"))
        if value != expected_amount:
            return VerificationOutcome.fail(
                "Wrong amount",
                f"Transaction amount is {value} wei, but expected {expected_amount} wei. The amount must be exact.",
                kind=KIND_MISMATCH,
                expected=str(expected_amount),
                actual=str(value),
            )

        return VerificationOutcome.ok(
            METHOD_TRANSFER,
            f"Verified via onchain transfer (tx: {tx_ref}, {explorer_tx_url(chain_id, tx_ref)})",
        )


__all__ = [
    "AMOUNT_DOMAIN",
    "CHAIN_CONFIGS",
    "PURPOSE_COMMERCIAL_TX",
    "PURPOSE_SHARED_CONTROL",
    "TransferProofVerifier",
    "UnsupportedChainError",
    "calculate_transfer_amount",
    "chain_constants",
    "construct_seed",
    "explorer_tx_url",
    "format_transfer_amount",
    "get_chain_config",
]
