"""CAIP-10 account identifier parsing and canonicalization.

Supported namespaces:

- ``eip155`` numeric chain id, EIP-55 checksummed ``0x`` address
- ``solana`` network name, base58 public key (32 bytes)
- ``sui`` network name, ``0x`` hex address left-padded to 32 bytes
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

import base58
from web3 import Web3

from ..errors import FormatError


SUPPORTED_NAMESPACES = ("eip155", "solana", "sui")
SOLANA_NETWORKS = ("mainnet", "devnet", "testnet")
SUI_NETWORKS = ("mainnet", "testnet", "devnet")

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")
_DIGITS_RE = re.compile(r"^[0-9]+$")
_BASE58_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]+$")


class Caip10Error(FormatError):
    """Raised when a CAIP-10 identifier fails validation. ``code`` names the failed stage."""

    def __init__(self, code: str, detail: str) -> None:
        super().__init__(detail, code=code)


@dataclass(frozen=True)
class ChainAccountId:
    namespace: str
    reference: str
    address: str

    def __str__(self) -> str:
        return build_caip10(self.namespace, self.reference, self.address)

    @property
    def chain_id(self) -> Optional[int]:
        if self.namespace != "eip155":
            return None
        return int(self.reference)


def build_caip10(namespace: str, reference: str, address: str) -> str:
    return f"{namespace}:{reference}:{address}"


def split_caip10(value: str):
    """Split into (namespace, reference, address) or raise ``invalid_format``."""
    if value is None:
        raise Caip10Error("invalid_format", "CAIP-10 string is required")
    parts = value.strip().split(":")
    if len(parts) != 3 or not all(parts):
        raise Caip10Error(
            "invalid_format",
            "Invalid CAIP-10 format. Expected: namespace:reference:address",
        )
    return parts[0], parts[1], parts[2]


def _normalize_evm(reference: str, address: str) -> ChainAccountId:
    if not _DIGITS_RE.match(reference):
        raise Caip10Error("invalid_chain_id", "Chain reference must be a valid numeric chainId")

    if not address.startswith("0x"):
        raise Caip10Error("missing_prefix", "EVM address must start with 0x")
    if len(address) != 42:
        raise Caip10Error("wrong_byte_length", "EVM address must be 20 bytes (0x + 40 hex characters)")
    if not _HEX_RE.match(address[2:]):
        raise Caip10Error("non_hex_chars", "EVM address must contain only hexadecimal characters")

    try:
        checksummed = to_checksum(address)
    except ValueError as exc:
        raise Caip10Error("checksum_failed", "Failed to checksum address") from exc

    return ChainAccountId("eip155", reference, checksummed)


def _normalize_solana(reference: str, address: str) -> ChainAccountId:
    network = reference.lower()
    if network not in SOLANA_NETWORKS:
        raise Caip10Error(
            "invalid_network",
            f"Solana reference must be one of: {', '.join(SOLANA_NETWORKS)}",
        )

    if not _BASE58_RE.match(address):
        raise Caip10Error("invalid_base58", "Solana address must be base58-encoded (no 0, O, I, or l)")
    try:
        decoded = base58.b58decode(address)
    except ValueError as exc:
        raise Caip10Error("invalid_base58", "Invalid base58 encoding") from exc
    if len(decoded) != 32:
        raise Caip10Error("wrong_byte_length", "Solana address must decode to 32 bytes")

    return ChainAccountId("solana", network, address)


def _normalize_sui(reference: str, address: str) -> ChainAccountId:
    network = reference.lower()
    if network not in SUI_NETWORKS:
        raise Caip10Error(
            "invalid_network",
            f"Sui reference must be one of: {', '.join(SUI_NETWORKS)}",
        )

    if not address.startswith("0x"):
        raise Caip10Error("missing_prefix", "Sui address must start with 0x")
    body = address[2:]
    if not body or not _HEX_RE.match(body):
        raise Caip10Error("non_hex_chars", "Sui address must contain only hexadecimal characters")
    if len(body) > 64:
        raise Caip10Error("wrong_byte_length", "Sui address exceeds 32 bytes (64 hex characters)")

    return ChainAccountId("sui", network, "0x" + body.lower().rjust(64, "0"))


def normalize_caip10(value: str) -> ChainAccountId:
    """Validate ``value`` and return its canonical :class:`ChainAccountId`.

    Normalizing the string form of the result again yields the same identifier.
    """
    namespace, reference, address = split_caip10(value)

    if namespace == "eip155":
        return _normalize_evm(reference, address)
    if namespace == "solana":
        return _normalize_solana(reference, address)
    if namespace == "sui":
        return _normalize_sui(reference, address)

    raise Caip10Error(
        "unsupported_namespace",
        f"Unsupported namespace: {namespace}. Supported: {', '.join(SUPPORTED_NAMESPACES)}",
    )


def is_evm_address(value: Optional[str]) -> bool:
    if not value or not value.startswith("0x") or len(value) != 42:
        return False
    return bool(_HEX_RE.match(value[2:]))


def to_checksum(address: str) -> str:
    return Web3.to_checksum_address(address)


def addresses_equal(left: Optional[str], right: Optional[str]) -> bool:
    if not left or not right:
        return False
    return left.strip().lower() == right.strip().lower()


__all__ = [
    "Caip10Error",
    "ChainAccountId",
    "SUPPORTED_NAMESPACES",
    "addresses_equal",
    "build_caip10",
    "is_evm_address",
    "normalize_caip10",
    "split_caip10",
    "to_checksum",
]
