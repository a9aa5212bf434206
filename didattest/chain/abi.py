"""Minimal contract ABIs and web3 codec helpers.

Only encoding and decoding happen here; calls travel over :mod:`didattest.chain.rpc`.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

from web3 import Web3

from ..config import ZERO_ADDRESS


def _function(
    name: str,
    inputs: Sequence[Tuple[str, str]] = (),
    outputs: Sequence[str] = (),
    mutability: str = "view",
) -> Dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "stateMutability": mutability,
        "inputs": [{"name": arg, "type": typ} for arg, typ in inputs],
        "outputs": [{"name": "", "type": typ} for typ in outputs],
    }


RESOLVER_ABI: List[Dict[str, Any]] = [
    _function("currentOwner", [("didHash", "bytes32")], ["address"]),
    _function(
        "upsertDirect",
        [("didHash", "bytes32"), ("controller", "bytes32"), ("expiresAt", "uint64")],
        mutability="nonpayable",
    ),
]

OWNERSHIP_ABI: List[Dict[str, Any]] = [
    _function("owner", outputs=["address"]),
    _function("admin", outputs=["address"]),
    _function("getOwner", outputs=["address"]),
]

# Offline instance: contract objects are only used for their codec
_w3 = Web3()


def contract(abi: List[Dict[str, Any]], address: str):
    return _w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)


def encode_call(abi: List[Dict[str, Any]], address: str, fn_name: str, *args: Any) -> str:
    """ABI-encoded calldata (selector + arguments) as 0x hex."""
    data = contract(abi, address).encode_abi(fn_name, args=list(args))
    return data if data.startswith("0x") else "0x" + data


def to_bytes32(value: str) -> bytes:
    raw = Web3.to_bytes(hexstr=value)
    if len(raw) != 32:
        raise ValueError(f"Expected 32 bytes, got {len(raw)}")
    return raw


def decode_address(data: Optional[str]) -> Optional[str]:
    """Decode the first return word (or storage word) as an address.

    Returns None for empty return data, short words and the zero address.
    """
    raw = Web3.to_bytes(hexstr=data or "0x")
    if len(raw) < 32:
        return None
    # Storage words may carry dirty high bytes; only the low 20 bytes matter
    (address,) = _w3.codec.decode(["address"], bytes(12) + raw[12:32])
    if address.lower() == ZERO_ADDRESS:
        return None
    return Web3.to_checksum_address(address)


__all__ = [
    "OWNERSHIP_ABI",
    "RESOLVER_ABI",
    "contract",
    "decode_address",
    "encode_call",
    "to_bytes32",
]
