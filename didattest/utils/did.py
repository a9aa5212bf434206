"""DID parsing helpers for the two supported methods (``did:web`` and ``did:pkh``)."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union
from urllib.parse import unquote

from web3 import Web3

from ..errors import FormatError
from .caip10 import ChainAccountId, normalize_caip10, split_caip10


WEB_PREFIX = "did:web:"
PKH_PREFIX = "did:pkh:"


@dataclass(frozen=True)
class WebDid:
    domain: str
    path: Optional[str] = None

    @property
    def method(self) -> str:
        return "web"


@dataclass(frozen=True)
class PkhDid:
    account: ChainAccountId

    @property
    def method(self) -> str:
        return "pkh"


DecentralizedIdentifier = Union[WebDid, PkhDid]


def normalize_domain(domain: str) -> str:
    """Lowercase and drop a trailing dot."""
    value = domain.strip().lower()
    if value.endswith("."):
        value = value[:-1]
    return value


def parse_web_did(did: str) -> WebDid:
    if not did.startswith(WEB_PREFIX):
        raise FormatError('DID must start with "did:web:"', code="invalid_did_format")
    segments = did[len(WEB_PREFIX):].split(":")
    domain = normalize_domain(unquote(segments[0]))
    if not domain:
        raise FormatError("did:web requires a domain", code="invalid_did_format")
    path = "/".join(unquote(s) for s in segments[1:] if s) or None
    return WebDid(domain=domain, path=path)


def parse_pkh_did(did: str, *, normalize: bool = True) -> PkhDid:
    """Parse a ``did:pkh`` DID.

    The remainder must be exactly ``namespace:reference:address``. With ``normalize`` the
    account goes through CAIP-10 canonicalization; otherwise it is only split.
    """
    if not did.startswith(PKH_PREFIX):
        raise FormatError('DID must start with "did:pkh:"', code="invalid_did_format")
    remainder = did[len(PKH_PREFIX):]
    if normalize:
        return PkhDid(account=normalize_caip10(remainder))
    namespace, reference, address = split_caip10(remainder)
    return PkhDid(account=ChainAccountId(namespace, reference, address))


def parse_did(did: str) -> DecentralizedIdentifier:
    if not did or not isinstance(did, str):
        raise FormatError("DID is required", code="invalid_did_format")
    value = did.strip()
    if value.startswith(WEB_PREFIX):
        return parse_web_did(value)
    if value.startswith(PKH_PREFIX):
        parsed = parse_pkh_did(value, normalize=False)
        if parsed.account.namespace == "eip155":
            # EVM accounts are validated up front, before any chain read
            return parse_pkh_did(value)
        return parsed
    raise FormatError(
        "Unsupported DID type. Only did:web: and did:pkh: are supported",
        code="unsupported_did_method",
    )


def build_pkh_did(chain_id: int, address: str) -> str:
    return f"{PKH_PREFIX}eip155:{chain_id}:{address.lower()}"


def did_hash(did: str) -> str:
    """keccak256 of the raw DID string, the key used by the resolver contract."""
    return "0x" + Web3.keccak(text=did).hex().removeprefix("0x")


def canonical_did_hash(did: str) -> str:
    """keccak256 of the lowercased, trimmed DID."""
    return did_hash(did.strip().lower())


__all__ = [
    "DecentralizedIdentifier",
    "PKH_PREFIX",
    "PkhDid",
    "WEB_PREFIX",
    "WebDid",
    "build_pkh_did",
    "canonical_did_hash",
    "did_hash",
    "normalize_domain",
    "parse_did",
    "parse_pkh_did",
    "parse_web_did",
]
