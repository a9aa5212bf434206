"""Resolver contract access: attestation coverage reads and ``upsertDirect`` call preparation."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Protocol, Sequence

from ..chain.abi import RESOLVER_ABI, decode_address, encode_call, to_bytes32
from ..chain.rpc import ChainReader
from ..errors import DidAttestError
from ..utils.caip10 import addresses_equal
from ..utils.did import did_hash


logger = logging.getLogger("didattest.attest.resolver")

NEVER_EXPIRES = 0


@dataclass(frozen=True)
class AttestationStatus:
    present: List[str]
    missing: List[str]


@dataclass(frozen=True)
class PreparedCall:
    to: str
    data: str
    value: int = 0
    method: str = "upsertDirect"
    params: Sequence[Any] = ()

    def describe(self) -> Dict[str, Any]:
        return {"to": self.to, "method": self.method, "params": [str(p) for p in self.params]}


class AttestationReader(Protocol):
    async def status(self, did: str, claimant: str, required_schemas: Sequence[str]) -> AttestationStatus: ...


def _dedupe(schemas: Sequence[str]) -> List[str]:
    return list(dict.fromkeys(s for s in schemas if s))


def controller_word(address: str) -> str:
    """Left-pad a 20-byte address to a bytes32 hex word."""
    return "0x" + address.lower().removeprefix("0x").rjust(64, "0")


class ResolverContract:
    def __init__(self, reader: ChainReader, address: str) -> None:
        self._reader = reader
        self.address = address

    async def current_owner(self, did: str):
        data = encode_call(RESOLVER_ABI, self.address, "currentOwner", to_bytes32(did_hash(did)))
        result = await self._reader.call(self.address, data)
        return decode_address(result)

    async def status(self, did: str, claimant: str, required_schemas: Sequence[str]) -> AttestationStatus:
        """Partition ``required_schemas`` by whether the resolver already names ``claimant``.

        Read failures are treated as "nothing present".
        """
        schemas = _dedupe(required_schemas)
        try:
            owner = await self.current_owner(did)
        except (DidAttestError, ValueError) as exc:
            logger.warning("Could not read current owner for %s; assuming attestations missing: %s", did, exc)
            return AttestationStatus(present=[], missing=schemas)

        if owner and addresses_equal(owner, claimant):
            logger.info("Valid ownership attestation exists for %s", did)
            return AttestationStatus(present=schemas, missing=[])
        logger.info("No valid ownership attestation for %s (owner: %s)", did, owner)
        return AttestationStatus(present=[], missing=schemas)

    def prepare_upsert(self, did: str, controller: str) -> PreparedCall:
        didhash = did_hash(did)
        word = controller_word(controller)
        data = encode_call(
            RESOLVER_ABI, self.address, "upsertDirect", to_bytes32(didhash), to_bytes32(word), NEVER_EXPIRES
        )
        return PreparedCall(
            to=self.address,
            data=data,
            params=(didhash, word, NEVER_EXPIRES),
        )


__all__ = [
    "AttestationReader",
    "AttestationStatus",
    "PreparedCall",
    "ResolverContract",
    "controller_word",
]
