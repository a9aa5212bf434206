"""Controlling-account discovery for contracts.

Probes run in a fixed order and the first non-zero address wins:
``owner()``, ``admin()``, ``getOwner()``, then the EIP-1967 proxy admin slot.
"""
from __future__ import annotations

import logging
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Tuple

from ..chain.abi import OWNERSHIP_ABI, decode_address, encode_call
from ..chain.rpc import ChainReader
from ..errors import DidAttestError


logger = logging.getLogger("didattest.verification.prober")

EIP1967_ADMIN_SLOT = "0xb53127684a568b3173ae13b9f8a6016e243e63b6e8ee1178d6a717850b5d6103"

OWNERSHIP_FUNCTIONS = ("owner", "admin", "getOwner")

Probe = Callable[[ChainReader, str], Awaitable[Optional[str]]]


def _call_probe(fn_name: str) -> Probe:
    async def probe(reader: ChainReader, contract: str) -> Optional[str]:
        result = await reader.call(contract, encode_call(OWNERSHIP_ABI, contract, fn_name))
        return decode_address(result)

    probe.__name__ = f"{fn_name}()"
    return probe


async def _proxy_admin_probe(reader: ChainReader, contract: str) -> Optional[str]:
    value = await reader.get_storage_at(contract, EIP1967_ADMIN_SLOT)
    return decode_address(value)


_proxy_admin_probe.__name__ = "eip1967.admin"

DEFAULT_PROBES: List[Probe] = [_call_probe(name) for name in OWNERSHIP_FUNCTIONS] + [_proxy_admin_probe]


class OwnershipProber:
    def __init__(self, reader: ChainReader, probes: Optional[List[Probe]] = None) -> None:
        self._reader = reader
        self._probes = list(probes or DEFAULT_PROBES)

    async def candidates(self, contract: str) -> AsyncIterator[Tuple[str, str]]:
        """Yield ``(probe_name, address)`` for every probe returning a non-zero address."""
        for probe in self._probes:
            name = probe.__name__
            try:
                address = await probe(self._reader, contract)
            except (DidAttestError, ValueError) as exc:
                logger.debug("Probe %s failed for %s: %s", name, contract, exc)
                continue
            logger.debug("Probe %s for %s returned %s", name, contract, address)
            if address:
                yield name, address

    async def discover_controller(self, contract: str) -> Optional[str]:
        async for name, address in self.candidates(contract):
            logger.info("Controlling wallet for %s discovered via %s: %s", contract, name, address)
            return address
        logger.info("No controlling wallet discovered for %s", contract)
        return None


__all__ = ["DEFAULT_PROBES", "EIP1967_ADMIN_SLOT", "OwnershipProber", "Probe"]
