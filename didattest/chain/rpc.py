from __future__ import annotations

import asyncio
import logging
import secrets
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, TypeVar

import httpx

from ..errors import DidAttestError, TransientNetworkError


logger = logging.getLogger("didattest.chain.rpc")

T = TypeVar("T")


class RpcError(DidAttestError):
    """JSON-RPC error object returned by the node (reverts, bad params)."""

    code = "rpc_error"

    def __init__(self, detail: str, *, rpc_code: Optional[int] = None) -> None:
        super().__init__(detail, status_code=502)
        self.rpc_code = rpc_code


def hex_to_int(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    text = str(value)
    return int(text, 16) if text.startswith("0x") else int(text)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 2,
    initial_delay: float = 0.5,
) -> T:
    """Await ``fn`` with exponential backoff on :class:`TransientNetworkError`.

    Other exceptions propagate immediately.
    """
    last_error: Optional[TransientNetworkError] = None
    for attempt in range(1, max_attempts + 1):
        try:
            return await fn()
        except TransientNetworkError as exc:
            last_error = exc
            if attempt == max_attempts:
                break
            delay = initial_delay * (2 ** (attempt - 1))
            logger.info("RPC attempt %s failed, retrying in %.2fs: %s", attempt, delay, exc.detail)
            await asyncio.sleep(delay)

    raise TransientNetworkError(
        f"Operation failed after {max_attempts} attempts: {last_error.detail if last_error else 'unknown'}"
    )


class ChainReader(Protocol):
    """Read-only chain access used by the verifiers."""

    chain_id: int

    async def call(self, to: str, data: str) -> str: ...

    async def get_storage_at(self, address: str, slot: str) -> str: ...

    async def get_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]: ...

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]: ...

    async def block_number(self) -> int: ...


class JsonRpcClient:
    """Minimal async JSON-RPC transport over httpx with retry on transient failures."""

    def __init__(
        self,
        rpc_url: str,
        *,
        chain_id: int,
        timeout: float = 15.0,
        max_attempts: int = 2,
        retry_delay: float = 0.5,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._client = client

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(self.rpc_url, json=payload, timeout=self._timeout)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(self.rpc_url, json=payload)

    async def _request_once(self, method: str, params: List[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": secrets.randbelow(1_000_000),
        }
        try:
            response = await self._post(payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code >= 500 or exc.response.status_code == 429:
                raise TransientNetworkError(f"{method}: HTTP {exc.response.status_code}") from exc
            raise RpcError(f"{method}: HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise TransientNetworkError(f"{method}: {exc}") from exc

        data = response.json()
        error = data.get("error") if isinstance(data, dict) else None
        if error:
            message = error.get("message", "rpc_error") if isinstance(error, dict) else "rpc_error"
            rpc_code = error.get("code") if isinstance(error, dict) else None
            raise RpcError(f"{method}: {message}", rpc_code=rpc_code)
        return data.get("result") if isinstance(data, dict) else None

    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        return await with_retry(
            lambda: self._request_once(method, list(params or [])),
            max_attempts=self._max_attempts,
            initial_delay=self._retry_delay,
        )


class JsonRpcChainReader:
    """:class:`ChainReader` backed by a :class:`JsonRpcClient`."""

    def __init__(self, rpc: JsonRpcClient) -> None:
        self._rpc = rpc
        self.chain_id = rpc.chain_id

    async def call(self, to: str, data: str) -> str:
        result = await self._rpc.request("eth_call", [{"to": to, "data": data}, "latest"])
        return result or "0x"

    async def get_storage_at(self, address: str, slot: str) -> str:
        result = await self._rpc.request("eth_getStorageAt", [address, slot, "latest"])
        return result or "0x"

    async def get_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        result = await self._rpc.request("eth_getTransactionByHash", [tx_hash])
        return result if isinstance(result, dict) else None

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        result = await self._rpc.request("eth_getTransactionReceipt", [tx_hash])
        return result if isinstance(result, dict) else None

    async def block_number(self) -> int:
        return hex_to_int(await self._rpc.request("eth_blockNumber"))


__all__ = [
    "ChainReader",
    "JsonRpcChainReader",
    "JsonRpcClient",
    "RpcError",
    "hex_to_int",
    "with_retry",
]
