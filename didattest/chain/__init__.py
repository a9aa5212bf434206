"""Chain access over JSON-RPC."""

from .rpc import ChainReader, JsonRpcChainReader, JsonRpcClient, RpcError

__all__ = ["ChainReader", "JsonRpcChainReader", "JsonRpcClient", "RpcError"]
