"""
체인 어댑터

EVM / Solana 노드와의 JSON-RPC(HTTP) 및 구독(WebSocket) 연동.
"""

from adapters.chain.base import BaseChainClient, TransactionCallback
from adapters.chain.errors import AccountNotFoundError, ChainRpcError, RateLimitError
from adapters.chain.evm_client import EvmChainClient
from adapters.chain.factory import create_chain_client
from adapters.chain.jsonrpc import JsonRpcClient
from adapters.chain.models import TransferEvent, TransferPage
from adapters.chain.solana_client import SolanaChainClient
from adapters.chain.ws_client import JsonRpcWsClient

__all__ = [
    "BaseChainClient",
    "EvmChainClient",
    "SolanaChainClient",
    "create_chain_client",
    "JsonRpcClient",
    "JsonRpcWsClient",
    "TransactionCallback",
    "TransferEvent",
    "TransferPage",
    "ChainRpcError",
    "RateLimitError",
    "AccountNotFoundError",
]
