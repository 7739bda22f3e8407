"""
체인 클라이언트 팩토리
"""

from adapters.chain.base import BaseChainClient
from adapters.chain.evm_client import EvmChainClient
from adapters.chain.solana_client import SolanaChainClient
from core.config.loader import ChainConfig, ChainConfigError, ScannerConfig
from core.types import ChainFamily


def create_chain_client(config: ChainConfig, scanner: ScannerConfig) -> BaseChainClient:
    """체인 계열에 맞는 클라이언트 생성

    Raises:
        ChainConfigError: 지원하지 않는 체인 계열
    """
    if config.family == ChainFamily.EVM:
        client_cls: type[BaseChainClient] = EvmChainClient
    elif config.family == ChainFamily.SOLANA:
        client_cls = SolanaChainClient
    else:
        raise ChainConfigError(config.chain_id, f"지원하지 않는 체인 계열: {config.family}")

    return client_cls(
        config,
        page_size=scanner.page_size,
        page_delay=scanner.page_delay_sec,
    )
