"""
JSON-RPC HTTP 클라이언트

EVM/Solana 노드 공통 JSON-RPC 2.0 요청.
타임아웃, 연결 에러, HTTP 429/5xx, rate-limit 에러 코드는 백오프 후 재시도.
"""

import asyncio
import itertools
import logging
from typing import Any

import httpx

from adapters.chain.errors import ChainRpcError, RateLimitError
from core.constants import RpcDefaults

logger = logging.getLogger(__name__)

# 공급자별 rate-limit JSON-RPC 에러 코드
RATE_LIMIT_CODES = frozenset({429, -32005, -32429})


class JsonRpcClient:
    """JSON-RPC 2.0 HTTP 클라이언트

    Args:
        url: RPC 엔드포인트
        timeout: 요청 타임아웃 (초)
        max_retries: 최대 시도 횟수
        backoff_base: 재시도 대기 기본값 (초, 시도마다 배수 증가)
    """

    def __init__(
        self,
        url: str,
        timeout: float = RpcDefaults.TIMEOUT_SEC,
        max_retries: int = RpcDefaults.MAX_RETRIES,
        backoff_base: float = RpcDefaults.BACKOFF_BASE_SEC,
    ):
        self.url = url
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base

        self._client: httpx.AsyncClient | None = None
        self._ids = itertools.count(1)

    async def _get_client(self) -> httpx.AsyncClient:
        """HTTP 클라이언트 가져오기 (lazy initialization)"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """HTTP 클라이언트 종료"""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def _backoff(self, attempt: int) -> float:
        return self.backoff_base * (2**attempt)

    async def call(self, method: str, params: list[Any] | None = None) -> Any:
        """JSON-RPC 호출

        Args:
            method: RPC 메서드 (예: eth_getTransactionReceipt)
            params: 위치 인자 목록

        Returns:
            응답의 result 필드

        Raises:
            RateLimitError: 재시도 후에도 rate limit인 경우
            ChainRpcError: 노드 에러 응답 또는 재시도 소진
        """
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        client = await self._get_client()

        for attempt in range(self.max_retries):
            is_last = attempt >= self.max_retries - 1
            try:
                response = await client.post(self.url, json=payload)

                if response.status_code == 429:
                    retry_after = int(
                        response.headers.get("Retry-After", RpcDefaults.RATE_LIMIT_RETRY_SEC)
                    )
                    logger.warning(
                        "RPC rate limited",
                        extra={"method": method, "retry_after": retry_after, "attempt": attempt + 1},
                    )
                    if not is_last:
                        await asyncio.sleep(retry_after)
                        continue
                    raise RateLimitError(retry_after=retry_after)

                if response.status_code >= 500:
                    logger.warning(
                        "RPC 서버 에러",
                        extra={"method": method, "status": response.status_code, "attempt": attempt + 1},
                    )
                    if not is_last:
                        await asyncio.sleep(self._backoff(attempt))
                        continue
                    raise ChainRpcError(code=response.status_code, message=response.text[:200])

                if response.status_code >= 400:
                    raise ChainRpcError(code=response.status_code, message=response.text[:200])

                data = response.json()

            except httpx.TimeoutException:
                logger.warning(
                    "RPC request timeout",
                    extra={"method": method, "attempt": attempt + 1},
                )
                if not is_last:
                    await asyncio.sleep(self._backoff(attempt))
                    continue
                raise ChainRpcError(code=-1, message=f"{method} timeout")

            except httpx.RequestError as e:
                logger.warning(
                    "RPC request error",
                    extra={"method": method, "error": str(e), "attempt": attempt + 1},
                )
                if not is_last:
                    await asyncio.sleep(self._backoff(attempt))
                    continue
                raise ChainRpcError(code=-1, message=str(e)) from e

            error = data.get("error") if isinstance(data, dict) else None
            if error:
                code = int(error.get("code", -1))
                message = str(error.get("message", ""))
                if code in RATE_LIMIT_CODES:
                    logger.warning(
                        "RPC rate limit 에러 코드",
                        extra={"method": method, "code": code, "attempt": attempt + 1},
                    )
                    if not is_last:
                        await asyncio.sleep(RpcDefaults.RATE_LIMIT_RETRY_SEC)
                        continue
                    raise RateLimitError(retry_after=RpcDefaults.RATE_LIMIT_RETRY_SEC, message=message)
                raise ChainRpcError(code=code, message=message)

            return data.get("result") if isinstance(data, dict) else None

        # 모든 재시도 실패
        raise ChainRpcError(code=-1, message="All retries failed")
