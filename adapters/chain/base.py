"""
체인 클라이언트 공통 베이스

Catch-up 페이지 순회(역방향 페이징, 고정 페이지 크기, 페이지 간 지연),
중복 제거, 오래된 순 정렬을 한 곳에서 구현한다.
체인 계열별 클라이언트는 쿼리 목록과 페이지 조회만 구현한다.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable

from adapters.chain.jsonrpc import JsonRpcClient
from adapters.chain.models import TransferEvent, TransferPage
from adapters.chain.ws_client import JsonRpcWsClient
from core.config.loader import ChainConfig
from core.constants import Defaults
from core.types import MonitoredAddress, ScanCursor, SupportedToken

logger = logging.getLogger(__name__)


# 실시간 알림 콜백: 트랜잭션 해시/시그니처 전달
TransactionCallback = Callable[[str], Awaitable[None]]


class BaseChainClient:
    """체인 클라이언트 베이스

    IChainClient Protocol 구현의 공통 부분.

    Args:
        config: 체인 설정
        rpc: JSON-RPC HTTP 클라이언트 (None이면 config.http_url로 생성)
        ws: WebSocket 구독 클라이언트 (None이면 config.ws_url로 지연 생성)
        page_size: 페이지당 최대 항목 수
        page_delay: 페이지 간 대기 (초)
    """

    def __init__(
        self,
        config: ChainConfig,
        rpc: JsonRpcClient | None = None,
        ws: JsonRpcWsClient | None = None,
        page_size: int = Defaults.PAGE_SIZE,
        page_delay: float = Defaults.PAGE_DELAY_SEC,
    ):
        self.config = config
        self.chain_id = config.chain_id
        self.family = config.family
        self.rpc = rpc or JsonRpcClient(config.http_url)
        self._ws = ws
        self.page_size = page_size
        self.page_delay = page_delay

    def _get_ws(self) -> JsonRpcWsClient:
        """구독 클라이언트 (lazy initialization)"""
        if self._ws is None:
            if not self.config.ws_url:
                raise RuntimeError(f"ws_url이 설정되지 않았습니다: {self.chain_id}")
            self._ws = JsonRpcWsClient(self.config.ws_url)
        return self._ws

    @property
    def supports_subscriptions(self) -> bool:
        return self._ws is not None or bool(self.config.ws_url)

    async def close(self) -> None:
        """HTTP/WebSocket 연결 종료"""
        if self._ws is not None:
            await self._ws.stop()
        await self.rpc.close()

    # -------------------------------------------------------------------------
    # Catch-up
    # -------------------------------------------------------------------------

    def _scan_queries(self, monitored: MonitoredAddress) -> list[Any]:
        """주소 하나를 빠짐없이 훑기 위한 쿼리 목록 (예: 수신/송신)"""
        raise NotImplementedError

    async def _fetch_page(
        self,
        monitored: MonitoredAddress,
        cursor: ScanCursor | None,
        query: Any,
        page_token: str | None,
    ) -> TransferPage:
        """최신 → 과거 방향 한 페이지 조회 (커서 이후 범위로 제한)"""
        raise NotImplementedError

    async def fetch_transfers_for_address(
        self,
        monitored: MonitoredAddress,
        cursor: ScanCursor | None,
    ) -> list[TransferEvent]:
        """커서 이후 주소의 이체 목록 (오래된 순)

        "현재"부터 커서까지 역방향으로 페이지를 넘기며 모은 뒤
        (블록, 트랜잭션 순서, 순서) 오름차순으로 정렬한다. 커서가 없으면 전체 이력.
        한 트랜잭션의 이벤트는 연속으로 놓이므로 호출자는 트랜잭션 단위로 커밋할 수 있다.

        Args:
            monitored: 모니터링 주소
            cursor: 마지막으로 커밋된 스캔 위치

        Returns:
            중복 제거된 TransferEvent 목록
        """
        collected: dict[tuple[str, int, str | None], TransferEvent] = {}
        # 트랜잭션별 첫 발견 순서 (페이지는 최신 → 과거)
        first_seen: dict[str, int] = {}
        pages = 0

        for query in self._scan_queries(monitored):
            page_token: str | None = None
            while True:
                if pages > 0:
                    await asyncio.sleep(self.page_delay)

                page = await self._fetch_page(monitored, cursor, query, page_token)
                pages += 1

                for event in page.events:
                    first_seen.setdefault(event.tx_hash, len(first_seen))
                    collected.setdefault(event.dedup_key, event)

                if page.next_token is None:
                    break
                page_token = page.next_token

        # 같은 블록/슬롯의 트랜잭션은 발견 순서를 뒤집어 오래된 것부터 처리
        last = len(first_seen) - 1
        events = sorted(
            (replace(e, tx_index=last - first_seen[e.tx_hash]) for e in collected.values()),
            key=lambda e: e.sort_key,
        )

        logger.debug(
            f"Catch-up 조회: {self.chain_id} {monitored.address} ({len(events)}건, {pages}페이지)",
            extra={
                "chain_id": self.chain_id,
                "address": monitored.address,
                "events": len(events),
                "pages": pages,
            },
        )
        return events

    # -------------------------------------------------------------------------
    # 계열별 구현 대상
    # -------------------------------------------------------------------------

    async def get_transaction_transfers(self, tx_hash: str) -> list[TransferEvent]:
        raise NotImplementedError

    async def subscribe(
        self,
        monitored: MonitoredAddress,
        on_transaction: TransactionCallback,
    ) -> list[str]:
        raise NotImplementedError

    async def unsubscribe(self, handle: str) -> None:
        """구독 해제"""
        if self._ws is None:
            return
        await self._ws.unsubscribe(handle)

    async def get_balance(self, address: str, token: SupportedToken) -> int:
        raise NotImplementedError

    async def send_raw_transaction(self, raw_tx: str) -> str:
        raise NotImplementedError

    async def resolve_monitored_addresses(
        self,
        owner: str,
        tokens: list[SupportedToken],
    ) -> list[MonitoredAddress]:
        raise NotImplementedError
