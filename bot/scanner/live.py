"""
실시간 구독 관리자

모니터링 주소별 체인 구독을 설치/해제하고 알림마다 트랜잭션을 즉시 처리.
같은 주소에 리스너가 중복 설치되지 않도록 항상 해제 후 설치한다.
"""

import logging
from typing import Iterable, Mapping

from adapters.interfaces import IChainClient
from bot.reconciliation.processor import TransferProcessor
from core.storage.cursor_store import CursorStore
from core.types import MonitoredAddress

logger = logging.getLogger(__name__)


class LiveSubscriptionManager:
    """실시간 구독 관리자

    Args:
        clients: chain_id → 체인 클라이언트
        processor: 이체 처리기
        cursors: 커서 저장소 (마지막 처리 시그니처 기록, 선택)
    """

    def __init__(
        self,
        clients: Mapping[str, IChainClient],
        processor: TransferProcessor,
        cursors: CursorStore | None = None,
    ):
        self.clients = clients
        self.processor = processor
        self.cursors = cursors

        # (chain_id, address) → 구독 핸들
        self._handles: dict[tuple[str, str], list[str]] = {}
        self.notifications = 0
        self.errors = 0

    @property
    def listener_count(self) -> int:
        """리스너가 설치된 주소 수"""
        return len(self._handles)

    def listener_counts(self) -> dict[str, int]:
        """체인별 리스너 수"""
        counts: dict[str, int] = {}
        for chain_id, _ in self._handles:
            counts[chain_id] = counts.get(chain_id, 0) + 1
        return counts

    async def register(self, monitored: MonitoredAddress) -> list[str]:
        """주소 리스너 설치 (기존 리스너 해제 후)

        Returns:
            구독 핸들 목록 (구독 미지원이면 빈 목록)
        """
        client = self.clients.get(monitored.chain_id)
        if client is None:
            logger.warning(
                f"체인 클라이언트 없음, 리스너 설치 생략: {monitored.chain_id}",
                extra={"chain_id": monitored.chain_id, "address": monitored.address},
            )
            return []

        await self.deregister(monitored)

        if not getattr(client, "supports_subscriptions", True):
            return []

        handles = await client.subscribe(monitored, self._make_callback(client, monitored))
        self._handles[(monitored.chain_id, monitored.address)] = handles

        logger.info(
            f"리스너 설치: {monitored.chain_id} {monitored.address}",
            extra={
                "chain_id": monitored.chain_id,
                "address": monitored.address,
                "handles": len(handles),
            },
        )
        return handles

    async def deregister(self, monitored: MonitoredAddress) -> None:
        """주소 리스너 해제"""
        await self._deregister_key((monitored.chain_id, monitored.address))

    async def _deregister_key(self, key: tuple[str, str]) -> None:
        handles = self._handles.pop(key, None)
        if not handles:
            return

        client = self.clients.get(key[0])
        if client is None:
            return

        for handle in handles:
            try:
                await client.unsubscribe(handle)
            except Exception as e:
                logger.warning(
                    f"구독 해제 실패: {key[0]} {key[1]} ({handle})",
                    extra={"chain_id": key[0], "address": key[1], "error": str(e)},
                )

        logger.info(
            f"리스너 해제: {key[0]} {key[1]}",
            extra={"chain_id": key[0], "address": key[1]},
        )

    async def replace_all(self, monitored: Iterable[MonitoredAddress]) -> int:
        """모든 리스너 해제 후 새 집합 설치

        Returns:
            설치된 주소 수
        """
        targets = list(monitored)

        for key in list(self._handles):
            await self._deregister_key(key)

        for target in targets:
            try:
                await self.register(target)
            except Exception as e:
                logger.error(
                    f"리스너 설치 실패: {target.chain_id} {target.address}",
                    extra={
                        "chain_id": target.chain_id,
                        "address": target.address,
                        "error": str(e),
                    },
                    exc_info=True,
                )

        logger.info(f"리스너 교체 완료: {self.listener_count}개 주소")
        return self.listener_count

    async def stop(self) -> None:
        """모든 리스너 해제"""
        for key in list(self._handles):
            await self._deregister_key(key)

    def _make_callback(self, client: IChainClient, monitored: MonitoredAddress):
        async def on_transaction(tx_hash: str) -> None:
            await self.handle_transaction(client, monitored, tx_hash)

        return on_transaction

    async def handle_transaction(
        self,
        client: IChainClient,
        monitored: MonitoredAddress,
        tx_hash: str,
    ) -> None:
        """알림 하나 처리 (예외는 로깅 후 삼킴, 리스너 유지)"""
        self.notifications += 1

        try:
            events = await client.get_transaction_transfers(tx_hash)
            for event in events:
                await self.processor.process(event)

            if self.cursors is not None:
                await self.cursors.set_last_signature(
                    monitored.chain_id, monitored.address, tx_hash, updated_by="monitor:live"
                )
        except Exception as e:
            self.errors += 1
            logger.error(
                f"실시간 알림 처리 실패: {tx_hash}",
                extra={
                    "chain_id": monitored.chain_id,
                    "address": monitored.address,
                    "tx_hash": tx_hash,
                    "error": str(e),
                },
                exc_info=True,
            )
