"""
Catch-up 스캐너

모니터링 주소별로 저장된 커서 이후의 이체를 오래된 순서로 재생.

처리 단위는 트랜잭션:
- 같은 tx_hash의 이벤트를 모두 반영한 뒤에만 커서 전진
- 반영 실패 시 해당 주소는 이번 사이클에서 중단, 마지막 커밋 커서 유지
- 재전달된 이체는 엔진의 중복 처리로 흡수
"""

import itertools
import logging
from typing import Any, Mapping

from adapters.interfaces import IChainClient
from bot.reconciliation.processor import TransferProcessor
from bot.scanner.base import BaseScanner
from core.storage.cursor_store import CursorStore
from core.types import ChainFamily, MonitoredAddress
from core.utils.keys import make_monitor_status_key

logger = logging.getLogger(__name__)


class CatchUpScanner(BaseScanner):
    """Catch-up 스캐너 (체인 계열 단위)

    Args:
        family: 체인 계열
        clients: chain_id → 체인 클라이언트 (해당 계열만 스캔)
        processor: 이체 처리기 (모니터링 주소 목록 보유)
        cursors: 커서 저장소
        poll_interval_seconds: 사이클 주기 (초)
    """

    def __init__(
        self,
        family: ChainFamily,
        clients: Mapping[str, IChainClient],
        processor: TransferProcessor,
        cursors: CursorStore,
        poll_interval_seconds: float,
    ):
        super().__init__(family, poll_interval_seconds)
        self.clients = clients
        self.processor = processor
        self.cursors = cursors

    @property
    def scanner_name(self) -> str:
        return f"CatchUp[{self.family.value}]"

    def _family_clients(self) -> list[IChainClient]:
        return [c for c in self.clients.values() if c.family == self.family]

    async def _do_cycle(self) -> dict[str, Any]:
        addresses = 0
        events_processed = 0
        failed: list[str] = []

        for client in self._family_clients():
            for monitored in self.processor.monitored_for(client.chain_id):
                addresses += 1
                try:
                    events_processed += await self.scan_address(client, monitored)
                except Exception as e:
                    failed.append(f"{client.chain_id}:{monitored.address}")
                    logger.error(
                        f"주소 스캔 중단: {client.chain_id} {monitored.address}",
                        extra={
                            "chain_id": client.chain_id,
                            "address": monitored.address,
                            "error": str(e),
                        },
                        exc_info=True,
                    )

        result: dict[str, Any] = {
            "addresses": addresses,
            "events_processed": events_processed,
            "failed_addresses": failed,
        }

        if events_processed > 0 or failed:
            logger.info(f"{self.scanner_name} 사이클 결과", extra=dict(result))

        await self.cursors.set(
            make_monitor_status_key(self.family.value),
            result,
            updated_by="monitor:catchup",
        )
        return result

    async def scan_address(self, client: IChainClient, monitored: MonitoredAddress) -> int:
        """주소 하나 스캔

        Returns:
            처리한 이벤트 수

        Raises:
            조회 또는 반영 실패 시 예외 전파 (커서는 마지막 성공 트랜잭션에 머묾)
        """
        chain_id = client.chain_id
        cursor = await self.cursors.get_cursor(chain_id, monitored.address)
        events = await client.fetch_transfers_for_address(monitored, cursor)

        if not events:
            return 0

        logger.debug(
            f"Catch-up 대상: {chain_id} {monitored.address} ({len(events)}건)",
            extra={"chain_id": chain_id, "address": monitored.address, "events": len(events)},
        )

        last_block = cursor.block_number if cursor else None
        processed = 0

        for tx_hash, group in itertools.groupby(events, key=lambda e: e.tx_hash):
            tx_events = list(group)
            for event in tx_events:
                await self.processor.process(event)
                processed += 1

            block_number = tx_events[-1].block_number
            if block_number is not None:
                last_block = block_number

            await self.cursors.save_cursor(chain_id, monitored.address, last_block, tx_hash)
            await self.cursors.set_last_signature(
                chain_id, monitored.address, tx_hash, updated_by="monitor:catchup"
            )

        return processed
