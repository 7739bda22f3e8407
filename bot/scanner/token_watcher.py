"""
토큰 피드 감시

supported_token 테이블의 체인별 마지막 수정 시각을 주기적으로 확인하고,
변경되면 토큰 목록과 모니터링 주소를 다시 구성한 뒤 실시간 리스너를 교체한다.
토큰 계정이 없어 지갑 주소로 대신 감시 중인 토큰은 계정이 생길 때까지 매 주기 다시 해석한다.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Mapping

from adapters.interfaces import IChainClient
from bot.reconciliation.processor import TransferProcessor
from bot.scanner.live import LiveSubscriptionManager
from core.config.loader import ChainConfig
from core.storage.cursor_store import CursorStore
from core.storage.token_registry import TokenRegistry
from core.types import MonitoredAddress
from core.utils.keys import make_token_feed_key

logger = logging.getLogger(__name__)

_UNSEEN = object()


class TokenFeedWatcher:
    """토큰 피드 감시자

    Args:
        registry: 지원 토큰 저장소
        clients: chain_id → 체인 클라이언트
        chains: chain_id → 체인 설정 (트레저리 주소)
        processor: 이체 처리기 (대상 목록 갱신)
        cursors: 커서 저장소 (마지막 확인 시각 기록)
        live: 실시간 구독 관리자 (없으면 리스너 교체 생략)
        interval_seconds: 확인 주기 (초)
    """

    def __init__(
        self,
        registry: TokenRegistry,
        clients: Mapping[str, IChainClient],
        chains: Mapping[str, ChainConfig],
        processor: TransferProcessor,
        cursors: CursorStore,
        live: LiveSubscriptionManager | None = None,
        interval_seconds: float = 60,
    ):
        self.registry = registry
        self.clients = clients
        self.chains = chains
        self.processor = processor
        self.cursors = cursors
        self.live = live
        self.interval_seconds = interval_seconds

        self._last_seen: dict[str, object] = {}
        self._monitor_task: asyncio.Task[None] | None = None
        self._running = False

    async def refresh_chain(self, chain_id: str) -> list[MonitoredAddress]:
        """체인의 토큰 / 모니터링 주소 재구성

        트레저리 주소와 사용자 전용 입금 주소를 모두 감시 주소로 해석한다.

        Returns:
            새 모니터링 주소 목록
        """
        client = self.clients[chain_id]
        chain = self.chains[chain_id]

        tokens = await self.registry.list_tokens(chain_id)
        monitored: list[MonitoredAddress] = []
        for owner in chain.treasury_addresses:
            monitored.extend(await client.resolve_monitored_addresses(owner, tokens))
        for address, user_ref in chain.deposit_addresses:
            for target in await client.resolve_monitored_addresses(address, tokens):
                monitored.append(replace(target, user_ref=user_ref))

        self.processor.set_targets(chain_id, monitored, tokens)

        logger.info(
            f"모니터링 대상 갱신: {chain_id} (토큰 {len(tokens)}개, 주소 {len(monitored)}개)",
            extra={"chain_id": chain_id, "tokens": len(tokens), "addresses": len(monitored)},
        )
        return monitored

    async def check_once(self) -> list[str]:
        """변경 확인 1회 (첫 호출은 모든 체인을 변경으로 간주)

        토큰 피드가 그대로여도 토큰 계정을 기다리는 지갑 대상이 있으면 다시 해석하고,
        감시 주소가 바뀌었을 때만 변경으로 본다.

        Returns:
            갱신된 chain_id 목록
        """
        changed: list[str] = []

        for chain_id in self.clients:
            if chain_id not in self.chains:
                continue

            try:
                modified = await self.registry.last_modified(chain_id)
                if self._last_seen.get(chain_id, _UNSEEN) == modified:
                    if await self._resolve_pending_accounts(chain_id):
                        changed.append(chain_id)
                    continue

                await self.refresh_chain(chain_id)
                self._last_seen[chain_id] = modified
                changed.append(chain_id)

                await self.cursors.set(
                    make_token_feed_key(chain_id),
                    {"last_modified": modified},
                    updated_by="monitor:token_feed",
                )
            except Exception as e:
                # 이전 대상 유지, 다음 주기에 재시도
                logger.error(
                    f"토큰 피드 갱신 실패: {chain_id}",
                    extra={"chain_id": chain_id, "error": str(e)},
                    exc_info=True,
                )

        if changed and self.live is not None:
            everything: list[MonitoredAddress] = []
            for chain_id in self.clients:
                everything.extend(self.processor.monitored_for(chain_id))
            await self.live.replace_all(everything)

        return changed

    async def _resolve_pending_accounts(self, chain_id: str) -> bool:
        """토큰 계정 대기 중인 지갑 대상 재해석

        Returns:
            감시 주소가 바뀌었으면 True
        """
        current = self.processor.monitored_for(chain_id)
        if not any(m.awaits_token_account for m in current):
            return False

        refreshed = await self.refresh_chain(chain_id)
        if set(refreshed) == set(current):
            return False

        logger.info(
            f"새 토큰 계정 감지: {chain_id}",
            extra={"chain_id": chain_id, "addresses": len(refreshed)},
        )
        return True

    async def start_monitoring(self) -> None:
        """주기 확인 시작"""
        if self._running:
            return

        self._running = True
        self._monitor_task = asyncio.create_task(self._monitor_loop())
        logger.info("TokenFeedWatcher monitoring started")

    async def stop_monitoring(self) -> None:
        """주기 확인 중지"""
        self._running = False
        if self._monitor_task:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
            self._monitor_task = None
        logger.info("TokenFeedWatcher monitoring stopped")

    async def _monitor_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval_seconds)
            await self.check_once()
