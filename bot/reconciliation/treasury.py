"""
Treasury Check

온체인 트레저리 잔고와 원장 트레저리 잔고를 주기적으로 비교.

원장은 사용자에게 귀속된 입출금만 반영하므로 온체인 잔고가 원장보다 크거나 같으면 정상.
온체인 잔고가 모자라면 출금 차감이 0 하한에 걸렸거나 반영 누락이 있다는 신호다.
심볼이 같은 토큰은 체인을 합산해 비교한다 (원장 트레저리는 심볼 단위).
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping

from adapters.interfaces import IChainClient
from core.config.loader import ChainConfig
from core.ledger.store import LedgerStore
from core.storage.cursor_store import CursorStore
from core.storage.token_registry import TokenRegistry
from core.utils.amounts import parse_amount
from core.utils.keys import make_treasury_check_key

logger = logging.getLogger(__name__)


@dataclass
class TreasuryDrift:
    """토큰 심볼 하나의 온체인 / 원장 비교"""

    token_symbol: str
    on_chain: int
    ledger: int

    @property
    def difference(self) -> int:
        return self.on_chain - self.ledger

    @property
    def healthy(self) -> bool:
        return self.on_chain >= self.ledger

    def to_dict(self) -> dict[str, Any]:
        return {
            "on_chain": str(self.on_chain),
            "ledger": str(self.ledger),
            "difference": str(self.difference),
            "healthy": self.healthy,
        }


class TreasuryChecker:
    """트레저리 잔고 점검기

    체인별 트레저리 주소와 사용자 전용 입금 주소의 활성 토큰 잔고를 읽어
    LedgerStore.get_treasury()와 비교한다.

    Args:
        clients: chain_id → 체인 클라이언트
        chains: chain_id → 체인 설정
        registry: 지원 토큰 저장소 (활성 토큰)
        ledger: 원장 저장소
        cursors: kv 저장소 (마지막 결과 기록)
        interval_seconds: 점검 주기 (초)
    """

    def __init__(
        self,
        clients: Mapping[str, IChainClient],
        chains: Mapping[str, ChainConfig],
        registry: TokenRegistry,
        ledger: LedgerStore,
        cursors: CursorStore,
        interval_seconds: float = 300,
    ):
        self.clients = clients
        self.chains = chains
        self.registry = registry
        self.ledger = ledger
        self.cursors = cursors
        self.interval_seconds = interval_seconds

        self.last_report: dict[str, Any] | None = None
        self._monitor_task: asyncio.Task[None] | None = None
        self._running = False

    async def read_on_chain(self) -> tuple[dict[str, int], dict[str, str]]:
        """체인별 잔고 합산

        Returns:
            (token_symbol → 온체인 합계, 실패한 chain_id → 사유)
        """
        totals: dict[str, int] = {}
        errors: dict[str, str] = {}

        for chain_id, client in self.clients.items():
            chain = self.chains.get(chain_id)
            if chain is None:
                continue

            addresses = list(chain.treasury_addresses) + [a for a, _ in chain.deposit_addresses]
            try:
                tokens = await self.registry.list_tokens(chain_id)
                chain_totals: dict[str, int] = {}
                for token in tokens:
                    for address in addresses:
                        balance = await client.get_balance(address, token)
                        chain_totals[token.symbol] = chain_totals.get(token.symbol, 0) + balance
            except Exception as e:
                # 체인 하나의 조회 실패는 보고에 남기고 나머지는 계속
                errors[chain_id] = str(e)
                logger.warning(
                    f"트레저리 잔고 조회 실패: {chain_id}",
                    extra={"chain_id": chain_id, "error": str(e)},
                )
                continue

            for symbol, amount in chain_totals.items():
                totals[symbol] = totals.get(symbol, 0) + amount

        return totals, errors

    async def check_once(self) -> dict[str, Any]:
        """점검 1회

        Returns:
            {
                "checked_at": str,
                "healthy": bool,  # 조회 실패가 없고 모든 심볼이 정상
                "tokens": {symbol: {"on_chain", "ledger", "difference", "healthy"}},
                "errors": {chain_id: 사유},
            }
        """
        on_chain, errors = await self.read_on_chain()
        ledger = {symbol: parse_amount(v) for symbol, v in (await self.ledger.get_treasury()).items()}

        drifts = [
            TreasuryDrift(symbol, on_chain.get(symbol, 0), ledger.get(symbol, 0))
            for symbol in sorted(set(on_chain) | set(ledger))
        ]

        for drift in drifts:
            if not drift.healthy:
                logger.warning(
                    f"트레저리 부족: {drift.token_symbol} "
                    f"온체인 {drift.on_chain} < 원장 {drift.ledger}",
                    extra={
                        "token_symbol": drift.token_symbol,
                        "amount": str(drift.difference),
                    },
                )

        report: dict[str, Any] = {
            "checked_at": datetime.now(timezone.utc).isoformat(),
            "healthy": not errors and all(d.healthy for d in drifts),
            "tokens": {d.token_symbol: d.to_dict() for d in drifts},
            "errors": errors,
        }
        self.last_report = report

        await self.cursors.set(make_treasury_check_key(), report, updated_by="monitor:treasury")

        logger.info(
            f"트레저리 점검: {'정상' if report['healthy'] else '이상'} ({len(drifts)}개 토큰)",
            extra={"healthy": report["healthy"], "failed_chains": sorted(errors)},
        )
        return report

    async def start_monitoring(self) -> None:
        """주기 점검 시작"""
        if self._running:
            return

        self._running = True
        self._monitor_task = asyncio.create_task(self._monitor_loop())
        logger.info("TreasuryChecker monitoring started")

    async def stop_monitoring(self) -> None:
        """주기 점검 중지"""
        self._running = False
        if self._monitor_task:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
            self._monitor_task = None
        logger.info("TreasuryChecker monitoring stopped")

    async def _monitor_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.check_once()
            except Exception as e:
                logger.error(
                    "트레저리 점검 에러",
                    extra={"error": str(e)},
                    exc_info=True,
                )
