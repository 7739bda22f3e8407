"""
이체 처리기

체인 이벤트 → 분류 → 엔진 반영.
Catch-up 스캐너와 실시간 리스너가 같은 처리기를 공유한다.
"""

import logging
from collections import Counter
from typing import Iterable

from adapters.chain.models import TransferEvent
from bot.classifier.classifier import classify
from bot.reconciliation.engine import ReconciliationEngine
from core.ledger.types import ApplyOutcome
from core.types import MonitoredAddress, SupportedToken

logger = logging.getLogger(__name__)


class TransferProcessor:
    """이체 처리기

    체인별 모니터링 주소 / 지원 토큰 목록을 보관하고 이벤트를 엔진에 전달.

    Args:
        engine: 정산 엔진
    """

    def __init__(self, engine: ReconciliationEngine):
        self.engine = engine
        self._monitored: dict[str, list[MonitoredAddress]] = {}
        self._tokens: dict[str, list[SupportedToken]] = {}
        self.stats: Counter[str] = Counter()

    def set_targets(
        self,
        chain_id: str,
        monitored: Iterable[MonitoredAddress],
        tokens: Iterable[SupportedToken],
    ) -> None:
        """체인의 모니터링 주소 / 지원 토큰 교체"""
        self._monitored[chain_id] = list(monitored)
        self._tokens[chain_id] = list(tokens)

    def monitored_for(self, chain_id: str) -> list[MonitoredAddress]:
        return list(self._monitored.get(chain_id, []))

    def tokens_for(self, chain_id: str) -> list[SupportedToken]:
        return list(self._tokens.get(chain_id, []))

    async def process(self, event: TransferEvent) -> ApplyOutcome | None:
        """이벤트 하나 처리

        Returns:
            엔진 반영 결과, 분류에서 제외되면 None

        Raises:
            엔진 트랜잭션 실패 시 예외 전파 (호출자가 커서를 멈춤)
        """
        classification = classify(
            event,
            self._monitored.get(event.chain_id, []),
            self._tokens.get(event.chain_id, []),
        )

        if classification.transfer is None:
            assert classification.reason is not None
            self.stats[f"discarded:{classification.reason.value}"] += 1
            return None

        outcome = await self.engine.apply(classification.transfer)
        self.stats[outcome.value] += 1
        return outcome
