"""
이체 분류기

체인 이벤트를 모니터링 주소 기준으로 입금 / 출금 / 무관으로 분류하는 순수 함수.
I/O 없음. 사용자 해석은 엔진이 트랜잭션 안에서 수행한다.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable

from adapters.chain.models import TransferEvent
from core.types import ChainFamily, Direction, MonitoredAddress, SupportedToken, normalize_address

logger = logging.getLogger(__name__)


class DiscardReason(str, Enum):
    """분류 제외 사유"""

    UNCONFIRMED = "unconfirmed"
    ZERO_AMOUNT = "zero_amount"
    SELF_TRANSFER = "self_transfer"
    INTERNAL_TRANSFER = "internal_transfer"  # 트레저리 간 이동
    UNSUPPORTED_TOKEN = "unsupported_token"
    NOT_MONITORED = "not_monitored"


@dataclass(frozen=True)
class ClassifiedTransfer:
    """분류된 이체

    Attributes:
        event: 원본 이벤트
        direction: 트레저리 기준 방향
        token: 해석된 지원 토큰
        monitored: 매칭된 모니터링 주소
        counterparty: 상대방 주소 (입금이면 송신자, 출금이면 수신자)
        user_ref: 상대방의 내부 사용자 참조 (엔진이 해석하기 전에는 None)
    """

    event: TransferEvent
    direction: Direction
    token: SupportedToken
    monitored: MonitoredAddress
    counterparty: str
    user_ref: str | None = None

    @property
    def tx_hash(self) -> str:
        return self.event.tx_hash

    @property
    def chain_id(self) -> str:
        return self.event.chain_id

    @property
    def amount(self) -> int:
        return self.event.amount

    @property
    def block_number(self) -> int | None:
        return self.event.block_number

    @property
    def family(self) -> ChainFamily:
        return self.monitored.family

    def with_user(self, user_ref: str) -> "ClassifiedTransfer":
        return replace(self, user_ref=user_ref)


@dataclass(frozen=True)
class Classification:
    """분류 결과 (transfer 또는 reason 중 하나만 설정)"""

    transfer: ClassifiedTransfer | None = None
    reason: DiscardReason | None = None

    @property
    def is_relevant(self) -> bool:
        return self.transfer is not None


def resolve_token(
    event: TransferEvent,
    tokens: Iterable[SupportedToken],
    family: ChainFamily,
) -> SupportedToken | None:
    """이벤트의 토큰을 지원 토큰으로 해석

    네이티브 이벤트는 체인의 네이티브 토큰, 토큰 이벤트는 컨트랙트/민트 일치.
    """
    candidates = [t for t in tokens if t.chain_id == event.chain_id]

    if event.token_contract is None:
        return next((t for t in candidates if t.is_native), None)

    contract = normalize_address(family, event.token_contract)
    return next((t for t in candidates if t.contract == contract), None)


def _discard(event: TransferEvent, reason: DiscardReason) -> Classification:
    logger.info(
        f"이체 제외: {event.tx_hash} ({reason.value})",
        extra={
            "tx_hash": event.tx_hash,
            "chain_id": event.chain_id,
            "from_address": event.from_address,
            "to_address": event.to_address,
            "amount": str(event.amount),
            "reason": reason.value,
        },
    )
    return Classification(reason=reason)


def classify(
    event: TransferEvent,
    monitored: Iterable[MonitoredAddress],
    tokens: Iterable[SupportedToken],
) -> Classification:
    """이체 이벤트 분류

    순서:
    1. 미확정 / 0 금액 제외
    2. 송신 == 수신 제외
    3. 지원 토큰 해석 (실패 시 제외)
    4. 수신자가 모니터링 소유자면 입금, 송신자가 트레저리 소유자면 출금
       (사용자 전용 입금 주소에서 나간 이체는 출금이 아님)

    Args:
        event: 체인 이벤트
        monitored: 모니터링 주소 집합
        tokens: 지원 토큰 목록

    Returns:
        Classification
    """
    if not event.confirmed:
        return _discard(event, DiscardReason.UNCONFIRMED)
    if event.amount <= 0:
        return _discard(event, DiscardReason.ZERO_AMOUNT)

    targets = [m for m in monitored if m.chain_id == event.chain_id]
    if not targets:
        return _discard(event, DiscardReason.NOT_MONITORED)

    family = targets[0].family
    sender = normalize_address(family, event.from_address)
    recipient = normalize_address(family, event.to_address)

    if sender == recipient:
        return _discard(event, DiscardReason.SELF_TRANSFER)

    token = resolve_token(event, tokens, family)
    if token is None:
        return _discard(event, DiscardReason.UNSUPPORTED_TOKEN)

    matching = [m for m in targets if m.accepts(token)]
    owners = {m.owner for m in matching}

    if sender in owners and recipient in owners:
        return _discard(event, DiscardReason.INTERNAL_TRANSFER)

    for target in matching:
        if recipient == target.owner:
            return Classification(
                transfer=ClassifiedTransfer(
                    event=event,
                    direction=Direction.DEPOSIT,
                    token=token,
                    monitored=target,
                    counterparty=sender,
                )
            )
        if sender == target.owner and target.user_ref is None:
            return Classification(
                transfer=ClassifiedTransfer(
                    event=event,
                    direction=Direction.WITHDRAW,
                    token=token,
                    monitored=target,
                    counterparty=recipient,
                )
            )

    return _discard(event, DiscardReason.NOT_MONITORED)
