"""
체인 이벤트 모델

어댑터가 노드 응답을 파싱해 만드는 체인 중립 이체 이벤트.
"""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class TransferEvent:
    """온체인 이체 한 건

    Attributes:
        tx_hash: 트랜잭션 해시 (EVM) 또는 시그니처 (Solana)
        chain_id: 체인 ID
        from_address: 송신 지갑 주소 (Solana 토큰 이체는 소유자 지갑으로 해석됨)
        to_address: 수신 지갑 주소
        amount: base unit 정수 (부호 없음, 방향은 분류기가 결정)
        token_contract: 토큰 컨트랙트/민트 (None이면 네이티브)
        token_symbol: 어댑터가 아는 경우의 심볼 힌트
        block_number: 블록 번호 또는 슬롯
        position: 트랜잭션 내 로그/인스트럭션 순서
        tx_index: 같은 블록/슬롯 안에서의 트랜잭션 순서 (오래된 것이 작음)
        timestamp: 블록 시각 (UTC)
        confirmed: 확정 여부
    """

    tx_hash: str
    chain_id: str
    from_address: str
    to_address: str
    amount: int
    token_contract: str | None = None
    token_symbol: str | None = None
    block_number: int | None = None
    position: int = 0
    tx_index: int = 0
    timestamp: datetime | None = None
    confirmed: bool = True

    @property
    def is_native(self) -> bool:
        return self.token_contract is None

    @property
    def dedup_key(self) -> tuple[str, int, str | None]:
        """페이지 간 중복 제거 키"""
        return (self.tx_hash, self.position, self.token_contract)

    @property
    def sort_key(self) -> tuple[int, int, str, int]:
        """오래된 순 정렬 키 (블록, 트랜잭션 순서, 해시, 트랜잭션 내 순서)

        한 트랜잭션의 이벤트는 항상 연속으로 정렬된다.
        """
        return (self.block_number or 0, self.tx_index, self.tx_hash, self.position)


@dataclass
class TransferPage:
    """Catch-up 스캔 한 페이지

    Attributes:
        events: 페이지의 이체 이벤트
        next_token: 다음 페이지 토큰 (None이면 마지막 페이지)
    """

    events: list[TransferEvent] = field(default_factory=list)
    next_token: str | None = None
