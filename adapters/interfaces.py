"""
어댑터 인터페이스 정의

Protocol 기반으로 정의하여 의존성 주입 및 Mock 교체 가능.
모든 체인 클라이언트 구현체는 이 Protocol을 준수해야 함.
"""

from typing import Awaitable, Callable, Protocol, runtime_checkable

from adapters.chain.models import TransferEvent
from core.types import ChainFamily, MonitoredAddress, ScanCursor, SupportedToken


@runtime_checkable
class IChainClient(Protocol):
    """체인 클라이언트 인터페이스

    읽기 전용. 금액은 반드시 base unit 정수(int) 사용.
    """

    chain_id: str
    family: ChainFamily

    # -------------------------------------------------------------------------
    # 조회
    # -------------------------------------------------------------------------

    async def fetch_transfers_for_address(
        self,
        monitored: MonitoredAddress,
        cursor: ScanCursor | None,
    ) -> list[TransferEvent]:
        """커서 이후 주소의 이체 목록

        Args:
            monitored: 모니터링 주소
            cursor: 마지막으로 커밋된 스캔 위치 (None이면 전체 이력)

        Returns:
            오래된 순(블록, 순서 오름차순)으로 정렬된 이체 목록
        """
        ...

    async def get_transaction_transfers(self, tx_hash: str) -> list[TransferEvent]:
        """트랜잭션 하나의 이체 목록 (실패/미확정 트랜잭션은 빈 목록)"""
        ...

    async def get_balance(self, address: str, token: SupportedToken) -> int:
        """온체인 잔고 (base unit)"""
        ...

    async def resolve_monitored_addresses(
        self,
        owner: str,
        tokens: list[SupportedToken],
    ) -> list[MonitoredAddress]:
        """트레저리 지갑을 실제 감시 주소 목록으로 해석"""
        ...

    # -------------------------------------------------------------------------
    # 실시간 구독
    # -------------------------------------------------------------------------

    async def subscribe(
        self,
        monitored: MonitoredAddress,
        on_transaction: Callable[[str], Awaitable[None]],
    ) -> list[str]:
        """주소 관련 트랜잭션 알림 구독

        Args:
            monitored: 모니터링 주소
            on_transaction: 트랜잭션 해시/시그니처를 받는 콜백

        Returns:
            구독 핸들 목록
        """
        ...

    async def unsubscribe(self, handle: str) -> None:
        """구독 해제"""
        ...

    # -------------------------------------------------------------------------
    # 전송 / 종료
    # -------------------------------------------------------------------------

    async def send_raw_transaction(self, raw_tx: str) -> str:
        """서명된 트랜잭션 전송

        Returns:
            트랜잭션 해시 또는 시그니처
        """
        ...

    async def close(self) -> None:
        """연결 종료"""
        ...
