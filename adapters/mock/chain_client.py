"""
Mock 체인 클라이언트

테스트용 Mock 체인 클라이언트.
IChainClient Protocol 준수.
"""

import itertools
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from adapters.chain.errors import ChainRpcError
from adapters.chain.models import TransferEvent
from core.types import ChainFamily, MonitoredAddress, ScanCursor, SupportedToken


@dataclass
class MockChainState:
    """Mock 상태 (메모리 내 저장)"""

    # 주소별 이체 (address -> events)
    transfers: dict[str, list[TransferEvent]] = field(default_factory=dict)

    # 잔고 ((address, symbol) -> amount)
    balances: dict[tuple[str, str], int] = field(default_factory=dict)

    # 구독 (handle -> (monitored, callback))
    subscriptions: dict[str, tuple[MonitoredAddress, Callable[[str], Awaitable[None]]]] = field(
        default_factory=dict
    )
    unsubscribed: list[str] = field(default_factory=list)

    # 호출 기록
    fetch_calls: list[tuple[str, ScanCursor | None]] = field(default_factory=list)
    sent_transactions: list[str] = field(default_factory=list)

    # 시뮬레이션 옵션
    fail_fetch_for: set[str] = field(default_factory=set)

    # 해석된 감시 주소 (owner -> addresses). 없으면 owner 그대로
    resolved: dict[str, list[MonitoredAddress]] = field(default_factory=dict)

    closed: bool = False


class MockChainClient:
    """Mock 체인 클라이언트

    IChainClient Protocol 구현.
    메모리 내 상태 관리로 스캔/구독 시나리오 지원.

    사용 예시:
    ```python
    client = MockChainClient("sepolia")

    # 온체인 이체 추가
    client.add_transfer(event)

    # 실시간 알림 시뮬레이션
    await client.emit(event.tx_hash)
    ```
    """

    def __init__(
        self,
        chain_id: str = "sepolia",
        family: ChainFamily = ChainFamily.EVM,
        state: MockChainState | None = None,
    ):
        self.chain_id = chain_id
        self.family = family
        self.state = state or MockChainState()
        self._handles = itertools.count(1)

    # -------------------------------------------------------------------------
    # 상태 조작 메서드 (테스트용)
    # -------------------------------------------------------------------------

    def add_transfer(self, event: TransferEvent, *addresses: str) -> None:
        """이체 추가 (지정 주소가 없으면 송신/수신 주소 모두에 등록)"""
        for address in addresses or (event.from_address, event.to_address):
            self.state.transfers.setdefault(address, []).append(event)

    def set_balance(self, address: str, token_symbol: str, amount: int) -> None:
        self.state.balances[(address, token_symbol)] = amount

    async def emit(self, tx_hash: str) -> int:
        """해당 트랜잭션에 관련된 주소의 구독 콜백 호출

        Returns:
            호출된 콜백 수
        """
        events = await self.get_transaction_transfers(tx_hash)
        involved = {e.from_address for e in events} | {e.to_address for e in events}

        called = 0
        for monitored, callback in list(self.state.subscriptions.values()):
            if monitored.address in involved or monitored.owner in involved:
                await callback(tx_hash)
                called += 1
        return called

    # -------------------------------------------------------------------------
    # IChainClient
    # -------------------------------------------------------------------------

    async def fetch_transfers_for_address(
        self,
        monitored: MonitoredAddress,
        cursor: ScanCursor | None,
    ) -> list[TransferEvent]:
        self.state.fetch_calls.append((monitored.address, cursor))

        if monitored.address in self.state.fail_fetch_for:
            raise ChainRpcError(code=-1, message="Mock fetch failure")

        events = self.state.transfers.get(monitored.address, [])
        if cursor is not None and cursor.block_number is not None:
            events = [e for e in events if (e.block_number or 0) >= cursor.block_number]

        unique = {e.dedup_key: e for e in events}
        return sorted(unique.values(), key=lambda e: e.sort_key)

    async def get_transaction_transfers(self, tx_hash: str) -> list[TransferEvent]:
        seen: dict[tuple[str, int, str | None], TransferEvent] = {}
        for events in self.state.transfers.values():
            for event in events:
                if event.tx_hash == tx_hash:
                    seen.setdefault(event.dedup_key, event)
        return sorted(seen.values(), key=lambda e: e.sort_key)

    async def get_balance(self, address: str, token: SupportedToken) -> int:
        return self.state.balances.get((address, token.symbol), 0)

    async def resolve_monitored_addresses(
        self,
        owner: str,
        tokens: list[SupportedToken],
    ) -> list[MonitoredAddress]:
        if owner in self.state.resolved:
            return list(self.state.resolved[owner])
        return [MonitoredAddress.create(self.chain_id, self.family, owner)]

    async def subscribe(
        self,
        monitored: MonitoredAddress,
        on_transaction: Callable[[str], Awaitable[None]],
    ) -> list[str]:
        handle = f"mock-sub-{next(self._handles)}"
        self.state.subscriptions[handle] = (monitored, on_transaction)
        return [handle]

    async def unsubscribe(self, handle: str) -> None:
        if self.state.subscriptions.pop(handle, None) is not None:
            self.state.unsubscribed.append(handle)

    async def send_raw_transaction(self, raw_tx: str) -> str:
        self.state.sent_transactions.append(raw_tx)
        return f"0xmock{len(self.state.sent_transactions):060x}"

    async def close(self) -> None:
        self.state.closed = True
