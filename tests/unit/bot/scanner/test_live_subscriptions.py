"""
LiveSubscriptionManager 테스트
"""

from typing import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from adapters.chain.models import TransferEvent
from adapters.db.sqlite_adapter import SQLiteAdapter
from adapters.mock.chain_client import MockChainClient
from bot.reconciliation.engine import ReconciliationEngine
from bot.reconciliation.processor import TransferProcessor
from bot.scanner.live import LiveSubscriptionManager
from core.ledger.store import LedgerStore
from core.storage.cursor_store import CursorStore
from core.storage.wallet_directory import WalletDirectory
from core.types import ChainFamily, MonitoredAddress, SupportedToken

TREASURY = "0x" + "aa" * 20
USER = "0x" + "bb" * 20
TX = "0x" + "0c" * 32


@pytest.fixture
def monitored() -> MonitoredAddress:
    return MonitoredAddress.create("sepolia", ChainFamily.EVM, TREASURY)


@pytest.fixture
def client() -> MockChainClient:
    return MockChainClient("sepolia")


@pytest.fixture
def processor() -> MagicMock:
    processor = MagicMock()
    processor.process = AsyncMock(return_value=None)
    return processor


class TestRegistration:
    """리스너 설치 / 해제"""

    @pytest.mark.asyncio
    async def test_register_subscribes_once_per_address(
        self, client: MockChainClient, processor: MagicMock, monitored: MonitoredAddress
    ) -> None:
        """같은 주소 재설치 시 기존 리스너를 먼저 해제"""
        live = LiveSubscriptionManager({"sepolia": client}, processor)

        first = await live.register(monitored)
        second = await live.register(monitored)

        assert live.listener_count == 1
        assert len(client.state.subscriptions) == 1
        assert client.state.unsubscribed == first
        assert list(client.state.subscriptions) == second

    @pytest.mark.asyncio
    async def test_register_unknown_chain(self, processor: MagicMock) -> None:
        live = LiveSubscriptionManager({}, processor)
        monitored = MonitoredAddress.create("mainnet", ChainFamily.EVM, TREASURY)

        assert await live.register(monitored) == []
        assert live.listener_count == 0

    @pytest.mark.asyncio
    async def test_client_without_subscription_support(
        self, processor: MagicMock, monitored: MonitoredAddress
    ) -> None:
        client = MagicMock()
        client.supports_subscriptions = False
        client.subscribe = AsyncMock()
        live = LiveSubscriptionManager({"sepolia": client}, processor)

        assert await live.register(monitored) == []
        client.subscribe.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_deregister_unsubscribe_error_logged(
        self, processor: MagicMock, monitored: MonitoredAddress
    ) -> None:
        client = MagicMock()
        client.subscribe = AsyncMock(return_value=["h1", "h2"])
        client.unsubscribe = AsyncMock(side_effect=[RuntimeError("gone"), None])
        live = LiveSubscriptionManager({"sepolia": client}, processor)

        await live.register(monitored)
        await live.deregister(monitored)

        assert live.listener_count == 0
        assert client.unsubscribe.await_count == 2

    @pytest.mark.asyncio
    async def test_replace_all(self, client: MockChainClient, processor: MagicMock) -> None:
        """교체 후에는 새 집합의 리스너만 남음"""
        solana = MockChainClient("solana-devnet", family=ChainFamily.SOLANA)
        live = LiveSubscriptionManager({"sepolia": client, "solana-devnet": solana}, processor)
        old = MonitoredAddress.create("sepolia", ChainFamily.EVM, "0x" + "dd" * 20)
        await live.register(old)

        count = await live.replace_all(
            [
                MonitoredAddress.create("sepolia", ChainFamily.EVM, TREASURY),
                MonitoredAddress.create("solana-devnet", ChainFamily.SOLANA, "SoLTreasury"),
            ]
        )

        assert count == 2
        assert live.listener_counts() == {"sepolia": 1, "solana-devnet": 1}
        assert len(client.state.unsubscribed) == 1
        (remaining,) = client.state.subscriptions.values()
        assert remaining[0].address == TREASURY

    @pytest.mark.asyncio
    async def test_replace_all_continues_after_failure(self, processor: MagicMock) -> None:
        broken = MagicMock()
        broken.subscribe = AsyncMock(side_effect=RuntimeError("ws down"))
        healthy = MockChainClient("solana-devnet", family=ChainFamily.SOLANA)
        live = LiveSubscriptionManager({"sepolia": broken, "solana-devnet": healthy}, processor)

        count = await live.replace_all(
            [
                MonitoredAddress.create("sepolia", ChainFamily.EVM, TREASURY),
                MonitoredAddress.create("solana-devnet", ChainFamily.SOLANA, "SoLTreasury"),
            ]
        )

        assert count == 1
        assert live.listener_counts() == {"solana-devnet": 1}

    @pytest.mark.asyncio
    async def test_stop_removes_everything(
        self, client: MockChainClient, processor: MagicMock, monitored: MonitoredAddress
    ) -> None:
        live = LiveSubscriptionManager({"sepolia": client}, processor)
        await live.register(monitored)

        await live.stop()

        assert live.listener_count == 0
        assert client.state.subscriptions == {}


class TestNotifications:
    """알림 처리"""

    @pytest.mark.asyncio
    async def test_notification_applies_deposit(
        self,
        db: SQLiteAdapter,
        client: MockChainClient,
        monitored: MonitoredAddress,
        sepolia_tokens: list[SupportedToken],
        make_event: Callable[..., TransferEvent],
    ) -> None:
        """알림 → 트랜잭션 조회 → 분류 → 엔진 반영"""
        ledger = LedgerStore(db)
        wallets = WalletDirectory(db)
        await wallets.register("user-1", USER, ChainFamily.EVM)
        processor = TransferProcessor(ReconciliationEngine(db, ledger, wallets))
        processor.set_targets("sepolia", [monitored], sepolia_tokens)
        cursors = CursorStore(db)
        live = LiveSubscriptionManager({"sepolia": client}, processor, cursors)

        await live.register(monitored)
        client.add_transfer(make_event(tx_hash=TX, amount=2_000_000_000_000_000))

        assert await client.emit(TX) == 1
        # 같은 알림이 다시 와도 한 번만 반영
        await client.emit(TX)

        wallet = await ledger.get_wallet_balance("user-1")
        assert wallet is not None
        assert wallet.balances["eth"] == "2000000000000000"
        assert live.notifications == 2
        assert await cursors.get_last_signature("sepolia", TREASURY) == TX

    @pytest.mark.asyncio
    async def test_notification_error_swallowed(
        self, processor: MagicMock, monitored: MonitoredAddress
    ) -> None:
        client = MagicMock()
        client.get_transaction_transfers = AsyncMock(side_effect=RuntimeError("rpc down"))
        live = LiveSubscriptionManager({"sepolia": client}, processor)

        await live.handle_transaction(client, monitored, TX)

        assert live.errors == 1
        processor.process.assert_not_awaited()
