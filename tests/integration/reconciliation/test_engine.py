"""
ReconciliationEngine 통합 테스트

실제 SQLite(임시 파일)로 원자성, 멱등성, tracking_number, 출금 매칭 확인.
"""

import asyncio
from typing import Callable
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio

from adapters.chain.models import TransferEvent
from adapters.db.sqlite_adapter import SQLiteAdapter
from bot.classifier.classifier import ClassifiedTransfer, classify
from bot.reconciliation.engine import ReconciliationEngine
from bot.reconciliation.processor import TransferProcessor
from core.ledger.store import LedgerStore
from core.ledger.types import ApplyOutcome, HistoryActionType
from core.storage.wallet_directory import WalletDirectory
from core.types import ChainFamily, MonitoredAddress, SupportedToken, UnassociatedStatus, WithdrawStatus

TREASURY = "0x" + "aa" * 20
USER = "0x" + "bb" * 20
STRANGER = "0x" + "cc" * 20
USDC = "0x1c7d4b196cb0c7b01d743fbc6116a902379c7238"

SOL_TREASURY = "TreasuryWa11et1111111111111111111111111111"
SOL_USER = "UserWa11et111111111111111111111111111111111"


def _tx(n: int) -> str:
    return "0x" + f"{n:02x}" * 32


@pytest.fixture
def ledger(db: SQLiteAdapter) -> LedgerStore:
    return LedgerStore(db)


@pytest.fixture
def wallets(db: SQLiteAdapter) -> WalletDirectory:
    return WalletDirectory(db)


@pytest.fixture
def engine(db: SQLiteAdapter, ledger: LedgerStore, wallets: WalletDirectory) -> ReconciliationEngine:
    return ReconciliationEngine(db, ledger, wallets)


@pytest_asyncio.fixture
async def user_42(wallets: WalletDirectory) -> str:
    await wallets.register("42", USER, ChainFamily.EVM)
    return "42"


@pytest.fixture
def to_transfer(
    treasury_monitored: MonitoredAddress,
    sepolia_tokens: list[SupportedToken],
) -> Callable[[TransferEvent], ClassifiedTransfer]:
    def _classify(event: TransferEvent) -> ClassifiedTransfer:
        result = classify(event, [treasury_monitored], sepolia_tokens)
        assert result.transfer is not None, result.reason
        return result.transfer

    return _classify


class TestDepositFlow:
    """입금 반영"""

    @pytest.mark.asyncio
    async def test_full_deposit_flow(
        self,
        engine: ReconciliationEngine,
        ledger: LedgerStore,
        user_42: str,
        make_event: Callable[..., TransferEvent],
        to_transfer: Callable[[TransferEvent], ClassifiedTransfer],
    ) -> None:
        """사용자 → 트레저리 0.002 ETH: 기록, 트레저리, 잔고, 히스토리 모두 반영"""
        event = make_event(tx_hash="0xaa", amount=2_000_000_000_000_000, block_number=100)

        outcome = await engine.apply(to_transfer(event))

        assert outcome == ApplyOutcome.APPLIED

        deposit = await ledger.get_deposit("0xaa")
        assert deposit is not None
        assert deposit.user_ref == "42"
        assert deposit.tracking_number == 1
        assert deposit.amount == "2000000000000000"
        assert deposit.from_address == USER
        assert deposit.block_number == 100

        assert (await ledger.get_treasury())["eth"] == "2000000000000000"

        wallet = await ledger.get_wallet_balance("42")
        assert wallet is not None
        assert wallet.balances["eth"] == "2000000000000000"
        assert wallet.funding_balances["eth"] == "0"

        history = await ledger.get_latest_history("42")
        assert history is not None
        assert history.action_type == HistoryActionType.DEPOSIT
        assert history.action_id == deposit.id
        assert history.total_deposited == {"eth": "2000000000000000"}
        assert history.total_withdrawn == {}

    @pytest.mark.asyncio
    async def test_same_transaction_applied_once(
        self,
        db: SQLiteAdapter,
        wallets: WalletDirectory,
    ) -> None:
        """같은 tx_hash 두 번 → 기록 1개, 트레저리/잔고 1회 증가"""
        await wallets.register("sol-user", SOL_USER, ChainFamily.SOLANA)
        ledger = LedgerStore(db)
        engine = ReconciliationEngine(db, ledger, wallets)
        sol = SupportedToken.create("solana-devnet", "sol", 9, family=ChainFamily.SOLANA)
        monitored = MonitoredAddress.create("solana-devnet", ChainFamily.SOLANA, SOL_TREASURY)
        event = TransferEvent(
            tx_hash="abc",
            chain_id="solana-devnet",
            from_address=SOL_USER,
            to_address=SOL_TREASURY,
            amount=1_000_000,
            block_number=300,
        )
        transfer = classify(event, [monitored], [sol]).transfer
        assert transfer is not None

        assert await engine.apply(transfer) == ApplyOutcome.APPLIED
        assert await engine.apply(transfer) == ApplyOutcome.DUPLICATE

        assert (await ledger.get_treasury())["sol"] == "1000000"
        assert len(await ledger.get_deposits("sol-user")) == 1
        assert len(await ledger.get_history("sol-user")) == 1

    @pytest.mark.asyncio
    async def test_tracking_numbers_sequential(
        self,
        engine: ReconciliationEngine,
        ledger: LedgerStore,
        user_42: str,
        make_event: Callable[..., TransferEvent],
        to_transfer: Callable[[TransferEvent], ClassifiedTransfer],
    ) -> None:
        for n in (1, 2, 3):
            await engine.apply(to_transfer(make_event(tx_hash=_tx(n), amount=n, block_number=n)))

        deposits = await ledger.get_deposits("42")
        assert [d.tracking_number for d in deposits] == [1, 2, 3]

        history = await ledger.get_history("42")
        assert [h.total_deposited["eth"] for h in history] == ["1", "3", "6"]

    @pytest.mark.asyncio
    async def test_concurrent_deposits_get_distinct_tracking_numbers(
        self,
        engine: ReconciliationEngine,
        ledger: LedgerStore,
        user_42: str,
        make_event: Callable[..., TransferEvent],
        to_transfer: Callable[[TransferEvent], ClassifiedTransfer],
    ) -> None:
        """동시에 제출된 서로 다른 입금도 1, 2"""
        first = to_transfer(make_event(tx_hash=_tx(1), amount=10))
        second = to_transfer(make_event(tx_hash=_tx(2), amount=20))

        outcomes = await asyncio.gather(engine.apply(first), engine.apply(second))

        assert outcomes == [ApplyOutcome.APPLIED, ApplyOutcome.APPLIED]
        deposits = await ledger.get_deposits("42")
        assert sorted(d.tracking_number for d in deposits) == [1, 2]
        assert (await ledger.get_treasury())["eth"] == "30"

    @pytest.mark.asyncio
    async def test_concurrent_redelivery_applied_once(
        self,
        engine: ReconciliationEngine,
        ledger: LedgerStore,
        user_42: str,
        make_event: Callable[..., TransferEvent],
        to_transfer: Callable[[TransferEvent], ClassifiedTransfer],
    ) -> None:
        """스캐너와 리스너가 같은 이체를 동시에 전달"""
        transfer = to_transfer(make_event(tx_hash=_tx(5), amount=77))

        outcomes = await asyncio.gather(*(engine.apply(transfer) for _ in range(3)))

        assert sorted(o.value for o in outcomes) == ["applied", "duplicate", "duplicate"]
        assert (await ledger.get_treasury())["eth"] == "77"

    @pytest.mark.asyncio
    async def test_second_transfer_in_same_transaction_is_duplicate(
        self,
        engine: ReconciliationEngine,
        ledger: LedgerStore,
        user_42: str,
        make_event: Callable[..., TransferEvent],
        to_transfer: Callable[[TransferEvent], ClassifiedTransfer],
    ) -> None:
        """tx_hash가 기록 키이므로 한 트랜잭션의 두 번째 입금은 반영되지 않음"""
        native = to_transfer(make_event(tx_hash=_tx(6), amount=5, position=-1))
        token = to_transfer(make_event(tx_hash=_tx(6), amount=9, position=3, token_contract=USDC))

        assert await engine.apply(native) == ApplyOutcome.APPLIED
        assert await engine.apply(token) == ApplyOutcome.DUPLICATE
        assert await ledger.get_treasury() == {"eth": "5"}

    @pytest.mark.asyncio
    async def test_unique_violation_becomes_duplicate(
        self,
        engine: ReconciliationEngine,
        ledger: LedgerStore,
        user_42: str,
        make_event: Callable[..., TransferEvent],
        to_transfer: Callable[[TransferEvent], ClassifiedTransfer],
    ) -> None:
        """사전 조회를 통과해도 tx_hash 유니크 인덱스가 중복 반영을 막음"""
        transfer = to_transfer(make_event(tx_hash=_tx(8), amount=11))
        assert await engine.apply(transfer) == ApplyOutcome.APPLIED

        with patch.object(ledger, "find_deposit_by_tx", new=AsyncMock(return_value=None)):
            assert await engine.apply(transfer) == ApplyOutcome.DUPLICATE

        assert await ledger.get_treasury() == {"eth": "11"}
        assert len(await ledger.get_history("42")) == 1

    @pytest.mark.asyncio
    async def test_failure_rolls_back_everything(
        self,
        engine: ReconciliationEngine,
        ledger: LedgerStore,
        user_42: str,
        make_event: Callable[..., TransferEvent],
        to_transfer: Callable[[TransferEvent], ClassifiedTransfer],
    ) -> None:
        """히스토리 기록 실패 시 입금 기록과 잔고 변경도 롤백"""
        transfer = to_transfer(make_event(tx_hash=_tx(7), amount=100))

        with patch.object(ledger, "append_history", new=AsyncMock(side_effect=RuntimeError("disk full"))):
            with pytest.raises(RuntimeError):
                await engine.apply(transfer)

        assert await ledger.get_deposit(_tx(7)) is None
        assert await ledger.get_treasury() == {}
        assert await ledger.get_wallet_balance("42") is None

        # 재시도하면 정상 반영
        assert await engine.apply(transfer) == ApplyOutcome.APPLIED

    @pytest.mark.asyncio
    async def test_concurrent_reads_never_see_uncommitted_writes(
        self,
        engine: ReconciliationEngine,
        ledger: LedgerStore,
        user_42: str,
        make_event: Callable[..., TransferEvent],
        to_transfer: Callable[[TransferEvent], ClassifiedTransfer],
    ) -> None:
        """트랜잭션 도중의 조회는 커밋(또는 롤백) 이후 상태만 본다"""
        transfer = to_transfer(make_event(tx_hash=_tx(9), amount=100))
        reached = asyncio.Event()
        release = asyncio.Event()

        async def stall_then_fail(*args: object, **kwargs: object) -> None:
            reached.set()
            await release.wait()
            raise RuntimeError("disk full")

        with patch.object(ledger, "adjust_wallet_balance", new=stall_then_fail):
            apply_task = asyncio.create_task(engine.apply(transfer))
            await reached.wait()

            # 입금 기록과 트레저리 변경이 커밋되지 않은 채 열려 있는 시점의 조회
            deposit_task = asyncio.create_task(ledger.get_deposit(_tx(9)))
            treasury_task = asyncio.create_task(ledger.get_treasury())
            await asyncio.sleep(0.05)
            assert not deposit_task.done()
            assert not treasury_task.done()

            release.set()
            with pytest.raises(RuntimeError):
                await apply_task

        assert await deposit_task is None
        assert await treasury_task == {}


class TestUnassociatedDeposits:
    """미연결 입금"""

    @pytest.mark.asyncio
    async def test_unknown_sender_recorded_without_balance_change(
        self,
        engine: ReconciliationEngine,
        ledger: LedgerStore,
        make_event: Callable[..., TransferEvent],
        to_transfer: Callable[[TransferEvent], ClassifiedTransfer],
    ) -> None:
        event = make_event(tx_hash=_tx(8), from_address=STRANGER, amount=300)

        assert await engine.apply(to_transfer(event)) == ApplyOutcome.UNASSOCIATED
        assert await engine.apply(to_transfer(event)) == ApplyOutcome.UNASSOCIATED

        (record,) = await ledger.list_unassociated_deposits()
        assert record.tx_hash == _tx(8)
        assert record.from_address == STRANGER
        assert record.to_address == TREASURY
        assert record.amount == "300"
        assert record.status == UnassociatedStatus.DETECTED
        assert await ledger.get_treasury() == {}

    @pytest.mark.asyncio
    async def test_claim_credits_user(
        self,
        engine: ReconciliationEngine,
        ledger: LedgerStore,
        make_event: Callable[..., TransferEvent],
        to_transfer: Callable[[TransferEvent], ClassifiedTransfer],
    ) -> None:
        await engine.apply(to_transfer(make_event(tx_hash=_tx(9), from_address=STRANGER, amount=300)))

        assert await engine.claim_unassociated_deposit(_tx(9), "77", reviewed_by="admin") == ApplyOutcome.APPLIED
        assert await engine.claim_unassociated_deposit(_tx(9), "77") == ApplyOutcome.DUPLICATE
        assert await engine.claim_unassociated_deposit(_tx(99), "77") == ApplyOutcome.NO_MATCH

        deposit = await ledger.get_deposit(_tx(9))
        assert deposit is not None and deposit.user_ref == "77"
        assert (await ledger.get_treasury())["eth"] == "300"

        record = await ledger.get_unassociated_deposit(_tx(9))
        assert record is not None
        assert record.status == UnassociatedStatus.ASSOCIATED
        assert record.reviewed_by == "admin"
        assert record.admin_notes == "claimed by 77"

    @pytest.mark.asyncio
    async def test_redelivery_after_wallet_registration(
        self,
        engine: ReconciliationEngine,
        ledger: LedgerStore,
        wallets: WalletDirectory,
        make_event: Callable[..., TransferEvent],
        to_transfer: Callable[[TransferEvent], ClassifiedTransfer],
    ) -> None:
        """지갑 등록 후 같은 이체가 다시 오면 반영하고 미연결 기록을 연결 처리"""
        transfer = to_transfer(make_event(tx_hash=_tx(10), from_address=STRANGER, amount=40))
        await engine.apply(transfer)

        await wallets.register("new-user", STRANGER, ChainFamily.EVM)

        assert await engine.apply(transfer) == ApplyOutcome.APPLIED
        record = await ledger.get_unassociated_deposit(_tx(10))
        assert record is not None and record.status == UnassociatedStatus.ASSOCIATED


class TestUserDepositAddresses:
    """사용자 전용 입금 주소로 들어온 입금"""

    DEPOSIT_ADDRESS = "0x" + "dd" * 20

    @pytest.mark.asyncio
    async def test_unknown_sender_credited_to_address_owner(
        self,
        engine: ReconciliationEngine,
        ledger: LedgerStore,
        make_event: Callable[..., TransferEvent],
        sepolia_tokens: list[SupportedToken],
    ) -> None:
        """거래소 등 미등록 송신자라도 입금 주소의 사용자에게 반영"""
        monitored = MonitoredAddress.create(
            "sepolia", ChainFamily.EVM, self.DEPOSIT_ADDRESS, user_ref="77"
        )
        event = make_event(
            tx_hash=_tx(40), from_address=STRANGER, to_address=self.DEPOSIT_ADDRESS, amount=300
        )
        result = classify(event, [monitored], sepolia_tokens)
        assert result.transfer is not None

        assert await engine.apply(result.transfer) == ApplyOutcome.APPLIED

        deposit = await ledger.get_deposit(_tx(40))
        assert deposit is not None
        assert deposit.user_ref == "77"
        assert deposit.from_address == STRANGER
        assert await ledger.get_treasury() == {"eth": "300"}
        assert await ledger.get_unassociated_deposit(_tx(40)) is None

    @pytest.mark.asyncio
    async def test_address_owner_wins_over_registered_sender(
        self,
        engine: ReconciliationEngine,
        ledger: LedgerStore,
        user_42: str,
        make_event: Callable[..., TransferEvent],
        sepolia_tokens: list[SupportedToken],
    ) -> None:
        """송신 지갑이 다른 사용자 것이어도 입금 주소 소유자에게 반영"""
        monitored = MonitoredAddress.create(
            "sepolia", ChainFamily.EVM, self.DEPOSIT_ADDRESS, user_ref="77"
        )
        event = make_event(tx_hash=_tx(41), to_address=self.DEPOSIT_ADDRESS, amount=5)
        result = classify(event, [monitored], sepolia_tokens)
        assert result.transfer is not None

        assert await engine.apply(result.transfer) == ApplyOutcome.APPLIED

        deposit = await ledger.get_deposit(_tx(41))
        assert deposit is not None
        assert deposit.user_ref == "77"
        assert await ledger.get_wallet_balance("42") is None


class TestWithdrawals:
    """출금 매칭"""

    @pytest_asyncio.fixture
    async def funded(
        self,
        engine: ReconciliationEngine,
        user_42: str,
        make_event: Callable[..., TransferEvent],
        to_transfer: Callable[[TransferEvent], ClassifiedTransfer],
    ) -> str:
        await engine.apply(to_transfer(make_event(tx_hash=_tx(1), amount=1000)))
        return user_42

    @pytest.mark.asyncio
    async def test_matching_request_approved(
        self,
        engine: ReconciliationEngine,
        ledger: LedgerStore,
        funded: str,
        make_event: Callable[..., TransferEvent],
        to_transfer: Callable[[TransferEvent], ClassifiedTransfer],
    ) -> None:
        request = await ledger.create_withdraw_request("42", "sepolia", "eth", 400, USER)
        event = make_event(tx_hash=_tx(20), from_address=TREASURY, to_address=USER, amount=400, block_number=150)

        assert await engine.apply(to_transfer(event)) == ApplyOutcome.APPLIED

        withdraw = await ledger.get_withdraw(request.id)
        assert withdraw is not None
        assert withdraw.status == WithdrawStatus.APPROVED
        assert withdraw.tx_hash == _tx(20)
        assert withdraw.block_number == 150
        assert withdraw.treasury_balance_after == "600"

        assert (await ledger.get_treasury())["eth"] == "600"
        wallet = await ledger.get_wallet_balance("42")
        assert wallet is not None
        assert wallet.balances["eth"] == "600"
        assert wallet.funding_balances["eth"] == "0"

        history = await ledger.get_latest_history("42")
        assert history is not None
        assert history.action_type == HistoryActionType.WITHDRAW
        assert history.total_withdrawn == {"eth": "400"}
        assert history.total_deposited == {"eth": "1000"}

        # 재전달은 no-op
        assert await engine.apply(to_transfer(event)) == ApplyOutcome.DUPLICATE
        assert (await ledger.get_treasury())["eth"] == "600"

    @pytest.mark.asyncio
    async def test_no_pending_request_leaves_state_unchanged(
        self,
        engine: ReconciliationEngine,
        ledger: LedgerStore,
        funded: str,
        make_event: Callable[..., TransferEvent],
        to_transfer: Callable[[TransferEvent], ClassifiedTransfer],
    ) -> None:
        event = make_event(tx_hash=_tx(21), from_address=TREASURY, to_address=USER, amount=500)

        assert await engine.apply(to_transfer(event)) == ApplyOutcome.NO_MATCH

        assert (await ledger.get_treasury())["eth"] == "1000"
        wallet = await ledger.get_wallet_balance("42")
        assert wallet is not None and wallet.balances["eth"] == "1000"
        assert await ledger.get_withdraws("42") == []
        assert len(await ledger.get_history("42")) == 1

    @pytest.mark.asyncio
    async def test_amount_mismatch_not_matched(
        self,
        engine: ReconciliationEngine,
        ledger: LedgerStore,
        funded: str,
        make_event: Callable[..., TransferEvent],
        to_transfer: Callable[[TransferEvent], ClassifiedTransfer],
    ) -> None:
        request = await ledger.create_withdraw_request("42", "sepolia", "eth", 400, USER)
        event = make_event(tx_hash=_tx(22), from_address=TREASURY, to_address=USER, amount=401)

        assert await engine.apply(to_transfer(event)) == ApplyOutcome.NO_MATCH
        withdraw = await ledger.get_withdraw(request.id)
        assert withdraw is not None and withdraw.status == WithdrawStatus.PENDING

    @pytest.mark.asyncio
    async def test_oldest_matching_request_first(
        self,
        engine: ReconciliationEngine,
        ledger: LedgerStore,
        funded: str,
        make_event: Callable[..., TransferEvent],
        to_transfer: Callable[[TransferEvent], ClassifiedTransfer],
    ) -> None:
        first = await ledger.create_withdraw_request("42", "sepolia", "eth", 100, USER)
        second = await ledger.create_withdraw_request("42", "sepolia", "eth", 100, USER)

        await engine.apply(
            to_transfer(make_event(tx_hash=_tx(23), from_address=TREASURY, to_address=USER, amount=100))
        )

        assert (await ledger.get_withdraw(first.id)).status == WithdrawStatus.APPROVED
        assert (await ledger.get_withdraw(second.id)).status == WithdrawStatus.PENDING

    @pytest.mark.asyncio
    async def test_unknown_recipient(
        self,
        engine: ReconciliationEngine,
        ledger: LedgerStore,
        make_event: Callable[..., TransferEvent],
        to_transfer: Callable[[TransferEvent], ClassifiedTransfer],
    ) -> None:
        event = make_event(tx_hash=_tx(24), from_address=TREASURY, to_address=STRANGER, amount=5)

        assert await engine.apply(to_transfer(event)) == ApplyOutcome.UNKNOWN_USER
        assert await ledger.get_treasury() == {}

    @pytest.mark.asyncio
    async def test_treasury_clamped_at_zero(
        self,
        db: SQLiteAdapter,
        engine: ReconciliationEngine,
        ledger: LedgerStore,
        user_42: str,
        make_event: Callable[..., TransferEvent],
        to_transfer: Callable[[TransferEvent], ClassifiedTransfer],
    ) -> None:
        """트레저리 잔고보다 큰 출금은 0으로 고정 (음수 금지)"""
        await engine.apply(to_transfer(make_event(tx_hash=_tx(1), amount=100)))
        async with db.transaction() as conn:
            await ledger.adjust_wallet_balance(conn, "42", "eth", balance_delta=400)
        await ledger.create_withdraw_request("42", "sepolia", "eth", 500, USER)

        event = make_event(tx_hash=_tx(25), from_address=TREASURY, to_address=USER, amount=500)
        assert await engine.apply(to_transfer(event)) == ApplyOutcome.APPLIED

        assert (await ledger.get_treasury())["eth"] == "0"
        wallet = await ledger.get_wallet_balance("42")
        assert wallet is not None
        assert wallet.balances["eth"] == "0"
        assert wallet.funding_balances["eth"] == "0"


class TestTransferProcessor:
    """분류 → 엔진 연결"""

    @pytest.mark.asyncio
    async def test_discarded_events_counted(
        self,
        engine: ReconciliationEngine,
        ledger: LedgerStore,
        treasury_monitored: MonitoredAddress,
        sepolia_tokens: list[SupportedToken],
        make_event: Callable[..., TransferEvent],
    ) -> None:
        processor = TransferProcessor(engine)
        processor.set_targets("sepolia", [treasury_monitored], sepolia_tokens)

        assert await processor.process(make_event(from_address=TREASURY, to_address=TREASURY)) is None
        assert await processor.process(make_event(amount=0)) is None

        assert processor.stats["discarded:self_transfer"] == 1
        assert processor.stats["discarded:zero_amount"] == 1
        assert await ledger.get_treasury() == {}

    @pytest.mark.asyncio
    async def test_applied_outcome_counted(
        self,
        engine: ReconciliationEngine,
        user_42: str,
        treasury_monitored: MonitoredAddress,
        sepolia_tokens: list[SupportedToken],
        make_event: Callable[..., TransferEvent],
    ) -> None:
        processor = TransferProcessor(engine)
        processor.set_targets("sepolia", [treasury_monitored], sepolia_tokens)

        assert await processor.process(make_event()) == ApplyOutcome.APPLIED
        assert processor.stats["applied"] == 1
        assert processor.monitored_for("sepolia") == [treasury_monitored]
        assert processor.tokens_for("unknown") == []
