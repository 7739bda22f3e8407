"""
정산 엔진

분류된 이체 하나를 트레저리 잔고, 사용자 잔고, 누적 히스토리에 원자적으로 반영.

모든 변경은 SQLiteAdapter.transaction() 하나 안에서 일어난다.
- 같은 연결의 코루틴끼리는 asyncio.Lock, 프로세스 간에는 BEGIN IMMEDIATE로 직렬화
- 실패 시 전체 롤백 (부분 반영 없음)
- tx_hash 존재 확인 + UNIQUE 인덱스로 중복 전달을 no-op 처리
"""

import logging
import sqlite3

from adapters.db.sqlite_adapter import SQLiteAdapter
from bot.classifier.classifier import ClassifiedTransfer
from core.ledger.store import LedgerStore
from core.ledger.types import ApplyOutcome, HistoryActionType
from core.storage.wallet_directory import WalletDirectory
from core.types import Direction, UnassociatedStatus
from core.utils.amounts import parse_amount

logger = logging.getLogger(__name__)


class _StaleWithdraw(Exception):
    """pending 출금이 트랜잭션 도중 다른 상태로 바뀜 (롤백용)"""


class ReconciliationEngine:
    """정산 엔진

    Args:
        db: SQLite 어댑터
        ledger: Ledger 저장소
        wallets: 사용자 지갑 매핑

    사용 예시:
    ```python
    engine = ReconciliationEngine(db, LedgerStore(db), WalletDirectory(db))

    classification = classify(event, monitored, tokens)
    if classification.transfer:
        outcome = await engine.apply(classification.transfer)
    ```
    """

    def __init__(
        self,
        db: SQLiteAdapter,
        ledger: LedgerStore,
        wallets: WalletDirectory,
    ):
        self.db = db
        self.ledger = ledger
        self.wallets = wallets

    async def apply(self, transfer: ClassifiedTransfer) -> ApplyOutcome:
        """방향에 따라 입금/출금 반영"""
        if transfer.direction == Direction.DEPOSIT:
            return await self.apply_deposit(transfer)
        return await self.apply_withdrawal(transfer)

    # -------------------------------------------------------------------------
    # 입금
    # -------------------------------------------------------------------------

    async def apply_deposit(self, transfer: ClassifiedTransfer) -> ApplyOutcome:
        """입금 반영

        하나의 트랜잭션 안에서:
        1. 같은 tx_hash 입금이 있으면 DUPLICATE
        2. 사용자 해석 (사용자 전용 입금 주소면 그 사용자, 아니면 송신 주소로 조회)
           없으면 미연결 입금 기록 후 UNASSOCIATED
        3. 입금 기록(tracking_number 부여), 트레저리 += 금액, 사용자 잔고 += 금액, 히스토리 추가
        """
        symbol = transfer.token.symbol
        amount = transfer.amount

        try:
            async with self.db.transaction() as conn:
                if await self.ledger.find_deposit_by_tx(conn, transfer.tx_hash) is not None:
                    outcome = ApplyOutcome.DUPLICATE
                else:
                    user_ref = transfer.user_ref or transfer.monitored.user_ref
                    if user_ref is None:
                        user_ref = await self.wallets.find_user(
                            transfer.counterparty, transfer.family, conn=conn
                        )

                    if user_ref is None:
                        await self.ledger.insert_unassociated_deposit(
                            conn,
                            tx_hash=transfer.tx_hash,
                            from_address=transfer.counterparty,
                            to_address=transfer.monitored.owner,
                            amount=amount,
                            token_symbol=symbol,
                            token_contract=transfer.token.contract,
                            chain_id=transfer.chain_id,
                            block_number=transfer.block_number,
                            block_time=(
                                transfer.event.timestamp.isoformat()
                                if transfer.event.timestamp
                                else None
                            ),
                        )
                        outcome = ApplyOutcome.UNASSOCIATED
                    else:
                        transfer = transfer.with_user(user_ref)
                        deposit = await self.ledger.insert_deposit(
                            conn,
                            user_ref=user_ref,
                            from_address=transfer.counterparty,
                            amount=amount,
                            token_symbol=symbol,
                            chain_id=transfer.chain_id,
                            tx_hash=transfer.tx_hash,
                            block_number=transfer.block_number,
                        )
                        await self.ledger.adjust_treasury(conn, symbol, amount)
                        await self.ledger.adjust_wallet_balance(
                            conn, user_ref, symbol, balance_delta=amount
                        )
                        await self.ledger.append_history(
                            conn, user_ref, deposit.id, HistoryActionType.DEPOSIT, symbol, amount
                        )
                        # 이전에 미연결로 기록된 입금이면 연결 처리
                        await self.ledger.set_unassociated_status(
                            conn, transfer.tx_hash, UnassociatedStatus.ASSOCIATED
                        )
                        outcome = ApplyOutcome.APPLIED

        except sqlite3.IntegrityError as e:
            logger.info(
                f"입금 중복 (제약 조건): {transfer.tx_hash}",
                extra={"tx_hash": transfer.tx_hash, "error": str(e)},
            )
            outcome = ApplyOutcome.DUPLICATE

        self._log_outcome(transfer, outcome)
        return outcome

    async def claim_unassociated_deposit(
        self,
        tx_hash: str,
        user_ref: str,
        reviewed_by: str | None = None,
    ) -> ApplyOutcome:
        """미연결 입금을 사용자에게 귀속

        입금과 같은 원자적 경로(기록, 트레저리, 잔고, 히스토리)로 반영하고
        상태를 associated로 바꾼다.

        Returns:
            APPLIED, 이미 귀속되었으면 DUPLICATE, 미연결 입금이 없으면 NO_MATCH
        """
        try:
            async with self.db.transaction() as conn:
                record = await self.ledger.find_unassociated_by_tx(conn, tx_hash)
                if record is None:
                    outcome = ApplyOutcome.NO_MATCH
                elif (
                    record.status == UnassociatedStatus.ASSOCIATED
                    or await self.ledger.find_deposit_by_tx(conn, tx_hash) is not None
                ):
                    outcome = ApplyOutcome.DUPLICATE
                else:
                    amount = parse_amount(record.amount)
                    deposit = await self.ledger.insert_deposit(
                        conn,
                        user_ref=user_ref,
                        from_address=record.from_address,
                        amount=amount,
                        token_symbol=record.token_symbol,
                        chain_id=record.chain_id,
                        tx_hash=tx_hash,
                        block_number=record.block_number,
                    )
                    await self.ledger.adjust_treasury(conn, record.token_symbol, amount)
                    await self.ledger.adjust_wallet_balance(
                        conn, user_ref, record.token_symbol, balance_delta=amount
                    )
                    await self.ledger.append_history(
                        conn,
                        user_ref,
                        deposit.id,
                        HistoryActionType.DEPOSIT,
                        record.token_symbol,
                        amount,
                    )
                    await self.ledger.set_unassociated_status(
                        conn,
                        tx_hash,
                        UnassociatedStatus.ASSOCIATED,
                        admin_notes=f"claimed by {user_ref}",
                        reviewed_by=reviewed_by,
                    )
                    outcome = ApplyOutcome.APPLIED

        except sqlite3.IntegrityError as e:
            logger.info(
                f"미연결 입금 귀속 중복: {tx_hash}",
                extra={"tx_hash": tx_hash, "error": str(e)},
            )
            outcome = ApplyOutcome.DUPLICATE

        logger.info(
            f"미연결 입금 귀속: {tx_hash} → {user_ref} ({outcome.value})",
            extra={"tx_hash": tx_hash, "user_ref": user_ref, "outcome": outcome.value},
        )
        return outcome

    # -------------------------------------------------------------------------
    # 출금
    # -------------------------------------------------------------------------

    async def apply_withdrawal(self, transfer: ClassifiedTransfer) -> ApplyOutcome:
        """출금 반영

        플랫폼이 만든 pending 출금 요청과 일치할 때만 반영한다.
        하나의 트랜잭션 안에서:
        1. 같은 tx_hash로 승인된 출금이 있으면 DUPLICATE
        2. 수신 주소로 사용자 해석, 없으면 UNKNOWN_USER (폐기)
        3. (사용자, pending, 체인, 토큰, 금액 일치) 가장 오래된 요청, 없으면 NO_MATCH (폐기)
        4. 트레저리 -= 금액, 예약 잔고 -= 금액 (0 하한), 히스토리 추가, approved 전이
        """
        symbol = transfer.token.symbol
        amount = transfer.amount

        try:
            async with self.db.transaction() as conn:
                if await self.ledger.find_withdraw_by_tx(conn, transfer.tx_hash) is not None:
                    outcome = ApplyOutcome.DUPLICATE
                else:
                    user_ref = transfer.user_ref or await self.wallets.find_user(
                        transfer.counterparty, transfer.family, conn=conn
                    )

                    if user_ref is None:
                        outcome = ApplyOutcome.UNKNOWN_USER
                    else:
                        transfer = transfer.with_user(user_ref)
                        pending = await self.ledger.find_pending_withdraw(
                            conn, user_ref, transfer.chain_id, symbol, amount
                        )

                        if pending is None:
                            outcome = ApplyOutcome.NO_MATCH
                        else:
                            treasury_after, _ = await self.ledger.adjust_treasury(
                                conn, symbol, -amount
                            )
                            await self.ledger.adjust_wallet_balance(
                                conn, user_ref, symbol, funding_delta=-amount
                            )
                            await self.ledger.append_history(
                                conn,
                                user_ref,
                                pending.id,
                                HistoryActionType.WITHDRAW,
                                symbol,
                                amount,
                            )
                            approved = await self.ledger.approve_withdraw(
                                conn,
                                pending.id,
                                tx_hash=transfer.tx_hash,
                                block_number=transfer.block_number,
                                treasury_balance_after=treasury_after,
                            )
                            if not approved:
                                raise _StaleWithdraw(pending.id)
                            outcome = ApplyOutcome.APPLIED

        except (sqlite3.IntegrityError, _StaleWithdraw) as e:
            logger.info(
                f"출금 중복 (제약 조건): {transfer.tx_hash}",
                extra={"tx_hash": transfer.tx_hash, "error": str(e)},
            )
            outcome = ApplyOutcome.DUPLICATE

        self._log_outcome(transfer, outcome)
        return outcome

    # -------------------------------------------------------------------------
    # 로깅
    # -------------------------------------------------------------------------

    def _log_outcome(self, transfer: ClassifiedTransfer, outcome: ApplyOutcome) -> None:
        extra = {
            "tx_hash": transfer.tx_hash,
            "chain_id": transfer.chain_id,
            "address": transfer.counterparty,
            "amount": str(transfer.amount),
            "token_symbol": transfer.token.symbol,
            "direction": transfer.direction.value,
            "user_ref": transfer.user_ref,
            "outcome": outcome.value,
        }
        message = (
            f"{transfer.direction.value} {outcome.value}: {transfer.tx_hash} "
            f"{transfer.amount} {transfer.token.symbol}"
        )

        if outcome in (ApplyOutcome.UNKNOWN_USER, ApplyOutcome.NO_MATCH, ApplyOutcome.UNASSOCIATED):
            logger.warning(message, extra=extra)
        else:
            logger.info(message, extra=extra)
