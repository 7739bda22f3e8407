"""
Ledger 저장소

입출금 기록, 트레저리/사용자 잔고, 누적 히스토리, 미연결 입금 저장 및 조회.

conn 인자를 받는 메서드는 호출자가 연 트랜잭션(SQLiteAdapter.transaction) 안에서만
사용한다. 여러 테이블에 걸친 변경은 하나의 트랜잭션으로 묶여야 한다.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import aiosqlite

from adapters.db.sqlite_adapter import row_to_dict
from core.ledger.types import (
    DepositRecord,
    HistoryActionType,
    HistoryRecord,
    UnassociatedDeposit,
    WalletBalance,
    WithdrawRecord,
)
from core.types import UnassociatedStatus, WithdrawStatus
from core.utils.amounts import add_amount, parse_amount, subtract_floored
from core.utils.timezone import now_utc_iso

if TYPE_CHECKING:
    from adapters.db.sqlite_adapter import SQLiteAdapter

logger = logging.getLogger(__name__)

# tracking_number를 부여하는 기록 테이블
RECORD_TABLES = ("deposit", "withdraw")


class InsufficientBalanceError(Exception):
    """가용 잔고 부족 (출금 요청 생성 거부)"""

    def __init__(self, user_ref: str, token_symbol: str, available: int, requested: int):
        self.user_ref = user_ref
        self.token_symbol = token_symbol
        self.available = available
        self.requested = requested
        super().__init__(
            f"잔고 부족: user={user_ref}, token={token_symbol}, "
            f"available={available}, requested={requested}"
        )


async def _fetchone_dict(
    conn: aiosqlite.Connection,
    sql: str,
    parameters: tuple[Any, ...],
) -> dict[str, Any] | None:
    cursor = await conn.execute(sql, parameters)
    return row_to_dict(cursor, await cursor.fetchone())


class LedgerStore:
    """Ledger 저장소

    Args:
        db: SQLite 어댑터
    """

    def __init__(self, db: SQLiteAdapter):
        self.db = db

    # -------------------------------------------------------------------------
    # 트랜잭션 내부 헬퍼 - 트레저리 / 잔고
    # -------------------------------------------------------------------------

    async def ensure_treasury(self, conn: aiosqlite.Connection, token_symbol: str) -> str:
        """트레저리 행이 없으면 0으로 생성하고 현재 잔고 반환"""
        await conn.execute(
            "INSERT OR IGNORE INTO treasury (token_symbol, balance, updated_at) VALUES (?, '0', ?)",
            (token_symbol, now_utc_iso()),
        )
        row = await _fetchone_dict(
            conn,
            "SELECT balance FROM treasury WHERE token_symbol = ?",
            (token_symbol,),
        )
        return row["balance"] if row else "0"

    async def adjust_treasury(
        self,
        conn: aiosqlite.Connection,
        token_symbol: str,
        delta: int,
    ) -> tuple[str, bool]:
        """트레저리 잔고 증감

        Args:
            conn: 열린 트랜잭션 연결
            token_symbol: 토큰 심볼
            delta: 증감량 (음수면 차감, 0 하한)

        Returns:
            (변경 후 잔고, 0 하한 적용 여부)
        """
        current = await self.ensure_treasury(conn, token_symbol)

        if delta >= 0:
            new_balance, clamped = add_amount(current, delta), False
        else:
            new_balance, clamped = subtract_floored(current, -delta)

        await conn.execute(
            "UPDATE treasury SET balance = ?, updated_at = ? WHERE token_symbol = ?",
            (new_balance, now_utc_iso(), token_symbol),
        )

        if clamped:
            logger.warning(
                f"트레저리 잔고 0 하한 적용: {token_symbol}",
                extra={"token_symbol": token_symbol, "balance": current, "delta": delta},
            )
        return new_balance, clamped

    async def ensure_wallet_balance(
        self,
        conn: aiosqlite.Connection,
        user_ref: str,
        token_symbol: str,
    ) -> tuple[str, str]:
        """사용자 잔고 행이 없으면 생성하고 (balance, funding_balance) 반환"""
        await conn.execute(
            """
            INSERT OR IGNORE INTO wallet_balance (
                user_ref, token_symbol, balance, funding_balance, updated_at
            ) VALUES (?, ?, '0', '0', ?)
            """,
            (user_ref, token_symbol, now_utc_iso()),
        )
        row = await _fetchone_dict(
            conn,
            """
            SELECT balance, funding_balance FROM wallet_balance
            WHERE user_ref = ? AND token_symbol = ?
            """,
            (user_ref, token_symbol),
        )
        if row is None:
            return "0", "0"
        return row["balance"], row["funding_balance"]

    async def adjust_wallet_balance(
        self,
        conn: aiosqlite.Connection,
        user_ref: str,
        token_symbol: str,
        balance_delta: int = 0,
        funding_delta: int = 0,
    ) -> tuple[str, str, bool]:
        """사용자 가용/예약 잔고 증감

        Returns:
            (변경 후 balance, 변경 후 funding_balance, 0 하한 적용 여부)
        """
        balance, funding = await self.ensure_wallet_balance(conn, user_ref, token_symbol)

        clamped = False
        if balance_delta >= 0:
            new_balance = add_amount(balance, balance_delta)
        else:
            new_balance, hit = subtract_floored(balance, -balance_delta)
            clamped = clamped or hit

        if funding_delta >= 0:
            new_funding = add_amount(funding, funding_delta)
        else:
            new_funding, hit = subtract_floored(funding, -funding_delta)
            clamped = clamped or hit

        await conn.execute(
            """
            UPDATE wallet_balance
            SET balance = ?, funding_balance = ?, updated_at = ?
            WHERE user_ref = ? AND token_symbol = ?
            """,
            (new_balance, new_funding, now_utc_iso(), user_ref, token_symbol),
        )

        if clamped:
            logger.warning(
                f"사용자 잔고 0 하한 적용: {user_ref} {token_symbol}",
                extra={
                    "user_ref": user_ref,
                    "token_symbol": token_symbol,
                    "balance": balance,
                    "funding_balance": funding,
                    "balance_delta": balance_delta,
                    "funding_delta": funding_delta,
                },
            )
        return new_balance, new_funding, clamped

    # -------------------------------------------------------------------------
    # 트랜잭션 내부 헬퍼 - 입출금 기록
    # -------------------------------------------------------------------------

    async def next_tracking_number(
        self,
        conn: aiosqlite.Connection,
        table: str,
        user_ref: str,
    ) -> int:
        """사용자의 다음 tracking_number (기존 최대값 + 1, 없으면 1)

        트랜잭션 안에서 호출해야 동시 입금 간 경합이 생기지 않는다.
        """
        if table not in RECORD_TABLES:
            raise ValueError(f"tracking_number 대상 테이블이 아닙니다: {table}")

        cursor = await conn.execute(
            f"SELECT COALESCE(MAX(tracking_number), 0) + 1 FROM {table} WHERE user_ref = ?",
            (user_ref,),
        )
        row = await cursor.fetchone()
        return int(row[0]) if row else 1

    async def find_deposit_by_tx(
        self,
        conn: aiosqlite.Connection,
        tx_hash: str,
    ) -> DepositRecord | None:
        row = await _fetchone_dict(conn, "SELECT * FROM deposit WHERE tx_hash = ?", (tx_hash,))
        return DepositRecord.from_row(row) if row else None

    async def find_withdraw_by_tx(
        self,
        conn: aiosqlite.Connection,
        tx_hash: str,
    ) -> WithdrawRecord | None:
        row = await _fetchone_dict(conn, "SELECT * FROM withdraw WHERE tx_hash = ?", (tx_hash,))
        return WithdrawRecord.from_row(row) if row else None

    async def insert_deposit(
        self,
        conn: aiosqlite.Connection,
        user_ref: str,
        from_address: str,
        amount: int,
        token_symbol: str,
        chain_id: str,
        tx_hash: str,
        block_number: int | None,
    ) -> DepositRecord:
        """입금 기록 생성 (tracking_number 자동 부여)

        Raises:
            sqlite3.IntegrityError: 동일 tx_hash가 이미 존재하는 경우
        """
        tracking_number = await self.next_tracking_number(conn, "deposit", user_ref)
        created_at = now_utc_iso()

        cursor = await conn.execute(
            """
            INSERT INTO deposit (
                user_ref, tracking_number, from_address, amount,
                token_symbol, chain_id, tx_hash, block_number, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                user_ref,
                tracking_number,
                from_address,
                str(amount),
                token_symbol,
                chain_id,
                tx_hash,
                block_number,
                created_at,
            ),
        )

        return DepositRecord(
            id=cursor.lastrowid,
            user_ref=user_ref,
            tracking_number=tracking_number,
            from_address=from_address,
            amount=str(amount),
            token_symbol=token_symbol,
            chain_id=chain_id,
            tx_hash=tx_hash,
            block_number=block_number,
            created_at=created_at,
        )

    async def find_pending_withdraw(
        self,
        conn: aiosqlite.Connection,
        user_ref: str,
        chain_id: str,
        token_symbol: str,
        amount: int,
    ) -> WithdrawRecord | None:
        """(사용자, pending, 체인, 토큰, 금액 정확히 일치) 중 가장 오래된 출금 요청"""
        row = await _fetchone_dict(
            conn,
            """
            SELECT * FROM withdraw
            WHERE user_ref = ? AND status = ? AND chain_id = ?
              AND token_symbol = ? AND amount = ?
            ORDER BY tracking_number ASC
            LIMIT 1
            """,
            (user_ref, WithdrawStatus.PENDING.value, chain_id, token_symbol, str(amount)),
        )
        return WithdrawRecord.from_row(row) if row else None

    async def approve_withdraw(
        self,
        conn: aiosqlite.Connection,
        withdraw_id: int,
        tx_hash: str,
        block_number: int | None,
        treasury_balance_after: str | None,
    ) -> bool:
        """pending 출금을 approved로 전이

        Returns:
            전이 성공 여부 (이미 pending이 아니면 False)
        """
        cursor = await conn.execute(
            """
            UPDATE withdraw
            SET status = ?, tx_hash = ?, block_number = ?,
                treasury_balance_after = ?, updated_at = ?
            WHERE id = ? AND status = ?
            """,
            (
                WithdrawStatus.APPROVED.value,
                tx_hash,
                block_number,
                treasury_balance_after,
                now_utc_iso(),
                withdraw_id,
                WithdrawStatus.PENDING.value,
            ),
        )
        return cursor.rowcount == 1

    async def append_history(
        self,
        conn: aiosqlite.Connection,
        user_ref: str,
        action_id: int,
        action_type: HistoryActionType,
        token_symbol: str,
        amount: int,
    ) -> HistoryRecord:
        """누적 히스토리 추가

        직전 최신 레코드의 누적값에 이번 금액을 더한 새 레코드를 만든다.
        기존 레코드는 수정하지 않는다.
        """
        latest = await _fetchone_dict(
            conn,
            """
            SELECT * FROM balance_history
            WHERE user_ref = ?
            ORDER BY id DESC
            LIMIT 1
            """,
            (user_ref,),
        )
        previous = HistoryRecord.from_row(latest) if latest else None

        total_deposited = dict(previous.total_deposited) if previous else {}
        total_withdrawn = dict(previous.total_withdrawn) if previous else {}

        if action_type == HistoryActionType.DEPOSIT:
            total_deposited[token_symbol] = add_amount(total_deposited.get(token_symbol), amount)
        else:
            total_withdrawn[token_symbol] = add_amount(total_withdrawn.get(token_symbol), amount)

        created_at = now_utc_iso()
        cursor = await conn.execute(
            """
            INSERT INTO balance_history (
                user_ref, action_id, action_type, token_symbol, amount,
                total_deposited_json, total_withdrawn_json, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                user_ref,
                action_id,
                action_type.value,
                token_symbol,
                str(amount),
                json.dumps(total_deposited, sort_keys=True),
                json.dumps(total_withdrawn, sort_keys=True),
                created_at,
            ),
        )

        return HistoryRecord(
            id=cursor.lastrowid,
            user_ref=user_ref,
            action_id=action_id,
            action_type=action_type,
            token_symbol=token_symbol,
            amount=str(amount),
            total_deposited=total_deposited,
            total_withdrawn=total_withdrawn,
            created_at=created_at,
        )

    # -------------------------------------------------------------------------
    # 트랜잭션 내부 헬퍼 - 미연결 입금
    # -------------------------------------------------------------------------

    async def insert_unassociated_deposit(
        self,
        conn: aiosqlite.Connection,
        tx_hash: str,
        from_address: str,
        to_address: str,
        amount: int,
        token_symbol: str,
        token_contract: str | None,
        chain_id: str,
        block_number: int | None,
        block_time: str | None,
    ) -> bool:
        """미연결 입금 기록 (동일 tx_hash는 무시)

        Returns:
            새로 기록되었으면 True
        """
        cursor = await conn.execute(
            """
            INSERT OR IGNORE INTO unassociated_deposit (
                tx_hash, from_address, to_address, amount, token_symbol,
                token_contract, chain_id, block_number, block_time, status, detected_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                tx_hash,
                from_address,
                to_address,
                str(amount),
                token_symbol,
                token_contract,
                chain_id,
                block_number,
                block_time,
                UnassociatedStatus.DETECTED.value,
                now_utc_iso(),
            ),
        )
        return cursor.rowcount == 1

    async def find_unassociated_by_tx(
        self,
        conn: aiosqlite.Connection,
        tx_hash: str,
    ) -> UnassociatedDeposit | None:
        row = await _fetchone_dict(
            conn, "SELECT * FROM unassociated_deposit WHERE tx_hash = ?", (tx_hash,)
        )
        return UnassociatedDeposit.from_row(row) if row else None

    async def set_unassociated_status(
        self,
        conn: aiosqlite.Connection,
        tx_hash: str,
        status: UnassociatedStatus,
        admin_notes: str | None = None,
        reviewed_by: str | None = None,
    ) -> bool:
        cursor = await conn.execute(
            """
            UPDATE unassociated_deposit
            SET status = ?,
                admin_notes = COALESCE(?, admin_notes),
                reviewed_by = COALESCE(?, reviewed_by),
                reviewed_at = ?
            WHERE tx_hash = ?
            """,
            (status.value, admin_notes, reviewed_by, now_utc_iso(), tx_hash),
        )
        return cursor.rowcount == 1

    # -------------------------------------------------------------------------
    # 독립 트랜잭션 연산
    # -------------------------------------------------------------------------

    async def provision_wallet_balance(
        self,
        user_ref: str,
        token_symbols: list[str],
    ) -> WalletBalance:
        """사용자 잔고 행 생성 (이미 있으면 유지)"""
        async with self.db.transaction() as conn:
            for token_symbol in token_symbols:
                await self.ensure_wallet_balance(conn, user_ref, token_symbol)

        wallet = await self.get_wallet_balance(user_ref)
        assert wallet is not None
        return wallet

    async def create_withdraw_request(
        self,
        user_ref: str,
        chain_id: str,
        token_symbol: str,
        amount: int | str,
        to_address: str,
    ) -> WithdrawRecord:
        """플랫폼 출금 요청 생성

        가용 잔고에서 예약 잔고로 금액을 옮기고 pending 출금 기록을 만든다.
        이후 온체인 출금이 관측되면 엔진이 이 기록과 매칭해 승인한다.

        Raises:
            InvalidAmountError: 금액 형식 오류
            ValueError: 금액이 0인 경우
            InsufficientBalanceError: 가용 잔고 부족
        """
        value = parse_amount(amount)
        if value == 0:
            raise ValueError("출금 금액은 0보다 커야 합니다")

        async with self.db.transaction() as conn:
            balance, _ = await self.ensure_wallet_balance(conn, user_ref, token_symbol)
            available = parse_amount(balance)
            if available < value:
                raise InsufficientBalanceError(user_ref, token_symbol, available, value)

            await self.adjust_wallet_balance(
                conn,
                user_ref,
                token_symbol,
                balance_delta=-value,
                funding_delta=value,
            )

            tracking_number = await self.next_tracking_number(conn, "withdraw", user_ref)
            now = now_utc_iso()
            cursor = await conn.execute(
                """
                INSERT INTO withdraw (
                    user_ref, tracking_number, to_address, amount, token_symbol,
                    chain_id, status, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_ref,
                    tracking_number,
                    to_address,
                    str(value),
                    token_symbol,
                    chain_id,
                    WithdrawStatus.PENDING.value,
                    now,
                    now,
                ),
            )
            withdraw_id = cursor.lastrowid

        logger.info(
            f"출금 요청 생성: user={user_ref}, {value} {token_symbol}",
            extra={
                "user_ref": user_ref,
                "chain_id": chain_id,
                "token_symbol": token_symbol,
                "amount": str(value),
                "tracking_number": tracking_number,
            },
        )

        return WithdrawRecord(
            id=withdraw_id,
            user_ref=user_ref,
            tracking_number=tracking_number,
            to_address=to_address,
            amount=str(value),
            token_symbol=token_symbol,
            chain_id=chain_id,
            status=WithdrawStatus.PENDING,
            created_at=now,
            updated_at=now,
        )

    async def update_unassociated_status(
        self,
        tx_hash: str,
        status: UnassociatedStatus,
        admin_notes: str | None = None,
        reviewed_by: str | None = None,
    ) -> bool:
        """미연결 입금 검토 상태 변경

        Returns:
            대상이 존재해 변경되었으면 True
        """
        async with self.db.transaction() as conn:
            updated = await self.set_unassociated_status(
                conn, tx_hash, status, admin_notes, reviewed_by
            )

        if updated:
            logger.info(
                f"미연결 입금 상태 변경: {tx_hash} → {status.value}",
                extra={"tx_hash": tx_hash, "status": status.value, "reviewed_by": reviewed_by},
            )
        return updated

    # -------------------------------------------------------------------------
    # 조회
    # -------------------------------------------------------------------------

    async def get_treasury(self) -> dict[str, str]:
        """트레저리 잔고 (token_symbol → balance)"""
        rows = await self.db.fetchall_dict(
            "SELECT token_symbol, balance FROM treasury ORDER BY token_symbol"
        )
        return {row["token_symbol"]: row["balance"] for row in rows}

    async def get_wallet_balance(self, user_ref: str) -> WalletBalance | None:
        """사용자 잔고 (행이 하나도 없으면 None)"""
        rows = await self.db.fetchall_dict(
            """
            SELECT token_symbol, balance, funding_balance FROM wallet_balance
            WHERE user_ref = ?
            ORDER BY token_symbol
            """,
            (user_ref,),
        )
        if not rows:
            return None
        return WalletBalance.from_rows(user_ref, rows)

    async def get_deposit(self, tx_hash: str) -> DepositRecord | None:
        row = await self.db.fetchone_dict("SELECT * FROM deposit WHERE tx_hash = ?", (tx_hash,))
        return DepositRecord.from_row(row) if row else None

    async def get_deposits(self, user_ref: str) -> list[DepositRecord]:
        """사용자 입금 목록 (tracking_number 오름차순)"""
        rows = await self.db.fetchall_dict(
            "SELECT * FROM deposit WHERE user_ref = ? ORDER BY tracking_number ASC",
            (user_ref,),
        )
        return [DepositRecord.from_row(row) for row in rows]

    async def get_withdraw(self, withdraw_id: int) -> WithdrawRecord | None:
        row = await self.db.fetchone_dict("SELECT * FROM withdraw WHERE id = ?", (withdraw_id,))
        return WithdrawRecord.from_row(row) if row else None

    async def get_withdraws(
        self,
        user_ref: str,
        status: WithdrawStatus | None = None,
    ) -> list[WithdrawRecord]:
        """사용자 출금 목록 (tracking_number 오름차순)"""
        if status is None:
            rows = await self.db.fetchall_dict(
                "SELECT * FROM withdraw WHERE user_ref = ? ORDER BY tracking_number ASC",
                (user_ref,),
            )
        else:
            rows = await self.db.fetchall_dict(
                """
                SELECT * FROM withdraw
                WHERE user_ref = ? AND status = ?
                ORDER BY tracking_number ASC
                """,
                (user_ref, status.value),
            )
        return [WithdrawRecord.from_row(row) for row in rows]

    async def get_latest_history(self, user_ref: str) -> HistoryRecord | None:
        """사용자의 최신 누적 히스토리 (현재 누적값)"""
        row = await self.db.fetchone_dict(
            """
            SELECT * FROM balance_history
            WHERE user_ref = ?
            ORDER BY id DESC
            LIMIT 1
            """,
            (user_ref,),
        )
        return HistoryRecord.from_row(row) if row else None

    async def get_history(self, user_ref: str, limit: int = 100) -> list[HistoryRecord]:
        """사용자 히스토리 (생성 순)"""
        rows = await self.db.fetchall_dict(
            """
            SELECT * FROM (
                SELECT * FROM balance_history
                WHERE user_ref = ?
                ORDER BY id DESC
                LIMIT ?
            ) ORDER BY id ASC
            """,
            (user_ref, limit),
        )
        return [HistoryRecord.from_row(row) for row in rows]

    async def get_unassociated_deposit(self, tx_hash: str) -> UnassociatedDeposit | None:
        row = await self.db.fetchone_dict(
            "SELECT * FROM unassociated_deposit WHERE tx_hash = ?", (tx_hash,)
        )
        return UnassociatedDeposit.from_row(row) if row else None

    async def list_unassociated_deposits(
        self,
        status: UnassociatedStatus | None = None,
    ) -> list[UnassociatedDeposit]:
        """미연결 입금 목록 (감지 순)"""
        if status is None:
            rows = await self.db.fetchall_dict(
                "SELECT * FROM unassociated_deposit ORDER BY id ASC"
            )
        else:
            rows = await self.db.fetchall_dict(
                "SELECT * FROM unassociated_deposit WHERE status = ? ORDER BY id ASC",
                (status.value,),
            )
        return [UnassociatedDeposit.from_row(row) for row in rows]
