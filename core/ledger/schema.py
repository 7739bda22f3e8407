"""
Ledger 스키마 초기화

입출금 기록, 트레저리/사용자 잔고, 누적 히스토리, 미연결 입금 테이블 생성.
CREATE IF NOT EXISTS 패턴으로 여러 번 호출해도 안전하게 동작.
"""

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from adapters.db.sqlite_adapter import SQLiteAdapter

logger = logging.getLogger(__name__)


async def init_ledger_schema(db: "SQLiteAdapter") -> None:
    """Ledger 스키마 초기화

    이미 존재하는 경우 안전하게 건너뜀 (IF NOT EXISTS).

    Args:
        db: SQLiteAdapter 인스턴스
    """
    await _create_record_tables(db)
    await _create_balance_tables(db)
    await _create_indexes(db)
    logger.info("Ledger 스키마 초기화 완료")


async def _create_record_tables(db: "SQLiteAdapter") -> None:
    """입출금 기록 테이블 생성"""

    # deposit: tx_hash 전역 유일, 사용자별 tracking_number 유일
    await db.execute("""
        CREATE TABLE IF NOT EXISTS deposit (
            id               INTEGER PRIMARY KEY AUTOINCREMENT,
            user_ref         TEXT NOT NULL,
            tracking_number  INTEGER NOT NULL,
            from_address     TEXT NOT NULL,
            amount           TEXT NOT NULL,
            token_symbol     TEXT NOT NULL,
            chain_id         TEXT NOT NULL,
            tx_hash          TEXT NOT NULL UNIQUE,
            block_number     INTEGER,
            created_at       TEXT NOT NULL DEFAULT (datetime('now')),

            UNIQUE(user_ref, tracking_number)
        )
    """)

    # withdraw: 플랫폼이 생성한 pending 요청이 온체인 tx로 승인됨
    # tx_hash는 승인 전까지 NULL (UNIQUE는 NULL 중복 허용)
    await db.execute("""
        CREATE TABLE IF NOT EXISTS withdraw (
            id                      INTEGER PRIMARY KEY AUTOINCREMENT,
            user_ref                TEXT NOT NULL,
            tracking_number         INTEGER NOT NULL,
            to_address              TEXT NOT NULL,
            amount                  TEXT NOT NULL,
            token_symbol            TEXT NOT NULL,
            chain_id                TEXT NOT NULL,
            status                  TEXT NOT NULL DEFAULT 'pending',
            tx_hash                 TEXT UNIQUE,
            block_number            INTEGER,
            treasury_balance_after  TEXT,
            created_at              TEXT NOT NULL DEFAULT (datetime('now')),
            updated_at              TEXT NOT NULL DEFAULT (datetime('now')),

            UNIQUE(user_ref, tracking_number)
        )
    """)

    # unassociated_deposit: 발신자를 사용자에 매핑할 수 없는 입금
    await db.execute("""
        CREATE TABLE IF NOT EXISTS unassociated_deposit (
            id               INTEGER PRIMARY KEY AUTOINCREMENT,
            tx_hash          TEXT NOT NULL UNIQUE,
            from_address     TEXT NOT NULL,
            to_address       TEXT NOT NULL,
            amount           TEXT NOT NULL,
            token_symbol     TEXT NOT NULL,
            token_contract   TEXT,
            chain_id         TEXT NOT NULL,
            block_number     INTEGER,
            block_time       TEXT,
            status           TEXT NOT NULL DEFAULT 'detected',
            admin_notes      TEXT,
            reviewed_by      TEXT,
            reviewed_at      TEXT,
            detected_at      TEXT NOT NULL DEFAULT (datetime('now'))
        )
    """)


async def _create_balance_tables(db: "SQLiteAdapter") -> None:
    """잔고/히스토리 테이블 생성"""

    # treasury: 토큰별 트레저리 잔고 (lazy 생성)
    await db.execute("""
        CREATE TABLE IF NOT EXISTS treasury (
            token_symbol     TEXT PRIMARY KEY,
            balance          TEXT NOT NULL DEFAULT '0',
            updated_at       TEXT NOT NULL DEFAULT (datetime('now'))
        )
    """)

    # wallet_balance: 사용자별 가용 잔고 / 출금 예약 잔고
    await db.execute("""
        CREATE TABLE IF NOT EXISTS wallet_balance (
            user_ref         TEXT NOT NULL,
            token_symbol     TEXT NOT NULL,
            balance          TEXT NOT NULL DEFAULT '0',
            funding_balance  TEXT NOT NULL DEFAULT '0',
            updated_at       TEXT NOT NULL DEFAULT (datetime('now')),

            PRIMARY KEY (user_ref, token_symbol)
        )
    """)

    # balance_history: append-only 누적 스냅샷
    await db.execute("""
        CREATE TABLE IF NOT EXISTS balance_history (
            id                    INTEGER PRIMARY KEY AUTOINCREMENT,
            user_ref              TEXT NOT NULL,
            action_id             INTEGER NOT NULL,
            action_type           TEXT NOT NULL,
            token_symbol          TEXT NOT NULL,
            amount                TEXT NOT NULL,
            total_deposited_json  TEXT NOT NULL,
            total_withdrawn_json  TEXT NOT NULL,
            created_at            TEXT NOT NULL DEFAULT (datetime('now'))
        )
    """)


async def _create_indexes(db: "SQLiteAdapter") -> None:
    """인덱스 생성"""
    await db.execute("""
        CREATE INDEX IF NOT EXISTS ix_deposit_user
        ON deposit(user_ref)
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS ix_withdraw_match
        ON withdraw(user_ref, status, chain_id, token_symbol)
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS ix_balance_history_user
        ON balance_history(user_ref, id)
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS ix_unassociated_status
        ON unassociated_deposit(status)
    """)
