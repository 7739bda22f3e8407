"""
SQLite 어댑터

WAL 모드로 SQLite 연결 관리.
하나의 연결을 여러 코루틴이 공유하므로 쓰기 트랜잭션과 조회를 같은 asyncio.Lock으로 직렬화하고
(열린 트랜잭션의 커밋 전 쓰기가 다른 코루틴의 조회에 보이지 않음)
BEGIN IMMEDIATE로 시작해 다른 프로세스의 쓰기와도 직렬화한다.

주의: SQLite alias로 time, count 사용 금지 (예약어)
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

import aiosqlite

logger = logging.getLogger(__name__)


async def create_connection(db_path: Path | str) -> aiosqlite.Connection:
    """SQLite 연결 생성 (WAL 모드)

    Args:
        db_path: DB 파일 경로 (상위 디렉토리는 자동 생성)

    Returns:
        aiosqlite 연결 객체
    """
    db_path_str = str(db_path)

    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(db_path_str)

    await conn.execute("PRAGMA journal_mode=WAL")

    await conn.execute("PRAGMA busy_timeout=30000")  # 다른 프로세스 쓰기 대기 30초

    await conn.execute("PRAGMA foreign_keys=ON")

    logger.info(
        "SQLite 연결 생성",
        extra={"db_path": db_path_str},
    )

    return conn


def row_to_dict(cursor: aiosqlite.Cursor, row: tuple[Any, ...] | None) -> dict[str, Any] | None:
    """조회 결과 행을 컬럼명 기준 dict로 변환"""
    if row is None:
        return None
    columns = [desc[0] for desc in cursor.description]
    return dict(zip(columns, row))


class SQLiteAdapter:
    """SQLite 어댑터

    WAL 모드로 SQLite 연결 관리.
    트랜잭션 컨텍스트 매니저 제공.

    Args:
        db_path: DB 파일 경로

    사용 예시:
    ```python
    adapter = SQLiteAdapter(db_path)
    await adapter.connect()

    async with adapter.transaction() as conn:
        await conn.execute("INSERT INTO ...")

    await adapter.close()
    ```
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self._conn: aiosqlite.Connection | None = None
        self._tx_lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        """연결 상태 확인"""
        return self._conn is not None

    async def connect(self) -> None:
        """연결 생성"""
        if self._conn is not None:
            return

        self._conn = await create_connection(self.db_path)

    async def close(self) -> None:
        """연결 종료"""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            logger.info("SQLite 연결 종료")

    async def execute(
        self,
        sql: str,
        parameters: tuple[Any, ...] | None = None,
    ) -> aiosqlite.Cursor:
        """SQL 실행

        진행 중인 쓰기 트랜잭션이 끝난 뒤에 실행된다.
        """
        async with self._tx_lock:
            return await self._execute(sql, parameters)

    async def _execute(
        self,
        sql: str,
        parameters: tuple[Any, ...] | None,
    ) -> aiosqlite.Cursor:
        if self._conn is None:
            raise RuntimeError("Not connected to database")

        if parameters:
            return await self._conn.execute(sql, parameters)
        return await self._conn.execute(sql)

    async def fetchone(
        self,
        sql: str,
        parameters: tuple[Any, ...] | None = None,
    ) -> tuple[Any, ...] | None:
        """단일 행 조회"""
        async with self._tx_lock:
            cursor = await self._execute(sql, parameters)
            return await cursor.fetchone()

    async def fetchall(
        self,
        sql: str,
        parameters: tuple[Any, ...] | None = None,
    ) -> list[tuple[Any, ...]]:
        """전체 행 조회"""
        async with self._tx_lock:
            cursor = await self._execute(sql, parameters)
            return list(await cursor.fetchall())

    async def fetchone_dict(
        self,
        sql: str,
        parameters: tuple[Any, ...] | None = None,
    ) -> dict[str, Any] | None:
        """단일 행 조회 (컬럼명 dict)"""
        async with self._tx_lock:
            cursor = await self._execute(sql, parameters)
            return row_to_dict(cursor, await cursor.fetchone())

    async def fetchall_dict(
        self,
        sql: str,
        parameters: tuple[Any, ...] | None = None,
    ) -> list[dict[str, Any]]:
        """전체 행 조회 (컬럼명 dict)"""
        async with self._tx_lock:
            cursor = await self._execute(sql, parameters)
            rows = await cursor.fetchall()
            return [row_to_dict(cursor, row) for row in rows]  # type: ignore[misc]

    async def commit(self) -> None:
        """커밋"""
        if self._conn is not None:
            async with self._tx_lock:
                await self._conn.commit()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """쓰기 트랜잭션 컨텍스트 매니저

        같은 연결을 쓰는 코루틴끼리는 Lock으로, 다른 프로세스와는
        BEGIN IMMEDIATE로 직렬화. 성공 시 자동 커밋, 예외 시 자동 롤백.

        사용 예시:
        ```python
        async with adapter.transaction() as conn:
            await conn.execute("INSERT INTO ...")
            # 성공 시 자동 커밋
        ```
        """
        if self._conn is None:
            raise RuntimeError("Not connected to database")

        async with self._tx_lock:
            conn = self._conn
            if conn.in_transaction:
                # 트랜잭션 밖에서 커밋되지 않은 쓰기가 섞이지 않도록 먼저 정리
                await conn.commit()

            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                await conn.commit()
            except BaseException:
                await conn.rollback()
                raise

    async def table_exists(self, table_name: str) -> bool:
        """테이블 존재 여부 확인"""
        result = await self.fetchone(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
            (table_name,),
        )
        return result is not None

    # -------------------------------------------------------------------------
    # 컨텍스트 매니저
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> "SQLiteAdapter":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


async def init_schema(adapter: SQLiteAdapter) -> None:
    """스키마 초기화 (테이블 생성)

    kv_store / supported_token / wallet_address 생성 후 Ledger 스키마 초기화.

    Args:
        adapter: 연결된 SQLiteAdapter
    """
    # kv_store (스캔 커서, 보조 idempotency 키)
    await adapter.execute("""
        CREATE TABLE IF NOT EXISTS kv_store (
            id           INTEGER PRIMARY KEY AUTOINCREMENT,
            kv_key       TEXT NOT NULL UNIQUE,
            value_json   TEXT NOT NULL,
            version      INTEGER NOT NULL DEFAULT 1,

            updated_by   TEXT NOT NULL,
            created_at   TEXT NOT NULL DEFAULT (datetime('now')),
            updated_at   TEXT NOT NULL DEFAULT (datetime('now'))
        )
    """)

    # supported_token (업스트림 지원 토큰 피드)
    await adapter.execute("""
        CREATE TABLE IF NOT EXISTS supported_token (
            id           INTEGER PRIMARY KEY AUTOINCREMENT,
            chain_id     TEXT NOT NULL,
            symbol       TEXT NOT NULL,
            contract     TEXT,
            decimals     INTEGER NOT NULL,
            kind         TEXT NOT NULL CHECK (kind IN ('native', 'fungible')),
            is_active    INTEGER NOT NULL DEFAULT 1,

            created_at   TEXT NOT NULL DEFAULT (datetime('now')),
            updated_at   TEXT NOT NULL DEFAULT (datetime('now')),

            UNIQUE(chain_id, symbol)
        )
    """)

    # wallet_address (사용자 지갑 → 사용자 매핑)
    await adapter.execute("""
        CREATE TABLE IF NOT EXISTS wallet_address (
            id           INTEGER PRIMARY KEY AUTOINCREMENT,
            user_ref     TEXT NOT NULL,
            address      TEXT NOT NULL,
            network      TEXT NOT NULL,
            wallet_type  TEXT,
            created_at   TEXT NOT NULL DEFAULT (datetime('now')),

            UNIQUE(network, address)
        )
    """)

    await adapter.execute("""
        CREATE INDEX IF NOT EXISTS ix_wallet_address_user
        ON wallet_address(user_ref)
    """)

    await adapter.execute("""
        CREATE INDEX IF NOT EXISTS ix_supported_token_contract
        ON supported_token(chain_id, contract)
    """)

    from core.ledger.schema import init_ledger_schema

    await init_ledger_schema(adapter)

    await adapter.commit()

    logger.info("스키마 초기화 완료")
