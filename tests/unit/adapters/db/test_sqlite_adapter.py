"""
SQLite 어댑터 테스트

SQLiteAdapter 및 관련 함수 테스트.
"""

import asyncio
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio

from adapters.db.sqlite_adapter import SQLiteAdapter, create_connection, init_schema


class TestCreateConnection:
    """create_connection 테스트"""

    @pytest.mark.asyncio
    async def test_wal_mode(self, tmp_path: Path) -> None:
        """WAL 모드로 연결"""
        conn = await create_connection(tmp_path / "test.db")
        try:
            cursor = await conn.execute("PRAGMA journal_mode")
            row = await cursor.fetchone()
            assert row[0].lower() == "wal"
        finally:
            await conn.close()

    @pytest.mark.asyncio
    async def test_creates_parent_directory(self, tmp_path: Path) -> None:
        db_path = tmp_path / "nested" / "dir" / "test.db"
        conn = await create_connection(db_path)
        await conn.close()
        assert db_path.parent.exists()


class TestSQLiteAdapter:
    """SQLiteAdapter 테스트"""

    @pytest_asyncio.fixture
    async def adapter(self, tmp_path: Path) -> AsyncGenerator[SQLiteAdapter, None]:
        adapter = SQLiteAdapter(tmp_path / "adapter.db")
        await adapter.connect()
        await adapter.execute("CREATE TABLE item (id INTEGER PRIMARY KEY, name TEXT UNIQUE)")
        await adapter.commit()
        yield adapter
        await adapter.close()

    @pytest.mark.asyncio
    async def test_connect_and_close(self, tmp_path: Path) -> None:
        adapter = SQLiteAdapter(tmp_path / "x.db")
        assert not adapter.is_connected
        await adapter.connect()
        assert adapter.is_connected
        await adapter.close()
        assert not adapter.is_connected

    @pytest.mark.asyncio
    async def test_not_connected_raises(self, tmp_path: Path) -> None:
        adapter = SQLiteAdapter(tmp_path / "x.db")
        with pytest.raises(RuntimeError):
            await adapter.execute("SELECT 1")

    @pytest.mark.asyncio
    async def test_transaction_commit(self, adapter: SQLiteAdapter) -> None:
        """성공 시 자동 커밋"""
        async with adapter.transaction() as conn:
            await conn.execute("INSERT INTO item (name) VALUES ('a')")

        rows = await adapter.fetchall_dict("SELECT name FROM item")
        assert rows == [{"name": "a"}]

    @pytest.mark.asyncio
    async def test_transaction_rollback(self, adapter: SQLiteAdapter) -> None:
        """예외 시 전체 롤백"""
        with pytest.raises(ValueError):
            async with adapter.transaction() as conn:
                await conn.execute("INSERT INTO item (name) VALUES ('a')")
                raise ValueError("boom")

        assert await adapter.fetchone("SELECT COUNT(*) FROM item") == (0,)

    @pytest.mark.asyncio
    async def test_concurrent_transactions_serialized(self, adapter: SQLiteAdapter) -> None:
        """동시 트랜잭션은 순서대로 실행되어 읽기-쓰기가 섞이지 않음"""

        async def increment(name: str) -> None:
            async with adapter.transaction() as conn:
                cursor = await conn.execute("SELECT COUNT(*) FROM item")
                (count,) = await cursor.fetchone()
                await asyncio.sleep(0)
                await conn.execute("INSERT INTO item (id, name) VALUES (?, ?)", (count + 1, name))

        await asyncio.gather(*(increment(f"n{i}") for i in range(5)))

        rows = await adapter.fetchall("SELECT id FROM item ORDER BY id")
        assert [r[0] for r in rows] == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_reads_wait_for_open_transaction(self, adapter: SQLiteAdapter) -> None:
        """같은 연결을 쓰는 다른 코루틴의 조회는 커밋 전 쓰기를 보지 않음"""
        inserted = asyncio.Event()
        release = asyncio.Event()

        async def write_then_fail() -> None:
            async with adapter.transaction() as conn:
                await conn.execute("INSERT INTO item (name) VALUES ('uncommitted')")
                inserted.set()
                await release.wait()
                raise ValueError("boom")

        writer = asyncio.create_task(write_then_fail())
        await inserted.wait()

        readers = [
            asyncio.create_task(adapter.fetchall("SELECT name FROM item")),
            asyncio.create_task(adapter.fetchone_dict("SELECT name FROM item")),
        ]
        await asyncio.sleep(0.05)
        assert not any(r.done() for r in readers)

        release.set()
        with pytest.raises(ValueError):
            await writer

        assert await readers[0] == []
        assert await readers[1] is None

    @pytest.mark.asyncio
    async def test_fetchone_dict_none(self, adapter: SQLiteAdapter) -> None:
        assert await adapter.fetchone_dict("SELECT * FROM item WHERE id = 99") is None

    @pytest.mark.asyncio
    async def test_context_manager(self, tmp_path: Path) -> None:
        async with SQLiteAdapter(tmp_path / "cm.db") as adapter:
            assert adapter.is_connected
        assert not adapter.is_connected


class TestInitSchema:
    """init_schema 테스트"""

    TABLES = (
        "kv_store",
        "supported_token",
        "wallet_address",
        "deposit",
        "withdraw",
        "unassociated_deposit",
        "treasury",
        "wallet_balance",
        "balance_history",
    )

    @pytest.mark.asyncio
    async def test_creates_tables(self, tmp_path: Path) -> None:
        async with SQLiteAdapter(tmp_path / "schema.db") as adapter:
            await init_schema(adapter)
            for table in self.TABLES:
                assert await adapter.table_exists(table), table

    @pytest.mark.asyncio
    async def test_idempotent(self, tmp_path: Path) -> None:
        """여러 번 호출해도 안전"""
        async with SQLiteAdapter(tmp_path / "schema.db") as adapter:
            await init_schema(adapter)
            await init_schema(adapter)
            assert await adapter.table_exists("deposit")

    @pytest.mark.asyncio
    async def test_deposit_tx_hash_unique(self, db: SQLiteAdapter) -> None:
        """deposit.tx_hash UNIQUE 제약"""
        import sqlite3

        sql = (
            "INSERT INTO deposit (user_ref, tracking_number, from_address, amount, "
            "token_symbol, chain_id, tx_hash) VALUES (?, ?, '0xa', '1', 'eth', 'sepolia', '0xtx')"
        )
        with pytest.raises(sqlite3.IntegrityError):
            async with db.transaction() as conn:
                await conn.execute(sql, ("u1", 1))
                await conn.execute(sql, ("u1", 2))
