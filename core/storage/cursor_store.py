"""
CursorStore - 스캔 커서 / 보조 키 저장소

kv_store 테이블을 통해 스캔 진행 상태 관리.

키 구조 (core.utils.keys):
- "cursor:{chain_id}:{address}": ScanCursor (마지막으로 커밋된 블록/슬롯, 시그니처)
- "last_signature:{chain_id}:{address}": 마지막 처리 시그니처 (보조 신호)
- "token_feed:{chain_id}": 토큰 피드 마지막 수정 시각
- "monitor_status:{family}": 마지막 스캔 사이클 결과

커서는 보조 장치다. 정합성은 엔진의 tx_hash 존재 확인이 보장하므로
커서가 뒤처져도 재처리된 이체는 DUPLICATE로 흡수된다.
"""

import json
import logging
from typing import Any

from adapters.db.sqlite_adapter import SQLiteAdapter
from core.types import ScanCursor
from core.utils.keys import make_cursor_key, make_last_signature_key
from core.utils.timezone import now_utc_iso

logger = logging.getLogger(__name__)


class CursorStore:
    """kv_store 저장소

    Args:
        db: SQLiteAdapter 인스턴스

    사용 예시:
    ```python
    cursor_store = CursorStore(db)

    cursor = await cursor_store.get_cursor("sepolia", "0xabc...")
    await cursor_store.save_cursor("sepolia", "0xabc...", block_number=101, signature="0xaa")
    ```
    """

    def __init__(self, db: SQLiteAdapter):
        self.db = db

    async def get(self, key: str) -> dict[str, Any] | None:
        """값 조회 (없으면 None)"""
        row = await self.db.fetchone(
            "SELECT value_json FROM kv_store WHERE kv_key = ?",
            (key,),
        )
        if row is None:
            return None
        return json.loads(row[0]) if isinstance(row[0], str) else row[0]

    async def get_version(self, key: str) -> int:
        """키의 버전 (없으면 0)"""
        row = await self.db.fetchone(
            "SELECT version FROM kv_store WHERE kv_key = ?",
            (key,),
        )
        return int(row[0]) if row else 0

    async def set(
        self,
        key: str,
        value: dict[str, Any],
        updated_by: str = "monitor:scanner",
    ) -> None:
        """값 저장 (UPSERT, version 증가)"""
        now = now_utc_iso()
        value_json = json.dumps(value, ensure_ascii=False)

        async with self.db.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO kv_store (kv_key, value_json, version, updated_by, created_at, updated_at)
                VALUES (?, ?, 1, ?, ?, ?)
                ON CONFLICT(kv_key) DO UPDATE SET
                    value_json = excluded.value_json,
                    version = kv_store.version + 1,
                    updated_by = excluded.updated_by,
                    updated_at = excluded.updated_at
                """,
                (key, value_json, updated_by, now, now),
            )

        logger.debug(f"kv 저장: {key}", extra={"kv_key": key})

    async def delete(self, key: str) -> bool:
        """키 삭제

        Returns:
            삭제되었으면 True
        """
        async with self.db.transaction() as conn:
            cursor = await conn.execute("DELETE FROM kv_store WHERE kv_key = ?", (key,))
            return cursor.rowcount == 1

    # -------------------------------------------------------------------------
    # 스캔 커서
    # -------------------------------------------------------------------------

    async def get_cursor(self, chain_id: str, address: str) -> ScanCursor | None:
        """주소의 스캔 커서 (첫 실행이면 None)"""
        value = await self.get(make_cursor_key(chain_id, address))
        if value is None:
            return None
        return ScanCursor.from_dict(value)

    async def save_cursor(
        self,
        chain_id: str,
        address: str,
        block_number: int | None,
        signature: str | None,
    ) -> ScanCursor:
        """스캔 커서 저장

        이체 효과가 커밋된 뒤에만 호출한다.
        """
        cursor = ScanCursor(
            block_number=block_number,
            signature=signature,
            updated_at=now_utc_iso(),
        )
        await self.set(make_cursor_key(chain_id, address), cursor.to_dict())
        return cursor

    async def get_last_signature(self, chain_id: str, address: str) -> str | None:
        value = await self.get(make_last_signature_key(chain_id, address))
        if value is None:
            return None
        return value.get("signature")

    async def set_last_signature(
        self,
        chain_id: str,
        address: str,
        signature: str,
        updated_by: str = "monitor:scanner",
    ) -> None:
        """마지막 처리 시그니처 기록 (보조 신호)"""
        await self.set(
            make_last_signature_key(chain_id, address),
            {"signature": signature, "updated_at": now_utc_iso()},
            updated_by=updated_by,
        )
