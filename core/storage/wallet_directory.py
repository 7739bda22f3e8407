"""
WalletDirectory - 사용자 지갑 주소 매핑

입출금 상대방 주소를 내부 사용자 참조로 해석한다.
주소는 체인 계열 규칙으로 정규화해 저장한다 (EVM 소문자, Solana 원본).
"""

import logging

import aiosqlite

from adapters.db.sqlite_adapter import SQLiteAdapter
from core.types import ChainFamily, WalletType, normalize_address
from core.utils.timezone import now_utc_iso

logger = logging.getLogger(__name__)


class WalletConflictError(Exception):
    """주소가 이미 다른 사용자에게 등록됨"""

    def __init__(self, address: str, existing_user: str, requested_user: str):
        self.address = address
        self.existing_user = existing_user
        self.requested_user = requested_user
        super().__init__(
            f"이미 다른 사용자에게 등록된 주소: {address} "
            f"(existing={existing_user}, requested={requested_user})"
        )


class WalletDirectory:
    """사용자 지갑 저장소

    Args:
        db: SQLiteAdapter 인스턴스
    """

    def __init__(self, db: SQLiteAdapter):
        self.db = db

    async def register(
        self,
        user_ref: str,
        address: str,
        family: ChainFamily,
        wallet_type: WalletType | None = None,
    ) -> bool:
        """지갑 주소 등록

        Returns:
            새로 등록되었으면 True (같은 사용자로 이미 등록된 경우 False)

        Raises:
            WalletConflictError: 다른 사용자에게 이미 등록된 주소
        """
        normalized = normalize_address(family, address)

        async with self.db.transaction() as conn:
            existing = await self.find_user(normalized, family, conn=conn)
            if existing is not None:
                if existing != user_ref:
                    raise WalletConflictError(normalized, existing, user_ref)
                return False

            await conn.execute(
                """
                INSERT INTO wallet_address (user_ref, address, network, wallet_type, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    user_ref,
                    normalized,
                    ChainFamily(family).value,
                    wallet_type.value if wallet_type else None,
                    now_utc_iso(),
                ),
            )

        logger.info(
            f"지갑 등록: {normalized} → {user_ref}",
            extra={"user_ref": user_ref, "address": normalized, "network": ChainFamily(family).value},
        )
        return True

    async def find_user(
        self,
        address: str,
        family: ChainFamily,
        conn: aiosqlite.Connection | None = None,
    ) -> str | None:
        """주소의 사용자 참조 (미등록이면 None)

        Args:
            address: 지갑 주소
            family: 체인 계열
            conn: 열린 트랜잭션 연결 (엔진 트랜잭션 안에서 조회할 때)
        """
        params = (ChainFamily(family).value, normalize_address(family, address))
        sql = "SELECT user_ref FROM wallet_address WHERE network = ? AND address = ?"

        if conn is not None:
            cursor = await conn.execute(sql, params)
            row = await cursor.fetchone()
        else:
            row = await self.db.fetchone(sql, params)

        return row[0] if row else None

    async def list_addresses(self, user_ref: str) -> list[tuple[str, str]]:
        """사용자의 (network, address) 목록"""
        rows = await self.db.fetchall(
            "SELECT network, address FROM wallet_address WHERE user_ref = ? ORDER BY id",
            (user_ref,),
        )
        return [(row[0], row[1]) for row in rows]
