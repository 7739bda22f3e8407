"""
TokenRegistry - 지원 토큰 피드

supported_token 테이블이 업스트림 설정 피드 역할을 한다.
체인별 last-modified(MAX(updated_at))가 바뀌면 모니터링 대상이 재구성된다.
"""

import logging

from adapters.db.sqlite_adapter import SQLiteAdapter
from core.config.loader import ChainConfig
from core.types import SupportedToken, TokenKind
from core.utils.timezone import now_utc_iso

logger = logging.getLogger(__name__)


class TokenRegistry:
    """지원 토큰 저장소

    Args:
        db: SQLiteAdapter 인스턴스
    """

    def __init__(self, db: SQLiteAdapter):
        self.db = db

    async def upsert_token(self, token: SupportedToken) -> bool:
        """토큰 등록/갱신

        내용이 같으면 updated_at을 건드리지 않아 피드 변경으로 보지 않는다.

        Returns:
            새로 등록되었거나 내용이 바뀌었으면 True
        """
        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO supported_token (
                    chain_id, symbol, contract, decimals, kind, is_active, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, 1, ?, ?)
                ON CONFLICT(chain_id, symbol) DO UPDATE SET
                    contract = excluded.contract,
                    decimals = excluded.decimals,
                    kind = excluded.kind,
                    is_active = 1,
                    updated_at = excluded.updated_at
                WHERE supported_token.contract IS NOT excluded.contract
                   OR supported_token.decimals != excluded.decimals
                   OR supported_token.kind != excluded.kind
                   OR supported_token.is_active != 1
                """,
                (
                    token.chain_id,
                    token.symbol,
                    token.contract,
                    token.decimals,
                    token.kind.value,
                    now_utc_iso(),
                    now_utc_iso(),
                ),
            )
            changed = cursor.rowcount == 1

        if changed:
            logger.info(
                f"지원 토큰 갱신: {token.chain_id}/{token.symbol}",
                extra={
                    "chain_id": token.chain_id,
                    "token_symbol": token.symbol,
                    "contract": token.contract,
                },
            )
        return changed

    async def deactivate_token(self, chain_id: str, symbol: str) -> bool:
        """토큰 비활성화

        Returns:
            활성 상태였다가 비활성화되었으면 True
        """
        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                """
                UPDATE supported_token
                SET is_active = 0, updated_at = ?
                WHERE chain_id = ? AND symbol = ? AND is_active = 1
                """,
                (now_utc_iso(), chain_id, symbol.lower()),
            )
            changed = cursor.rowcount == 1

        if changed:
            logger.info(
                f"지원 토큰 비활성화: {chain_id}/{symbol}",
                extra={"chain_id": chain_id, "token_symbol": symbol},
            )
        return changed

    async def list_tokens(self, chain_id: str) -> list[SupportedToken]:
        """체인의 활성 토큰 목록 (심볼 순)

        kind와 contract가 맞지 않는 행(네이티브인데 contract가 있거나 그 반대)은 제외한다.
        """
        rows = await self.db.fetchall_dict(
            """
            SELECT chain_id, symbol, contract, decimals, kind FROM supported_token
            WHERE chain_id = ? AND is_active = 1
            ORDER BY symbol
            """,
            (chain_id,),
        )

        tokens: list[SupportedToken] = []
        for row in rows:
            token = SupportedToken(
                chain_id=row["chain_id"],
                symbol=row["symbol"],
                decimals=int(row["decimals"]),
                contract=row["contract"],
            )
            if token.kind != TokenKind(row["kind"]):
                logger.warning(
                    f"토큰 종류와 contract 불일치로 제외: {chain_id}/{token.symbol}",
                    extra={
                        "chain_id": chain_id,
                        "token_symbol": token.symbol,
                        "kind": row["kind"],
                        "contract": token.contract,
                    },
                )
                continue
            tokens.append(token)
        return tokens

    async def last_modified(self, chain_id: str) -> str | None:
        """체인 토큰 피드의 마지막 수정 시각 (토큰이 없으면 None)"""
        row = await self.db.fetchone(
            "SELECT MAX(updated_at) FROM supported_token WHERE chain_id = ?",
            (chain_id,),
        )
        return row[0] if row else None

    async def sync_from_config(self, chain: ChainConfig) -> int:
        """설정 파일의 토큰 목록으로 피드를 시드

        설정에 없는 기존 토큰은 건드리지 않는다.

        Returns:
            변경된 토큰 수
        """
        changed = 0
        for token in chain.tokens:
            if await self.upsert_token(token):
                changed += 1

        logger.info(
            f"토큰 피드 동기화: {chain.chain_id} ({changed}/{len(chain.tokens)} 변경)",
            extra={"chain_id": chain.chain_id, "changed": changed},
        )
        return changed
