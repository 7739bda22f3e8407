"""
Solana 클라이언트

JSON-RPC(jsonParsed) 사용.
- Catch-up: getSignaturesForAddress (before/until 페이징) → getTransaction
- 파싱: System program transfer(lamports), SPL Token transfer/transferChecked
- 실시간: logsSubscribe (mentions)

SPL 이체의 source/destination은 토큰 계정이므로 소유자 지갑으로 해석해
TransferEvent의 from/to에 넣는다.
"""

import asyncio
import logging
from typing import Any

from adapters.chain.base import BaseChainClient, TransactionCallback
from adapters.chain.errors import AccountNotFoundError, ChainRpcError
from adapters.chain.models import TransferEvent, TransferPage
from core.constants import ChainPrograms, RpcDefaults
from core.types import ChainFamily, MonitoredAddress, ScanCursor, SupportedToken
from core.utils.amounts import parse_amount
from core.utils.timezone import utc_from_timestamp

logger = logging.getLogger(__name__)

COMMITMENT = "confirmed"

TOKEN_PROGRAMS = frozenset({ChainPrograms.TOKEN_PROGRAM_ID, ChainPrograms.TOKEN_2022_PROGRAM_ID})

# 내부 인스트럭션 순서 = 상위 인스트럭션 순서 * INNER_STRIDE + 내부 순서 + 1
INNER_STRIDE = 1000


def _account_key(entry: Any) -> str:
    """jsonParsed accountKeys 항목 ({"pubkey": ...} 또는 문자열)"""
    if isinstance(entry, dict):
        return str(entry.get("pubkey", ""))
    return str(entry)


class SolanaChainClient(BaseChainClient):
    """Solana 클라이언트

    IChainClient Protocol 구현.
    """

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        # 토큰 계정 → 소유자 지갑 캐시
        self._owner_cache: dict[str, str] = {}

    # -------------------------------------------------------------------------
    # Catch-up
    # -------------------------------------------------------------------------

    def _scan_queries(self, monitored: MonitoredAddress) -> list[None]:
        return [None]

    async def _fetch_page(
        self,
        monitored: MonitoredAddress,
        cursor: ScanCursor | None,
        query: None,
        page_token: str | None,
    ) -> TransferPage:
        """시그니처 한 페이지 (최신 → 과거, until = 커서 시그니처)"""
        options: dict[str, Any] = {"limit": self.page_size, "commitment": COMMITMENT}
        if page_token:
            options["before"] = page_token
        if cursor is not None and cursor.signature:
            options["until"] = cursor.signature

        signatures = await self.rpc.call("getSignaturesForAddress", [monitored.address, options]) or []

        events: list[TransferEvent] = []
        for entry in signatures:
            if entry.get("err") is not None:
                continue
            events.extend(await self.get_transaction_transfers(entry["signature"]))

        next_token = None
        if len(signatures) >= self.page_size:
            next_token = signatures[-1]["signature"]

        return TransferPage(events=events, next_token=next_token)

    # -------------------------------------------------------------------------
    # 트랜잭션 상세
    # -------------------------------------------------------------------------

    async def get_transaction_transfers(self, tx_hash: str) -> list[TransferEvent]:
        """트랜잭션의 SOL / SPL 이체 목록

        실패했거나 찾을 수 없는 트랜잭션은 빈 목록.
        """
        tx = await self.rpc.call(
            "getTransaction",
            [
                tx_hash,
                {
                    "encoding": "jsonParsed",
                    "commitment": COMMITMENT,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if not tx:
            logger.debug("트랜잭션 없음", extra={"chain_id": self.chain_id, "tx_hash": tx_hash})
            return []

        meta = tx.get("meta") or {}
        if meta.get("err") is not None:
            logger.info("실패한 트랜잭션 무시", extra={"chain_id": self.chain_id, "tx_hash": tx_hash})
            return []

        return await self.parse_transaction(tx_hash, tx)

    async def parse_transaction(self, signature: str, tx: dict[str, Any]) -> list[TransferEvent]:
        """getTransaction(jsonParsed) 결과에서 이체 추출"""
        meta = tx.get("meta") or {}
        message = (tx.get("transaction") or {}).get("message") or {}
        account_keys = [_account_key(k) for k in message.get("accountKeys", [])]

        slot = tx.get("slot")
        block_time = tx.get("blockTime")
        timestamp = utc_from_timestamp(block_time) if block_time else None

        token_accounts = self._token_account_index(meta, account_keys)

        indexed: list[tuple[int, dict[str, Any]]] = []
        for i, ix in enumerate(message.get("instructions", [])):
            indexed.append((i * INNER_STRIDE, ix))
        for inner in meta.get("innerInstructions") or []:
            base = int(inner.get("index", 0)) * INNER_STRIDE
            for j, ix in enumerate(inner.get("instructions", [])):
                indexed.append((base + j + 1, ix))

        events: list[TransferEvent] = []
        for position, ix in indexed:
            try:
                event = await self._parse_instruction(
                    signature, ix, position, slot, timestamp, token_accounts
                )
            except AccountNotFoundError as e:
                logger.warning(
                    "토큰 계정을 찾을 수 없어 이체 무시",
                    extra={"chain_id": self.chain_id, "tx_hash": signature, "address": e.address},
                )
                continue
            if event is not None:
                events.append(event)

        return events

    def _token_account_index(
        self,
        meta: dict[str, Any],
        account_keys: list[str],
    ) -> dict[str, dict[str, str | None]]:
        """pre/postTokenBalances에서 토큰 계정 → {mint, owner}"""
        index: dict[str, dict[str, str | None]] = {}
        for balance in (meta.get("preTokenBalances") or []) + (meta.get("postTokenBalances") or []):
            idx = balance.get("accountIndex")
            if idx is None or idx >= len(account_keys):
                continue
            entry = index.setdefault(account_keys[idx], {"mint": None, "owner": None})
            entry["mint"] = entry["mint"] or balance.get("mint")
            entry["owner"] = entry["owner"] or balance.get("owner")
        return index

    async def _parse_instruction(
        self,
        signature: str,
        ix: dict[str, Any],
        position: int,
        slot: int | None,
        timestamp: Any,
        token_accounts: dict[str, dict[str, str | None]],
    ) -> TransferEvent | None:
        parsed = ix.get("parsed")
        if not isinstance(parsed, dict):
            return None

        program_id = ix.get("programId")
        ix_type = parsed.get("type")
        info = parsed.get("info") or {}

        if program_id == ChainPrograms.SYSTEM_PROGRAM_ID and ix_type == "transfer":
            return TransferEvent(
                tx_hash=signature,
                chain_id=self.chain_id,
                from_address=info["source"],
                to_address=info["destination"],
                amount=parse_amount(info.get("lamports", 0)),
                token_contract=None,
                token_symbol="sol",
                block_number=slot,
                position=position,
                timestamp=timestamp,
            )

        if program_id in TOKEN_PROGRAMS and ix_type in ("transfer", "transferChecked"):
            token_amount = info.get("tokenAmount") or {}
            amount = parse_amount(token_amount.get("amount", info.get("amount", 0)))

            source = info["source"]
            destination = info["destination"]
            mint = (
                info.get("mint")
                or (token_accounts.get(source) or {}).get("mint")
                or (token_accounts.get(destination) or {}).get("mint")
            )
            if mint is None:
                logger.warning(
                    "SPL 이체의 mint를 알 수 없음",
                    extra={"chain_id": self.chain_id, "tx_hash": signature},
                )
                return None

            from_owner = await self._resolve_owner(source, token_accounts)
            to_owner = await self._resolve_owner(destination, token_accounts)

            return TransferEvent(
                tx_hash=signature,
                chain_id=self.chain_id,
                from_address=from_owner,
                to_address=to_owner,
                amount=amount,
                token_contract=mint,
                block_number=slot,
                position=position,
                timestamp=timestamp,
            )

        return None

    async def _resolve_owner(
        self,
        token_account: str,
        token_accounts: dict[str, dict[str, str | None]],
    ) -> str:
        """토큰 계정의 소유자 지갑

        트랜잭션 토큰 잔고에 owner가 있으면 사용하고, 없으면 getAccountInfo 조회.
        """
        owner = (token_accounts.get(token_account) or {}).get("owner")
        if owner:
            return owner
        return await self.get_token_account_owner(token_account)

    async def get_token_account_owner(self, token_account: str) -> str:
        """getAccountInfo(jsonParsed)로 토큰 계정 소유자 조회 (일시 오류 재시도)

        Raises:
            AccountNotFoundError: 계정이 없거나 토큰 계정이 아닌 경우
        """
        cached = self._owner_cache.get(token_account)
        if cached is not None:
            return cached

        retries = RpcDefaults.OWNER_LOOKUP_RETRIES
        result: Any = None
        for attempt in range(retries):
            try:
                result = await self.rpc.call(
                    "getAccountInfo",
                    [token_account, {"encoding": "jsonParsed", "commitment": COMMITMENT}],
                )
                break
            except ChainRpcError as e:
                logger.warning(
                    "토큰 계정 조회 실패",
                    extra={"address": token_account, "error": str(e), "attempt": attempt + 1},
                )
                if attempt >= retries - 1:
                    raise
                await asyncio.sleep(RpcDefaults.BACKOFF_BASE_SEC * (attempt + 1))

        value = (result or {}).get("value")
        if not value:
            raise AccountNotFoundError(token_account)

        data = value.get("data")
        owner = None
        if isinstance(data, dict):
            owner = ((data.get("parsed") or {}).get("info") or {}).get("owner")
        if not owner:
            raise AccountNotFoundError(token_account)

        self._owner_cache[token_account] = owner
        return owner

    # -------------------------------------------------------------------------
    # 실시간 구독
    # -------------------------------------------------------------------------

    async def subscribe(
        self,
        monitored: MonitoredAddress,
        on_transaction: TransactionCallback,
    ) -> list[str]:
        """주소를 언급하는 로그 구독 (성공한 트랜잭션만 전달)"""
        ws = self._get_ws()

        async def on_logs(result: Any) -> None:
            value = (result or {}).get("value") or {}
            if value.get("err") is not None:
                return
            signature = value.get("signature")
            if signature:
                await on_transaction(signature)

        handle = await ws.subscribe(
            "logsSubscribe",
            [{"mentions": [monitored.address]}, {"commitment": COMMITMENT}],
            "logsUnsubscribe",
            on_logs,
        )

        logger.info(
            f"Solana 구독 등록: {self.chain_id} {monitored.address}",
            extra={"chain_id": self.chain_id, "address": monitored.address, "handles": [handle]},
        )
        return [handle]

    # -------------------------------------------------------------------------
    # 잔고 / 전송 / 주소 해석
    # -------------------------------------------------------------------------

    async def _token_accounts_by_owner(self, owner: str, mint: str) -> list[dict[str, Any]]:
        result = await self.rpc.call(
            "getTokenAccountsByOwner",
            [owner, {"mint": mint}, {"encoding": "jsonParsed", "commitment": COMMITMENT}],
        )
        return (result or {}).get("value") or []

    async def get_balance(self, address: str, token: SupportedToken) -> int:
        """지갑 잔고 (SPL은 해당 mint 토큰 계정 합계)"""
        if token.is_native:
            result = await self.rpc.call("getBalance", [address, {"commitment": COMMITMENT}])
            return parse_amount((result or {}).get("value", 0))

        assert token.contract is not None
        total = 0
        for account in await self._token_accounts_by_owner(address, token.contract):
            info = (
                ((account.get("account") or {}).get("data") or {}).get("parsed") or {}
            ).get("info") or {}
            total += parse_amount((info.get("tokenAmount") or {}).get("amount", 0))
        return total

    async def send_raw_transaction(self, raw_tx: str) -> str:
        """서명된 트랜잭션 전송 (base64)

        Returns:
            트랜잭션 시그니처
        """
        result = await self.rpc.call("sendTransaction", [raw_tx, {"encoding": "base64"}])
        return str(result)

    async def resolve_monitored_addresses(
        self,
        owner: str,
        tokens: list[SupportedToken],
    ) -> list[MonitoredAddress]:
        """트레저리 지갑 → 감시 주소 목록

        네이티브 SOL은 지갑 자체, SPL 토큰은 mint별 토큰 계정을 감시한다.
        토큰 계정이 아직 없으면 지갑 주소를 해당 토큰 전용으로 감시한다.
        """
        monitored: list[MonitoredAddress] = []

        for token in tokens:
            if token.is_native:
                monitored.append(
                    MonitoredAddress.create(self.chain_id, ChainFamily.SOLANA, owner, token=token)
                )
                continue

            assert token.contract is not None
            accounts = await self._token_accounts_by_owner(owner, token.contract)
            if not accounts:
                logger.warning(
                    f"토큰 계정 없음, 지갑 주소로 감시: {token.symbol}",
                    extra={"chain_id": self.chain_id, "address": owner, "token_symbol": token.symbol},
                )
                monitored.append(
                    MonitoredAddress.create(self.chain_id, ChainFamily.SOLANA, owner, token=token)
                )
                continue

            for account in accounts:
                monitored.append(
                    MonitoredAddress.create(
                        self.chain_id,
                        ChainFamily.SOLANA,
                        account["pubkey"],
                        owner=owner,
                        token=token,
                    )
                )

        return monitored
