"""
EVM 체인 클라이언트

Alchemy 호환 JSON-RPC 노드 사용.
- Catch-up: alchemy_getAssetTransfers (수신/송신 쿼리 각각 pageKey 페이징)
- 상세: eth_getTransactionByHash + eth_getTransactionReceipt
- 실시간: eth_subscribe (alchemy_minedTransactions, ERC-20 Transfer logs)

해시와 주소는 모두 소문자로 정규화한다.
"""

import logging
from typing import Any

from adapters.chain.base import BaseChainClient, TransactionCallback
from adapters.chain.models import TransferEvent, TransferPage
from core.constants import ChainPrograms
from core.types import ChainFamily, MonitoredAddress, ScanCursor, SupportedToken, TokenKind
from core.utils.amounts import parse_amount
from core.utils.timezone import parse_iso_utc, utc_from_timestamp

logger = logging.getLogger(__name__)

# 네이티브 전송은 같은 트랜잭션의 로그보다 앞에 정렬
NATIVE_POSITION = -1

# balanceOf(address) selector
BALANCE_OF_SELECTOR = "0x70a08231"


def _hex_to_int(value: str | None) -> int | None:
    if value is None:
        return None
    return int(value, 16)


def _raw_amount(value: str | None) -> int:
    if not value or value == "0x":
        return 0
    return parse_amount(value)


def pad_topic_address(address: str) -> str:
    """주소를 32바이트 토픽 형식으로 변환

    Example:
        >>> pad_topic_address("0xAbC")[:6]
        '0x0000'
    """
    return "0x" + address.lower().removeprefix("0x").rjust(64, "0")


def topic_to_address(topic: str) -> str:
    """32바이트 토픽에서 주소 추출 (하위 20바이트)"""
    return "0x" + topic.lower()[-40:]


def _position_from_unique_id(unique_id: str | None) -> int:
    """alchemy uniqueId ("{hash}:log:{index}" / "{hash}:external")에서 순서 추출"""
    if not unique_id:
        return NATIVE_POSITION
    parts = unique_id.split(":")
    if len(parts) >= 3 and parts[1] == "log":
        index = parts[2]
        return int(index, 16) if index.startswith("0x") else int(index)
    return NATIVE_POSITION


class EvmChainClient(BaseChainClient):
    """EVM 체인 클라이언트

    IChainClient Protocol 구현.
    """

    # -------------------------------------------------------------------------
    # Catch-up
    # -------------------------------------------------------------------------

    def _scan_queries(self, monitored: MonitoredAddress) -> list[str]:
        # 수신 / 송신 각각 조회
        return ["toAddress", "fromAddress"]

    def _categories(self, monitored: MonitoredAddress) -> list[str]:
        if monitored.token is None:
            return ["external", "erc20"]
        if monitored.token.kind == TokenKind.NATIVE:
            return ["external"]
        return ["erc20"]

    async def _fetch_page(
        self,
        monitored: MonitoredAddress,
        cursor: ScanCursor | None,
        query: str,
        page_token: str | None,
    ) -> TransferPage:
        from_block = cursor.block_number if cursor and cursor.block_number is not None else 0

        request: dict[str, Any] = {
            "fromBlock": hex(from_block),
            "toBlock": "latest",
            query: monitored.address,
            "category": self._categories(monitored),
            "order": "desc",
            "maxCount": hex(self.page_size),
            "withMetadata": True,
            "excludeZeroValue": True,
        }
        if monitored.token is not None and monitored.token.contract is not None:
            request["contractAddresses"] = [monitored.token.contract]
        if page_token:
            request["pageKey"] = page_token

        result = await self.rpc.call("alchemy_getAssetTransfers", [request]) or {}

        events = [
            event
            for event in (self._parse_asset_transfer(raw) for raw in result.get("transfers", []))
            if event is not None
        ]
        return TransferPage(events=events, next_token=result.get("pageKey"))

    def _parse_asset_transfer(self, raw: dict[str, Any]) -> TransferEvent | None:
        """alchemy_getAssetTransfers 항목 파싱

        금액은 rawContract.value(16진 정수)만 사용한다. value 필드는 부동소수점.
        """
        tx_hash = raw.get("hash")
        if not tx_hash or not raw.get("to"):
            return None

        raw_contract = raw.get("rawContract") or {}
        category = raw.get("category")
        contract = raw_contract.get("address") if category != "external" else None

        metadata = raw.get("metadata") or {}

        return TransferEvent(
            tx_hash=tx_hash.lower(),
            chain_id=self.chain_id,
            from_address=(raw.get("from") or "").lower(),
            to_address=raw["to"].lower(),
            amount=_raw_amount(raw_contract.get("value")),
            token_contract=contract.lower() if contract else None,
            token_symbol=raw.get("asset").lower() if raw.get("asset") else None,
            block_number=_hex_to_int(raw.get("blockNum")),
            position=_position_from_unique_id(raw.get("uniqueId")),
            timestamp=parse_iso_utc(metadata.get("blockTimestamp")),
            confirmed=True,
        )

    # -------------------------------------------------------------------------
    # 트랜잭션 상세
    # -------------------------------------------------------------------------

    async def get_transaction_transfers(self, tx_hash: str) -> list[TransferEvent]:
        """트랜잭션의 네이티브 전송 + ERC-20 Transfer 로그

        실패한 트랜잭션(status 0x0)이나 아직 채굴되지 않은 트랜잭션은 빈 목록.
        """
        tx_hash = tx_hash.lower()

        tx = await self.rpc.call("eth_getTransactionByHash", [tx_hash])
        if not tx:
            logger.debug("트랜잭션 없음", extra={"chain_id": self.chain_id, "tx_hash": tx_hash})
            return []

        receipt = await self.rpc.call("eth_getTransactionReceipt", [tx_hash])
        if not receipt:
            logger.debug("영수증 없음 (미채굴)", extra={"chain_id": self.chain_id, "tx_hash": tx_hash})
            return []

        if receipt.get("status") == "0x0":
            logger.info("실패한 트랜잭션 무시", extra={"chain_id": self.chain_id, "tx_hash": tx_hash})
            return []

        block_number = _hex_to_int(receipt.get("blockNumber") or tx.get("blockNumber"))
        timestamp = None
        if block_number is not None:
            block = await self.rpc.call("eth_getBlockByNumber", [hex(block_number), False])
            if block and block.get("timestamp"):
                timestamp = utc_from_timestamp(int(block["timestamp"], 16))

        events: list[TransferEvent] = []

        value = _raw_amount(tx.get("value"))
        if value > 0 and tx.get("to"):
            events.append(
                TransferEvent(
                    tx_hash=tx_hash,
                    chain_id=self.chain_id,
                    from_address=tx["from"].lower(),
                    to_address=tx["to"].lower(),
                    amount=value,
                    token_contract=None,
                    block_number=block_number,
                    position=NATIVE_POSITION,
                    timestamp=timestamp,
                )
            )

        for log in receipt.get("logs", []):
            event = self._parse_transfer_log(tx_hash, log, block_number, timestamp)
            if event is not None:
                events.append(event)

        return events

    def _parse_transfer_log(
        self,
        tx_hash: str,
        log: dict[str, Any],
        block_number: int | None,
        timestamp: Any,
    ) -> TransferEvent | None:
        """ERC-20 Transfer(address,address,uint256) 로그 파싱

        ERC-721 Transfer는 topics가 4개(tokenId indexed)이므로 제외된다.
        """
        topics = log.get("topics") or []
        if len(topics) != 3 or topics[0].lower() != ChainPrograms.ERC20_TRANSFER_TOPIC:
            return None

        data = log.get("data") or "0x"
        if data in ("0x", ""):
            return None

        return TransferEvent(
            tx_hash=tx_hash,
            chain_id=self.chain_id,
            from_address=topic_to_address(topics[1]),
            to_address=topic_to_address(topics[2]),
            amount=int(data, 16),
            token_contract=log["address"].lower(),
            block_number=block_number,
            position=_hex_to_int(log.get("logIndex")) or 0,
            timestamp=timestamp,
        )

    # -------------------------------------------------------------------------
    # 실시간 구독
    # -------------------------------------------------------------------------

    async def subscribe(
        self,
        monitored: MonitoredAddress,
        on_transaction: TransactionCallback,
    ) -> list[str]:
        """채굴된 트랜잭션 / Transfer 로그 구독

        Returns:
            구독 핸들 목록
        """
        ws = self._get_ws()
        handles: list[str] = []
        address = monitored.address

        async def on_mined(result: Any) -> None:
            if not isinstance(result, dict) or result.get("removed"):
                return
            tx = result.get("transaction") or {}
            tx_hash = tx.get("hash") or result.get("hash")
            if tx_hash:
                await on_transaction(tx_hash.lower())

        async def on_log(result: Any) -> None:
            if not isinstance(result, dict) or result.get("removed"):
                return
            tx_hash = result.get("transactionHash")
            if tx_hash:
                await on_transaction(tx_hash.lower())

        token = monitored.token
        watch_native = token is None or token.kind == TokenKind.NATIVE
        watch_tokens = token is None or token.kind == TokenKind.FUNGIBLE

        if watch_native:
            handles.append(
                await ws.subscribe(
                    "eth_subscribe",
                    [
                        "alchemy_minedTransactions",
                        {
                            "addresses": [{"to": address}, {"from": address}],
                            "includeRemoved": False,
                            "hashesOnly": True,
                        },
                    ],
                    "eth_unsubscribe",
                    on_mined,
                )
            )

        if watch_tokens:
            padded = pad_topic_address(address)
            for topics in (
                [ChainPrograms.ERC20_TRANSFER_TOPIC, None, padded],  # 수신
                [ChainPrograms.ERC20_TRANSFER_TOPIC, padded],  # 송신
            ):
                log_filter: dict[str, Any] = {"topics": topics}
                if token is not None and token.contract is not None:
                    log_filter["address"] = token.contract
                handles.append(
                    await ws.subscribe("eth_subscribe", ["logs", log_filter], "eth_unsubscribe", on_log)
                )

        logger.info(
            f"EVM 구독 등록: {self.chain_id} {address} ({len(handles)}개)",
            extra={"chain_id": self.chain_id, "address": address, "handles": handles},
        )
        return handles

    # -------------------------------------------------------------------------
    # 잔고 / 전송 / 주소 해석
    # -------------------------------------------------------------------------

    async def get_balance(self, address: str, token: SupportedToken) -> int:
        """온체인 잔고 (base unit)"""
        if token.is_native:
            result = await self.rpc.call("eth_getBalance", [address.lower(), "latest"])
        else:
            data = BALANCE_OF_SELECTOR + pad_topic_address(address)[2:]
            result = await self.rpc.call(
                "eth_call",
                [{"to": token.contract, "data": data}, "latest"],
            )
        return parse_amount(result or "0x0")

    async def send_raw_transaction(self, raw_tx: str) -> str:
        """서명된 트랜잭션 전송

        Returns:
            트랜잭션 해시
        """
        result = await self.rpc.call("eth_sendRawTransaction", [raw_tx])
        return str(result).lower()

    async def resolve_monitored_addresses(
        self,
        owner: str,
        tokens: list[SupportedToken],
    ) -> list[MonitoredAddress]:
        """EVM은 한 주소가 모든 토큰을 받는다"""
        return [MonitoredAddress.create(self.chain_id, ChainFamily.EVM, owner)]
