"""
Ledger 타입 정의

입출금 기록, 잔고, 누적 히스토리 등 Ledger에 저장되는 레코드 타입.
금액은 모두 base unit 10진 문자열.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from core.types import UnassociatedStatus, WithdrawStatus


class HistoryActionType(str, Enum):
    """히스토리 레코드를 만든 동작"""

    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"


class ApplyOutcome(str, Enum):
    """분류된 이체 하나를 Ledger에 적용한 결과"""

    APPLIED = "applied"  # 잔고/히스토리 반영 완료
    DUPLICATE = "duplicate"  # 동일 tx_hash 이미 반영됨 (no-op)
    UNASSOCIATED = "unassociated"  # 사용자 매핑 없는 입금 (별도 기록, 잔고 미반영)
    UNKNOWN_USER = "unknown_user"  # 사용자 매핑 없는 출금 (폐기)
    NO_MATCH = "no_match"  # 일치하는 pending 출금 요청 없음 (폐기)


def _load_map(value: str | None) -> dict[str, str]:
    if not value:
        return {}
    return dict(json.loads(value))


@dataclass
class DepositRecord:
    """입금 기록"""

    id: int
    user_ref: str
    tracking_number: int
    from_address: str
    amount: str
    token_symbol: str
    chain_id: str
    tx_hash: str
    block_number: int | None
    created_at: str

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "DepositRecord":
        """DB 행에서 생성"""
        return cls(
            id=row["id"],
            user_ref=row["user_ref"],
            tracking_number=row["tracking_number"],
            from_address=row["from_address"],
            amount=row["amount"],
            token_symbol=row["token_symbol"],
            chain_id=row["chain_id"],
            tx_hash=row["tx_hash"],
            block_number=row.get("block_number"),
            created_at=row["created_at"],
        )


@dataclass
class WithdrawRecord:
    """출금 기록

    Attributes:
        status: pending → approved | rejected | debited-internally
        tx_hash: 승인 시 관측된 온체인 트랜잭션 (pending 동안 None)
        treasury_balance_after: 승인 직후 트레저리 잔고 스냅샷
    """

    id: int
    user_ref: str
    tracking_number: int
    to_address: str
    amount: str
    token_symbol: str
    chain_id: str
    status: WithdrawStatus
    tx_hash: str | None = None
    block_number: int | None = None
    treasury_balance_after: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "WithdrawRecord":
        """DB 행에서 생성"""
        return cls(
            id=row["id"],
            user_ref=row["user_ref"],
            tracking_number=row["tracking_number"],
            to_address=row["to_address"],
            amount=row["amount"],
            token_symbol=row["token_symbol"],
            chain_id=row["chain_id"],
            status=WithdrawStatus(row["status"]),
            tx_hash=row.get("tx_hash"),
            block_number=row.get("block_number"),
            treasury_balance_after=row.get("treasury_balance_after"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )


@dataclass
class HistoryRecord:
    """사용자 누적 입출금 스냅샷 (append-only)"""

    id: int
    user_ref: str
    action_id: int
    action_type: HistoryActionType
    token_symbol: str
    amount: str
    total_deposited: dict[str, str] = field(default_factory=dict)
    total_withdrawn: dict[str, str] = field(default_factory=dict)
    created_at: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "HistoryRecord":
        """DB 행에서 생성"""
        return cls(
            id=row["id"],
            user_ref=row["user_ref"],
            action_id=row["action_id"],
            action_type=HistoryActionType(row["action_type"]),
            token_symbol=row["token_symbol"],
            amount=row["amount"],
            total_deposited=_load_map(row.get("total_deposited_json")),
            total_withdrawn=_load_map(row.get("total_withdrawn_json")),
            created_at=row.get("created_at"),
        )


@dataclass
class WalletBalance:
    """사용자 잔고

    Attributes:
        balances: 가용 잔고 (token_symbol → base unit 문자열)
        funding_balances: 출금 대기 예약 잔고
    """

    user_ref: str
    balances: dict[str, str] = field(default_factory=dict)
    funding_balances: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_rows(cls, user_ref: str, rows: list[dict[str, Any]]) -> "WalletBalance":
        """wallet_balance 행 목록에서 생성"""
        wallet = cls(user_ref=user_ref)
        for row in rows:
            wallet.balances[row["token_symbol"]] = row["balance"]
            wallet.funding_balances[row["token_symbol"]] = row["funding_balance"]
        return wallet


@dataclass
class UnassociatedDeposit:
    """미연결 입금"""

    id: int
    tx_hash: str
    from_address: str
    to_address: str
    amount: str
    token_symbol: str
    token_contract: str | None
    chain_id: str
    block_number: int | None
    block_time: str | None
    status: UnassociatedStatus
    admin_notes: str | None = None
    reviewed_by: str | None = None
    reviewed_at: str | None = None
    detected_at: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "UnassociatedDeposit":
        """DB 행에서 생성"""
        return cls(
            id=row["id"],
            tx_hash=row["tx_hash"],
            from_address=row["from_address"],
            to_address=row["to_address"],
            amount=row["amount"],
            token_symbol=row["token_symbol"],
            token_contract=row.get("token_contract"),
            chain_id=row["chain_id"],
            block_number=row.get("block_number"),
            block_time=row.get("block_time"),
            status=UnassociatedStatus(row["status"]),
            admin_notes=row.get("admin_notes"),
            reviewed_by=row.get("reviewed_by"),
            reviewed_at=row.get("reviewed_at"),
            detected_at=row.get("detected_at"),
        )
