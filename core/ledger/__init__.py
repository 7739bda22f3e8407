"""
Ledger 패키지

입출금 기록, 트레저리/사용자 잔고, 누적 히스토리 저장소.

사용 예시:
```python
from core.ledger import LedgerStore

ledger = LedgerStore(db)

# 출금 요청 생성 (가용 → 예약 잔고)
withdraw = await ledger.create_withdraw_request(
    user_ref="42",
    chain_id="sepolia",
    token_symbol="eth",
    amount="1000000000000000",
    to_address="0xabc...",
)

# 조회
treasury = await ledger.get_treasury()
wallet = await ledger.get_wallet_balance("42")
```
"""

from core.ledger.store import InsufficientBalanceError, LedgerStore
from core.ledger.types import (
    ApplyOutcome,
    DepositRecord,
    HistoryActionType,
    HistoryRecord,
    UnassociatedDeposit,
    WalletBalance,
    WithdrawRecord,
)

__all__ = [
    "LedgerStore",
    "InsufficientBalanceError",
    "ApplyOutcome",
    "HistoryActionType",
    "DepositRecord",
    "WithdrawRecord",
    "HistoryRecord",
    "WalletBalance",
    "UnassociatedDeposit",
]
