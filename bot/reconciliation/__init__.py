"""
Reconciliation 모듈

분류된 이체를 Ledger에 원자적으로 반영하는 정산 엔진과 처리기
"""

from bot.reconciliation.engine import ReconciliationEngine
from bot.reconciliation.processor import TransferProcessor

__all__ = [
    "ReconciliationEngine",
    "TransferProcessor",
]
