"""
Classifier 모듈

체인 이벤트 → 입금 / 출금 / 무관 분류
"""

from bot.classifier.classifier import (
    ClassifiedTransfer,
    Classification,
    DiscardReason,
    classify,
    resolve_token,
)

__all__ = [
    "ClassifiedTransfer",
    "Classification",
    "DiscardReason",
    "classify",
    "resolve_token",
]
