"""
스토리지 모듈

스캔 커서, 지원 토큰 피드, 사용자 지갑 매핑 저장소 제공
"""

from core.storage.cursor_store import CursorStore, ScanCursor
from core.storage.token_registry import TokenRegistry
from core.storage.wallet_directory import WalletConflictError, WalletDirectory

__all__ = [
    "CursorStore",
    "ScanCursor",
    "TokenRegistry",
    "WalletDirectory",
    "WalletConflictError",
]
