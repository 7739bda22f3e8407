"""
Scanner 모듈

체인 이체 발견 경로:
- Catch-up 스캔 (계열별 주기, 커서 기반 재생)
- 실시간 구독 (주소별 리스너)
- 토큰 피드 감시 (대상 갱신 및 리스너 교체)
"""

from bot.scanner.base import BaseScanner
from bot.scanner.catchup import CatchUpScanner
from bot.scanner.live import LiveSubscriptionManager
from bot.scanner.token_watcher import TokenFeedWatcher

__all__ = [
    "BaseScanner",
    "CatchUpScanner",
    "LiveSubscriptionManager",
    "TokenFeedWatcher",
]
