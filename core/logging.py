"""
로깅 설정 유틸리티

모니터 프로세스 공통 로깅 설정.
- 콘솔: INFO 레벨
- 파일: INFO 레벨 (TimedRotatingFileHandler, daily)

로그 호출의 extra={...} 중 체인/트랜잭션 식별 필드는 메시지 뒤에 붙여 출력한다.

사용법:
    from core.logging import setup_logging
    setup_logging("monitor")
"""

import logging
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from core.constants import Paths


LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_BACKUP_COUNT = 7  # 최대 7일치 파일 유지

# 메시지 뒤에 붙일 extra 필드 (출력 순서)
CONTEXT_FIELDS = (
    "chain_id",
    "address",
    "tx_hash",
    "user_ref",
    "token_symbol",
    "amount",
    "error",
)

NOISY_LOGGERS = [
    "aiosqlite",      # DB 쿼리마다 executing/completed 로그
    "httpcore",
    "httpx",          # JSON-RPC 요청마다 한 줄
    "websockets",     # 프레임 단위 로그
    "asyncio",
]


class ContextFormatter(logging.Formatter):
    """extra 식별 필드를 ` [chain_id=... tx_hash=...]` 형태로 덧붙이는 Formatter"""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)

        parts = [
            f"{name}={getattr(record, name)}"
            for name in CONTEXT_FIELDS
            if getattr(record, name, None) is not None
        ]
        if not parts:
            return message

        # 예외 트레이스백이 붙은 경우 첫 줄 뒤에 삽입
        head, sep, tail = message.partition("\n")
        return f"{head} [{' '.join(parts)}]{sep}{tail}"


def get_log_file_path(process_name: str) -> Path:
    if process_name == "monitor":
        return Paths.MONITOR_LOGS_DIR / f"{process_name}.log"
    return Paths.LOGS_DIR / f"{process_name}.log"


def setup_logging(
    process_name: str,
    console_level: int = logging.INFO,
    file_level: int = logging.INFO,
    log_file: Path | None = None,
) -> logging.Logger:
    """로깅 설정 초기화

    콘솔과 daily 롤링 파일 핸들러를 루트 로거에 설치한다.
    다시 호출하면 기존 핸들러를 닫고 교체한다.

    Args:
        process_name: 프로세스 이름 ("monitor" 등)
        console_level: 콘솔 로그 레벨
        file_level: 파일 로그 레벨
        log_file: 로그 파일 경로 (None이면 Paths 기준 기본 경로)

    Returns:
        설정된 루트 Logger
    """
    if log_file is None:
        log_file = get_log_file_path(process_name)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # 필터링은 핸들러 레벨에서

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    formatter = ContextFormatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    file_handler = TimedRotatingFileHandler(
        filename=log_file,
        when="midnight",
        interval=1,
        backupCount=LOG_FILE_BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.suffix = "%Y-%m-%d"  # monitor.log.2026-02-21
    file_handler.setLevel(file_level)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    root_logger.info(
        f"로깅 초기화 완료: {process_name} "
        f"(콘솔 {logging.getLevelName(console_level)}, 파일 {log_file})"
    )
    return root_logger
