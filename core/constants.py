"""
하드코딩 상수 - 변경될 일이 거의 없는 고정값

중요: 경로는 반드시 pathlib.Path 사용 (Windows/Linux 크로스 플랫폼)
"""

from pathlib import Path


# 프로젝트 루트 (이 파일 기준 2단계 상위: core/constants.py → chainledger/)
PROJECT_ROOT: Path = Path(__file__).resolve().parent.parent


class ChainPrograms:
    """체인별 고정 프로그램/토픽 식별자"""

    # Solana
    SYSTEM_PROGRAM_ID: str = "11111111111111111111111111111111"
    TOKEN_PROGRAM_ID: str = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
    TOKEN_2022_PROGRAM_ID: str = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"

    # EVM: keccak256("Transfer(address,address,uint256)")
    ERC20_TRANSFER_TOPIC: str = (
        "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
    )


class Defaults:
    """기본값 상수"""

    LOG_LEVEL: str = "INFO"

    # 체인 계열별 폴링 주기 (초)
    EVM_POLL_INTERVAL_SEC: int = 30
    SOLANA_POLL_INTERVAL_SEC: int = 15

    # 토큰 피드 변경 확인 주기 (초)
    TOKEN_FEED_INTERVAL_SEC: int = 60

    # 온체인 트레저리 잔고 점검 주기 (초)
    TREASURY_CHECK_INTERVAL_SEC: int = 300

    # Catch-up 스캔 페이지
    PAGE_SIZE: int = 1000
    PAGE_DELAY_SEC: float = 0.5

    CONFIG_ENV_VAR: str = "CHAINLEDGER_CONFIG"


class RpcDefaults:
    """JSON-RPC 호출 기본값"""

    TIMEOUT_SEC: float = 30.0
    MAX_RETRIES: int = 3
    BACKOFF_BASE_SEC: float = 1.0
    RATE_LIMIT_RETRY_SEC: int = 5

    # 토큰 계정 소유자 조회 재시도
    OWNER_LOOKUP_RETRIES: int = 3


class Paths:
    """프로젝트 경로 상수 (pathlib 사용 - OS 독립적)"""

    # 디렉토리
    CONFIG_DIR: Path = PROJECT_ROOT / "config"
    DATA_DIR: Path = PROJECT_ROOT / "data"
    LOGS_DIR: Path = PROJECT_ROOT / "logs"
    MONITOR_LOGS_DIR: Path = LOGS_DIR / "monitor"

    # 설정 파일
    CONFIG_FILE: Path = CONFIG_DIR / "chains.yaml"

    # DB 파일
    DEFAULT_DB: Path = DATA_DIR / "chainledger.db"
