"""
설정 로더

chains.yaml 로드 및 체인별 모니터링 설정 생성.
한 체인의 설정 오류는 해당 체인만 비활성화하고 나머지 체인은 계속 동작한다.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from core.constants import Defaults, Paths, PROJECT_ROOT
from core.types import ChainFamily, SupportedToken, normalize_address

logger = logging.getLogger(__name__)


class ConfigLoadError(Exception):
    """설정 파일 로드 실패 예외 (프로세스 전체 시작 중단)"""

    pass


class ChainConfigError(Exception):
    """체인 단위 설정 오류 (해당 체인만 비활성화)"""

    def __init__(self, chain_id: str, message: str):
        self.chain_id = chain_id
        self.message = message
        super().__init__(f"[{chain_id}] {message}")


@dataclass(frozen=True)
class ScannerConfig:
    """스캐너 설정"""

    evm_poll_interval_sec: int = Defaults.EVM_POLL_INTERVAL_SEC
    solana_poll_interval_sec: int = Defaults.SOLANA_POLL_INTERVAL_SEC
    page_size: int = Defaults.PAGE_SIZE
    page_delay_sec: float = Defaults.PAGE_DELAY_SEC
    token_feed_interval_sec: int = Defaults.TOKEN_FEED_INTERVAL_SEC
    treasury_check_interval_sec: int = Defaults.TREASURY_CHECK_INTERVAL_SEC
    live_subscriptions: bool = True

    def poll_interval_for(self, family: ChainFamily) -> int:
        """체인 계열별 폴링 주기"""
        if family == ChainFamily.SOLANA:
            return self.solana_poll_interval_sec
        return self.evm_poll_interval_sec


@dataclass(frozen=True)
class ChainConfig:
    """체인 연결 설정

    불변 데이터 구조로 설정 변경 방지
    """

    chain_id: str
    family: ChainFamily
    http_url: str
    ws_url: str | None
    treasury_addresses: tuple[str, ...]
    tokens: tuple[SupportedToken, ...]
    numeric_chain_id: int | None = None
    deposit_addresses: tuple[tuple[str, str], ...] = ()  # (주소, user_ref)

    @property
    def native_token(self) -> SupportedToken | None:
        """체인의 네이티브 토큰"""
        for token in self.tokens:
            if token.is_native:
                return token
        return None


@dataclass(frozen=True)
class MonitorConfig:
    """모니터 전체 설정

    Attributes:
        db_path: SQLite DB 경로
        scanner: 스캐너 설정
        chains: 활성 체인 설정 (chain_id → ChainConfig)
        disabled_chains: 설정 오류로 비활성화된 체인 (chain_id → 사유)
    """

    db_path: Path
    scanner: ScannerConfig
    chains: dict[str, ChainConfig] = field(default_factory=dict)
    disabled_chains: dict[str, str] = field(default_factory=dict)

    def chains_by_family(self, family: ChainFamily) -> list[ChainConfig]:
        """체인 계열별 활성 체인 목록"""
        return [c for c in self.chains.values() if c.family == family]


def treasury_env_var(chain_id: str) -> str:
    """트레저리 주소 환경변수 이름

    Example:
        >>> treasury_env_var("solana-devnet")
        'TREASURY_SOLANA_DEVNET_ADDRESS'
    """
    return f"TREASURY_{chain_id.upper().replace('-', '_')}_ADDRESS"


def _parse_tokens(
    chain_id: str,
    family: ChainFamily,
    raw_tokens: Any,
) -> tuple[SupportedToken, ...]:
    """tokens 섹션 파싱"""
    if not raw_tokens:
        raise ChainConfigError(chain_id, "'tokens'가 비어 있습니다")
    if not isinstance(raw_tokens, list):
        raise ChainConfigError(chain_id, "'tokens'는 목록이어야 합니다")

    tokens: list[SupportedToken] = []
    native_count = 0

    for raw in raw_tokens:
        if not isinstance(raw, dict):
            raise ChainConfigError(chain_id, f"토큰 항목 형식 오류: {raw!r}")

        symbol = raw.get("symbol")
        decimals = raw.get("decimals")
        contract = raw.get("contract")
        is_native = bool(raw.get("native", False))

        if not symbol:
            raise ChainConfigError(chain_id, f"토큰에 'symbol'이 없습니다: {raw!r}")
        if decimals is None:
            raise ChainConfigError(chain_id, f"토큰 '{symbol}'에 'decimals'가 없습니다")
        if is_native and contract:
            raise ChainConfigError(
                chain_id, f"네이티브 토큰 '{symbol}'에는 contract를 지정할 수 없습니다"
            )
        if not is_native and not contract:
            raise ChainConfigError(chain_id, f"토큰 '{symbol}'에 'contract'가 없습니다")

        if is_native:
            native_count += 1

        try:
            tokens.append(
                SupportedToken.create(
                    chain_id=chain_id,
                    symbol=str(symbol),
                    decimals=int(decimals),
                    contract=None if is_native else str(contract),
                    family=family,
                )
            )
        except ValueError as e:
            raise ChainConfigError(chain_id, str(e)) from e

    if native_count > 1:
        raise ChainConfigError(chain_id, "네이티브 토큰은 하나만 지정할 수 있습니다")

    symbols = [t.symbol for t in tokens]
    if len(symbols) != len(set(symbols)):
        raise ChainConfigError(chain_id, f"토큰 심볼이 중복됩니다: {symbols}")

    return tuple(tokens)


def _parse_deposit_addresses(
    chain_id: str,
    family: ChainFamily,
    raw_entries: Any,
    treasury_addresses: tuple[str, ...],
) -> tuple[tuple[str, str], ...]:
    """deposit_addresses 섹션 파싱 (사용자 전용 입금 주소)"""
    if not raw_entries:
        return ()
    if not isinstance(raw_entries, list):
        raise ChainConfigError(chain_id, "'deposit_addresses'는 목록이어야 합니다")

    entries: dict[str, str] = {}
    for raw in raw_entries:
        if not isinstance(raw, dict) or not raw.get("address") or not raw.get("user_ref"):
            raise ChainConfigError(
                chain_id, f"입금 주소 항목에는 address, user_ref가 필요합니다: {raw!r}"
            )

        address = normalize_address(family, str(raw["address"]))
        user_ref = str(raw["user_ref"])
        if address in treasury_addresses:
            raise ChainConfigError(chain_id, f"트레저리 주소는 입금 주소로 쓸 수 없습니다: {address}")
        if entries.get(address, user_ref) != user_ref:
            raise ChainConfigError(chain_id, f"입금 주소가 여러 사용자에게 지정됨: {address}")
        entries[address] = user_ref

    return tuple(entries.items())


def parse_chain_config(
    chain_id: str,
    raw: Any,
    environ: dict[str, str] | None = None,
) -> ChainConfig:
    """체인 하나의 설정 파싱

    Args:
        chain_id: 체인 ID (예: sepolia)
        raw: chains.<chain_id> 섹션
        environ: 환경변수 (None이면 os.environ)

    Returns:
        ChainConfig 인스턴스

    Raises:
        ChainConfigError: 필수 값 누락 또는 형식 오류
    """
    if environ is None:
        environ = dict(os.environ)

    if not isinstance(raw, dict):
        raise ChainConfigError(chain_id, "체인 설정은 매핑이어야 합니다")

    family_str = raw.get("family")
    try:
        family = ChainFamily(str(family_str).lower())
    except ValueError as e:
        valid = [f.value for f in ChainFamily]
        raise ChainConfigError(
            chain_id, f"유효하지 않은 family: '{family_str}'. 유효한 값: {valid}"
        ) from e

    http_url = raw.get("http_url")
    if not http_url:
        raise ChainConfigError(chain_id, "'http_url'이 없습니다")

    # 환경변수가 설정 파일보다 우선
    env_value = environ.get(treasury_env_var(chain_id), "")
    if env_value.strip():
        raw_addresses: Any = [a for a in env_value.split(",") if a.strip()]
    else:
        raw_addresses = raw.get("treasury_addresses") or []

    if isinstance(raw_addresses, str):
        raw_addresses = [raw_addresses]
    if not raw_addresses:
        raise ChainConfigError(
            chain_id,
            f"트레저리 주소가 없습니다 (treasury_addresses 또는 {treasury_env_var(chain_id)})",
        )

    treasury_addresses = tuple(
        dict.fromkeys(normalize_address(family, str(a)) for a in raw_addresses)
    )

    tokens = _parse_tokens(chain_id, family, raw.get("tokens"))
    deposit_addresses = _parse_deposit_addresses(
        chain_id, family, raw.get("deposit_addresses"), treasury_addresses
    )

    numeric_chain_id = raw.get("numeric_chain_id")

    return ChainConfig(
        chain_id=chain_id,
        family=family,
        http_url=str(http_url),
        ws_url=str(raw["ws_url"]) if raw.get("ws_url") else None,
        treasury_addresses=treasury_addresses,
        tokens=tokens,
        numeric_chain_id=int(numeric_chain_id) if numeric_chain_id is not None else None,
        deposit_addresses=deposit_addresses,
    )


def _parse_scanner(raw: Any) -> ScannerConfig:
    """scanner 섹션 파싱"""
    if not raw:
        return ScannerConfig()
    if not isinstance(raw, dict):
        raise ConfigLoadError("'scanner' 섹션은 매핑이어야 합니다")

    defaults = ScannerConfig()
    try:
        return ScannerConfig(
            evm_poll_interval_sec=int(
                raw.get("evm_poll_interval_sec", defaults.evm_poll_interval_sec)
            ),
            solana_poll_interval_sec=int(
                raw.get("solana_poll_interval_sec", defaults.solana_poll_interval_sec)
            ),
            page_size=int(raw.get("page_size", defaults.page_size)),
            page_delay_sec=float(raw.get("page_delay_sec", defaults.page_delay_sec)),
            token_feed_interval_sec=int(
                raw.get("token_feed_interval_sec", defaults.token_feed_interval_sec)
            ),
            treasury_check_interval_sec=int(
                raw.get("treasury_check_interval_sec", defaults.treasury_check_interval_sec)
            ),
            live_subscriptions=bool(
                raw.get("live_subscriptions", defaults.live_subscriptions)
            ),
        )
    except (TypeError, ValueError) as e:
        raise ConfigLoadError(f"'scanner' 섹션 값 오류: {e}") from e


def load_config(
    path: Path | None = None,
    environ: dict[str, str] | None = None,
) -> MonitorConfig:
    """chains.yaml 파일 로드

    Args:
        path: 설정 파일 경로 (None이면 CHAINLEDGER_CONFIG 또는 기본 경로)
        environ: 환경변수 (None이면 os.environ)

    Returns:
        MonitorConfig 인스턴스. 오류가 있는 체인은 disabled_chains에 기록.

    Raises:
        ConfigLoadError: 파일이 없거나 형식이 잘못된 경우
    """
    if environ is None:
        environ = dict(os.environ)

    if path is None:
        env_path = environ.get(Defaults.CONFIG_ENV_VAR)
        path = Path(env_path) if env_path else Paths.CONFIG_FILE

    if not path.exists():
        raise ConfigLoadError(f"설정 파일을 찾을 수 없습니다: {path}")

    try:
        content = path.read_text(encoding="utf-8")
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"설정 파일 파싱 실패: {e}") from e

    if data is None:
        raise ConfigLoadError("설정 파일이 비어 있습니다")
    if not isinstance(data, dict):
        raise ConfigLoadError("설정 파일 최상위는 매핑이어야 합니다")

    database = data.get("database") or {}
    db_path = Path(database.get("path", Paths.DEFAULT_DB))
    if not db_path.is_absolute():
        db_path = PROJECT_ROOT / db_path

    scanner = _parse_scanner(data.get("scanner"))

    raw_chains = data.get("chains")
    if not raw_chains or not isinstance(raw_chains, dict):
        raise ConfigLoadError("설정 파일에 'chains' 섹션이 없습니다")

    chains: dict[str, ChainConfig] = {}
    disabled: dict[str, str] = {}

    for chain_id, raw_chain in raw_chains.items():
        chain_id = str(chain_id)
        try:
            chains[chain_id] = parse_chain_config(chain_id, raw_chain, environ)
        except ChainConfigError as e:
            disabled[chain_id] = e.message
            logger.error(
                f"체인 설정 오류로 비활성화: {chain_id}",
                extra={"chain_id": chain_id, "error": e.message},
            )

    return MonitorConfig(
        db_path=db_path,
        scanner=scanner,
        chains=chains,
        disabled_chains=disabled,
    )


class Settings:
    """애플리케이션 설정 (싱글턴 패턴)

    chains.yaml을 로드하고 관련 설정을 제공
    """

    _instance: "Settings | None" = None
    _config: MonitorConfig | None = None

    def __new__(cls, config_path: Path | None = None) -> "Settings":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, config_path: Path | None = None) -> None:
        if self._config is None:
            self._config = load_config(config_path)

    @property
    def config(self) -> MonitorConfig:
        """전체 모니터 설정"""
        assert self._config is not None
        return self._config

    @property
    def db_path(self) -> Path:
        """DB 경로"""
        return self.config.db_path

    @property
    def scanner(self) -> ScannerConfig:
        """스캐너 설정"""
        return self.config.scanner

    @classmethod
    def reset(cls) -> None:
        """싱글턴 인스턴스 초기화 (테스트용)"""
        cls._instance = None
        cls._config = None


def get_settings(config_path: Path | None = None) -> Settings:
    """Settings 인스턴스 반환

    Args:
        config_path: chains.yaml 경로 (None이면 기본 경로 사용)

    Returns:
        Settings 싱글턴 인스턴스
    """
    return Settings(config_path)
