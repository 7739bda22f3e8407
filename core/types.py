"""
타입 정의 모듈

Enum, Dataclass 등 핵심 타입 정의
모든 Enum은 str을 상속하여 문자열 직렬화 가능
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ChainFamily(str, Enum):
    """체인 계열 (트랜잭션 모델 기준)"""

    EVM = "evm"
    SOLANA = "solana"


class Direction(str, Enum):
    """이체 방향 (트레저리 기준)"""

    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"


class WithdrawStatus(str, Enum):
    """출금 요청 상태"""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    DEBITED_INTERNALLY = "debited-internally"


class UnassociatedStatus(str, Enum):
    """미연결 입금 상태"""

    DETECTED = "detected"
    REVIEWED = "reviewed"
    IGNORED = "ignored"
    ASSOCIATED = "associated"


class WalletType(str, Enum):
    """사용자 지갑 종류"""

    PHANTOM = "phantom"
    METAMASK = "metamask"


class TokenKind(str, Enum):
    """토큰 종류"""

    NATIVE = "native"
    FUNGIBLE = "fungible"


class WebSocketState(str, Enum):
    """WebSocket 연결 상태"""

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    RECONNECTING = "RECONNECTING"


def normalize_address(family: ChainFamily | str, address: str) -> str:
    """체인 계열에 맞게 주소 정규화

    EVM 주소는 대소문자 구분이 없으므로 소문자로 통일.
    Solana(base58)는 대소문자를 구분하므로 공백만 제거.
    """
    address = address.strip()
    if ChainFamily(family) == ChainFamily.EVM:
        return address.lower()
    return address


@dataclass(frozen=True)
class SupportedToken:
    """지원 토큰 (불변)

    설정 로드 시 한 번 해석되어 체인 ID, 소수 자릿수, 컨트랙트/민트 주소를
    구조화된 필드로 보관. 임의의 coin type 문자열 대신 사용.
    """

    chain_id: str
    symbol: str
    decimals: int
    contract: str | None = None  # None이면 네이티브 토큰

    @property
    def kind(self) -> TokenKind:
        return TokenKind.NATIVE if self.contract is None else TokenKind.FUNGIBLE

    @property
    def is_native(self) -> bool:
        return self.contract is None

    @classmethod
    def create(
        cls,
        chain_id: str,
        symbol: str,
        decimals: int,
        contract: str | None = None,
        family: ChainFamily | str = ChainFamily.EVM,
    ) -> "SupportedToken":
        """정규화된 SupportedToken 생성 헬퍼

        심볼은 소문자, 컨트랙트 주소는 체인 계열 규칙으로 정규화.
        """
        if decimals < 0:
            raise ValueError(f"decimals는 0 이상이어야 합니다: {decimals}")

        return cls(
            chain_id=chain_id,
            symbol=symbol.strip().lower(),
            decimals=int(decimals),
            contract=normalize_address(family, contract) if contract else None,
        )


@dataclass(frozen=True)
class MonitoredAddress:
    """모니터링 대상 주소 (불변)

    Attributes:
        chain_id: 체인 ID (예: sepolia, solana-devnet)
        family: 체인 계열
        address: 실제로 감시하는 계정 주소
        owner: 주소를 소유한 지갑 (Solana 토큰 계정이 아니면 address와 동일)
        token: 특정 토큰으로 한정된 경우 해당 토큰 (None이면 체인의 모든 지원 토큰)
        user_ref: 사용자 전용 입금 주소인 경우 그 사용자 (트레저리 주소면 None)
    """

    chain_id: str
    family: ChainFamily
    address: str
    owner: str
    token: SupportedToken | None = None
    user_ref: str | None = None

    @classmethod
    def create(
        cls,
        chain_id: str,
        family: ChainFamily | str,
        address: str,
        owner: str | None = None,
        token: SupportedToken | None = None,
        user_ref: str | None = None,
    ) -> "MonitoredAddress":
        """정규화된 MonitoredAddress 생성 헬퍼"""
        family = ChainFamily(family)
        normalized = normalize_address(family, address)
        return cls(
            chain_id=chain_id,
            family=family,
            address=normalized,
            owner=normalize_address(family, owner) if owner else normalized,
            token=token,
            user_ref=user_ref,
        )

    @property
    def awaits_token_account(self) -> bool:
        """토큰 계정이 없어 지갑 주소를 토큰 전용으로 감시 중인지 여부 (Solana)

        토큰 계정이 생기면 이후 이체는 지갑 주소를 언급하지 않으므로 다시 해석해야 한다.
        """
        return (
            self.family == ChainFamily.SOLANA
            and self.token is not None
            and not self.token.is_native
            and self.address == self.owner
        )

    def accepts(self, token: SupportedToken) -> bool:
        """이 주소가 해당 토큰을 모니터링하는지 여부"""
        if token.chain_id != self.chain_id:
            return False
        return self.token is None or self.token == token


@dataclass(frozen=True)
class ScanCursor:
    """주소별 스캔 진행 위치

    Attributes:
        block_number: EVM 블록 번호 또는 Solana 슬롯
        signature: 마지막으로 커밋된 트랜잭션 (Solana until 마커)
        updated_at: 갱신 시각 (ISO)
    """

    block_number: int | None = None
    signature: str | None = None
    updated_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "block_number": self.block_number,
            "signature": self.signature,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScanCursor":
        block_number = data.get("block_number")
        return cls(
            block_number=int(block_number) if block_number is not None else None,
            signature=data.get("signature"),
            updated_at=data.get("updated_at"),
        )
