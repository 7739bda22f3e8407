"""
pytest 공통 fixture 정의

임시 SQLite DB, 샘플 토큰 / 모니터링 주소 / 이벤트 팩토리
"""

from pathlib import Path
from typing import AsyncGenerator, Callable

import pytest
import pytest_asyncio

from adapters.chain.models import TransferEvent
from adapters.db.sqlite_adapter import SQLiteAdapter, init_schema
from core.types import ChainFamily, MonitoredAddress, SupportedToken

TREASURY = "0x" + "aa" * 20
USER_WALLET = "0x" + "bb" * 20
STRANGER = "0x" + "cc" * 20
USDC_CONTRACT = "0x1c7d4b196cb0c7b01d743fbc6116a902379c7238"

SOL_TREASURY = "TreasuryWa11et1111111111111111111111111111"
SOL_USER = "UserWa11et111111111111111111111111111111111"
SOL_USDC_MINT = "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU"


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """테스트별 임시 디렉토리"""
    return tmp_path


@pytest_asyncio.fixture
async def db(tmp_path: Path) -> AsyncGenerator[SQLiteAdapter, None]:
    """스키마가 초기화된 임시 DB"""
    adapter = SQLiteAdapter(tmp_path / "test_chainledger.db")
    await adapter.connect()
    await init_schema(adapter)
    try:
        yield adapter
    finally:
        await adapter.close()


@pytest.fixture
def eth_token() -> SupportedToken:
    return SupportedToken.create("sepolia", "eth", 18)


@pytest.fixture
def usdc_token() -> SupportedToken:
    return SupportedToken.create("sepolia", "usdc", 6, USDC_CONTRACT)


@pytest.fixture
def sepolia_tokens(eth_token: SupportedToken, usdc_token: SupportedToken) -> list[SupportedToken]:
    return [eth_token, usdc_token]


@pytest.fixture
def treasury_monitored() -> MonitoredAddress:
    """sepolia 트레저리 모니터링 주소"""
    return MonitoredAddress.create("sepolia", ChainFamily.EVM, TREASURY)


@pytest.fixture
def make_event() -> Callable[..., TransferEvent]:
    """TransferEvent 팩토리 (기본값: 사용자 → 트레저리 0.002 ETH)"""

    def _make(
        tx_hash: str = "0x" + "01" * 32,
        from_address: str = USER_WALLET,
        to_address: str = TREASURY,
        amount: int = 2_000_000_000_000_000,
        token_contract: str | None = None,
        block_number: int | None = 100,
        position: int = 0,
        chain_id: str = "sepolia",
        confirmed: bool = True,
    ) -> TransferEvent:
        return TransferEvent(
            tx_hash=tx_hash,
            chain_id=chain_id,
            from_address=from_address,
            to_address=to_address,
            amount=amount,
            token_contract=token_contract,
            block_number=block_number,
            position=position,
            confirmed=confirmed,
        )

    return _make
