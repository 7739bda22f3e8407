"""
Monitor Bootstrap

설정 로드, 의존성 주입, 생명주기 관리.

구성:
- 체인 클라이언트 (활성 체인별, 생성 실패 시 해당 체인만 비활성화)
- TransferProcessor (분류 → 정산 엔진)
- CatchUpScanner (체인 계열별)
- LiveSubscriptionManager (주소별 리스너)
- TokenFeedWatcher (토큰 변경 시 대상 갱신)
- TreasuryChecker (온체인 트레저리 잔고 vs 원장 점검)
"""

import asyncio
import logging
import signal
import sys
from datetime import datetime, timezone
from typing import Any, Callable

from adapters.db.sqlite_adapter import SQLiteAdapter, init_schema
from adapters.interfaces import IChainClient
from adapters.chain.factory import create_chain_client
from bot.reconciliation.engine import ReconciliationEngine
from bot.reconciliation.processor import TransferProcessor
from bot.reconciliation.treasury import TreasuryChecker
from bot.scanner.catchup import CatchUpScanner
from bot.scanner.live import LiveSubscriptionManager
from bot.scanner.token_watcher import TokenFeedWatcher
from core.config.loader import ChainConfig, ConfigLoadError, MonitorConfig, ScannerConfig, get_settings
from core.ledger.store import LedgerStore
from core.logging import setup_logging
from core.storage.cursor_store import CursorStore
from core.storage.token_registry import TokenRegistry
from core.storage.wallet_directory import WalletDirectory
from core.types import ChainFamily

logger = logging.getLogger("bot")

ClientFactory = Callable[[ChainConfig, ScannerConfig], IChainClient]


class MonitorEngine:
    """입출금 모니터 엔진

    모든 컴포넌트를 초기화하고 실행/종료를 관리.

    Args:
        config: 모니터 설정
        db: SQLite 어댑터
        client_factory: 체인 클라이언트 생성 함수 (테스트에서 Mock 주입)
    """

    def __init__(
        self,
        config: MonitorConfig,
        db: SQLiteAdapter,
        client_factory: ClientFactory = create_chain_client,
    ):
        self.config = config
        self.db = db
        self.client_factory = client_factory

        # 스토리지
        self.cursors = CursorStore(db)
        self.token_registry = TokenRegistry(db)
        self.wallets = WalletDirectory(db)
        self.ledger = LedgerStore(db)

        # 정산
        self.engine = ReconciliationEngine(db, self.ledger, self.wallets)
        self.processor = TransferProcessor(self.engine)

        # 체인 (initialize 시 생성)
        self.clients: dict[str, IChainClient] = {}
        self.disabled_chains: dict[str, str] = dict(config.disabled_chains)

        self.scanners: dict[ChainFamily, CatchUpScanner] = {}
        self.live: LiveSubscriptionManager | None = None
        self.token_watcher: TokenFeedWatcher | None = None
        self.treasury_check: TreasuryChecker | None = None

        self._started_at: str | None = None

    async def initialize(self) -> None:
        """토큰 레지스트리 시드, 클라이언트 및 스캐너 생성"""
        for chain_id, chain in self.config.chains.items():
            try:
                self.clients[chain_id] = self.client_factory(chain, self.config.scanner)
                changed = await self.token_registry.sync_from_config(chain)
                logger.info(
                    f"체인 활성화: {chain_id} ({chain.family.value})",
                    extra={"chain_id": chain_id, "tokens_changed": changed},
                )
            except Exception as e:
                self.clients.pop(chain_id, None)
                self.disabled_chains[chain_id] = str(e)
                logger.error(
                    f"체인 초기화 실패로 비활성화: {chain_id}",
                    extra={"chain_id": chain_id, "error": str(e)},
                    exc_info=True,
                )

        scanner_config = self.config.scanner

        for family in ChainFamily:
            if not any(c.family == family for c in self.clients.values()):
                continue
            self.scanners[family] = CatchUpScanner(
                family=family,
                clients=self.clients,
                processor=self.processor,
                cursors=self.cursors,
                poll_interval_seconds=scanner_config.poll_interval_for(family),
            )

        if scanner_config.live_subscriptions:
            self.live = LiveSubscriptionManager(self.clients, self.processor, self.cursors)

        active_chains = {cid: self.config.chains[cid] for cid in self.clients}
        self.token_watcher = TokenFeedWatcher(
            registry=self.token_registry,
            clients=self.clients,
            chains=active_chains,
            processor=self.processor,
            cursors=self.cursors,
            live=self.live,
            interval_seconds=scanner_config.token_feed_interval_sec,
        )
        self.treasury_check = TreasuryChecker(
            clients=self.clients,
            chains=active_chains,
            registry=self.token_registry,
            ledger=self.ledger,
            cursors=self.cursors,
            interval_seconds=scanner_config.treasury_check_interval_sec,
        )

        logger.info(
            f"MonitorEngine 초기화 완료: 활성 {len(self.clients)}개, 비활성 {len(self.disabled_chains)}개"
        )

    async def start(self) -> None:
        """모니터링 시작"""
        self._started_at = datetime.now(timezone.utc).isoformat()

        # 모니터링 대상 구성 + 리스너 설치
        if self.token_watcher:
            await self.token_watcher.check_once()
            await self.token_watcher.start_monitoring()

        for scanner in self.scanners.values():
            await scanner.start()

        if self.treasury_check:
            try:
                await self.treasury_check.check_once()
            except Exception as e:
                logger.error(
                    "시작 시 트레저리 점검 실패",
                    extra={"error": str(e)},
                    exc_info=True,
                )
            await self.treasury_check.start_monitoring()

        logger.info("MonitorEngine RUNNING")

    async def stop(self) -> None:
        """모니터링 종료"""
        logger.info("MonitorEngine 종료 중...")

        for scanner in self.scanners.values():
            await scanner.stop()

        if self.token_watcher:
            await self.token_watcher.stop_monitoring()

        if self.treasury_check:
            await self.treasury_check.stop_monitoring()

        if self.live:
            await self.live.stop()

        for chain_id, client in self.clients.items():
            try:
                await client.close()
            except Exception as e:
                logger.warning(f"클라이언트 종료 실패: {chain_id}: {e}")

    def get_status(self) -> dict[str, Any]:
        """모니터링 상태

        Returns:
            {
                "started_at": str | None,
                "enabled_chains": list[str],
                "disabled_chains": dict[str, str],
                "scanners": {family: {...}},
                "listeners": {"total": int, "by_chain": {...}},
                "processed": {outcome: count},
                "treasury": {...} | None,  # 마지막 트레저리 점검 결과
            }
        """
        scanners = {
            family.value: {
                "poll_interval_seconds": scanner.poll_interval_seconds,
                "running": scanner.is_cycle_running,
                "cycles_skipped": scanner.cycles_skipped,
                "last_result": scanner.last_result,
            }
            for family, scanner in self.scanners.items()
        }

        return {
            "started_at": self._started_at,
            "enabled_chains": sorted(self.clients),
            "disabled_chains": dict(self.disabled_chains),
            "scanners": scanners,
            "listeners": {
                "total": self.live.listener_count if self.live else 0,
                "by_chain": self.live.listener_counts() if self.live else {},
            },
            "processed": dict(self.processor.stats),
            "treasury": self.treasury_check.last_report if self.treasury_check else None,
        }

    async def get_address_status(self) -> list[dict[str, Any]]:
        """모니터링 주소별 스캔 진행 위치

        Returns:
            [{"chain_id", "address", "owner", "token_symbol", "user_ref",
              "block_number", "last_signature", "updated_at"}, ...]
        """
        rows: list[dict[str, Any]] = []
        for chain_id in sorted(self.clients):
            for monitored in self.processor.monitored_for(chain_id):
                cursor = await self.cursors.get_cursor(chain_id, monitored.address)
                rows.append({
                    "chain_id": chain_id,
                    "address": monitored.address,
                    "owner": monitored.owner,
                    "token_symbol": monitored.token.symbol if monitored.token else None,
                    "user_ref": monitored.user_ref,
                    "block_number": cursor.block_number if cursor else None,
                    "last_signature": await self.cursors.get_last_signature(
                        chain_id, monitored.address
                    ),
                    "updated_at": cursor.updated_at if cursor else None,
                })
        return rows


def _install_signal_handlers(shutdown_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown_event.set)
        except NotImplementedError:
            # Windows: KeyboardInterrupt로 처리
            pass


async def main() -> None:
    """Monitor 메인 함수"""
    setup_logging("monitor")

    logger.info("=" * 60)
    logger.info("ChainLedger Monitor 시작")
    logger.info("=" * 60)

    # 1. 설정 로드
    try:
        settings = get_settings()
    except ConfigLoadError as e:
        logger.error(f"설정 로드 실패: {e}")
        sys.exit(1)

    config = settings.config
    logger.info(f"DB: {config.db_path}")
    for chain_id, reason in config.disabled_chains.items():
        logger.warning(f"비활성 체인: {chain_id} ({reason})")

    config.db_path.parent.mkdir(parents=True, exist_ok=True)

    # 2. DB 연결 및 스키마 초기화
    async with SQLiteAdapter(config.db_path) as db:
        await init_schema(db)

        # 3. 엔진 생성 및 초기화
        engine = MonitorEngine(config, db)
        await engine.initialize()

        # 4. 종료 이벤트 설정
        shutdown_event = asyncio.Event()
        _install_signal_handlers(shutdown_event)

        logger.info("Monitor 실행 (종료: Ctrl+C)")

        try:
            await engine.start()
            await shutdown_event.wait()
        except asyncio.CancelledError:
            logger.info("메인 루프 취소됨")
        except KeyboardInterrupt:
            logger.info("Ctrl+C 감지")
        finally:
            logger.info(f"최종 스캔 위치: {await engine.get_address_status()}")
            await engine.stop()
            logger.info(f"최종 상태: {engine.get_status()}")

    logger.info("=" * 60)
    logger.info("ChainLedger Monitor 정상 종료")
    logger.info("=" * 60)


def run() -> None:
    """콘솔 스크립트 진입점"""
    asyncio.run(main())


if __name__ == "__main__":
    run()
