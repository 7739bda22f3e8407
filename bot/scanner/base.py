"""
BaseScanner

체인 계열별 스캐너 베이스 클래스.
주기 타이머와 사이클 중첩 방지(비차단 Lock) 제공.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from core.types import ChainFamily

logger = logging.getLogger(__name__)


class BaseScanner(ABC):
    """스캐너 베이스 클래스

    타이머는 이전 사이클 완료 여부와 관계없이 매 주기마다 새 사이클을 시작한다.
    같은 계열의 사이클이 진행 중이면 새 사이클은 대기하지 않고 건너뛴다.

    Args:
        family: 체인 계열
        poll_interval_seconds: 사이클 주기 (초)
    """

    def __init__(self, family: ChainFamily, poll_interval_seconds: float):
        self.family = family
        self.poll_interval_seconds = poll_interval_seconds

        self._lock = asyncio.Lock()
        self._timer_task: asyncio.Task[None] | None = None
        self._cycle_tasks: set[asyncio.Task[dict[str, Any]]] = set()

        self.last_result: dict[str, Any] | None = None
        self.cycles_skipped = 0

    @property
    @abstractmethod
    def scanner_name(self) -> str:
        """스캐너 이름 (로깅용)"""
        ...

    @property
    def is_cycle_running(self) -> bool:
        return self._lock.locked()

    @property
    def is_started(self) -> bool:
        return self._timer_task is not None

    @abstractmethod
    async def _do_cycle(self) -> dict[str, Any]:
        """사이클 본체

        Returns:
            사이클 결과 (로깅 및 상태 조회용)
        """
        ...

    async def run_cycle(self) -> dict[str, Any]:
        """사이클 실행

        Returns:
            사이클 결과:
            {
                "skipped": bool,
                "started_at": str,
                "duration_ms": float,
                ...
            }
        """
        if self._lock.locked():
            self.cycles_skipped += 1
            logger.warning(
                f"{self.scanner_name} 사이클 진행 중, 이번 사이클 건너뜀",
                extra={"family": self.family.value, "skipped_total": self.cycles_skipped},
            )
            return {"skipped": True}

        async with self._lock:
            start_time = datetime.now(timezone.utc)

            try:
                logger.debug(f"{self.scanner_name} 사이클 시작")
                result = await self._do_cycle()
            except Exception as e:
                logger.error(
                    f"{self.scanner_name} 사이클 실패",
                    extra={"family": self.family.value, "error": str(e)},
                    exc_info=True,
                )
                result = {"error": str(e)}

            duration_ms = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000
            result.update(
                {
                    "skipped": False,
                    "started_at": start_time.isoformat(),
                    "duration_ms": duration_ms,
                }
            )
            self.last_result = result

            logger.debug(
                f"{self.scanner_name} 사이클 완료",
                extra={"family": self.family.value, "duration_ms": duration_ms},
            )
            return result

    # -------------------------------------------------------------------------
    # 타이머
    # -------------------------------------------------------------------------

    def _spawn_cycle(self) -> asyncio.Task[dict[str, Any]]:
        task = asyncio.create_task(self.run_cycle())
        self._cycle_tasks.add(task)
        task.add_done_callback(self._cycle_tasks.discard)
        return task

    async def _timer_loop(self) -> None:
        while True:
            self._spawn_cycle()
            await asyncio.sleep(self.poll_interval_seconds)

    async def start(self) -> None:
        """주기 실행 시작 (즉시 첫 사이클)"""
        if self._timer_task is not None:
            return

        self._timer_task = asyncio.create_task(self._timer_loop())
        logger.info(
            f"{self.scanner_name} 시작 (주기 {self.poll_interval_seconds}초)",
            extra={"family": self.family.value},
        )

    async def stop(self) -> None:
        """타이머 중지 및 진행 중인 사이클 완료 대기"""
        if self._timer_task is not None:
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
            self._timer_task = None

        if self._cycle_tasks:
            await asyncio.gather(*list(self._cycle_tasks), return_exceptions=True)

        logger.info(f"{self.scanner_name} 중지", extra={"family": self.family.value})
