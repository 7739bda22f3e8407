"""
JSON-RPC WebSocket 구독 클라이언트

EVM(eth_subscribe)과 Solana(logsSubscribe) 공통 구독 연결.
연결이 끊기면 지수 백오프로 재연결하고 등록된 구독을 모두 다시 요청한다.
"""

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import websockets
from websockets.exceptions import ConnectionClosed

from adapters.chain.errors import ChainRpcError
from core.types import WebSocketState

logger = logging.getLogger(__name__)


# 콜백 타입 정의
NotificationCallback = Callable[[Any], Awaitable[None]]
StateChangeCallback = Callable[[WebSocketState], Awaitable[None]]


@dataclass
class Subscription:
    """등록된 구독

    Attributes:
        handle: 클라이언트 측 구독 핸들 (재연결 후에도 유지)
        server_id: 노드가 부여한 구독 ID (연결마다 바뀜)
    """

    handle: str
    method: str
    params: list[Any]
    unsubscribe_method: str
    callback: NotificationCallback
    server_id: Any = None


class JsonRpcWsClient:
    """JSON-RPC WebSocket 클라이언트

    Args:
        url: WebSocket 엔드포인트
        on_state_change: 상태 변경 콜백
    """

    # 상수
    RECONNECT_MIN_DELAY = 1  # 최소 재연결 대기 (초)
    RECONNECT_MAX_DELAY = 30  # 최대 재연결 대기 (초)
    PING_INTERVAL = 30  # ping 간격 (초)
    PING_TIMEOUT = 10  # ping 타임아웃 (초)
    REQUEST_TIMEOUT = 30  # 구독 요청 응답 대기 (초)

    def __init__(
        self,
        url: str,
        on_state_change: StateChangeCallback | None = None,
    ):
        self.url = url
        self.on_state_change = on_state_change

        self._state = WebSocketState.DISCONNECTED
        self._ws: Any = None
        self._should_reconnect = False

        self._ids = itertools.count(1)
        self._handles = itertools.count(1)
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._subscriptions: dict[str, Subscription] = {}

        # 태스크 관리
        self._run_task: asyncio.Task[None] | None = None
        self._callback_tasks: set[asyncio.Task[None]] = set()

    @property
    def state(self) -> WebSocketState:
        """현재 연결 상태"""
        return self._state

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    async def start(self) -> None:
        """연결 루프 시작 (이미 실행 중이면 무시)"""
        if self._run_task is not None and not self._run_task.done():
            return
        self._should_reconnect = True
        self._run_task = asyncio.create_task(self._run_loop())

    async def stop(self) -> None:
        """연결 종료 및 모든 구독 해제"""
        self._should_reconnect = False

        if self._run_task is not None:
            self._run_task.cancel()
            try:
                await self._run_task
            except asyncio.CancelledError:
                pass
            self._run_task = None

        for task in list(self._callback_tasks):
            task.cancel()
        if self._callback_tasks:
            await asyncio.gather(*self._callback_tasks, return_exceptions=True)
        self._callback_tasks.clear()

        await self._close_socket()
        self._subscriptions.clear()
        await self._set_state(WebSocketState.DISCONNECTED)
        logger.info("WebSocket 연결 종료", extra={"url": self.url})

    async def subscribe(
        self,
        method: str,
        params: list[Any],
        unsubscribe_method: str,
        callback: NotificationCallback,
    ) -> str:
        """구독 등록

        연결 전이면 연결 직후 구독 요청이 전송된다.

        Returns:
            구독 핸들 (unsubscribe에 사용)
        """
        handle = f"sub-{next(self._handles)}"
        sub = Subscription(
            handle=handle,
            method=method,
            params=params,
            unsubscribe_method=unsubscribe_method,
            callback=callback,
        )
        self._subscriptions[handle] = sub

        await self.start()
        if self._state == WebSocketState.CONNECTED:
            try:
                await self._send_subscribe(sub)
            except BaseException:
                self._subscriptions.pop(handle, None)
                raise

        return handle

    async def unsubscribe(self, handle: str) -> None:
        """구독 해제 (알 수 없는 핸들은 무시)"""
        sub = self._subscriptions.pop(handle, None)
        if sub is None or sub.server_id is None:
            return
        if self._state != WebSocketState.CONNECTED:
            return

        try:
            await self._request(sub.unsubscribe_method, [sub.server_id])
        except (ChainRpcError, ConnectionClosed, asyncio.TimeoutError) as e:
            logger.warning(
                "구독 해제 요청 실패",
                extra={"handle": handle, "method": sub.unsubscribe_method, "error": str(e)},
            )

    # -------------------------------------------------------------------------
    # 연결 루프
    # -------------------------------------------------------------------------

    async def _run_loop(self) -> None:
        """연결 → 재구독 → 수신, 끊기면 지수 백오프로 재연결"""
        delay = self.RECONNECT_MIN_DELAY

        while self._should_reconnect:
            receive_task: asyncio.Task[None] | None = None
            try:
                await self._set_state(WebSocketState.CONNECTING)
                self._ws = await websockets.connect(
                    self.url,
                    ping_interval=self.PING_INTERVAL,
                    ping_timeout=self.PING_TIMEOUT,
                )
                logger.info("WebSocket 연결 성공", extra={"url": self.url})

                receive_task = asyncio.create_task(self._receive_loop(self._ws))
                await self._resubscribe_all()
                await self._set_state(WebSocketState.CONNECTED)
                delay = self.RECONNECT_MIN_DELAY

                await receive_task

            except asyncio.CancelledError:
                if receive_task is not None:
                    receive_task.cancel()
                raise
            except ConnectionClosed as e:
                logger.warning(
                    "WebSocket 연결 끊김",
                    extra={"url": self.url, "error": str(e)},
                )
            except (OSError, ChainRpcError, asyncio.TimeoutError) as e:
                logger.error("WebSocket 연결 실패", extra={"url": self.url, "error": str(e)})
            finally:
                if receive_task is not None and not receive_task.done():
                    receive_task.cancel()
                self._fail_pending(ChainRpcError(code=-1, message="WebSocket disconnected"))
                for sub in self._subscriptions.values():
                    sub.server_id = None

            await self._close_socket()

            if not self._should_reconnect:
                break

            await self._set_state(WebSocketState.RECONNECTING)
            logger.info("WebSocket 재연결 대기", extra={"delay": delay})
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.RECONNECT_MAX_DELAY)

    async def _receive_loop(self, ws: Any) -> None:
        """메시지 수신 루프 (연결이 닫히면 ConnectionClosed 전파)"""
        async for message in ws:
            try:
                data = json.loads(message)
            except json.JSONDecodeError as e:
                logger.warning(
                    "메시지 파싱 실패",
                    extra={"error": str(e), "message": str(message)[:100]},
                )
                continue
            self._dispatch(data)

    def _dispatch(self, data: dict[str, Any]) -> None:
        """요청 응답 / 구독 알림 분기"""
        msg_id = data.get("id")
        if msg_id is not None and msg_id in self._pending:
            future = self._pending.pop(msg_id)
            if future.done():
                return
            if data.get("error"):
                error = data["error"]
                future.set_exception(
                    ChainRpcError(code=int(error.get("code", -1)), message=str(error.get("message", "")))
                )
            else:
                future.set_result(data.get("result"))
            return

        params = data.get("params")
        if not isinstance(params, dict) or "subscription" not in params:
            return

        server_id = params["subscription"]
        sub = next(
            (s for s in self._subscriptions.values() if s.server_id == server_id),
            None,
        )
        if sub is None:
            logger.debug("알 수 없는 구독 알림", extra={"subscription": server_id})
            return

        task = asyncio.create_task(self._invoke_callback(sub, params.get("result")))
        self._callback_tasks.add(task)
        task.add_done_callback(self._callback_tasks.discard)

    async def _invoke_callback(self, sub: Subscription, result: Any) -> None:
        try:
            await sub.callback(result)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "구독 콜백 에러",
                extra={"handle": sub.handle, "method": sub.method, "error": str(e)},
            )

    # -------------------------------------------------------------------------
    # 요청
    # -------------------------------------------------------------------------

    async def _request(self, method: str, params: list[Any]) -> Any:
        """요청 전송 후 응답 대기"""
        if self._ws is None:
            raise ChainRpcError(code=-1, message="WebSocket not connected")

        msg_id = next(self._ids)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = future

        try:
            await self._ws.send(
                json.dumps({"jsonrpc": "2.0", "id": msg_id, "method": method, "params": params})
            )
            return await asyncio.wait_for(future, timeout=self.REQUEST_TIMEOUT)
        finally:
            self._pending.pop(msg_id, None)

    async def _send_subscribe(self, sub: Subscription) -> None:
        sub.server_id = await self._request(sub.method, sub.params)
        logger.info(
            "구독 등록",
            extra={"handle": sub.handle, "method": sub.method, "subscription": sub.server_id},
        )

    async def _resubscribe_all(self) -> None:
        """연결 직후 등록된 모든 구독 요청

        요청 도중 새로 등록된 구독도 포함될 때까지 반복한다.
        """
        attempted: set[str] = set()
        while True:
            waiting = [
                s
                for s in self._subscriptions.values()
                if s.server_id is None and s.handle not in attempted
            ]
            if not waiting:
                return
            for sub in waiting:
                attempted.add(sub.handle)
                if sub.handle not in self._subscriptions:
                    continue
                try:
                    await self._send_subscribe(sub)
                except ChainRpcError as e:
                    logger.error(
                        "재구독 실패",
                        extra={"handle": sub.handle, "method": sub.method, "error": str(e)},
                    )

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()

    async def _close_socket(self) -> None:
        if self._ws is not None:
            try:
                await self._ws.close()
            except (OSError, ConnectionClosed) as e:
                logger.debug("WebSocket close 에러", extra={"error": str(e)})
            self._ws = None

    async def _set_state(self, new_state: WebSocketState) -> None:
        """상태 변경 및 콜백 호출"""
        old_state = self._state
        self._state = new_state

        if old_state != new_state:
            logger.info(
                "WebSocket 상태 변경",
                extra={"old_state": old_state.value, "new_state": new_state.value},
            )

            if self.on_state_change is not None:
                try:
                    await self.on_state_change(new_state)
                except Exception as e:
                    logger.error(
                        "상태 변경 콜백 에러",
                        extra={"error": str(e)},
                    )
