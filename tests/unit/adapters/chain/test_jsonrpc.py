"""
JSON-RPC HTTP 클라이언트 테스트

JsonRpcClient 재시도 / 에러 처리 (httpx mock 사용).
"""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from adapters.chain.errors import ChainRpcError, RateLimitError
from adapters.chain.jsonrpc import JsonRpcClient


def _response(status_code: int = 200, body: dict | None = None, headers: dict | None = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body if body is not None else {}
    response.headers = headers or {}
    response.text = "error body"
    return response


@pytest.fixture
def client() -> JsonRpcClient:
    return JsonRpcClient("https://rpc.example", max_retries=3, backoff_base=0)


class TestJsonRpcCall:
    """정상 호출"""

    @pytest.mark.asyncio
    async def test_returns_result(self, client: JsonRpcClient) -> None:
        mock_http = AsyncMock()
        mock_http.post.return_value = _response(body={"jsonrpc": "2.0", "id": 1, "result": "0x10"})

        with patch.object(client, "_get_client", return_value=mock_http):
            result = await client.call("eth_blockNumber")

        assert result == "0x10"
        payload = mock_http.post.call_args.kwargs["json"]
        assert payload["method"] == "eth_blockNumber"
        assert payload["params"] == []
        assert payload["jsonrpc"] == "2.0"

    @pytest.mark.asyncio
    async def test_request_ids_increase(self, client: JsonRpcClient) -> None:
        mock_http = AsyncMock()
        mock_http.post.return_value = _response(body={"result": None})

        with patch.object(client, "_get_client", return_value=mock_http):
            await client.call("a")
            await client.call("b")

        ids = [c.kwargs["json"]["id"] for c in mock_http.post.call_args_list]
        assert ids == [1, 2]

    @pytest.mark.asyncio
    async def test_node_error_raises(self, client: JsonRpcClient) -> None:
        """일반 JSON-RPC 에러는 재시도 없이 예외"""
        mock_http = AsyncMock()
        mock_http.post.return_value = _response(
            body={"error": {"code": -32602, "message": "invalid params"}}
        )

        with patch.object(client, "_get_client", return_value=mock_http):
            with pytest.raises(ChainRpcError) as exc_info:
                await client.call("eth_call", [{}])

        assert exc_info.value.code == -32602
        assert mock_http.post.call_count == 1

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, client: JsonRpcClient) -> None:
        mock_http = AsyncMock()
        mock_http.post.return_value = _response(status_code=403)

        with patch.object(client, "_get_client", return_value=mock_http):
            with pytest.raises(ChainRpcError) as exc_info:
                await client.call("eth_blockNumber")

        assert exc_info.value.code == 403
        assert mock_http.post.call_count == 1


class TestJsonRpcRetry:
    """재시도"""

    @pytest.mark.asyncio
    async def test_server_error_then_success(self, client: JsonRpcClient) -> None:
        mock_http = AsyncMock()
        mock_http.post.side_effect = [_response(status_code=502), _response(body={"result": 7})]

        with patch.object(client, "_get_client", return_value=mock_http), patch(
            "adapters.chain.jsonrpc.asyncio.sleep", new=AsyncMock()
        ):
            assert await client.call("getSlot") == 7

        assert mock_http.post.call_count == 2

    @pytest.mark.asyncio
    async def test_server_error_exhausted(self, client: JsonRpcClient) -> None:
        mock_http = AsyncMock()
        mock_http.post.return_value = _response(status_code=503)

        with patch.object(client, "_get_client", return_value=mock_http), patch(
            "adapters.chain.jsonrpc.asyncio.sleep", new=AsyncMock()
        ):
            with pytest.raises(ChainRpcError) as exc_info:
                await client.call("getSlot")

        assert exc_info.value.code == 503
        assert mock_http.post.call_count == 3

    @pytest.mark.asyncio
    async def test_http_429_uses_retry_after(self, client: JsonRpcClient) -> None:
        mock_http = AsyncMock()
        mock_http.post.side_effect = [
            _response(status_code=429, headers={"Retry-After": "2"}),
            _response(body={"result": "ok"}),
        ]
        sleep = AsyncMock()

        with patch.object(client, "_get_client", return_value=mock_http), patch(
            "adapters.chain.jsonrpc.asyncio.sleep", new=sleep
        ):
            assert await client.call("eth_chainId") == "ok"

        sleep.assert_awaited_once_with(2)

    @pytest.mark.asyncio
    async def test_http_429_exhausted_raises_rate_limit(self, client: JsonRpcClient) -> None:
        mock_http = AsyncMock()
        mock_http.post.return_value = _response(status_code=429, headers={"Retry-After": "1"})

        with patch.object(client, "_get_client", return_value=mock_http), patch(
            "adapters.chain.jsonrpc.asyncio.sleep", new=AsyncMock()
        ):
            with pytest.raises(RateLimitError) as exc_info:
                await client.call("eth_chainId")

        assert exc_info.value.retry_after == 1

    @pytest.mark.asyncio
    async def test_rate_limit_error_code_retried(self, client: JsonRpcClient) -> None:
        """공급자 rate-limit 에러 코드 (-32005)는 재시도"""
        mock_http = AsyncMock()
        mock_http.post.side_effect = [
            _response(body={"error": {"code": -32005, "message": "limit exceeded"}}),
            _response(body={"result": []}),
        ]

        with patch.object(client, "_get_client", return_value=mock_http), patch(
            "adapters.chain.jsonrpc.asyncio.sleep", new=AsyncMock()
        ):
            assert await client.call("getSignaturesForAddress", ["addr"]) == []

    @pytest.mark.asyncio
    async def test_timeout_then_success(self, client: JsonRpcClient) -> None:
        mock_http = AsyncMock()
        mock_http.post.side_effect = [httpx.ReadTimeout("slow"), _response(body={"result": 1})]

        with patch.object(client, "_get_client", return_value=mock_http), patch(
            "adapters.chain.jsonrpc.asyncio.sleep", new=AsyncMock()
        ):
            assert await client.call("getSlot") == 1

    @pytest.mark.asyncio
    async def test_connection_error_exhausted(self, client: JsonRpcClient) -> None:
        mock_http = AsyncMock()
        mock_http.post.side_effect = httpx.ConnectError("refused")

        with patch.object(client, "_get_client", return_value=mock_http), patch(
            "adapters.chain.jsonrpc.asyncio.sleep", new=AsyncMock()
        ):
            with pytest.raises(ChainRpcError) as exc_info:
                await client.call("getSlot")

        assert exc_info.value.code == -1
        assert mock_http.post.call_count == 3


class TestJsonRpcLifecycle:
    """클라이언트 생명주기"""

    @pytest.mark.asyncio
    async def test_lazy_client_and_close(self, client: JsonRpcClient) -> None:
        http_client = await client._get_client()
        assert isinstance(http_client, httpx.AsyncClient)
        assert await client._get_client() is http_client

        await client.close()
        assert client._client is None

    @pytest.mark.asyncio
    async def test_close_without_client(self, client: JsonRpcClient) -> None:
        await client.close()
