"""
체인 RPC 에러 정의
"""


class ChainRpcError(Exception):
    """JSON-RPC / 전송 계층 에러

    노드가 에러 객체를 반환했거나 재시도 후에도 요청이 실패했을 때 발생.
    """

    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(f"Chain RPC Error [{code}]: {message}")


class RateLimitError(ChainRpcError):
    """RPC 공급자 Rate Limit 초과

    HTTP 429 또는 JSON-RPC rate-limit 코드 수신 시 발생.
    retry_after 초 후 재시도 필요.
    """

    def __init__(self, retry_after: int, message: str = "Rate limit exceeded"):
        self.retry_after = retry_after
        super().__init__(code=429, message=f"{message}. Retry after {retry_after} seconds.")


class AccountNotFoundError(Exception):
    """계정을 찾을 수 없음

    호출자는 "이체 없음"으로 취급한다 (치명적 에러 아님).
    """

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"계정을 찾을 수 없습니다: {address}")
