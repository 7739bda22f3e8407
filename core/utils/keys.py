"""
Key 생성 유틸리티

kv_store에 저장되는 스캔 커서와 보조 idempotency 키 생성 함수 제공.
주소는 호출 전에 체인 계열 규칙으로 정규화되어 있어야 한다.
"""


def make_cursor_key(chain_id: str, address: str) -> str:
    """ScanCursor 저장 키

    Example:
        >>> make_cursor_key("sepolia", "0xabc")
        'cursor:sepolia:0xabc'
    """
    return f"cursor:{chain_id}:{address}"


def make_last_signature_key(chain_id: str, address: str) -> str:
    """주소별 마지막 처리 시그니처 키 (보조 신호, 정합성의 기준 아님)

    Example:
        >>> make_last_signature_key("solana-devnet", "ANrT...")
        'last_signature:solana-devnet:ANrT...'
    """
    return f"last_signature:{chain_id}:{address}"


def make_token_feed_key(chain_id: str) -> str:
    """토큰 피드 마지막 수정 시각 키

    Example:
        >>> make_token_feed_key("sepolia")
        'token_feed:sepolia'
    """
    return f"token_feed:{chain_id}"


def make_monitor_status_key(family: str) -> str:
    """체인 계열별 마지막 스캔 사이클 결과 키

    Example:
        >>> make_monitor_status_key("evm")
        'monitor_status:evm'
    """
    return f"monitor_status:{family}"


def make_treasury_check_key() -> str:
    """마지막 트레저리 잔고 점검 결과 키

    Example:
        >>> make_treasury_check_key()
        'treasury_check'
    """
    return "treasury_check"
