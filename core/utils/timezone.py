"""
타임존 유틸리티

내부 저장은 모두 UTC. 체인마다 다른 시간 표현을 UTC datetime으로 통일.
"""

from datetime import datetime, timezone


def now_utc() -> datetime:
    """현재 UTC 시간 반환 (타임존 명시)
    
    datetime.now(timezone.utc)의 축약형.
    """
    return datetime.now(timezone.utc)


def now_utc_iso() -> str:
    """현재 UTC 시간의 ISO 문자열 (DB 저장용)"""
    return now_utc().isoformat()


def utc_from_timestamp(ts_sec: int | float) -> datetime:
    """초 단위 Unix 타임스탬프를 UTC datetime으로 변환
    
    Solana blockTime, EVM block timestamp에 사용.
    
    Example:
        >>> utc_from_timestamp(1708444800)
        datetime(2024, 2, 20, 16, 0, 0, tzinfo=timezone.utc)
    """
    return datetime.fromtimestamp(ts_sec, tz=timezone.utc)


def parse_iso_utc(value: str | None) -> datetime | None:
    """ISO 8601 문자열을 UTC datetime으로 변환
    
    'Z' 접미사와 naive 문자열을 모두 허용. 값이 없거나 형식이 잘못되면 None.
    
    Example:
        >>> parse_iso_utc("2024-02-20T16:00:00.000Z")
        datetime(2024, 2, 20, 16, 0, 0, tzinfo=timezone.utc)
    """
    if not value:
        return None
    
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
