"""
유틸리티 패키지

금액(base unit) 연산, 커서 키 생성, 타임존 처리 등 공통 유틸리티
"""

from core.utils.amounts import (
    InvalidAmountError,
    parse_amount,
    add_amount,
    subtract_floored,
)
from core.utils.timezone import (
    now_utc,
    now_utc_iso,
    utc_from_timestamp,
    parse_iso_utc,
)

__all__ = [
    "InvalidAmountError",
    "parse_amount",
    "add_amount",
    "subtract_floored",
    "now_utc",
    "now_utc_iso",
    "utc_from_timestamp",
    "parse_iso_utc",
]
