"""
Base unit 금액 유틸리티

모든 잔고는 토큰의 최소 단위(wei, lamport 등) 정수로 다루고,
저장/전송 시에는 10진 문자열로 직렬화한다. 부동소수점은 사용하지 않는다.
"""

import re

_DIGITS = re.compile(r"^[0-9]+$")


class InvalidAmountError(ValueError):
    """유효하지 않은 금액 (음수, 소수, 숫자가 아닌 값)"""

    pass


def parse_amount(value: int | str | None) -> int:
    """금액을 음이 아닌 base unit 정수로 변환

    Args:
        value: 정수, 10진 문자열, 또는 0x 접두사 16진 문자열.
            None과 빈 문자열은 0으로 취급.

    Returns:
        base unit 정수

    Raises:
        InvalidAmountError: 음수, 소수, bool, float 등 정수로 해석할 수 없는 값

    Example:
        >>> parse_amount("2000000000000000")
        2000000000000000
        >>> parse_amount("0x1bc16d674ec80000")
        2000000000000000000
    """
    if value is None:
        return 0

    # bool은 int의 하위 타입이므로 먼저 걸러낸다
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise InvalidAmountError(f"금액은 정수 또는 문자열이어야 합니다: {value!r}")

    if isinstance(value, int):
        if value < 0:
            raise InvalidAmountError(f"금액은 음수일 수 없습니다: {value}")
        return value

    text = value.strip()
    if text == "":
        return 0

    if text.lower().startswith("0x"):
        try:
            return int(text, 16)
        except ValueError as e:
            raise InvalidAmountError(f"16진 금액 형식 오류: {value!r}") from e

    if not _DIGITS.match(text):
        raise InvalidAmountError(f"금액 형식 오류: {value!r}")

    return int(text)


def add_amount(current: int | str | None, delta: int | str) -> str:
    """두 금액의 합을 문자열로 반환"""
    return str(parse_amount(current) + parse_amount(delta))


def subtract_floored(current: int | str | None, delta: int | str) -> tuple[str, bool]:
    """0 하한 뺄셈

    결과가 음수가 되면 0으로 고정한다.

    Returns:
        (결과 문자열, 하한 적용 여부)

    Example:
        >>> subtract_floored("100", 300)
        ('0', True)
    """
    remaining = parse_amount(current) - parse_amount(delta)
    if remaining < 0:
        return "0", True
    return str(remaining), False
