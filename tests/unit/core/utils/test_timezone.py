"""
타임존 유틸리티 테스트
"""

from datetime import datetime, timezone

from core.utils.timezone import now_utc, now_utc_iso, parse_iso_utc, utc_from_timestamp


class TestTimezone:
    """UTC 변환 테스트"""

    def test_now_utc_is_aware(self) -> None:
        assert now_utc().tzinfo == timezone.utc

    def test_now_utc_iso_parses_back(self) -> None:
        assert parse_iso_utc(now_utc_iso()) is not None

    def test_utc_from_timestamp(self) -> None:
        assert utc_from_timestamp(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)

    def test_parse_iso_z_suffix(self) -> None:
        """'Z' 접미사 허용"""
        assert parse_iso_utc("2024-02-20T16:00:00.000Z") == datetime(
            2024, 2, 20, 16, 0, 0, tzinfo=timezone.utc
        )

    def test_parse_iso_naive_assumed_utc(self) -> None:
        """타임존 없는 문자열은 UTC로 간주"""
        parsed = parse_iso_utc("2024-02-20T16:00:00")
        assert parsed is not None
        assert parsed.tzinfo == timezone.utc

    def test_parse_iso_invalid(self) -> None:
        assert parse_iso_utc("not-a-date") is None
        assert parse_iso_utc(None) is None
        assert parse_iso_utc("") is None
