"""Tests for tapship.core.errors (exit codes)."""

from tapship.core.errors import ErrorCode


class TestErrorCode:
    def test_values_are_stable(self) -> None:
        """Exit codes are part of the CLI contract."""
        assert ErrorCode.OK == 0
        assert ErrorCode.USER_ERROR == 1
        assert ErrorCode.GATE_FAILED == 2
        assert ErrorCode.VERSION_CONFLICT == 3
        assert ErrorCode.TAG_CONFLICT == 4
        assert ErrorCode.CHECKSUM_UNSTABLE == 5
        assert ErrorCode.PUBLISH_FAILED == 6
        assert ErrorCode.BUILD_FAILED == 7
        assert ErrorCode.NETWORK_ERROR == 8
        assert ErrorCode.LEDGER_CORRUPT == 9
        assert ErrorCode.VERIFY_REJECTED == 10

    def test_codes_are_distinct(self) -> None:
        values = [int(code) for code in ErrorCode]
        assert len(values) == len(set(values))

    def test_str_is_readable(self) -> None:
        assert str(ErrorCode.TAG_CONFLICT) == "tag conflict"
