"""Tests for cwv_lab.utils.errors — error message extraction."""

from __future__ import annotations

from cwv_lab.utils.errors import get_error_message


class TestGetErrorMessage:
    """Tests for get_error_message()."""

    def test_exception_with_message(self) -> None:
        assert get_error_message(ValueError("something broke")) == "something broke"

    def test_exception_without_message(self) -> None:
        assert get_error_message(TimeoutError()) == "TimeoutError"

    def test_non_exception(self) -> None:
        assert get_error_message("oops") == "Unknown error"
        assert get_error_message(None) == "Unknown error"
