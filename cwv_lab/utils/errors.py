"""
Error handling utilities for consistent error message extraction.
"""

from __future__ import annotations


def get_error_message(error: BaseException | object) -> str:
    """Safely extract a readable message from an unknown error value.

    Exceptions raised without arguments (``TimeoutError()``) fall
    back to the exception class name so log lines never end in an
    empty ``error=""``.
    """
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    return "Unknown error"
