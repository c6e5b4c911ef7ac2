"""Utility helpers for the synoptics package."""

from .response import (
    create_issue,
    error_from_exception,
    error_response,
    is_success,
    success_response,
    validation_response,
)

__all__ = [
    "create_issue",
    "error_from_exception",
    "error_response",
    "is_success",
    "success_response",
    "validation_response",
]
