"""
Failure description — structured error information for the failure track.

An ErrorCode classifies the failure so callers can branch on it (for example,
re-prompt for a password on AUTHENTICATION_ERROR) without parsing messages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, unique
from typing import Optional


@unique
class ErrorCode(Enum):
    """
    Structured error codes for the failure track.

    Client-side codes describe bad input; server-side codes describe the
    environment. The HTTP surface maps them onto status codes.
    """

    # --- Client-side errors ---
    VALIDATION_ERROR = "VALIDATION_ERROR"
    """Malformed input: truncated encodings, bad framing, wrong types (→ 422)."""

    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    """Wrong or missing password (→ 401)."""

    NOT_FOUND = "NOT_FOUND"
    """Requested item doesn't exist (→ 404)."""

    BUSINESS_RULE_ERROR = "BUSINESS_RULE_ERROR"
    """Well-formed input the domain cannot handle (→ 422)."""

    # --- Server-side errors ---
    TECHNICAL_ERROR = "TECHNICAL_ERROR"
    """Unexpected failure inside an adapter (→ 500)."""

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    """System misconfiguration (→ 500)."""


@dataclass(frozen=True, slots=True)
class FailureDescription:
    """
    Immutable failure descriptor carrying error code, message, optional exception, and timestamp.

    >>> desc = FailureDescription(ErrorCode.VALIDATION_ERROR, "Length overruns buffer")
    >>> desc.code
    <ErrorCode.VALIDATION_ERROR: 'VALIDATION_ERROR'>
    """

    code: ErrorCode
    message: str
    exception: Optional[BaseException] = field(default=None, repr=False)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
