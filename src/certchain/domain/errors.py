"""
Domain errors — typed exceptions raised inside adapters.

Adapters raise these internally; at every adapter boundary they are captured
into railway Results by `capture()`, which keeps the exception's ErrorCode.
The codes are chosen so a caller can branch on the code alone:

  MalformedEncoding       → VALIDATION_ERROR      (one block, decoding aborted)
  UnsupportedCertificate  → BUSINESS_RULE_ERROR   (skipped with a warning)
  UnsupportedAlgorithm    → BUSINESS_RULE_ERROR   (PBE/MAC scheme not handled)
  InvalidPassword         → AUTHENTICATION_ERROR  (retry signal for the caller)
"""

from __future__ import annotations

from collections.abc import Callable
from typing import ClassVar, TypeVar

from railway import ErrorCode
from railway.result import Result

T = TypeVar("T")


class CertificateEngineError(Exception):
    """Base class for every error the engine raises on purpose."""

    code: ClassVar[ErrorCode] = ErrorCode.TECHNICAL_ERROR


class MalformedEncoding(CertificateEngineError):
    """Truncated or invalid ASN.1/PEM/PKCS#12 encoding."""

    code = ErrorCode.VALIDATION_ERROR


class UnsupportedCertificate(CertificateEngineError):
    """A certificate structure that no field extractor can interpret."""

    code = ErrorCode.BUSINESS_RULE_ERROR


class UnsupportedAlgorithm(CertificateEngineError):
    """An encryption or integrity algorithm the PKCS#12 extractor cannot handle."""

    code = ErrorCode.BUSINESS_RULE_ERROR


class InvalidPassword(CertificateEngineError):
    """PKCS#12 integrity check or decryption failed because of the password."""

    code = ErrorCode.AUTHENTICATION_ERROR


def capture(computation: Callable[[], T], message: str) -> Result[T]:
    """
    Run a computation at an adapter boundary and return its Result.

    Engine errors keep their own ErrorCode; anything else is reported as a
    TECHNICAL_ERROR, the same way Result.from_computation does.
    """
    try:
        return Result.success(computation())
    except CertificateEngineError as e:
        return Result.failure(e.code, f"{message}: {e}", e)
    except Exception as e:
        return Result.failure(ErrorCode.TECHNICAL_ERROR, f"{message}: {e}", e)
