"""
Railway-Oriented Programming (ROP) primitives used across certchain.

A computation returns a Result instead of raising: Success carries the value,
Failure carries a FailureDescription (error code + message + optional exception).

    from railway import Result, ErrorCode

    def decode(raw: bytes) -> Result[bytes]:
        if not raw:
            return Result.failure(ErrorCode.VALIDATION_ERROR, "Empty input")
        return Result.success(raw)

    decode(b"\\x30\\x00").map(len)  # → Success(2)
"""

from railway.result import Result, Success, Failure
from railway.failure import ErrorCode, FailureDescription
from railway.assertions import ResultAssertions

__all__ = [
    "Result",
    "Success",
    "Failure",
    "ErrorCode",
    "FailureDescription",
    "ResultAssertions",
]

__version__ = "1.1.0"
