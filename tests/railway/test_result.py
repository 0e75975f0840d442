"""
Tests for the Result monad used on every adapter boundary.

Tests cover:
  - Success/Failure creation and introspection
  - map and flat_map transformations
  - Alternatives (or_else) and recovery by error code (recover_on)
  - Side effects (peek, peek_failure)
  - Static factories (from_computation)
  - Pattern matching (match/case)
  - Equality and repr
"""

from __future__ import annotations

import pytest

from railway import ErrorCode, FailureDescription, Result, ResultAssertions, Success, Failure


# ═══════════════════════════════════════════════════════════════
# 1. Creation & Introspection
# ═══════════════════════════════════════════════════════════════


class TestSuccessCreation:
    def test_success_wraps_value(self):
        result = Result.success(b"\x30\x00")
        assert result.is_success()
        assert not result.is_failure()
        assert result.value() == b"\x30\x00"

    def test_success_rejects_none(self):
        with pytest.raises(TypeError, match="must not be None"):
            Success(None)

    def test_success_is_truthy(self):
        assert Result.success(0)
        assert bool(Result.success(""))


class TestFailureCreation:
    def test_failure_with_code_and_message(self):
        result = Result.failure(ErrorCode.VALIDATION_ERROR, "Length overruns buffer")
        assert result.is_failure()
        assert result.error().code == ErrorCode.VALIDATION_ERROR
        assert result.error().message == "Length overruns buffer"

    def test_failure_with_exception(self):
        ex = ValueError("bad tag")
        result = Result.failure(ErrorCode.TECHNICAL_ERROR, "Decode failed", ex)
        assert result.error().exception is ex

    def test_failure_from_description(self):
        desc = FailureDescription(ErrorCode.AUTHENTICATION_ERROR, "MAC mismatch")
        result = Result.failure_from(desc)
        assert result.error() == desc

    def test_failure_rejects_none(self):
        with pytest.raises(TypeError, match="must not be None"):
            Failure(None)

    def test_failure_is_falsy(self):
        assert not Result.failure(ErrorCode.VALIDATION_ERROR, "bad")


class TestValueExtraction:
    def test_value_on_failure_raises(self):
        result = Result.failure(ErrorCode.NOT_FOUND, "missing")
        with pytest.raises(ValueError, match="Cannot get value from a Failure"):
            result.value()

    def test_error_on_success_raises(self):
        with pytest.raises(ValueError, match="Cannot get error from a Success"):
            Result.success(42).error()


# ═══════════════════════════════════════════════════════════════
# 2. Transformations
# ═══════════════════════════════════════════════════════════════


class TestMap:
    def test_map_transforms_success_value(self):
        assert Result.success(b"abc").map(len).value() == 3

    def test_map_short_circuits_on_failure(self):
        result = Result.failure(ErrorCode.VALIDATION_ERROR, "bad").map(len)
        assert result.error().code == ErrorCode.VALIDATION_ERROR


class TestFlatMap:
    def test_flat_map_short_circuits_on_first_failure(self):
        calls: list[str] = []

        def frame(data: bytes) -> Result[bytes]:
            calls.append("frame")
            return Result.failure(ErrorCode.VALIDATION_ERROR, "unterminated block")

        def decode(data: bytes) -> Result[int]:
            calls.append("decode")
            return Result.success(len(data))

        result = Result.success(b"pem").flat_map(frame).flat_map(decode)
        assert result.is_failure()
        assert calls == ["frame"]

    def test_flat_map_pipeline(self):
        result = (
            Result.success(b"\x02\x01\x05")
            .flat_map(lambda tlv: Result.success(tlv[2:]))
            .flat_map(lambda content: Result.success(int.from_bytes(content, "big")))
        )
        assert result.value() == 5


class TestOrElse:
    def test_or_else_runs_alternative_on_failure(self):
        seen: list[str] = []

        def fallback(err: FailureDescription) -> Result[str]:
            seen.append(err.message)
            return Result.success("der")

        result = Result.failure(ErrorCode.BUSINESS_RULE_ERROR, "unsupported key").or_else(fallback)

        assert result.value() == "der"
        assert seen == ["unsupported key"]

    def test_or_else_skips_alternative_on_success(self):
        result = Result.success("cryptography").or_else(lambda _: pytest.fail("should not run"))
        assert result.value() == "cryptography"

    def test_alternative_failure_replaces_original(self):
        result = Result.failure(ErrorCode.BUSINESS_RULE_ERROR, "first").or_else(
            lambda _: Result.failure(ErrorCode.VALIDATION_ERROR, "second")
        )
        assert result.error().message == "second"


# ═══════════════════════════════════════════════════════════════
# 3. Either / Pattern Matching
# ═══════════════════════════════════════════════════════════════


class TestEither:
    def test_either_on_success(self):
        msg = Result.success("leaf").either(lambda cn: f"CN={cn}", lambda err: err.message)
        assert msg == "CN=leaf"

    def test_either_on_failure(self):
        msg = Result.failure(ErrorCode.NOT_FOUND, "not found").either(lambda v: v, lambda err: err.message)
        assert msg == "not found"


class TestPatternMatching:
    def test_match_in_function(self):
        def describe(result: Result[int]) -> str:
            match result:
                case Success(v):
                    return f"Got {v}"
                case Failure(err):
                    return f"Failed: {err.message}"
            return "unreachable"

        assert describe(Result.success(7)) == "Got 7"
        assert describe(Result.failure(ErrorCode.NOT_FOUND, "nope")) == "Failed: nope"


# ═══════════════════════════════════════════════════════════════
# 4. Side Effects
# ═══════════════════════════════════════════════════════════════


class TestPeek:
    def test_peek_executes_on_success(self):
        captured: list[int] = []
        result = Result.success(42).peek(captured.append)
        assert captured == [42]
        assert result.value() == 42

    def test_peek_skips_on_failure(self):
        captured: list[int] = []
        Result.failure(ErrorCode.NOT_FOUND, "nope").peek(captured.append)
        assert captured == []

    def test_peek_failure_executes_on_failure(self):
        captured: list[str] = []
        Result.failure(ErrorCode.NOT_FOUND, "gone").peek_failure(lambda err: captured.append(err.message))
        assert captured == ["gone"]


# ═══════════════════════════════════════════════════════════════
# 5. Recovery
# ═══════════════════════════════════════════════════════════════


class TestRecoverOn:
    def test_recover_on_matching_code(self):
        result = Result.failure(ErrorCode.AUTHENTICATION_ERROR, "wrong password").recover_on(
            ErrorCode.AUTHENTICATION_ERROR, lambda err: "ask again"
        )
        assert result.value() == "ask again"

    def test_recover_on_other_code_stays_failed(self):
        result = Result.failure(ErrorCode.VALIDATION_ERROR, "truncated").recover_on(
            ErrorCode.AUTHENTICATION_ERROR, lambda err: "ask again"
        )
        assert result.error().code == ErrorCode.VALIDATION_ERROR

    def test_recover_on_passes_through_success(self):
        result = Result.success(1).recover_on(ErrorCode.AUTHENTICATION_ERROR, lambda err: 0)
        assert result.value() == 1


# ═══════════════════════════════════════════════════════════════
# 6. Static Factories
# ═══════════════════════════════════════════════════════════════


class TestFromComputation:
    def test_success_when_no_exception(self):
        result = Result.from_computation(lambda: 42, ErrorCode.VALIDATION_ERROR, "read failed")
        assert result.value() == 42

    def test_failure_when_exception_raised(self):
        result = Result.from_computation(lambda: 1 / 0, ErrorCode.VALIDATION_ERROR, "division error")
        assert result.error().code == ErrorCode.VALIDATION_ERROR
        assert result.error().message == "division error"
        assert isinstance(result.error().exception, ZeroDivisionError)


# ═══════════════════════════════════════════════════════════════
# 7. Equality, repr, assertions
# ═══════════════════════════════════════════════════════════════


class TestEqualityAndRepr:
    def test_success_equality(self):
        assert Result.success(1) == Result.success(1)
        assert Result.success(1) != Result.success(2)

    def test_failure_equality_ignores_exception_and_timestamp(self):
        a = Result.failure(ErrorCode.VALIDATION_ERROR, "bad", ValueError("a"))
        b = Result.failure(ErrorCode.VALIDATION_ERROR, "bad")
        assert a == b

    def test_success_never_equals_failure(self):
        assert Result.success("bad") != Result.failure(ErrorCode.VALIDATION_ERROR, "bad")

    def test_repr(self):
        assert repr(Result.success(1)) == "Success(1)"
        assert repr(Result.failure(ErrorCode.NOT_FOUND, "x")) == "Failure(NOT_FOUND: 'x')"


class TestResultAssertions:
    def test_assert_success_returns_value(self):
        assert ResultAssertions.assert_success(Result.success(3)) == 3

    def test_assert_success_on_failure_raises(self):
        with pytest.raises(AssertionError, match="Expected Success"):
            ResultAssertions.assert_success(Result.failure(ErrorCode.VALIDATION_ERROR, "bad"))

    def test_assert_failure_checks_code(self):
        result = Result.failure(ErrorCode.VALIDATION_ERROR, "bad")
        assert ResultAssertions.assert_failure(result, ErrorCode.VALIDATION_ERROR).message == "bad"
        with pytest.raises(AssertionError, match="Expected error code"):
            ResultAssertions.assert_failure(result, ErrorCode.NOT_FOUND)

    def test_message_contains_is_case_insensitive(self):
        ResultAssertions.assert_failure_message_contains(
            Result.failure(ErrorCode.VALIDATION_ERROR, "Invalid Base64"), "invalid base64"
        )
