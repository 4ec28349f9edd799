"""Tests for patrol_core.error_handling — with_retry, call_with_retry."""

from __future__ import annotations

import time
from unittest.mock import MagicMock, patch

import grpc
import pytest

from patrol_core.error_handling import (
    RETRYABLE_CODES,
    call_with_retry,
    describe_error,
    format_grpc_error,
    with_retry,
)


def _make_rpc_error(code: grpc.StatusCode, details: str = "") -> grpc.RpcError:
    exc = grpc.RpcError()
    exc.code = MagicMock(return_value=code)
    exc.details = MagicMock(return_value=details)
    return exc


class TestWithRetry:
    def test_success_first_try(self):
        @with_retry(max_attempts=3)
        def op():
            return {"ok": True, "value": 42}

        assert op() == {"ok": True, "value": 42}

    def test_retries_transient_codes(self):
        attempts = []

        @with_retry(max_attempts=3, base_delay=0.01)
        def op():
            attempts.append(1)
            if len(attempts) < 3:
                raise _make_rpc_error(grpc.StatusCode.UNAVAILABLE, "transient")
            return {"ok": True}

        assert op()["ok"] is True
        assert len(attempts) == 3

    def test_non_retryable_returns_immediately(self):
        attempts = []

        @with_retry(max_attempts=3, base_delay=0.01)
        def op():
            attempts.append(1)
            raise _make_rpc_error(grpc.StatusCode.INVALID_ARGUMENT, "bad arg")

        result = op()
        assert result == {
            "ok": False,
            "error": "INVALID_ARGUMENT: bad arg",
            "retryable": False,
            "grpc_code": "INVALID_ARGUMENT",
        }
        assert len(attempts) == 1

    def test_exhausted_retries(self):
        @with_retry(max_attempts=2, base_delay=0.01)
        def op():
            raise _make_rpc_error(grpc.StatusCode.UNAVAILABLE, "down")

        result = op()
        assert result["ok"] is False
        assert result["retryable"] is True
        assert result["attempts"] == 2

    def test_unexpected_exception(self):
        @with_retry(max_attempts=3)
        def op():
            raise ValueError("not a gRPC error")

        result = op()
        assert result == {"ok": False, "error": "not a gRPC error", "retryable": False}

    @patch("patrol_core.error_handling.time.sleep")
    def test_backoff_is_exponential_and_capped(self, mock_sleep):
        @with_retry(max_attempts=5, base_delay=1.0, max_delay=3.0)
        def op():
            raise _make_rpc_error(grpc.StatusCode.DEADLINE_EXCEEDED)

        op()
        assert [c.args[0] for c in mock_sleep.call_args_list] == [1.0, 2.0, 3.0, 3.0]

    def test_preserves_function_name(self):
        @with_retry()
        def grab_frame():
            return {"ok": True}

        assert grab_frame.__name__ == "grab_frame"


class TestCallWithRetry:
    def test_returns_first_success(self):
        func = MagicMock(return_value=["A", "B"])
        result = call_with_retry(func, deadline=time.perf_counter() + 1.0)
        assert result == ["A", "B"]
        func.assert_called_once_with()

    def test_passes_arguments(self):
        func = MagicMock(return_value="ok")
        call_with_retry(func, 1, 2, deadline=time.perf_counter() + 1.0, key="v")
        func.assert_called_once_with(1, 2, key="v")

    def test_recovers_before_deadline(self):
        func = MagicMock(side_effect=[RuntimeError("down"), RuntimeError("down"), "up"])
        result = call_with_retry(func, deadline=time.perf_counter() + 2.0, retry_delay=0.01)
        assert result == "up"
        assert func.call_count == 3

    def test_max_attempts_raises_last_error(self):
        func = MagicMock(side_effect=[RuntimeError("first"), RuntimeError("second")])
        with pytest.raises(RuntimeError, match="second"):
            call_with_retry(
                func, deadline=time.perf_counter() + 5.0, retry_delay=0.01, max_attempts=2
            )
        assert func.call_count == 2

    def test_stops_at_deadline(self):
        func = MagicMock(side_effect=RuntimeError("down"))
        start = time.perf_counter()
        with pytest.raises(RuntimeError):
            call_with_retry(func, deadline=start + 0.3, retry_delay=0.05)
        assert time.perf_counter() - start < 0.6
        assert func.call_count >= 2

    def test_past_deadline_raises_timeout(self):
        func = MagicMock()
        with pytest.raises(TimeoutError):
            call_with_retry(func, deadline=time.perf_counter() - 1.0)
        func.assert_not_called()


class TestFormatting:
    @pytest.mark.parametrize("code", sorted(RETRYABLE_CODES, key=lambda c: c.name))
    def test_retryable_codes_flagged(self, code):
        assert format_grpc_error(_make_rpc_error(code, "x"))["retryable"] is True

    def test_describe_grpc_error(self):
        exc = _make_rpc_error(grpc.StatusCode.UNAVAILABLE, "Connection refused")
        assert describe_error(exc) == "UNAVAILABLE: Connection refused"

    def test_describe_plain_error(self):
        assert describe_error(RuntimeError("boom")) == "boom"
        assert describe_error(TimeoutError()) == "TimeoutError"
