"""Retry helpers for gRPC calls made on behalf of the patrol.

Two flavours:

- :func:`with_retry` decorates query-style methods and turns every failure
  into a ``{"ok": False, ...}`` dict.  Used where the caller must never see
  an exception (camera capture).
- :func:`call_with_retry` retries any exception until a deadline and
  re-raises the last one.  Used where the caller maps the failure to its
  own error (waypoint fetch, command start).
"""

from __future__ import annotations

import functools
import logging
import time

import grpc

logger = logging.getLogger(__name__)

# gRPC status codes that are safe to retry (transient network issues)
RETRYABLE_CODES = {
    grpc.StatusCode.UNAVAILABLE,
    grpc.StatusCode.DEADLINE_EXCEEDED,
    grpc.StatusCode.RESOURCE_EXHAUSTED,
}


def with_retry(
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
):
    """Exponential-backoff retry decorator for gRPC operations.

    Only transient codes (see :data:`RETRYABLE_CODES`) are retried.  Other
    gRPC errors and unexpected exceptions fail immediately.

    Returns:
        The wrapped function's dict on success.  On failure a dict with
        ``ok=False``, ``error`` and ``retryable`` (plus ``attempts`` when
        retries ran out).
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            last_error: Exception | None = None
            attempt = 0
            while attempt < max_attempts:
                attempt += 1
                try:
                    return func(*args, **kwargs)
                except grpc.RpcError as exc:
                    last_error = exc
                    if exc.code() not in RETRYABLE_CODES:
                        logger.warning("gRPC non-retryable in %s: %s", func.__name__, exc)
                        return format_grpc_error(exc)
                    if attempt >= max_attempts:
                        break
                    delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
                    logger.info(
                        "gRPC %s in %s, retrying in %.1fs (attempt %d/%d)",
                        exc.code().name,
                        func.__name__,
                        delay,
                        attempt,
                        max_attempts,
                    )
                    time.sleep(delay)
                except Exception as exc:
                    logger.error("Unexpected error in %s: %s", func.__name__, exc)
                    return {"ok": False, "error": str(exc), "retryable": False}

            return {
                "ok": False,
                "error": str(last_error),
                "retryable": True,
                "attempts": attempt,
            }

        return wrapper

    return decorator


def call_with_retry(
    func,
    *args,
    deadline: float,
    retry_delay: float = 1.0,
    max_attempts: int = 0,
    **kwargs,
):
    """Call func with retry until deadline or max_attempts.

    Args:
        func: Callable to invoke.
        deadline: Absolute time (perf_counter) after which to stop.
        retry_delay: Seconds between retries.
        max_attempts: Max attempts (0 = unlimited, deadline only).

    Raises:
        The last exception if all retries fail.
        TimeoutError if deadline passed without any attempt.
    """
    last_err = None
    attempt = 0
    while time.perf_counter() < deadline:
        attempt += 1
        try:
            return func(*args, **kwargs)
        except Exception as e:
            last_err = e
            logger.debug("call_with_retry %s attempt %d: %s", getattr(func, "__name__", func), attempt, e)
            if max_attempts > 0 and attempt >= max_attempts:
                break
            remaining = deadline - time.perf_counter()
            if remaining <= 0:
                break
            time.sleep(min(retry_delay, remaining))
    if last_err is not None:
        raise last_err
    raise TimeoutError("deadline exceeded without any attempt")


def format_grpc_error(exc: grpc.RpcError) -> dict:
    """Convert a gRPC exception into a structured error dict."""
    code = exc.code()
    return {
        "ok": False,
        "error": f"{code.name}: {exc.details() or ''}",
        "retryable": code in RETRYABLE_CODES,
        "grpc_code": code.name,
    }


def describe_error(exc: Exception) -> str:
    """One-line description of *exc*, with the gRPC status name when present."""
    if isinstance(exc, grpc.RpcError) and callable(getattr(exc, "code", None)):
        return format_grpc_error(exc)["error"]
    return str(exc) or exc.__class__.__name__
