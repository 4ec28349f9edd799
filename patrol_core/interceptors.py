"""gRPC interceptor that bounds every unary call made to the robot.

The kachaka_api SDK issues calls without a deadline.  A patrol keeps
polling the robot for hours, so a single hung call (robot WiFi drop)
would freeze the navigation watcher and with it every status event.
"""

from __future__ import annotations

import collections

import grpc


class _CallDetails(
    collections.namedtuple(
        "_CallDetails",
        ("method", "timeout", "metadata", "credentials", "wait_for_ready", "compression"),
    ),
    grpc.ClientCallDetails,
):
    pass


class TimeoutInterceptor(grpc.UnaryUnaryClientInterceptor):
    """Give unary-unary calls a default timeout.

    Calls that already carry a timeout are passed through untouched.
    """

    def __init__(self, default_timeout: float = 10.0):
        self.default_timeout = default_timeout

    def intercept_unary_unary(self, continuation, client_call_details, request):
        if client_call_details.timeout is not None:
            return continuation(client_call_details, request)
        details = _CallDetails(
            client_call_details.method,
            self.default_timeout,
            client_call_details.metadata,
            client_call_details.credentials,
            getattr(client_call_details, "wait_for_ready", None),
            getattr(client_call_details, "compression", None),
        )
        return continuation(details, request)
