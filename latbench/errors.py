"""
Exception classes for the latency benchmark.
Each kind maps to one failure policy: fatal at startup, fatal to the run,
or recovered locally inside a responder.
"""


class BenchError(Exception):
    """Base exception for benchmark errors."""


class ConfigError(BenchError):
    """Raised for an invalid delay table or degenerate run configuration."""


class TransportConnectError(BenchError):
    """Raised when neither the primary nor the fallback server accepts a connection."""

    def __init__(self, primary: str, fallback: str | None = None, error: str | None = None):
        self.primary = primary
        self.fallback = fallback
        tried = primary if not fallback else f"{primary} (fallback {fallback})"
        detail = f"could not connect to {tried}"
        if error:
            detail = f"{detail}: {error}"
        super().__init__(detail)


class RoundTripFailure(BenchError):
    """Raised when a request/reply round trip times out, disconnects or is malformed."""

    def __init__(self, reason: str, iteration: int | None = None):
        self.reason = reason
        self.iteration = iteration
        if iteration is None:
            super().__init__(f"round trip failed: {reason}")
        else:
            super().__init__(f"round trip {iteration} failed: {reason}")


class ReplyEmissionFailure(BenchError):
    """Raised inside a responder when its reply cannot be delivered.

    Never escapes the responder; it is logged and counted there.
    """
