"""
Error taxonomy for the safety engine
- ValidationError: bad input, surfaced to the caller, never retried
- UpstreamUnavailable: routing provider / hazard store failure, retriable
- NotFoundError: no candidates, unknown hazard id
- InvariantViolation: internal inconsistency, fails the request closed
"""


class SafeRouteError(Exception):
    """Base class for every error raised by the engine."""

    retriable = False


class ValidationError(SafeRouteError, ValueError):
    pass


class UpstreamUnavailable(SafeRouteError):
    retriable = True

    def __init__(self, message: str, retry_after: int = 5):
        super().__init__(message)
        self.retry_after = retry_after


class HazardDataUnavailable(UpstreamUnavailable):
    """No usable hazard snapshot; scoring would be blind to hazards."""


class NotFoundError(SafeRouteError, LookupError):
    pass


class InvariantViolation(SafeRouteError):
    pass


class RequestCancelled(SafeRouteError):
    pass
