"""
Error taxonomy for the sampling and publishing pipeline.

Only ConfigurationInvalid is allowed to terminate the process, and only at
startup. Everything else is contained by the scheduler loops and reported
through the health monitor.
"""
from typing import Optional


class RyzenmonError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationInvalid(RyzenmonError):
    """Required configuration is missing or malformed."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        if field:
            message = f"{field}: {message}"
        super().__init__(message)


class HardwareError(RyzenmonError):
    """
    Reader-level failure scoped to a single domain.

    Attributes:
        domain: Domain that failed to read (may be None during discovery)
    """

    def __init__(self, domain, message: str):
        self.domain = domain
        prefix = f"[{domain.id}] " if domain is not None else ""
        super().__init__(f"{prefix}{message}")


class HardwareUnavailable(HardwareError):
    """Counter could not be read right now. Retried on the next tick."""


class PermissionDenied(HardwareError):
    """Counter is not readable by this process. Domain gets disabled."""


class UnsupportedDomain(HardwareError):
    """Backend has no counter for the requested domain."""


class ConversionAnomaly(RyzenmonError):
    """Two samples could not be turned into a valid power rate."""


class BufferOverflow(RyzenmonError):
    """
    Metric points were dropped because the buffer was full.

    Attributes:
        dropped: Number of entries dropped by this overflow event
        total_dropped: Running total of dropped entries
    """

    def __init__(self, dropped: int, total_dropped: int, policy: str):
        self.dropped = dropped
        self.total_dropped = total_dropped
        self.policy = policy
        super().__init__(
            f"Buffer full ({policy}): dropped {dropped} point(s), "
            f"{total_dropped} lost in total"
        )


class PublishError(RyzenmonError):
    """
    Batch could not be written to InfluxDB.

    Attributes:
        status_code: HTTP status code, None for network level failures
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class TransientPublishError(PublishError):
    """Retryable failure. Batch is requeued and retried after backoff."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, status_code)
        self.retry_after = retry_after


class NetworkError(TransientPublishError):
    pass


class ServerBusy(TransientPublishError):
    pass


class RateLimited(TransientPublishError):
    pass


class PermanentPublishError(PublishError):
    """Failure that needs operator intervention. Sampling continues."""


class AuthRejected(PermanentPublishError):
    pass


class MalformedRequest(PermanentPublishError):
    pass
