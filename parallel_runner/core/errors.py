# parallel_runner/core/errors.py
"""
Typed errors for the dispatch core.

None of these are retried inside the core. The dispatcher converts the
ones that reach it into producer events; the rest are logged where they
occur.
"""
from __future__ import annotations


class DispatchError(Exception):
    """Base class for all dispatch errors."""

    reason: str = "error"

    def __init__(self, detail: str = "Dispatch error"):
        self.detail = detail
        super().__init__(detail)


class ValidationError(DispatchError):
    """Request shape rejected by its job type. Reported as a job failure."""

    reason = "validation"


class NotPermittedError(DispatchError):
    """Job type name is not registered. Reported as not permitted."""

    reason = "not_permitted"


class TransportError(DispatchError):
    """Publishing to the bus or writing to the blob store failed."""

    reason = "transport"


class JobTimeoutError(DispatchError):
    """No worker response arrived before the deadline."""

    reason = "timeout"


class FinalizationError(DispatchError):
    """
    Local post-processing failed after a successful worker response.

    The job is already resolved when this happens, so it is logged only
    and never reported back through the failure channel.
    """

    reason = "finalization"


class ProtocolError(DispatchError):
    """Inbound worker message could not be understood."""

    reason = "protocol"


class DuplicateJobError(DispatchError):
    """A job id was registered twice. Indicates a producer bug."""

    reason = "duplicate"
