"""
Error taxonomy for the operational event kernel.

Transition and store errors propagate to the immediate caller.
Audio and dispatch errors are logged and absorbed by the component
that hits them; they never roll back a status change.
"""

from typing import Optional


class OpsKernelError(Exception):
    """Base class for all kernel errors."""
    pass


class TransitionError(OpsKernelError):
    """A lifecycle change was refused."""

    def __init__(self, message: str, record_id: Optional[str] = None,
                 current_status: Optional[str] = None,
                 target_status: Optional[str] = None):
        super().__init__(message)
        self.record_id = record_id
        self.current_status = current_status
        self.target_status = target_status


class InvalidTransition(TransitionError):
    """The requested edge does not exist in the lifecycle graph."""
    pass


class MissingReason(TransitionError):
    """A rejection was attempted without its mandatory reason code."""
    pass


class StoreUnavailable(OpsKernelError):
    """A fetch, update or subscribe call against the record store failed."""
    pass


class UnknownRecord(OpsKernelError):
    """The record id is not in the tenant's snapshot."""
    pass


class DispatchError(OpsKernelError):
    """An external notification send failed after the ledger entry was written."""

    def __init__(self, message: str, entity_id: str, target_status: str):
        super().__init__(message)
        self.entity_id = entity_id
        self.target_status = target_status


class AudioUnavailable(OpsKernelError):
    """Tone synthesis failed or the audio backend is missing."""
    pass


class TrackerNotSeeded(OpsKernelError):
    """classify() was called before the first snapshot seeded the tracker."""
    pass


class TrackerAlreadySeeded(OpsKernelError):
    """seed() may run once per session; use reset() to start over."""
    pass
