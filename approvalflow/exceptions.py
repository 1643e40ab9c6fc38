"""Exception hierarchy for approvalflow."""

from __future__ import annotations


class ApprovalFlowError(Exception):
    """Base class for all approvalflow errors."""


class ClientError(ApprovalFlowError):
    """Request rejected before touching any instance state."""


class InvalidInputError(ClientError):
    """Start input or signal payload failed validation."""


class UnknownInstanceError(ClientError):
    def __init__(self, instance_id: str) -> None:
        super().__init__(f"Unknown instance: {instance_id}")
        self.instance_id = instance_id


class UnknownSignalError(ClientError):
    def __init__(self, signal_name: str) -> None:
        super().__init__(f"Unknown signal: {signal_name}")
        self.signal_name = signal_name


class InvalidPageTokenError(ClientError):
    """Page token could not be decoded."""


class HistoryConflictError(ApprovalFlowError):
    """A history entry with the same sequence number already exists."""


class ReplayInconsistencyError(ApprovalFlowError):
    """Recorded history does not match what the control logic produces."""


class WaitTimeoutError(ApprovalFlowError):
    """An open wait exceeded the configured timeout."""


class RetryableActivityError(ApprovalFlowError):
    """Activity failed but may succeed if attempted again."""


class FatalActivityError(ApprovalFlowError):
    """Activity failed permanently."""
