"""approvalflow: durable multi-party document approval workflows."""

from .activity import ActivityDispatcher, LoggingNotifier, TransportNotifier, get_notifier
from .config import ApprovalFlowConfig, load_config
from .contracts import (
    BackgroundCheckFeedback,
    ContractFeedback,
    DeliveryResult,
    DocumentProperties,
    InterviewFeedback,
    RuntimeState,
    WorkDocument,
)
from .correlation import EventCorrelationTable
from .directory import InstanceDirectory
from .engine import InstanceHandle, OrchestrationEngine
from .history import get_history_store
from .listener import SignalListener
from .transports import get_transport

__version__ = "0.1.0"
__all__ = [
    "ActivityDispatcher",
    "ApprovalFlowConfig",
    "BackgroundCheckFeedback",
    "ContractFeedback",
    "DeliveryResult",
    "DocumentProperties",
    "EventCorrelationTable",
    "InstanceDirectory",
    "InstanceHandle",
    "InterviewFeedback",
    "LoggingNotifier",
    "OrchestrationEngine",
    "RuntimeState",
    "SignalListener",
    "TransportNotifier",
    "WorkDocument",
    "get_history_store",
    "get_notifier",
    "get_transport",
    "load_config",
]
