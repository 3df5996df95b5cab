"""预约镜像同步与多人分配核心。"""
from .core import BookingCore
from .errors import (
    BookingSyncError, CrewNotFound, CustomerNotFound, InvalidTransition,
    MasterNotFound, MirrorMissing, PartialSyncFailure, PreconditionViolation,
)
from .notifications import LoggingNotifier, Notifier, NullNotifier
from .outbox import ReconciliationWorker, SyncOutbox, TransitionResult
from .status import AssignedStatus, PaymentStatus, TRANSITIONS, derive_status

__all__ = [
    "BookingCore",
    "BookingSyncError", "CrewNotFound", "CustomerNotFound", "InvalidTransition",
    "MasterNotFound", "MirrorMissing", "PartialSyncFailure", "PreconditionViolation",
    "LoggingNotifier", "Notifier", "NullNotifier",
    "ReconciliationWorker", "SyncOutbox", "TransitionResult",
    "AssignedStatus", "PaymentStatus", "TRANSITIONS", "derive_status",
]
