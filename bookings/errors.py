"""预约同步核心的异常定义。

- MasterNotFound: 主预约不存在，操作终止并抛给调用方。
- MirrorMissing: 镜像缺失，可恢复，写入时自动修复。
- CrewNotFound / CustomerNotFound: 账本目标不存在，跳过该步骤并记录日志。
- PreconditionViolation: 前置条件不满足，在任何写入之前拒绝。
- PartialSyncFailure: 主记录已更新，但镜像或账本步骤失败，留待补偿。
"""
from typing import Any, Dict, List, Optional


class BookingSyncError(Exception):
    """预约同步核心异常基类。"""


class MasterNotFound(BookingSyncError):
    """主预约记录不存在。"""

    def __init__(self, booking_id: str) -> None:
        super().__init__(f"Booking {booking_id} not found")
        self.booking_id = booking_id


class MirrorMissing(BookingSyncError):
    """顾客镜像记录不存在。"""

    def __init__(self, booking_id: str, customer_id: str) -> None:
        super().__init__(
            f"Mirrored booking {booking_id} not found for customer {customer_id}"
        )
        self.booking_id = booking_id
        self.customer_id = customer_id


class CrewNotFound(BookingSyncError):
    """工作人员不存在，账本更新被跳过。"""

    def __init__(self, crew_id: str) -> None:
        super().__init__(f"Crew {crew_id} not found")
        self.crew_id = crew_id


class CustomerNotFound(BookingSyncError):
    """顾客账户不存在，账户更新被跳过。"""

    def __init__(self, customer_id: str) -> None:
        super().__init__(f"Customer {customer_id} not found")
        self.customer_id = customer_id


class PreconditionViolation(BookingSyncError):
    """前置条件不满足（如重复分配、重复确认）。"""

    def __init__(self, reason: str, booking_id: Optional[str] = None) -> None:
        message = reason if booking_id is None else f"{reason} (booking {booking_id})"
        super().__init__(message)
        self.reason = reason
        self.booking_id = booking_id


class InvalidTransition(PreconditionViolation):
    """状态迁移不在迁移表中。"""

    def __init__(self, current: str, target: str,
                 booking_id: Optional[str] = None) -> None:
        super().__init__(
            f"Transition {current} -> {target} is not allowed", booking_id
        )
        self.current = current
        self.target = target


class PartialSyncFailure(BookingSyncError):
    """主记录已写入，但部分下游步骤失败。

    Attributes:
        booking_id: 预约ID。
        customer_id: 顾客ID。
        status: 本次尝试写入的 assignedStatus。
        failed_legs: 失败步骤的描述列表。
        intent_id: 对应的补偿意图记录ID，可用于重放。
    """

    def __init__(self, booking_id: str, customer_id: Optional[str],
                 status: Optional[str], failed_legs: List[Dict[str, Any]],
                 intent_id: Optional[str] = None) -> None:
        kinds = ", ".join(
            f"{leg.get('kind')}:{leg.get('crewId') or leg.get('op') or ''}"
            for leg in failed_legs
        )
        super().__init__(
            f"Partial sync failure for booking {booking_id} "
            f"(customer {customer_id}, status {status}): {kinds}"
        )
        self.booking_id = booking_id
        self.customer_id = customer_id
        self.status = status
        self.failed_legs = failed_legs
        self.intent_id = intent_id
