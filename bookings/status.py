"""分配状态与状态迁移表。

状态由 (已分配人数, 需要人数, 已确认人数) 推导：

    assigned == 0          -> unassigned
    confirmed == needed    -> confirm
    assigned < needed      -> partially_assigned
    assigned == needed     -> assigned

drop 为终态，只能通过删除预约离开。
"""
from enum import Enum
from typing import Dict, FrozenSet, Optional

from .errors import InvalidTransition


class AssignedStatus(str, Enum):
    """预约分配状态。"""
    UNASSIGNED = "unassigned"
    PARTIALLY_ASSIGNED = "partially_assigned"
    ASSIGNED = "assigned"
    CONFIRM = "confirm"
    DROP = "drop"

    @classmethod
    def parse(cls, value: Optional[str]) -> "AssignedStatus":
        """解析存储中的状态值，缺失时视为 unassigned。

        Raises:
            ValueError: 未知的状态值。
        """
        if value is None or value == "":
            return cls.UNASSIGNED
        if isinstance(value, cls):
            return value
        return cls(value)


class PaymentStatus(str, Enum):
    """付款状态。"""
    DUE = "due"
    PARTIAL = "partial"
    PAID = "paid"


_NON_TERMINAL = frozenset({
    AssignedStatus.UNASSIGNED,
    AssignedStatus.PARTIALLY_ASSIGNED,
    AssignedStatus.ASSIGNED,
    AssignedStatus.CONFIRM,
})

# 允许的状态迁移（含自迁移，如移动已确认的工作人员后仍为 confirm）
TRANSITIONS: Dict[AssignedStatus, FrozenSet[AssignedStatus]] = {
    AssignedStatus.UNASSIGNED: frozenset({
        AssignedStatus.UNASSIGNED,
        AssignedStatus.PARTIALLY_ASSIGNED,
        AssignedStatus.ASSIGNED,
        AssignedStatus.DROP,
    }),
    AssignedStatus.PARTIALLY_ASSIGNED: _NON_TERMINAL | {AssignedStatus.DROP},
    AssignedStatus.ASSIGNED: _NON_TERMINAL | {AssignedStatus.DROP},
    AssignedStatus.CONFIRM: _NON_TERMINAL | {AssignedStatus.DROP},
    AssignedStatus.DROP: frozenset(),
}


def derive_status(assigned_count: int, professionals_needed: int,
                  confirmed_count: int) -> AssignedStatus:
    """按人数推导分配状态。

    Args:
        assigned_count: 已分配的工作人员数。
        professionals_needed: 需要的工作人员数（>=1）。
        confirmed_count: 已确认的工作人员数。

    Returns:
        推导出的 AssignedStatus。
    """
    if assigned_count == 0:
        return AssignedStatus.UNASSIGNED
    if confirmed_count == professionals_needed:
        return AssignedStatus.CONFIRM
    if assigned_count < professionals_needed:
        return AssignedStatus.PARTIALLY_ASSIGNED
    return AssignedStatus.ASSIGNED


def can_transition(current: AssignedStatus, target: AssignedStatus) -> bool:
    return target in TRANSITIONS[current]


def check_transition(current: AssignedStatus, target: AssignedStatus,
                     booking_id: Optional[str] = None) -> None:
    """校验状态迁移。

    Raises:
        InvalidTransition: 迁移表中不存在该迁移。
    """
    if not can_transition(current, target):
        raise InvalidTransition(current.value, target.value, booking_id)
