"""预约记录的读取视图与通用工具。

存储中的预约是松散的字典（历史数据里数字可能是字符串，多人字段可能缺失），
BookingView 负责把它解析成带默认值的类型化视图，核心逻辑只读取视图。
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .errors import PreconditionViolation
from .status import AssignedStatus, PaymentStatus

# 分配相关字段，状态同步时整体下发到镜像
CREW_FIELDS = (
    "assignedTo",
    "assignedCrews",
    "professionalsAssigned",
    "confirmedCrews",
    "professionalsConfirmed",
)
PAYMENT_FIELDS = ("paymentStatus", "dueBalance")


def utcnow_iso() -> str:
    """当前 UTC 时间的 ISO 字符串。"""
    return datetime.now(timezone.utc).isoformat()


def to_int(value: Any, default: int = 0) -> int:
    if value is None or value == "":
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def to_float(value: Any, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass
class BookingView:
    """主预约的类型化视图。

    Attributes:
        booking_id: 预约ID。
        customer_id: 顾客ID（customerId，缺失时回退到 userId）。
        hours: 预约工时。
        professionals: 需要的工作人员数，至少为 1。
        total_amount: 订单总金额。
        due_balance: 未付余额。
        payment_status: 付款状态原始值。
        status: 分配状态。
        assigned_to: 旧版单人分配字段。
        assigned_crews: 已分配工作人员列表。
        confirmed_crews: 已确认工作人员列表。
        data: 原始文档。
    """
    booking_id: str
    customer_id: Optional[str]
    hours: int
    professionals: int
    total_amount: float
    due_balance: float
    payment_status: str
    status: AssignedStatus
    assigned_to: Optional[str] = None
    assigned_crews: List[str] = field(default_factory=list)
    confirmed_crews: List[str] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_document(cls, booking_id: str,
                      data: Dict[str, Any]) -> "BookingView":
        """解析主预约文档。

        Raises:
            PreconditionViolation: assignedStatus 不是已知状态。
        """
        try:
            status = AssignedStatus.parse(data.get("assignedStatus"))
        except ValueError:
            raise PreconditionViolation(
                f"Unknown assignedStatus {data.get('assignedStatus')!r}", booking_id
            ) from None
        total = to_float(data.get("totalAmount"))
        due = data.get("dueBalance")
        return cls(
            booking_id=booking_id,
            customer_id=data.get("customerId") or data.get("userId"),
            hours=to_int(data.get("hours")),
            professionals=max(1, to_int(data.get("professionals"), 1)),
            total_amount=total,
            due_balance=total if due is None else to_float(due),
            payment_status=data.get("paymentStatus") or PaymentStatus.DUE.value,
            status=status,
            assigned_to=data.get("assignedTo") or None,
            assigned_crews=list(data.get("assignedCrews") or []),
            confirmed_crews=list(data.get("confirmedCrews") or []),
            data=data,
        )

    @property
    def share(self) -> float:
        """每位工作人员的金额份额。"""
        return crew_share(self.total_amount, self.professionals)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID.value

    def crew_sets(self) -> Tuple[List[str], List[str]]:
        """返回 (已分配, 已确认) 工作人员列表的副本。

        单人预约只有旧版 assignedTo 字段时，先迁移为多人字段：
        assignedCrews=[assignedTo]，若状态为 confirm 则 confirmedCrews 同样。
        """
        assigned = list(self.assigned_crews)
        confirmed = list(self.confirmed_crews)
        if self.professionals == 1 and not assigned and self.assigned_to:
            assigned = [self.assigned_to]
            if self.status == AssignedStatus.CONFIRM and not confirmed:
                confirmed = [self.assigned_to]
        return assigned, confirmed


def crew_share(total_amount: float, professionals: int) -> float:
    return total_amount / max(1, professionals)


def crew_fields(assigned: List[str], confirmed: List[str]) -> Dict[str, Any]:
    """根据工作人员列表生成需要写回的分配字段。"""
    return {
        "assignedCrews": list(assigned),
        "professionalsAssigned": len(assigned),
        "confirmedCrews": list(confirmed),
        "professionalsConfirmed": len(confirmed),
        "assignedTo": assigned[0] if assigned else None,
    }


def recompute_payment_status(due_balance: float, total_amount: float) -> str:
    """按余额重新计算付款状态。"""
    if due_balance <= 0:
        return PaymentStatus.PAID.value
    if due_balance < total_amount:
        return PaymentStatus.PARTIAL.value
    return PaymentStatus.DUE.value


def clamp_due(due_balance: float, total_amount: float) -> float:
    return min(max(due_balance, 0.0), max(total_amount, 0.0))


# 账本/账户文档上记录最近已应用的步骤ID，重放同一步骤时跳过
APPLIED_LEGS = "appliedLegs"
APPLIED_LEGS_LIMIT = 50


def already_applied(data: Dict[str, Any], leg_id: Optional[str]) -> bool:
    return bool(leg_id) and leg_id in (data.get(APPLIED_LEGS) or [])


def with_applied(data: Dict[str, Any], leg_id: Optional[str]) -> Dict[str, Any]:
    """返回需要随余额一起写入的 appliedLegs 字段（无步骤ID时为空）。"""
    if not leg_id:
        return {}
    applied = list(data.get(APPLIED_LEGS) or []) + [leg_id]
    return {APPLIED_LEGS: applied[-APPLIED_LEGS_LIMIT:]}
