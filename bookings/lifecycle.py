"""预约生命周期：创建、编辑、删除。

三个操作都通过 SyncOutbox 提交，镜像、账本和顾客账户的变更作为步骤执行，
失败的步骤留在意图记录中等待补偿。
"""
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from database.store import DocumentStore, new_document_id

from .accounts import account_leg
from .errors import MasterNotFound, PreconditionViolation
from .ledger import ledger_leg, share_legs
from .notifications import Notifier, NullNotifier, notify_safely
from .outbox import (
    SyncOutbox, TransitionResult, mirror_delete_leg, mirror_repair_leg,
    mirror_sync_leg,
)
from .paths import booking_path
from .records import (
    BookingView, clamp_due, crew_fields, crew_share, recompute_payment_status,
    to_float, utcnow_iso,
)
from .status import AssignedStatus, PaymentStatus, check_transition, derive_status

# 编辑时不允许直接修改的字段，必须通过分配/付款操作变更
PROTECTED_FIELDS = frozenset({
    "assignedTo", "assignedCrews", "confirmedCrews",
    "professionalsAssigned", "professionalsConfirmed", "assignedStatus",
    "dueBalance", "paymentStatus", "customerId", "userId", "createdAt",
})


def _parse_amount(value: Any, name: str) -> float:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise PreconditionViolation(f"{name} must be a number")
    if amount < 0:
        raise PreconditionViolation(f"{name} cannot be negative")
    return amount


def _parse_count(value: Any, name: str, minimum: int) -> int:
    try:
        count = int(value)
    except (TypeError, ValueError):
        raise PreconditionViolation(f"{name} must be an integer")
    if count < minimum:
        raise PreconditionViolation(f"{name} must be at least {minimum}")
    return count


class BookingLifecycle:
    """预约创建、编辑与删除。

    Args:
        store: 文档存储。
        outbox: 同步意图执行器。
        notifier: 通知适配器。
        clock: 时钟函数。
    """

    def __init__(self, store: DocumentStore, outbox: SyncOutbox,
                 notifier: Optional[Notifier] = None,
                 clock: Callable[[], str] = utcnow_iso) -> None:
        self.store = store
        self.outbox = outbox
        self.notifier = notifier or NullNotifier()
        self.clock = clock

    def _load(self, booking_id: str) -> BookingView:
        data = self.store.get(booking_path(booking_id))
        if data is None:
            raise MasterNotFound(booking_id)
        return BookingView.from_document(booking_id, data)

    # ========== 创建 ==========

    def create_booking(self, data: Dict[str, Any],
                       booking_id: Optional[str] = None) -> TransitionResult:
        """创建预约。

        customerId 与 userId 必须一致，缺一个时用另一个补齐。
        未付余额默认为总金额，付款状态为 paid 时为 0。

        Args:
            data: 预约字段。
            booking_id: 指定预约ID，默认自动生成。

        Returns:
            TransitionResult，booking 为新写入的主记录。

        Raises:
            PreconditionViolation: 缺少顾客、金额非法或人数非法。
        """
        customer_id = data.get("customerId") or data.get("userId")
        if not customer_id:
            raise PreconditionViolation("customerId is required")
        if data.get("customerId") and data.get("userId") \
                and data["customerId"] != data["userId"]:
            raise PreconditionViolation("customerId and userId must match")
        if data.get("totalAmount") is None:
            raise PreconditionViolation("totalAmount is required")

        total = _parse_amount(data["totalAmount"], "totalAmount")
        professionals = _parse_count(data.get("professionals", 1), "professionals", 1)
        hours = _parse_count(data.get("hours", 0), "hours", 0)
        payment_status = data.get("paymentStatus") or PaymentStatus.DUE.value
        try:
            payment_status = PaymentStatus(payment_status).value
        except ValueError:
            raise PreconditionViolation(f"Invalid paymentStatus: {payment_status}")

        if payment_status == PaymentStatus.PAID.value:
            due = 0.0
        elif data.get("dueBalance") is not None:
            due = clamp_due(to_float(data["dueBalance"]), total)
        else:
            due = total

        booking_id = booking_id or new_document_id()
        if self.store.exists(booking_path(booking_id)):
            raise PreconditionViolation("Booking already exists", booking_id)
        now = self.clock()
        booking = {k: v for k, v in data.items() if k not in PROTECTED_FIELDS}
        booking.update({
            "customerId": customer_id,
            "userId": customer_id,
            "hours": hours,
            "professionals": professionals,
            "totalAmount": total,
            "dueBalance": due,
            "paymentStatus": payment_status,
            "source": data.get("source") or "user",
            "assignedStatus": AssignedStatus.UNASSIGNED.value,
            "createdAt": data.get("createdAt") or now,
            "updatedAt": now,
        })
        booking.update(crew_fields([], []))

        paid = total - due
        legs: List[Dict[str, Any]] = [mirror_repair_leg()]
        if total:
            legs.append(account_leg(customer_id, due_delta=due, total_delta=paid,
                                    reason=f"create {booking_id}"))
        if payment_status == PaymentStatus.PAID.value and booking["source"] == "admin" and hours:
            legs.append(account_leg(customer_id, hours_delta=hours,
                                    reason=f"create {booking_id}"))

        result = self.outbox.commit(
            booking_id, customer_id, "create_booking",
            AssignedStatus.UNASSIGNED.value, legs, booking, mode="create",
        )
        logger.info(f"预约已创建: {booking_id} customer={customer_id} total={total}")
        notify_safely(self.notifier, "booking_created", booking_id,
                      result.booking or booking)
        return result

    # ========== 编辑 ==========

    def update_booking(self, booking_id: str,
                       changes: Dict[str, Any]) -> TransitionResult:
        """编辑预约（工时、人数、金额及其他普通字段）。

        - 人数减少时，超出的工作人员被移出，已确认的冲回完整旧份额；
        - 保留下来的已确认工作人员只补 (新份额 - 旧份额) 和工时差；
        - 未付余额按金额差调整并重新计算付款状态；
        - 状态按新人数重新推导。

        Raises:
            MasterNotFound: 预约不存在。
            PreconditionViolation: 修改了受保护字段或数值非法。
        """
        protected = sorted(set(changes) & PROTECTED_FIELDS)
        if protected:
            raise PreconditionViolation(
                f"Fields cannot be edited directly: {', '.join(protected)}", booking_id)

        view = self._load(booking_id)
        assigned, confirmed = view.crew_sets()

        new_hours = view.hours
        if "hours" in changes:
            new_hours = _parse_count(changes["hours"], "hours", 0)
        new_professionals = view.professionals
        if "professionals" in changes:
            new_professionals = _parse_count(changes["professionals"], "professionals", 1)
        new_total = view.total_amount
        if "totalAmount" in changes:
            new_total = _parse_amount(changes["totalAmount"], "totalAmount")

        legs: List[Dict[str, Any]] = []
        stale = [c for c in confirmed if c not in assigned]
        if stale:
            confirmed = [c for c in confirmed if c in assigned]
            legs += share_legs(view, stale, -1, f"stale confirmation {booking_id}")

        if new_professionals < len(assigned):
            removed = assigned[new_professionals:]
            assigned = assigned[:new_professionals]
            dropped = [c for c in removed if c in confirmed]
            confirmed = [c for c in confirmed if c not in removed]
            legs += share_legs(view, dropped, -1, f"edit {booking_id}")
            logger.info(f"预约 {booking_id} 人数减少，移出工作人员: {removed}")

        hours_diff = new_hours - view.hours
        share_diff = crew_share(new_total, new_professionals) - view.share
        if hours_diff or share_diff:
            legs += [ledger_leg(c, hours_diff, share_diff, f"edit {booking_id}")
                     for c in confirmed]

        if view.status == AssignedStatus.DROP:
            status = AssignedStatus.DROP
        else:
            status = derive_status(len(assigned), new_professionals, len(confirmed))
            check_transition(view.status, status, booking_id)

        new_due = clamp_due(view.due_balance + (new_total - view.total_amount), new_total)
        payment_status = recompute_payment_status(new_due, new_total)

        fields = {k: v for k, v in changes.items()
                  if k not in ("hours", "professionals", "totalAmount")}
        fields.update({
            "hours": new_hours,
            "professionals": new_professionals,
            "totalAmount": new_total,
            "dueBalance": new_due,
            "paymentStatus": payment_status,
        })
        fields.update(crew_fields(assigned, confirmed))
        master_fields = dict(fields, assignedStatus=status.value,
                             updatedAt=self.clock())

        due_delta = new_due - view.due_balance
        if view.customer_id:
            legs.insert(0, mirror_sync_leg(status.value, fields))
            if due_delta:
                legs.append(account_leg(view.customer_id, due_delta=due_delta,
                                        reason=f"edit {booking_id}"))

        result = self.outbox.commit(
            booking_id, view.customer_id, "update_booking", status.value,
            legs, master_fields,
        )
        logger.info(
            f"预约已编辑: {booking_id} hours {view.hours}->{new_hours} "
            f"professionals {view.professionals}->{new_professionals} "
            f"total {view.total_amount}->{new_total} status={status.value}"
        )
        return result

    # ========== 删除 ==========

    def delete_booking(self, booking_id: str) -> TransitionResult:
        """删除预约：冲回已确认份额和顾客账户，删除镜像和主记录。

        Raises:
            MasterNotFound: 预约不存在。
        """
        view = self._load(booking_id)
        _, confirmed = view.crew_sets()

        legs: List[Dict[str, Any]] = share_legs(
            view, confirmed, -1, f"delete {booking_id}")
        if view.customer_id:
            legs.insert(0, mirror_delete_leg())
            paid = max(0.0, view.total_amount - view.due_balance)
            hours = view.hours if view.is_paid else 0
            if paid or view.due_balance or hours:
                legs.append(account_leg(
                    view.customer_id, due_delta=-view.due_balance,
                    total_delta=-paid, hours_delta=-hours,
                    reason=f"delete {booking_id}",
                ))

        result = self.outbox.commit(
            booking_id, view.customer_id, "delete_booking",
            view.status.value, legs, mode="delete",
        )
        logger.info(f"预约已删除: {booking_id} customer={view.customer_id}")
        notify_safely(self.notifier, "booking_cancelled", booking_id, view.data)
        return result
