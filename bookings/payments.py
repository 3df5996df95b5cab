"""付款状态更新。

支持三种目标状态：

- paid: 结清全部未付余额；
- partial: 收取部分款项（0 < paidAmount <= 未付余额），余额为 0 时自动变为 paid；
- due: 撤销已收款，余额恢复为总金额。

收款变动同步记入顾客账户（dueAmount 减少、totalAmount 增加），
进入或离开 paid 时同步调整顾客账户的 hours。
"""
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from database.store import DocumentStore

from .accounts import account_leg
from .errors import MasterNotFound, PreconditionViolation
from .notifications import Notifier, NullNotifier, notify_safely
from .outbox import SyncOutbox, TransitionResult, mirror_sync_leg
from .paths import booking_path
from .records import BookingView, to_float, utcnow_iso
from .status import PaymentStatus


class PaymentService:
    """付款服务。

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

    def update_payment_status(self, booking_id: str, payment_status: str,
                              paid_amount: Optional[float] = None
                              ) -> TransitionResult:
        """更新预约付款状态。

        Args:
            booking_id: 预约ID。
            payment_status: 目标状态（due/partial/paid）。
            paid_amount: partial 时本次收款金额。

        Returns:
            TransitionResult。

        Raises:
            MasterNotFound: 预约不存在。
            PreconditionViolation: 状态非法或收款金额非法。
        """
        try:
            target = PaymentStatus(payment_status)
        except ValueError:
            raise PreconditionViolation(
                f"Invalid payment status: {payment_status}", booking_id)

        data = self.store.get(booking_path(booking_id))
        if data is None:
            raise MasterNotFound(booking_id)
        view = BookingView.from_document(booking_id, data)
        total = view.total_amount
        due = view.due_balance

        if target == PaymentStatus.PAID:
            payment = due
            new_due = 0.0
        elif target == PaymentStatus.PARTIAL:
            if paid_amount is None:
                raise PreconditionViolation(
                    "paidAmount is required for partial payments", booking_id)
            amount = to_float(paid_amount, -1.0)
            if amount <= 0:
                raise PreconditionViolation("paidAmount must be positive", booking_id)
            if amount > due:
                raise PreconditionViolation(
                    f"paidAmount {amount} exceeds due balance {due}", booking_id)
            payment = amount
            new_due = due - amount
            if new_due <= 0:
                new_due = 0.0
                target = PaymentStatus.PAID
        else:
            # 撤销已收款
            payment = -(total - due)
            new_due = total

        now = self.clock()
        fields = {
            "paymentStatus": target.value,
            "dueBalance": new_due,
            "paymentUpdatedAt": now,
        }
        master_fields = dict(fields, updatedAt=now)

        legs: List[Dict[str, Any]] = []
        if view.customer_id:
            legs.append(mirror_sync_leg(view.status.value, fields))
            if payment:
                legs.append(account_leg(
                    view.customer_id, due_delta=-payment, total_delta=payment,
                    reason=f"payment {booking_id}",
                ))
            was_paid = view.is_paid
            now_paid = target == PaymentStatus.PAID
            if view.hours and was_paid != now_paid:
                legs.append(account_leg(
                    view.customer_id,
                    hours_delta=view.hours if now_paid else -view.hours,
                    reason=f"payment {booking_id}",
                ))

        result = self.outbox.commit(
            booking_id, view.customer_id, "update_payment_status",
            view.status.value, legs, master_fields,
        )
        logger.info(
            f"付款状态更新: {booking_id} {view.payment_status} -> {target.value}, "
            f"本次金额={payment}, 余额 {due} -> {new_due}"
        )
        if payment > 0:
            notify_safely(self.notifier, "payment_received", booking_id,
                          result.booking or data, payment)
        return result
