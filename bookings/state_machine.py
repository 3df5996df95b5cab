"""多人分配状态机。

负责工作人员的分配、确认、取消确认、移动、移出以及预约的 drop。
每个操作的步骤固定为：

1. 读取主记录，必要时迁移旧版单人字段；
2. 校验前置条件，失败时在任何写入之前抛出 PreconditionViolation；
3. 修改 assignedCrews / confirmedCrews，按人数重新推导状态并校验迁移；
4. 主记录与同步意图原子写入，然后执行镜像同步和账本步骤。

账本只跟随"已确认"集合变化：进入确认计入份额，离开确认冲回份额。
"""
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from database.store import DocumentStore

from .errors import InvalidTransition, MasterNotFound, PreconditionViolation
from .ledger import share_legs
from .notifications import Notifier, NullNotifier, notify_safely
from .outbox import SyncOutbox, TransitionResult, mirror_sync_leg
from .paths import booking_path
from .records import BookingView, crew_fields, utcnow_iso
from .status import AssignedStatus, check_transition, derive_status


class AssignmentStateMachine:
    """预约分配状态机。

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

    # ========== 内部工具 ==========

    def load(self, booking_id: str) -> BookingView:
        """读取主预约。

        Raises:
            MasterNotFound: 主预约不存在。
        """
        data = self.store.get(booking_path(booking_id))
        if data is None:
            raise MasterNotFound(booking_id)
        return BookingView.from_document(booking_id, data)

    @staticmethod
    def _require_crew(view: BookingView, crew_id: Optional[str]) -> str:
        if not crew_id:
            raise PreconditionViolation("Crew ID is required", view.booking_id)
        return crew_id

    @staticmethod
    def _not_dropped(view: BookingView, operation: str) -> None:
        # drop 是终态，任何分配操作都不允许
        if view.status == AssignedStatus.DROP:
            raise InvalidTransition(view.status.value, operation, view.booking_id)

    @staticmethod
    def _release_stale(view: BookingView, assigned: List[str],
                       confirmed: List[str]) -> List[Dict[str, Any]]:
        """移除不在 assignedCrews 中的确认记录，并冲回其份额。"""
        stale = [c for c in confirmed if c not in assigned]
        for crew_id in stale:
            confirmed.remove(crew_id)
        return share_legs(view, stale, -1, f"stale confirmation {view.booking_id}")

    def _commit(self, view: BookingView, operation: str,
                assigned: List[str], confirmed: List[str],
                legs: List[Dict[str, Any]],
                status: Optional[AssignedStatus] = None) -> TransitionResult:
        if status is None:
            status = derive_status(len(assigned), view.professionals, len(confirmed))
        check_transition(view.status, status, view.booking_id)

        fields = crew_fields(assigned, confirmed)
        master_fields = dict(fields)
        master_fields["assignedStatus"] = status.value
        master_fields["updatedAt"] = self.clock()

        all_legs = list(legs)
        if view.customer_id:
            all_legs.insert(0, mirror_sync_leg(status.value, fields))
        else:
            logger.warning(f"预约 {view.booking_id} 缺少 customerId，跳过镜像同步")

        result = self.outbox.commit(
            view.booking_id, view.customer_id, operation, status.value,
            all_legs, master_fields,
        )
        logger.info(
            f"{operation}: booking={view.booking_id} "
            f"{view.status.value} -> {status.value} "
            f"assigned={len(assigned)}/{view.professionals} confirmed={len(confirmed)}"
        )
        return result

    # ========== 单个工作人员操作 ==========

    def assign_crew(self, booking_id: str, crew_id: str) -> TransitionResult:
        """分配一位工作人员。

        Raises:
            MasterNotFound: 预约不存在。
            PreconditionViolation: 已分配、人数已满或预约已 drop。
        """
        view = self.load(booking_id)
        crew_id = self._require_crew(view, crew_id)
        self._not_dropped(view, "assign_crew")
        assigned, confirmed = view.crew_sets()

        if crew_id in assigned:
            raise PreconditionViolation("Crew already assigned to this job", booking_id)
        if len(assigned) >= view.professionals:
            raise PreconditionViolation("All professionals already assigned", booking_id)

        legs = self._release_stale(view, assigned, confirmed)
        assigned.append(crew_id)
        return self._commit(view, "assign_crew", assigned, confirmed, legs)

    def unassign_crew(self, booking_id: str, crew_id: str) -> TransitionResult:
        """移除一位工作人员，已确认的先冲回份额。"""
        view = self.load(booking_id)
        crew_id = self._require_crew(view, crew_id)
        self._not_dropped(view, "unassign_crew")
        assigned, confirmed = view.crew_sets()

        if crew_id not in assigned:
            raise PreconditionViolation("Crew not assigned to this job", booking_id)

        legs = self._release_stale(view, assigned, confirmed)
        if crew_id in confirmed:
            confirmed.remove(crew_id)
            legs += share_legs(view, [crew_id], -1, f"unassign {booking_id}")
        assigned.remove(crew_id)
        return self._commit(view, "unassign_crew", assigned, confirmed, legs)

    def confirm_crew(self, booking_id: str, crew_id: str) -> TransitionResult:
        """确认一位已分配的工作人员并计入份额。"""
        view = self.load(booking_id)
        crew_id = self._require_crew(view, crew_id)
        self._not_dropped(view, "confirm_crew")
        assigned, confirmed = view.crew_sets()

        if crew_id not in assigned:
            raise PreconditionViolation("Crew not assigned to this job", booking_id)
        if crew_id in confirmed:
            raise PreconditionViolation("Crew already confirmed", booking_id)

        legs = self._release_stale(view, assigned, confirmed)
        confirmed.append(crew_id)
        legs += share_legs(view, [crew_id], 1, f"confirm {booking_id}")
        status = AssignedStatus.CONFIRM if view.professionals == 1 else None
        return self._commit(view, "confirm_crew", assigned, confirmed, legs, status)

    def unconfirm_crew(self, booking_id: str, crew_id: str) -> TransitionResult:
        """取消一位工作人员的确认并冲回份额。"""
        view = self.load(booking_id)
        crew_id = self._require_crew(view, crew_id)
        self._not_dropped(view, "unconfirm_crew")
        assigned, confirmed = view.crew_sets()

        if crew_id not in confirmed or crew_id not in assigned:
            raise PreconditionViolation("Crew is not confirmed", booking_id)

        legs = self._release_stale(view, assigned, confirmed)
        confirmed.remove(crew_id)
        legs += share_legs(view, [crew_id], -1, f"unconfirm {booking_id}")
        status = AssignedStatus.ASSIGNED if view.professionals == 1 else None
        return self._commit(view, "unconfirm_crew", assigned, confirmed, legs, status)

    def move_crew(self, booking_id: str, from_crew_id: str,
                  to_crew_id: str) -> TransitionResult:
        """把一位工作人员的位置交给另一位。

        源工作人员已确认时，份额直接转移给目标，目标同时成为已确认。
        """
        view = self.load(booking_id)
        from_crew_id = self._require_crew(view, from_crew_id)
        to_crew_id = self._require_crew(view, to_crew_id)
        self._not_dropped(view, "move_crew")
        assigned, confirmed = view.crew_sets()

        if from_crew_id == to_crew_id:
            raise PreconditionViolation("Source and target crew are the same", booking_id)
        if from_crew_id not in assigned:
            raise PreconditionViolation("Crew not assigned to this job", booking_id)
        if to_crew_id in assigned:
            raise PreconditionViolation("Crew already assigned to this job", booking_id)

        legs = self._release_stale(view, assigned, confirmed)
        assigned[assigned.index(from_crew_id)] = to_crew_id
        if from_crew_id in confirmed:
            confirmed[confirmed.index(from_crew_id)] = to_crew_id
            legs += share_legs(view, [from_crew_id], -1, f"move {booking_id}")
            legs += share_legs(view, [to_crew_id], 1, f"move {booking_id}")
        return self._commit(view, "move_crew", assigned, confirmed, legs)

    # ========== 整体操作 ==========

    def move_to_unassigned(self, booking_id: str) -> TransitionResult:
        """清空全部工作人员，冲回所有已确认份额。"""
        view = self.load(booking_id)
        self._not_dropped(view, "move_to_unassigned")
        _, confirmed = view.crew_sets()
        legs = share_legs(view, confirmed, -1, f"unassign all {booking_id}")
        return self._commit(view, "move_to_unassigned", [], [], legs,
                            AssignedStatus.UNASSIGNED)

    def drop_booking(self, booking_id: str) -> TransitionResult:
        """取消预约（终态），冲回所有已确认份额并发送取消通知。"""
        view = self.load(booking_id)
        _, confirmed = view.crew_sets()
        legs = share_legs(view, confirmed, -1, f"drop {booking_id}")
        result = self._commit(view, "drop_booking", [], [], legs,
                              AssignedStatus.DROP)
        notify_safely(self.notifier, "booking_cancelled", booking_id,
                      result.booking or view.data)
        return result

    def confirm_all(self, booking_id: str) -> TransitionResult:
        """确认全部已分配的工作人员，要求人数已满。"""
        view = self.load(booking_id)
        self._not_dropped(view, "confirm_all")
        assigned, confirmed = view.crew_sets()

        if len(assigned) < view.professionals:
            raise PreconditionViolation(
                "All professionals must be assigned before confirming", booking_id)
        legs = self._release_stale(view, assigned, confirmed)
        newly = [c for c in assigned if c not in confirmed]
        if not newly:
            raise PreconditionViolation("Booking already confirmed", booking_id)

        confirmed.extend(newly)
        legs += share_legs(view, newly, 1, f"confirm {booking_id}")
        return self._commit(view, "confirm_all", assigned, confirmed, legs,
                            AssignedStatus.CONFIRM)

    def unconfirm_all(self, booking_id: str) -> TransitionResult:
        """取消全部确认，保留分配。"""
        view = self.load(booking_id)
        self._not_dropped(view, "unconfirm_all")
        assigned, confirmed = view.crew_sets()

        legs = self._release_stale(view, assigned, confirmed)
        if not confirmed:
            raise PreconditionViolation("No confirmed crews", booking_id)
        legs += share_legs(view, confirmed, -1, f"unconfirm {booking_id}")
        return self._commit(view, "unconfirm_all", assigned, [], legs)

    def set_status(self, booking_id: str, status: str) -> TransitionResult:
        """管理端直接设置状态。

        - confirm: 确认全部已分配的工作人员
        - assigned: 取消全部确认
        - unassigned: 清空工作人员
        - drop: 取消预约

        Raises:
            PreconditionViolation: partially_assigned 不能直接设置，只能由人数推导。
        """
        try:
            target = AssignedStatus.parse(status)
        except ValueError:
            raise PreconditionViolation(f"Invalid status: {status}", booking_id)

        if target == AssignedStatus.CONFIRM:
            return self.confirm_all(booking_id)
        if target == AssignedStatus.ASSIGNED:
            return self.unconfirm_all(booking_id)
        if target == AssignedStatus.UNASSIGNED:
            return self.move_to_unassigned(booking_id)
        if target == AssignedStatus.DROP:
            return self.drop_booking(booking_id)
        raise PreconditionViolation(
            "partially_assigned is derived from crew counts and cannot be set",
            booking_id,
        )

    def assign_single(self, booking_id: str,
                      crew_id: Optional[str]) -> TransitionResult:
        """旧版单人分配入口。

        crew_id 为空时清空分配；单人预约已有其他工作人员时改为移动。
        """
        if not crew_id:
            return self.move_to_unassigned(booking_id)

        view = self.load(booking_id)
        assigned, _ = view.crew_sets()
        if view.professionals == 1 and assigned:
            current = assigned[0]
            if current == crew_id:
                raise PreconditionViolation("Crew already assigned to this job", booking_id)
            return self.move_crew(booking_id, current, crew_id)
        return self.assign_crew(booking_id, crew_id)
