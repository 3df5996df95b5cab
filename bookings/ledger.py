"""工作人员账本对账。

每位工作人员在 ``crews/{crewId}`` 上累计 hours 与 totalAmount。
预约被确认时计入份额，取消确认、移出、删除时冲回；编辑预约时只补差额。
两个字段都不允许小于 0。
"""
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, Iterable, List, Optional

from loguru import logger

from database.store import DocumentStore, new_document_id

from .errors import CrewNotFound
from .paths import CREWS, crew_path, payment_records_collection
from .records import (
    BookingView, already_applied, to_float, utcnow_iso, with_applied,
)

LEG_KIND = "ledger"


def ledger_leg(crew_id: str, hours_delta: float, amount_delta: float,
               reason: str) -> Dict[str, Any]:
    """构造一条账本步骤记录（写入补偿意图）。"""
    return {
        "kind": LEG_KIND,
        "crewId": crew_id,
        "hoursDelta": hours_delta,
        "amountDelta": amount_delta,
        "reason": reason,
    }


def share_legs(booking: BookingView, crew_ids: Iterable[str], sign: int,
               reason: str) -> List[Dict[str, Any]]:
    """为一组工作人员生成计入（sign=1）或冲回（sign=-1）份额的步骤。"""
    return [
        ledger_leg(crew_id, sign * booking.hours, sign * booking.share, reason)
        for crew_id in crew_ids
    ]


class CrewLedgerReconciler:
    """工作人员账本。

    Args:
        store: 文档存储。
        clock: 时钟函数。
    """

    def __init__(self, store: DocumentStore,
                 clock: Callable[[], str] = utcnow_iso) -> None:
        self.store = store
        self.clock = clock
        self._locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    def _lock_for(self, crew_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks[crew_id]

    # ========== 份额增减 ==========

    def apply_delta(self, crew_id: str, hours_delta: float,
                    amount_delta: float, reason: str = "",
                    leg_id: Optional[str] = None) -> Dict[str, float]:
        """对工作人员账本加减工时和金额，结果不低于 0。

        Args:
            crew_id: 工作人员ID。
            hours_delta: 工时变化量。
            amount_delta: 金额变化量。
            reason: 日志中记录的原因。
            leg_id: 意图步骤ID；已应用过的步骤不会重复计入。

        Returns:
            {"hours": 新工时, "totalAmount": 新金额}

        Raises:
            CrewNotFound: 工作人员不存在。
        """
        path = crew_path(crew_id)
        with self._lock_for(crew_id):
            crew = self.store.get(path)
            if crew is None:
                raise CrewNotFound(crew_id)

            old_hours = to_float(crew.get("hours"))
            old_amount = to_float(crew.get("totalAmount"))
            if already_applied(crew, leg_id):
                logger.info(f"账本步骤已应用，跳过 [{reason}] crew={crew_id} leg={leg_id}")
                return {"hours": old_hours, "totalAmount": old_amount}

            new_hours = max(0.0, old_hours + hours_delta)
            new_amount = max(0.0, old_amount + amount_delta)

            self.store.update(path, {
                "hours": new_hours,
                "totalAmount": new_amount,
                "updatedAt": self.clock(),
                **with_applied(crew, leg_id),
            })
        logger.info(
            f"账本更新 [{reason}] crew={crew_id}: hours {old_hours} -> {new_hours}, "
            f"totalAmount {old_amount} -> {new_amount}"
        )
        return {"hours": new_hours, "totalAmount": new_amount}

    def apply_share(self, booking: BookingView, crew_id: str,
                    sign: int) -> Dict[str, float]:
        """计入或冲回一位工作人员在该预约上的完整份额。"""
        return self.apply_delta(
            crew_id, sign * booking.hours, sign * booking.share,
            reason=f"booking {booking.booking_id}",
        )

    def apply_leg(self, leg: Dict[str, Any]) -> Dict[str, float]:
        return self.apply_delta(
            leg["crewId"], to_float(leg.get("hoursDelta")),
            to_float(leg.get("amountDelta")), reason=leg.get("reason", ""),
            leg_id=leg.get("legId"),
        )

    # ========== 结算 ==========

    def settle_payment(self, crew_id: str, amount: Optional[float] = None,
                       notes: Optional[str] = None,
                       settled_by: Optional[str] = None) -> Dict[str, Any]:
        """结算工作人员报酬：记录结算明细并把账本清零。

        Args:
            crew_id: 工作人员ID。
            amount: 结算金额，默认为当前累计金额。
            notes: 备注。
            settled_by: 操作人。

        Returns:
            结算记录（含 id）。

        Raises:
            CrewNotFound: 工作人员不存在。
            ValueError: 结算金额为负。
        """
        path = crew_path(crew_id)
        with self._lock_for(crew_id):
            crew = self.store.get(path)
            if crew is None:
                raise CrewNotFound(crew_id)

            hours = to_float(crew.get("hours"))
            total = to_float(crew.get("totalAmount"))
            amount = total if amount is None else to_float(amount)
            if amount < 0:
                raise ValueError("结算金额不能为负")

            crew_name = crew.get("name") or crew_id
            now = self.clock()
            record = {
                "crewId": crew_id,
                "crewName": crew_name,
                "amount": amount,
                "hours": hours,
                "totalAmountBefore": total,
                "notes": notes,
                "settledBy": settled_by,
                "settledAt": now,
            }
            record_id = new_document_id()
            with self.store.batch() as batch:
                batch.set(f"{payment_records_collection(crew_name)}/{record_id}",
                          record)
                batch.update(path, {
                    "hours": 0.0,
                    "totalAmount": 0.0,
                    "lastSettledAt": now,
                    "updatedAt": now,
                })
        logger.info(f"工作人员 {crew_name} 已结算: amount={amount}, hours={hours}")
        return {"id": record_id, **record}

    def payment_history(self, crew_id: str) -> List[Dict[str, Any]]:
        """结算历史，按结算时间倒序。

        Raises:
            CrewNotFound: 工作人员不存在。
        """
        crew = self.store.get(crew_path(crew_id))
        if crew is None:
            raise CrewNotFound(crew_id)
        crew_name = crew.get("name") or crew_id
        records = [
            {"id": record_id, **data}
            for record_id, data in self.store.list(
                payment_records_collection(crew_name))
        ]
        records.sort(key=lambda r: r.get("settledAt") or "", reverse=True)
        return records

    def initialize_crew_ledgers(self) -> Dict[str, int]:
        """为缺少账本字段的工作人员补齐 hours/totalAmount=0。"""
        crews = self.store.list(CREWS)
        updated = 0
        for crew_id, data in crews:
            missing = {k: 0.0 for k in ("hours", "totalAmount") if k not in data}
            if missing:
                self.store.update(crew_path(crew_id), missing)
                updated += 1
        logger.info(f"账本字段初始化完成: {updated}/{len(crews)}")
        return {"total": len(crews), "updated": updated}
