"""顾客账户（users/{customerId}）上的金额与工时汇总。"""
from typing import Any, Callable, Dict, Optional

from loguru import logger

from database.store import DocumentStore

from .errors import CustomerNotFound
from .paths import customer_path
from .records import already_applied, to_float, utcnow_iso, with_applied

LEG_KIND = "account"


def account_leg(customer_id: str, due_delta: float = 0.0,
                total_delta: float = 0.0, hours_delta: float = 0.0,
                reason: str = "") -> Dict[str, Any]:
    """构造一条顾客账户步骤记录。"""
    return {
        "kind": LEG_KIND,
        "customerId": customer_id,
        "dueDelta": due_delta,
        "totalDelta": total_delta,
        "hoursDelta": hours_delta,
        "reason": reason,
    }


class CustomerAccountRepository:
    """顾客账户仓库。

    dueAmount 为未付金额累计，totalAmount 为已付金额累计，hours 为已付工时累计，
    三者都不小于 0。
    """

    def __init__(self, store: DocumentStore,
                 clock: Callable[[], str] = utcnow_iso) -> None:
        self.store = store
        self.clock = clock

    def get(self, customer_id: str) -> Optional[Dict[str, Any]]:
        return self.store.get(customer_path(customer_id))

    def adjust(self, customer_id: str, due_delta: float = 0.0,
               total_delta: float = 0.0, hours_delta: float = 0.0,
               reason: str = "", leg_id: Optional[str] = None) -> Dict[str, float]:
        """调整顾客账户。

        Raises:
            CustomerNotFound: 顾客不存在。
        """
        path = customer_path(customer_id)
        account = self.store.get(path)
        if account is None:
            raise CustomerNotFound(customer_id)

        if already_applied(account, leg_id):
            logger.info(f"账户步骤已应用，跳过 [{reason}] customer={customer_id} leg={leg_id}")
            return {k: to_float(account.get(k)) for k in ("dueAmount", "totalAmount", "hours")}

        values = {
            "dueAmount": max(0.0, to_float(account.get("dueAmount")) + due_delta),
            "totalAmount": max(0.0, to_float(account.get("totalAmount")) + total_delta),
            "hours": max(0.0, to_float(account.get("hours")) + hours_delta),
        }
        self.store.update(path, {
            **values,
            "updatedAt": self.clock(),
            **with_applied(account, leg_id),
        })
        logger.info(
            f"顾客账户更新 [{reason}] customer={customer_id}: "
            f"dueAmount={values['dueAmount']} totalAmount={values['totalAmount']} "
            f"hours={values['hours']}"
        )
        return values

    def apply_leg(self, leg: Dict[str, Any]) -> Dict[str, float]:
        return self.adjust(
            leg["customerId"],
            due_delta=to_float(leg.get("dueDelta")),
            total_delta=to_float(leg.get("totalDelta")),
            hours_delta=to_float(leg.get("hoursDelta")),
            reason=leg.get("reason", ""),
            leg_id=leg.get("legId"),
        )
