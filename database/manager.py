"""数据库管理器：统一门面（Facade）。

DatabaseManager 是预约同步系统的统一入口，组合了文档存储和核心组件，
提供两套 API：

1. **组件访问**（细粒度）：
   通过 ``db.assignments``、``db.ledger`` 等属性直接访问核心组件，
   返回 TransitionResult 等对象，适合需要处理部分失败的场景。

2. **便捷方法**（粗粒度）：
   提供扁平化的方法（如 ``assign_crew()``、``validate_sync()``），
   返回字典/基本类型，适合 CLI 和上层调用。
"""
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from bookings.core import BookingCore
from bookings.notifications import Notifier
from bookings.paths import BOOKINGS, booking_path, crew_path, customer_path
from bookings.records import utcnow_iso
from config.settings import settings

from .connection import DatabaseConnection
from .sql_store import SqlDocumentStore
from .store import DocumentStore


class DatabaseManager:
    """数据库管理器：统一门面。

    Attributes:
        conn: 数据库连接管理器（使用注入的存储时为 None）。
        store: 文档存储。
        core: 核心组件集合。

    Example::

        db = DatabaseManager("sqlite:///data/bookings.db")
        db.create_tables()

        # 通过组件访问（返回 TransitionResult）
        result = db.assignments.assign_crew("b1", "crew-1")

        # 通过便捷方法访问（返回字典）
        report = db.get_sync_status("b1", "cust-1")
    """

    def __init__(self, database_url: Optional[str] = None,
                 store: Optional[DocumentStore] = None,
                 notifier: Optional[Notifier] = None,
                 clock: Callable[[], str] = utcnow_iso) -> None:
        """初始化数据库管理器。

        Args:
            database_url: 数据库连接URL。如果为None则使用settings配置。
            store: 直接注入的文档存储；提供时不创建数据库连接。
            notifier: 通知适配器。
            clock: 时钟函数。
        """
        # 基础设施层
        if store is None:
            self.conn: Optional[DatabaseConnection] = DatabaseConnection(database_url)
            self.store: DocumentStore = SqlDocumentStore(self.conn)
        else:
            self.conn = None
            self.store = store

        # 核心组件
        self.core = BookingCore(
            self.store,
            notifier=notifier,
            clock=clock,
            max_workers=settings.ledger_max_workers,
            reconcile_batch_size=settings.reconcile_batch_size,
            reconcile_max_attempts=settings.reconcile_max_attempts,
        )
        self.mirrors = self.core.mirrors
        self.sync = self.core.sync
        self.ledger = self.core.ledger
        self.accounts = self.core.accounts
        self.outbox = self.core.outbox
        self.assignments = self.core.assignments
        self.lifecycle = self.core.lifecycle
        self.payments = self.core.payments
        self.validator = self.core.validator
        self.worker = self.core.worker

    # ================================================================
    # 基础设施方法
    # ================================================================

    def create_tables(self) -> None:
        """创建所有数据库表（幂等操作）。"""
        if self.conn is not None:
            self.conn.create_tables()

    @property
    def database_url(self) -> Optional[str]:
        """数据库连接URL。"""
        return self.conn.database_url if self.conn is not None else None

    def close(self) -> None:
        """关闭数据库连接，释放所有资源。"""
        if self.conn is not None:
            self.conn.close()

    # ================================================================
    # 主数据写入
    # ================================================================

    def add_crew(self, crew_id: str, name: Optional[str] = None,
                 **fields: Any) -> Dict[str, Any]:
        """新增或覆盖工作人员（账本从 0 开始）。"""
        data = {"name": name or crew_id, "hours": 0.0, "totalAmount": 0.0}
        data.update(fields)
        self.store.set(crew_path(crew_id), data)
        return data

    def add_customer(self, customer_id: str, **fields: Any) -> Dict[str, Any]:
        """新增或覆盖顾客账户。"""
        data = {"dueAmount": 0.0, "totalAmount": 0.0, "hours": 0.0}
        data.update(fields)
        self.store.set(customer_path(customer_id), data)
        return data

    def create_booking(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """创建预约，返回结果字典（含 bookingId）。"""
        return self.lifecycle.create_booking(data).to_dict()

    def update_booking(self, booking_id: str,
                       changes: Dict[str, Any]) -> Dict[str, Any]:
        return self.lifecycle.update_booking(booking_id, changes).to_dict()

    def delete_booking(self, booking_id: str) -> Dict[str, Any]:
        return self.lifecycle.delete_booking(booking_id).to_dict()

    # ================================================================
    # 分配与付款
    # ================================================================

    def assign_crew(self, booking_id: str, crew_id: str) -> Dict[str, Any]:
        return self.assignments.assign_crew(booking_id, crew_id).to_dict()

    def unassign_crew(self, booking_id: str, crew_id: str) -> Dict[str, Any]:
        return self.assignments.unassign_crew(booking_id, crew_id).to_dict()

    def confirm_crew(self, booking_id: str, crew_id: str) -> Dict[str, Any]:
        return self.assignments.confirm_crew(booking_id, crew_id).to_dict()

    def unconfirm_crew(self, booking_id: str, crew_id: str) -> Dict[str, Any]:
        return self.assignments.unconfirm_crew(booking_id, crew_id).to_dict()

    def move_crew(self, booking_id: str, from_crew_id: str,
                  to_crew_id: str) -> Dict[str, Any]:
        return self.assignments.move_crew(
            booking_id, from_crew_id, to_crew_id).to_dict()

    def set_status(self, booking_id: str, status: str) -> Dict[str, Any]:
        return self.assignments.set_status(booking_id, status).to_dict()

    def update_payment_status(self, booking_id: str, payment_status: str,
                              paid_amount: Optional[float] = None
                              ) -> Dict[str, Any]:
        return self.payments.update_payment_status(
            booking_id, payment_status, paid_amount).to_dict()

    def settle_crew_payment(self, crew_id: str,
                            amount: Optional[float] = None,
                            notes: Optional[str] = None) -> Dict[str, Any]:
        return self.ledger.settle_payment(crew_id, amount, notes)

    # ================================================================
    # 便捷查询方法
    # ================================================================

    def get_booking(self, booking_id: str) -> Optional[Dict[str, Any]]:
        return self.store.get(booking_path(booking_id))

    def get_crew(self, crew_id: str) -> Optional[Dict[str, Any]]:
        return self.store.get(crew_path(crew_id))

    def get_customer_bookings(self, customer_id: str) -> List[Dict[str, Any]]:
        """顾客的全部主预约（按创建时间升序）。"""
        bookings = [
            {"id": booking_id, **data}
            for booking_id, data in self.store.query(BOOKINGS, "customerId", customer_id)
        ]
        bookings.sort(key=lambda b: b.get("createdAt") or "")
        return bookings

    def validate_sync(self, booking_id: str,
                      customer_id: str) -> Dict[str, Any]:
        return self.validator.validate(booking_id, customer_id).to_dict()

    def get_sync_status(self, booking_id: str,
                        customer_id: str) -> Dict[str, Any]:
        return self.validator.get_sync_status(booking_id, customer_id).to_dict()

    def repair_mirror(self, booking_id: str, customer_id: str) -> bool:
        return self.validator.repair(booking_id, customer_id)

    def force_sync(self, booking_id: str, customer_id: str) -> bool:
        return self.mirrors.force_sync(booking_id, customer_id)

    def resync_customer(self, customer_id: str) -> Dict[str, Any]:
        return self.sync.resync_customer(customer_id)

    def repair_all(self, customer_id: Optional[str] = None) -> Dict[str, int]:
        """修复所有不一致的镜像。

        Returns:
            {"checked": 不一致数量, "repaired": 修复成功数量}
        """
        drifted = self.validator.find_drift(customer_id)
        repaired = 0
        for result in drifted:
            if self.validator.repair(result.booking_id, result.customer_id):
                repaired += 1
        logger.info(f"镜像修复完成: {repaired}/{len(drifted)}")
        return {"checked": len(drifted), "repaired": repaired}

    def run_reconciliation(self) -> Dict[str, int]:
        """执行一轮意图补偿。"""
        return self.worker.run_once()
