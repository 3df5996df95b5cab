"""核心组件装配。

BookingCore 在同一个文档存储上组装镜像仓库、同步引擎、账本、
顾客账户、同步意图、状态机、生命周期、付款和校验器。
"""
from typing import Callable, Optional

from database.store import DocumentStore

from .accounts import CustomerAccountRepository
from .accounts import LEG_KIND as ACCOUNT_LEG
from .errors import MasterNotFound
from .ledger import CrewLedgerReconciler
from .ledger import LEG_KIND as LEDGER_LEG
from .lifecycle import BookingLifecycle
from .mirror_repo import MirrorRepository
from .notifications import Notifier, NullNotifier
from .outbox import MIRROR_KIND, ReconciliationWorker, SyncOutbox
from .paths import booking_path
from .payments import PaymentService
from .records import utcnow_iso
from .state_machine import AssignmentStateMachine
from .status_sync import StatusSyncEngine
from .validator import ConsistencyValidator


class BookingCore:
    """预约同步核心。

    Attributes:
        store: 文档存储。
        mirrors: 镜像仓库。
        sync: 状态同步引擎。
        ledger: 工作人员账本。
        accounts: 顾客账户。
        outbox: 同步意图执行器。
        assignments: 分配状态机。
        lifecycle: 预约生命周期。
        payments: 付款服务。
        validator: 一致性校验器。
        worker: 补偿工作器。
    """

    def __init__(self, store: DocumentStore,
                 notifier: Optional[Notifier] = None,
                 clock: Callable[[], str] = utcnow_iso,
                 max_workers: int = 4,
                 reconcile_batch_size: int = 100,
                 reconcile_max_attempts: int = 5) -> None:
        self.store = store
        self.clock = clock
        self.notifier = notifier or NullNotifier()

        self.mirrors = MirrorRepository(store, clock)
        self.sync = StatusSyncEngine(store, self.mirrors, clock)
        self.ledger = CrewLedgerReconciler(store, clock)
        self.accounts = CustomerAccountRepository(store, clock)

        self.outbox = SyncOutbox(store, clock, max_workers=max_workers)
        self.outbox.register(MIRROR_KIND, self._run_mirror_leg)
        self.outbox.register(ACCOUNT_LEG,
                             lambda intent, leg: self.accounts.apply_leg(leg))
        self.outbox.register(LEDGER_LEG,
                             lambda intent, leg: self.ledger.apply_leg(leg),
                             parallel=True)

        self.assignments = AssignmentStateMachine(store, self.outbox, self.notifier, clock)
        self.lifecycle = BookingLifecycle(store, self.outbox, self.notifier, clock)
        self.payments = PaymentService(store, self.outbox, self.notifier, clock)
        self.validator = ConsistencyValidator(store, self.mirrors)
        self.worker = ReconciliationWorker(
            self.outbox,
            batch_size=reconcile_batch_size,
            max_attempts=reconcile_max_attempts,
        )

    def _run_mirror_leg(self, intent, leg) -> bool:
        booking_id = intent["bookingId"]
        customer_id = intent["customerId"]
        op = leg.get("op")
        if op == "delete":
            return self.mirrors.delete_mirror(booking_id, customer_id)
        if op == "repair":
            return self.mirrors.repair_mirror(booking_id, customer_id)

        # 字段值在执行时从主记录读取，重放旧意图不会覆盖后续迁移的结果
        master = self.store.get(booking_path(booking_id))
        if master is None:
            raise MasterNotFound(booking_id)
        fields = {k: master[k] for k in (leg.get("fields") or {}) if k in master}
        status = master.get("assignedStatus") or leg["status"]
        return self.sync.sync_status(booking_id, customer_id, status, fields)
