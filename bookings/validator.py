"""主记录与镜像的一致性校验与修复。"""
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from loguru import logger

from database.store import DocumentStore

from .mirror_repo import MirrorRepository
from .paths import BOOKINGS, booking_path

IN_SYNC = "in_sync"
MIRROR_MISSING = "mirror_missing"
STATUS_MISMATCH = "status_mismatch"
MASTER_NOT_FOUND = "master_not_found"


@dataclass
class ValidationResult:
    """校验结果。"""
    booking_id: str
    customer_id: str
    in_sync: bool
    reason: str
    master_status: Optional[str] = None
    mirror_status: Optional[str] = None

    @property
    def message(self) -> str:
        if self.reason == MASTER_NOT_FOUND:
            return "Main booking not found"
        if self.reason == MIRROR_MISSING:
            return "User booking mirror is missing"
        if self.reason == STATUS_MISMATCH:
            return (f"Status mismatch: main={self.master_status}, "
                    f"user={self.mirror_status}")
        return "Bookings are in sync"

    def to_dict(self) -> Dict[str, Any]:
        return dict(asdict(self), message=self.message)


@dataclass
class SyncReport:
    """只读的同步状态报告。"""
    booking_id: str
    customer_id: str
    master_exists: bool
    mirror_exists: bool
    status_match: bool
    in_sync: bool
    master_status: Optional[str] = None
    mirror_status: Optional[str] = None
    last_sync: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ConsistencyValidator:
    """一致性校验器。

    Args:
        store: 文档存储。
        mirrors: 镜像仓库，用于修复。
    """

    def __init__(self, store: DocumentStore, mirrors: MirrorRepository) -> None:
        self.store = store
        self.mirrors = mirrors

    def validate(self, booking_id: str, customer_id: str) -> ValidationResult:
        """比较主记录与镜像的 assignedStatus。"""
        master = self.store.get(booking_path(booking_id))
        if master is None:
            return ValidationResult(booking_id, customer_id, False, MASTER_NOT_FOUND)

        master_status = master.get("assignedStatus")
        mirror = self.mirrors.get_mirror(booking_id, customer_id)
        if mirror is None:
            return ValidationResult(booking_id, customer_id, False, MIRROR_MISSING,
                                    master_status=master_status)

        mirror_status = mirror.get("assignedStatus")
        if master_status != mirror_status:
            return ValidationResult(booking_id, customer_id, False, STATUS_MISMATCH,
                                    master_status, mirror_status)
        return ValidationResult(booking_id, customer_id, True, IN_SYNC,
                                master_status, mirror_status)

    def get_sync_status(self, booking_id: str, customer_id: str) -> SyncReport:
        master = self.store.get(booking_path(booking_id))
        mirror = self.mirrors.get_mirror(booking_id, customer_id)
        master_status = master.get("assignedStatus") if master else None
        mirror_status = mirror.get("assignedStatus") if mirror else None
        status_match = master is not None and mirror is not None \
            and master_status == mirror_status
        last_sync = None
        if mirror:
            last_sync = mirror.get("lastSyncAt") or mirror.get("mirroredAt")
        return SyncReport(
            booking_id=booking_id,
            customer_id=customer_id,
            master_exists=master is not None,
            mirror_exists=mirror is not None,
            status_match=status_match,
            in_sync=status_match,
            master_status=master_status,
            mirror_status=mirror_status,
            last_sync=last_sync,
        )

    def repair(self, booking_id: str, customer_id: str) -> bool:
        """用主记录覆盖镜像（幂等）。"""
        return self.mirrors.repair_mirror(booking_id, customer_id)

    def find_drift(self, customer_id: Optional[str] = None
                   ) -> List[ValidationResult]:
        """扫描全部（或某位顾客的）预约，返回不一致的结果。"""
        if customer_id:
            bookings = self.store.query(BOOKINGS, "customerId", customer_id)
        else:
            bookings = self.store.list(BOOKINGS)
        drifted = []
        for booking_id, data in bookings:
            owner = data.get("customerId") or data.get("userId")
            if not owner:
                continue
            result = self.validate(booking_id, owner)
            if not result.in_sync:
                drifted.append(result)
        if drifted:
            logger.warning(f"发现 {len(drifted)}/{len(bookings)} 条预约与镜像不一致")
        return drifted
