"""状态同步引擎。

所有修改 assignedStatus 的主记录写入都要配对一次 sync_status 调用，
把状态和全部变更字段同步到镜像。镜像缺失时先从主记录修复。
"""
from typing import Any, Callable, Dict, Optional

from loguru import logger

from database.store import DocumentStore

from .errors import MasterNotFound
from .mirror_repo import MirrorRepository
from .paths import BOOKINGS, booking_path
from .records import CREW_FIELDS, PAYMENT_FIELDS, utcnow_iso
from .status import AssignedStatus


class StatusSyncEngine:
    """主记录到镜像的状态同步。

    Args:
        store: 文档存储。
        mirrors: 镜像仓库。
        clock: 时钟函数。
    """

    def __init__(self, store: DocumentStore, mirrors: MirrorRepository,
                 clock: Callable[[], str] = utcnow_iso) -> None:
        self.store = store
        self.mirrors = mirrors
        self.clock = clock

    def sync_status(self, booking_id: str, customer_id: str,
                    new_status: str,
                    auxiliary_fields: Optional[Dict[str, Any]] = None,
                    synced_by: str = "status-sync") -> bool:
        """把新状态及附加字段同步到镜像。

        Args:
            booking_id: 预约ID。
            customer_id: 顾客ID。
            new_status: 新的 assignedStatus。
            auxiliary_fields: 随状态一起同步的其他变更字段。
            synced_by: 写入镜像的 syncedBy 标记。

        Returns:
            镜像更新成功返回 True；镜像修复或更新失败返回 False。

        Raises:
            MasterNotFound: 主预约不存在。
        """
        status = AssignedStatus.parse(new_status).value
        fields = dict(auxiliary_fields or {})
        fields["assignedStatus"] = status
        fields["syncedBy"] = synced_by
        return self._push(booking_id, customer_id, fields)

    def sync_booking_update(self, booking_id: str, customer_id: str,
                            fields: Dict[str, Any]) -> bool:
        """同步不涉及状态变化的字段（如日期、地址）。

        Raises:
            MasterNotFound: 主预约不存在。
        """
        return self._push(booking_id, customer_id, dict(fields))

    def _push(self, booking_id: str, customer_id: str,
              fields: Dict[str, Any]) -> bool:
        master = self.store.get(booking_path(booking_id))
        if master is None:
            raise MasterNotFound(booking_id)

        if self.mirrors.get_mirror(booking_id, customer_id) is None:
            logger.warning(
                f"镜像缺失，尝试修复: booking={booking_id} customer={customer_id}"
            )
            if not self.mirrors.repair_mirror(booking_id, customer_id, master):
                logger.warning(
                    f"镜像修复失败: booking={booking_id} customer={customer_id} "
                    f"status={fields.get('assignedStatus')}"
                )
                return False

        now = self.clock()
        fields["updatedAt"] = now
        fields["lastSyncAt"] = now
        try:
            self.mirrors.update_mirror(booking_id, customer_id, fields)
        except Exception as e:
            logger.warning(
                f"镜像更新失败: booking={booking_id} customer={customer_id} "
                f"status={fields.get('assignedStatus')}: {e}"
            )
            return False
        logger.debug(
            f"镜像已同步: booking={booking_id} status={fields.get('assignedStatus')}"
        )
        return True

    def resync_customer(self, customer_id: str) -> Dict[str, Any]:
        """重新同步某位顾客的全部预约。

        Returns:
            {"total": 总数, "synced": 成功数, "errors": [失败的预约ID]}
        """
        bookings = self.store.query(BOOKINGS, "customerId", customer_id)
        synced = 0
        errors = []
        for booking_id, data in bookings:
            fields = {k: data[k] for k in CREW_FIELDS + PAYMENT_FIELDS if k in data}
            try:
                ok = self.sync_status(booking_id, customer_id,
                                      data.get("assignedStatus"), fields,
                                      synced_by="resync")
            except Exception as e:
                logger.warning(f"重新同步失败: booking={booking_id}: {e}")
                ok = False
            if ok:
                synced += 1
            else:
                errors.append(booking_id)
        logger.info(
            f"顾客 {customer_id} 重新同步完成: {synced}/{len(bookings)}"
        )
        return {"total": len(bookings), "synced": synced, "errors": errors}
