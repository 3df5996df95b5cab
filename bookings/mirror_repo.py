"""顾客镜像仓库。

镜像是主预约在 ``users/{customerId}/bookings/{bookingId}`` 下的副本，
供顾客端读取。镜像写入失败只记录日志，不影响主记录。
"""
from typing import Any, Callable, Dict, Optional

from loguru import logger

from database.store import DocumentStore

from .paths import booking_path, mirror_path
from .records import utcnow_iso


class MirrorRepository:
    """镜像仓库。

    Args:
        store: 文档存储。
        clock: 返回 ISO 时间字符串的时钟函数。
    """

    def __init__(self, store: DocumentStore,
                 clock: Callable[[], str] = utcnow_iso) -> None:
        self.store = store
        self.clock = clock

    def get_mirror(self, booking_id: str,
                   customer_id: str) -> Optional[Dict[str, Any]]:
        return self.store.get(mirror_path(booking_id, customer_id))

    def create_mirror(self, booking_id: str, customer_id: str,
                      snapshot: Dict[str, Any],
                      **stamps: Any) -> bool:
        """用主记录快照整体覆盖镜像。

        Args:
            booking_id: 预约ID。
            customer_id: 顾客ID。
            snapshot: 主记录字段。
            **stamps: 额外写入的时间戳字段（如 lastSyncAt）。

        Returns:
            写入成功返回 True，失败返回 False（已记录日志）。
        """
        now = self.clock()
        data = dict(snapshot)
        data["createdAt"] = snapshot.get("createdAt") or now
        data["mirroredAt"] = now
        data.update(stamps)
        try:
            self.store.set(mirror_path(booking_id, customer_id), data)
        except Exception as e:
            logger.error(
                f"镜像创建失败: booking={booking_id} customer={customer_id}: {e}"
            )
            return False
        logger.debug(f"镜像已写入: users/{customer_id}/bookings/{booking_id}")
        return True

    def update_mirror(self, booking_id: str, customer_id: str,
                      fields: Dict[str, Any]) -> None:
        """部分更新镜像。

        Raises:
            DocumentNotFound: 镜像不存在。
        """
        self.store.update(mirror_path(booking_id, customer_id), fields)

    def delete_mirror(self, booking_id: str, customer_id: str) -> bool:
        """删除镜像（幂等）。"""
        try:
            self.store.delete(mirror_path(booking_id, customer_id))
        except Exception as e:
            logger.error(
                f"镜像删除失败: booking={booking_id} customer={customer_id}: {e}"
            )
            return False
        return True

    def repair_mirror(self, booking_id: str, customer_id: str,
                      master: Optional[Dict[str, Any]] = None) -> bool:
        """从主记录重建镜像。

        Args:
            booking_id: 预约ID。
            customer_id: 顾客ID。
            master: 已读取的主记录；为 None 时重新读取。

        Returns:
            主记录存在且镜像写入成功返回 True。
        """
        if master is None:
            master = self.store.get(booking_path(booking_id))
        if master is None:
            logger.error(f"无法修复镜像，主预约不存在: {booking_id}")
            return False
        ok = self.create_mirror(booking_id, customer_id, master,
                                lastSyncAt=self.clock())
        if ok:
            logger.info(f"镜像已修复: booking={booking_id} customer={customer_id}")
        return ok

    def force_sync(self, booking_id: str, customer_id: str) -> bool:
        """强制用主记录覆盖镜像，并写入 forceSyncedAt。"""
        master = self.store.get(booking_path(booking_id))
        if master is None:
            logger.error(f"强制同步失败，主预约不存在: {booking_id}")
            return False
        now = self.clock()
        return self.create_mirror(booking_id, customer_id, master,
                                  lastSyncAt=now, forceSyncedAt=now)
