"""同步意图（outbox）与补偿重放。

主记录写入和镜像、账本写入之间没有跨文档事务。每次状态迁移都把主记录
变更和一条 ``syncIntents/{id}`` 意图记录放进同一个批量写入中原子提交，
随后逐步执行意图里的各个步骤（leg），并把每一步标记为：

- done: 已完成
- skipped: 目标不存在（工作人员/顾客已删除），跳过
- failed: 失败，留待 ReconciliationWorker 重放

同一次迁移中可并行的步骤（不同工作人员的账本）在线程池中并发执行。
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from loguru import logger

from database.store import DocumentStore, new_document_id

from .errors import (
    CrewNotFound, CustomerNotFound, MasterNotFound,
    PartialSyncFailure,
)
from .paths import SYNC_INTENTS, booking_path, intent_path
from .records import utcnow_iso

LEG_PENDING = "pending"
LEG_DONE = "done"
LEG_SKIPPED = "skipped"
LEG_FAILED = "failed"

INTENT_PENDING = "pending"
INTENT_DONE = "done"
INTENT_FAILED = "failed"
INTENT_ABANDONED = "abandoned"

MIRROR_KIND = "mirror"

Handler = Callable[[Dict[str, Any], Dict[str, Any]], Any]


def mirror_sync_leg(status: str,
                    fields: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {"kind": MIRROR_KIND, "op": "sync", "status": status,
            "fields": dict(fields or {})}


def mirror_repair_leg() -> Dict[str, Any]:
    return {"kind": MIRROR_KIND, "op": "repair"}


def mirror_delete_leg() -> Dict[str, Any]:
    return {"kind": MIRROR_KIND, "op": "delete"}


@dataclass
class TransitionResult:
    """一次迁移的结果。

    Attributes:
        booking_id: 预约ID。
        customer_id: 顾客ID。
        status: 迁移后的 assignedStatus。
        booking: 迁移后的主记录（删除时为 None）。
        intent_id: 意图记录ID。
        legs: 各步骤及其执行状态。
        failure: 存在失败步骤时的 PartialSyncFailure。
    """
    booking_id: str
    customer_id: Optional[str]
    status: Optional[str]
    booking: Optional[Dict[str, Any]] = None
    intent_id: Optional[str] = None
    legs: List[Dict[str, Any]] = field(default_factory=list)
    failure: Optional[PartialSyncFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @property
    def failed_legs(self) -> List[Dict[str, Any]]:
        return [leg for leg in self.legs if leg.get("state") == LEG_FAILED]

    @property
    def skipped_legs(self) -> List[Dict[str, Any]]:
        return [leg for leg in self.legs if leg.get("state") == LEG_SKIPPED]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bookingId": self.booking_id,
            "customerId": self.customer_id,
            "status": self.status,
            "intentId": self.intent_id,
            "ok": self.ok,
            "failedLegs": self.failed_legs,
            "skippedLegs": self.skipped_legs,
        }


class SyncOutbox:
    """意图记录与步骤执行器。

    Args:
        store: 文档存储。
        clock: 时钟函数。
        max_workers: 并行步骤的线程数上限。
    """

    SKIPPABLE = (CrewNotFound, CustomerNotFound, MasterNotFound)

    def __init__(self, store: DocumentStore,
                 clock: Callable[[], str] = utcnow_iso,
                 max_workers: int = 4) -> None:
        self.store = store
        self.clock = clock
        self.max_workers = max(1, max_workers)
        self._handlers: Dict[str, Handler] = {}
        self._parallel: Set[str] = set()

    def register(self, kind: str, handler: Handler,
                 parallel: bool = False) -> None:
        """注册步骤处理器。

        Args:
            kind: 步骤类型（mirror/ledger/account）。
            handler: ``handler(intent, leg)``，返回 False 表示失败。
            parallel: 同类步骤是否可以并发执行。
        """
        self._handlers[kind] = handler
        if parallel:
            self._parallel.add(kind)

    # ========== 提交 ==========

    def commit(self, booking_id: str, customer_id: Optional[str],
               operation: str, status: Optional[str],
               legs: List[Dict[str, Any]],
               master_fields: Optional[Dict[str, Any]] = None,
               mode: str = "update") -> TransitionResult:
        """原子写入主记录与意图，然后执行各步骤。

        Args:
            booking_id: 预约ID。
            customer_id: 顾客ID。
            operation: 操作名称，用于日志和审计。
            status: 迁移后的 assignedStatus。
            legs: 待执行的步骤列表。
            master_fields: 主记录字段（update 时为部分字段，create 时为全量）。
            mode: ``update`` / ``create`` / ``delete``。

        Returns:
            TransitionResult。
        """
        now = self.clock()
        intent_id = new_document_id()
        intent = {
            "bookingId": booking_id,
            "customerId": customer_id,
            "operation": operation,
            "status": status,
            "legs": [dict(leg, state=LEG_PENDING, legId=f"{intent_id}-{i}")
                     for i, leg in enumerate(legs)],
            "state": INTENT_PENDING,
            "attempts": 0,
            "createdAt": now,
            "updatedAt": now,
        }

        with self.store.batch() as batch:
            if mode == "create":
                batch.set(booking_path(booking_id), master_fields or {})
            elif mode == "delete":
                batch.delete(booking_path(booking_id))
            elif master_fields:
                batch.update(booking_path(booking_id), master_fields)
            batch.set(intent_path(intent_id), intent)
        logger.debug(f"意图已提交: {operation} booking={booking_id} intent={intent_id}")

        intent = self.execute(intent_id, intent)
        booking = None if mode == "delete" else self.store.get(booking_path(booking_id))
        failure = None
        if intent["state"] != INTENT_DONE:
            failure = self._failure(intent_id, intent)
        return TransitionResult(
            booking_id=booking_id,
            customer_id=customer_id,
            status=status,
            booking=booking,
            intent_id=intent_id,
            legs=intent["legs"],
            failure=failure,
        )

    # ========== 执行 ==========

    def execute(self, intent_id: str, intent: Dict[str, Any]) -> Dict[str, Any]:
        """执行意图中所有未完成（pending/failed）的步骤并回写状态。"""
        legs = intent["legs"]
        todo = [i for i, leg in enumerate(legs)
                if leg.get("state") in (LEG_PENDING, LEG_FAILED)]
        serial = [i for i in todo if legs[i]["kind"] not in self._parallel]
        parallel = [i for i in todo if legs[i]["kind"] in self._parallel]

        for i in serial:
            legs[i] = self._run_leg(intent, legs[i])
        if len(parallel) == 1:
            legs[parallel[0]] = self._run_leg(intent, legs[parallel[0]])
        elif parallel:
            workers = min(len(parallel), self.max_workers)
            with ThreadPoolExecutor(max_workers=workers) as pool:
                results = list(pool.map(
                    lambda i: self._run_leg(intent, legs[i]), parallel
                ))
            for i, leg in zip(parallel, results):
                legs[i] = leg

        failed = [leg for leg in legs if leg.get("state") == LEG_FAILED]
        intent["state"] = INTENT_FAILED if failed else INTENT_DONE
        intent["attempts"] = intent.get("attempts", 0) + 1
        intent["updatedAt"] = self.clock()
        try:
            self.store.update(intent_path(intent_id), {
                "legs": legs,
                "state": intent["state"],
                "attempts": intent["attempts"],
                "updatedAt": intent["updatedAt"],
            })
        except Exception as e:
            # 存储中的意图仍为 pending，之后会被重放；已应用的账本步骤按 legId 跳过
            logger.error(f"意图状态回写失败 intent={intent_id}: {e}")
            intent["state"] = INTENT_FAILED
            intent["persistError"] = str(e)

        if failed:
            logger.warning(
                f"部分同步失败: booking={intent.get('bookingId')} "
                f"customer={intent.get('customerId')} status={intent.get('status')} "
                f"failed_legs={len(failed)} intent={intent_id}"
            )
        return intent

    def _run_leg(self, intent: Dict[str, Any],
                 leg: Dict[str, Any]) -> Dict[str, Any]:
        leg = dict(leg)
        handler = self._handlers.get(leg.get("kind"))
        if handler is None:
            leg["state"] = LEG_FAILED
            leg["error"] = f"no handler for leg kind {leg.get('kind')!r}"
            return leg
        try:
            ok = handler(intent, leg)
        except self.SKIPPABLE as e:
            logger.warning(f"步骤跳过 [{leg['kind']}] booking={intent.get('bookingId')}: {e}")
            leg["state"] = LEG_SKIPPED
            leg["error"] = str(e)
            return leg
        except Exception as e:
            logger.warning(f"步骤失败 [{leg['kind']}] booking={intent.get('bookingId')}: {e}")
            leg["state"] = LEG_FAILED
            leg["error"] = str(e)
            return leg
        if ok is False:
            leg["state"] = LEG_FAILED
            leg["error"] = "handler reported failure"
        else:
            leg["state"] = LEG_DONE
            leg.pop("error", None)
        return leg

    @staticmethod
    def _failure(intent_id: str, intent: Dict[str, Any]) -> PartialSyncFailure:
        failed = [leg for leg in intent["legs"] if leg.get("state") == LEG_FAILED]
        if intent.get("persistError"):
            failed.append({"kind": "intent", "op": "persist",
                           "state": LEG_FAILED, "error": intent["persistError"]})
        return PartialSyncFailure(
            booking_id=intent.get("bookingId"),
            customer_id=intent.get("customerId"),
            status=intent.get("status"),
            failed_legs=failed,
            intent_id=intent_id,
        )

    # ========== 查询 ==========

    def get_intent(self, intent_id: str) -> Optional[Dict[str, Any]]:
        return self.store.get(intent_path(intent_id))

    def list_intents(self, state: Optional[str] = None) -> List[Dict[str, Any]]:
        """列出意图记录（按创建时间升序），可按状态过滤。"""
        intents = [
            {"id": intent_id, **data}
            for intent_id, data in self.store.list(SYNC_INTENTS)
            if state is None or data.get("state") == state
        ]
        intents.sort(key=lambda d: d.get("createdAt") or "")
        return intents


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


class ReconciliationWorker:
    """补偿工作器：重放失败或卡住的意图。

    Args:
        outbox: SyncOutbox 实例。
        batch_size: 每轮最多处理的意图数。
        max_attempts: 达到该尝试次数后放弃（abandoned）。
        stale_after_seconds: pending 状态超过该时长视为中断，需要重放。
    """

    def __init__(self, outbox: SyncOutbox, batch_size: int = 100,
                 max_attempts: int = 5, stale_after_seconds: int = 300) -> None:
        self.outbox = outbox
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self.stale_after_seconds = stale_after_seconds

    def _is_stale(self, intent: Dict[str, Any], now: Optional[datetime]) -> bool:
        updated = _parse_time(intent.get("updatedAt"))
        if now is None or updated is None:
            return False
        return (now - updated).total_seconds() >= self.stale_after_seconds

    def candidates(self) -> List[Dict[str, Any]]:
        now = _parse_time(self.outbox.clock())
        found = []
        for intent in self.outbox.list_intents():
            state = intent.get("state")
            if state == INTENT_FAILED or (
                    state == INTENT_PENDING and self._is_stale(intent, now)):
                found.append(intent)
        return found[:self.batch_size]

    def run_once(self) -> Dict[str, int]:
        """执行一轮补偿。

        Returns:
            {"processed", "recovered", "failed", "abandoned"} 计数。
        """
        stats = {"processed": 0, "recovered": 0, "failed": 0, "abandoned": 0}
        for intent in self.candidates():
            intent_id = intent.pop("id")
            stats["processed"] += 1
            try:
                intent = self.outbox.execute(intent_id, intent)
            except Exception as e:
                logger.error(f"补偿执行异常 intent={intent_id}: {e}")
                stats["failed"] += 1
                continue

            if intent["state"] == INTENT_DONE:
                stats["recovered"] += 1
                logger.info(f"意图已补偿完成: intent={intent_id} booking={intent.get('bookingId')}")
            elif intent.get("attempts", 0) >= self.max_attempts:
                try:
                    self.outbox.store.update(intent_path(intent_id), {
                        "state": INTENT_ABANDONED,
                        "updatedAt": self.outbox.clock(),
                    })
                except Exception as e:
                    logger.error(f"意图放弃状态回写失败 intent={intent_id}: {e}")
                    stats["failed"] += 1
                    continue
                stats["abandoned"] += 1
                logger.error(
                    f"意图重试次数耗尽，已放弃: intent={intent_id} "
                    f"booking={intent.get('bookingId')} customer={intent.get('customerId')}"
                )
            else:
                stats["failed"] += 1

        if stats["processed"]:
            logger.info(f"补偿轮次完成: {stats}")
        return stats

    def purge_completed(self) -> int:
        """删除已完成的意图记录。"""
        done = self.outbox.list_intents(state=INTENT_DONE)
        for intent in done:
            self.outbox.store.delete(intent_path(intent["id"]))
        return len(done)
