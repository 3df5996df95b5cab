"""定时任务调度器 - 通用的任务调度框架

具体的任务逻辑（如意图补偿）通过回调函数注入
"""
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from typing import Callable, Optional
from loguru import logger
from config.settings import settings


class Scheduler:
    """定时任务调度器

    通用的任务调度框架，不包含具体的业务逻辑
    业务逻辑通过回调函数注入，保持核心层的独立性
    """

    def __init__(self, scheduler: Optional[BackgroundScheduler] = None):
        """初始化调度器

        Args:
            scheduler: 外部提供的 APScheduler 实例（可选）
        """
        self.scheduler = scheduler or BackgroundScheduler(timezone="UTC")

    def add_interval_task(
        self,
        task_func: Callable,
        minutes: int = 5,
        task_id: str = 'interval_task',
        task_name: str = '周期任务'
    ):
        """添加周期任务

        Args:
            task_func: 任务函数
            minutes: 执行间隔（分钟）
            task_id: 任务ID
            task_name: 任务名称
        """
        self.scheduler.add_job(
            task_func,
            trigger=IntervalTrigger(minutes=minutes),
            id=task_id,
            name=task_name,
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        logger.info(f"Added interval task '{task_name}' every {minutes} min")

    def add_daily_task(
        self,
        task_func: Callable,
        hour: int = 3,
        minute: int = 0,
        task_id: str = 'daily_task',
        task_name: str = '每日任务'
    ):
        """添加每日定时任务

        Args:
            task_func: 任务函数
            hour: 小时 (0-23)
            minute: 分钟 (0-59)
            task_id: 任务ID
            task_name: 任务名称
        """
        self.scheduler.add_job(
            task_func,
            trigger=CronTrigger(hour=hour, minute=minute),
            id=task_id,
            name=task_name,
            replace_existing=True
        )
        logger.info(f"Added daily task '{task_name}' at {hour:02d}:{minute:02d}")

    def get_job(self, job_id: str):
        return self.scheduler.get_job(job_id)

    def start(self):
        """启动调度器"""
        self.scheduler.start()
        logger.info("Scheduler started")

    def stop(self):
        """停止调度器"""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")

    def remove_job(self, job_id: str):
        """移除任务

        Args:
            job_id: 任务ID
        """
        try:
            self.scheduler.remove_job(job_id)
            logger.info(f"Job {job_id} removed")
        except Exception as e:
            logger.warning(f"Failed to remove job {job_id}: {e}")


def schedule_reconciliation(scheduler: Scheduler, worker,
                            minutes: Optional[int] = None) -> None:
    """注册意图补偿任务，并每天清理已完成的意图记录

    Args:
        scheduler: 调度器
        worker: ReconciliationWorker 实例
        minutes: 补偿间隔，默认取 settings.reconcile_interval_minutes
    """
    def _reconcile():
        try:
            worker.run_once()
        except Exception as e:
            logger.error(f"Reconciliation run failed: {e}")

    def _purge():
        try:
            purged = worker.purge_completed()
            logger.info(f"Purged {purged} completed sync intents")
        except Exception as e:
            logger.error(f"Purging sync intents failed: {e}")

    scheduler.add_interval_task(
        _reconcile,
        minutes=minutes or settings.reconcile_interval_minutes,
        task_id='reconcile_sync_intents',
        task_name='同步意图补偿'
    )
    scheduler.add_daily_task(
        _purge,
        task_id='purge_sync_intents',
        task_name='清理已完成意图'
    )
