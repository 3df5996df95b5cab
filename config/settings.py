"""全局配置管理

所有可配置项均通过 .env 文件或环境变量设置，运行时自动加载到此处。

使用方式：
    1. 复制 .env.example 为 .env 并按需修改
    2. 或直接设置环境变量（如 DATABASE_URL、LEDGER_MAX_WORKERS）
"""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """应用配置 - 所有字段均可通过 .env 或环境变量覆盖"""

    # ========== 数据库 ==========
    database_url: str = "sqlite:///data/bookings.db"

    # ========== 工作人员账本 ==========
    # 同一次状态变更涉及多个工作人员时，并发更新账本的线程数
    ledger_max_workers: int = 4

    # ========== 补偿（对账）任务 ==========
    reconcile_interval_minutes: int = 5
    reconcile_batch_size: int = 100
    reconcile_max_attempts: int = 5

    # ========== 日志 ==========
    log_level: str = "INFO"
    log_file: Optional[str] = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


# 全局配置实例
settings = Settings()
