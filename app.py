#!/usr/bin/env python3
"""预约同步服务 - 命令行入口

提供：
1. 数据库初始化
2. 主记录与镜像的一致性校验、报告和修复
3. 同步意图补偿（单次执行或常驻后台定时执行）

使用方式：
    python app.py init-db

    # 校验单个预约
    python app.py validate BOOKING_ID CUSTOMER_ID

    # 修复单个预约，或扫描修复全部
    python app.py repair BOOKING_ID CUSTOMER_ID
    python app.py repair --all

    # 执行一轮补偿 / 常驻运行
    python app.py reconcile
    python app.py run-worker --interval 5

环境变量（在 .env 文件中配置，参考 .env.example）：
    DATABASE_URL                数据库连接地址
    LOG_LEVEL                   日志级别（默认 INFO）
    LOG_FILE                    日志文件路径（可选）
    RECONCILE_INTERVAL_MINUTES  补偿间隔（默认 5 分钟）
"""
import argparse
import json
import signal
import sys
import threading

from loguru import logger


def _print_json(data):
    print(json.dumps(data, ensure_ascii=False, indent=2, default=str))


def _cleanup(scheduler, db):
    """统一资源清理函数。"""
    logger.info("正在清理资源...")

    if scheduler is not None:
        try:
            scheduler.stop()
        except Exception as e:
            logger.warning(f"停止调度器时出错: {e}")

    if db is not None:
        try:
            db.close()
        except Exception as e:
            logger.warning(f"关闭数据库连接时出错: {e}")


def cmd_init_db(db, args):
    db.create_tables()
    result = db.ledger.initialize_crew_ledgers()
    logger.info(f"数据库已初始化: {db.database_url}")
    _print_json(result)
    return 0


def cmd_validate(db, args):
    result = db.validate_sync(args.booking_id, args.customer_id)
    _print_json(result)
    return 0 if result["in_sync"] else 1


def cmd_sync_status(db, args):
    _print_json(db.get_sync_status(args.booking_id, args.customer_id))
    return 0


def cmd_repair(db, args):
    if args.all:
        _print_json(db.repair_all(args.customer))
        return 0
    if not args.booking_id or not args.customer_id:
        logger.error("需要提供 BOOKING_ID 和 CUSTOMER_ID，或使用 --all")
        return 2
    ok = db.repair_mirror(args.booking_id, args.customer_id)
    _print_json({"repaired": ok})
    return 0 if ok else 1


def cmd_reconcile(db, args):
    _print_json(db.run_reconciliation())
    return 0


def cmd_run_worker(db, args):
    from business.scheduler import Scheduler, schedule_reconciliation

    scheduler = Scheduler()
    schedule_reconciliation(scheduler, db.worker, minutes=args.interval)
    shutdown_event = threading.Event()

    def signal_handler(signum, frame):
        logger.info(f"收到信号 {signum}，正在关闭服务...")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, signal_handler)

    try:
        scheduler.start()
        # 启动时先补偿一轮
        db.run_reconciliation()
        logger.info("补偿工作器已启动，按 Ctrl+C 停止")
        shutdown_event.wait()
    finally:
        _cleanup(scheduler, None)
    return 0


def build_parser():
    parser = argparse.ArgumentParser(description="预约镜像同步服务")
    parser.add_argument("--db", default=None, help="数据库连接 URL")
    parser.add_argument("--log-level", default=None, help="日志级别")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="创建数据表并补齐工作人员账本字段")

    for name, help_text in (("validate", "校验主记录与镜像"),
                            ("sync-status", "输出同步状态报告")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("booking_id")
        p.add_argument("customer_id")

    p = sub.add_parser("repair", help="从主记录修复镜像")
    p.add_argument("booking_id", nargs="?")
    p.add_argument("customer_id", nargs="?")
    p.add_argument("--all", action="store_true", help="扫描并修复全部不一致的镜像")
    p.add_argument("--customer", default=None, help="配合 --all 只扫描某位顾客")

    sub.add_parser("reconcile", help="执行一轮同步意图补偿")

    p = sub.add_parser("run-worker", help="常驻运行补偿工作器")
    p.add_argument("--interval", type=int, default=None, help="补偿间隔（分钟）")
    return parser


COMMANDS = {
    "init-db": cmd_init_db,
    "validate": cmd_validate,
    "sync-status": cmd_sync_status,
    "repair": cmd_repair,
    "reconcile": cmd_reconcile,
    "run-worker": cmd_run_worker,
}


def main(argv=None):
    args = build_parser().parse_args(argv)

    from config.logging_config import setup_logging
    setup_logging(level=args.log_level)

    db = None
    try:
        from database.manager import DatabaseManager
        from bookings.notifications import LoggingNotifier
        db = DatabaseManager(args.db, notifier=LoggingNotifier())
        db.create_tables()
        return COMMANDS[args.command](db, args)
    except KeyboardInterrupt:
        logger.info("收到键盘中断信号")
        return 130
    finally:
        _cleanup(None, db)


if __name__ == "__main__":
    sys.exit(main())
