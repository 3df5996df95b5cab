"""初始化数据库"""
import sys
import os

# 添加项目根目录到路径
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database.manager import DatabaseManager
from loguru import logger


def init_database(database_url=None, crews=None):
    """初始化数据库和工作人员账本

    Args:
        database_url: 数据库连接URL，默认使用 settings
        crews: 需要预先创建的工作人员名称列表
    """
    logger.info("Initializing database...")

    db = DatabaseManager(database_url)

    logger.info("Creating tables...")
    db.create_tables()

    for name in crews or []:
        if db.get_crew(name) is None:
            db.add_crew(name, name=name)
            logger.info(f"Created crew: {name}")

    # 旧数据补齐 hours/totalAmount
    result = db.ledger.initialize_crew_ledgers()
    logger.info(f"Crew ledgers initialized: {result}")

    logger.info("Database initialization completed!")
    db.close()
    return result


if __name__ == "__main__":
    init_database(crews=sys.argv[1:])
