"""SQLAlchemy ORM 模型定义。

文档存储落地为一张通用的 documents 表：
- path: 完整文档路径（主键），如 users/u1/bookings/b1
- collection: 所属集合路径，用于列举与查询
- data: 文档字段（JSON）
"""
from typing import Dict, Any
from datetime import datetime

from sqlalchemy import Column, String, DateTime, JSON
from sqlalchemy.orm import declarative_base

# SQLAlchemy declarative base，所有模型都继承自此类
Base = declarative_base()

# 允许使用旧式类型注解
Base.__allow_unmapped__ = True


class Document(Base):
    """文档表模型。

    每一行保存一个文档。集合之间的层级关系完全由 path 表达，
    不使用外键，与文档数据库的语义保持一致。

    Attributes:
        path: 文档完整路径，主键，最大长度512字符。
        collection: 集合路径，建索引，用于按集合列举。
        doc_id: 文档ID（路径最后一段）。
        data: 文档字段，JSON。
        created_at: 首次写入时间。
        updated_at: 最近一次写入时间。
    """
    __tablename__ = "documents"

    path: str = Column(String(512), primary_key=True)
    collection: str = Column(String(512), nullable=False, index=True)
    doc_id: str = Column(String(128), nullable=False)
    data: Dict[str, Any] = Column(JSON, default={})
    created_at: datetime = Column(DateTime, default=datetime.utcnow)
    updated_at: datetime = Column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    def __repr__(self) -> str:
        return f"<Document {self.path}>"
