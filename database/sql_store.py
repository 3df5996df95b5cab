"""基于 SQLAlchemy 的文档存储实现。

把 DocumentStore 接口映射到 documents 表，每个方法使用独立会话；
batch() 提交的操作在同一个事务中完成。
"""
import copy
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from .connection import DatabaseConnection
from .models import Document
from .store import DocumentStore, DocumentNotFound, split_path


class SqlDocumentStore(DocumentStore):
    """SQLAlchemy 文档存储。

    Args:
        conn: 数据库连接管理器。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        self.conn = conn

    def _get_session(self) -> Session:
        return self.conn.get_session()

    @staticmethod
    def _find(session: Session, path: str) -> Optional[Document]:
        collection, doc_id = split_path(path)
        return session.get(Document, f"{collection}/{doc_id}")

    def get(self, path: str) -> Optional[Dict[str, Any]]:
        with self._get_session() as session:
            doc = self._find(session, path)
            if doc is None:
                return None
            return copy.deepcopy(doc.data or {})

    def set(self, path: str, fields: Dict[str, Any],
            merge: bool = False) -> None:
        with self._get_session() as session:
            self._set(session, path, fields, merge)
            session.commit()

    def update(self, path: str, fields: Dict[str, Any]) -> None:
        with self._get_session() as session:
            self._update(session, path, fields)
            session.commit()

    def delete(self, path: str) -> None:
        with self._get_session() as session:
            self._delete(session, path)
            session.commit()

    def list(self, collection: str) -> List[Tuple[str, Dict[str, Any]]]:
        with self._get_session() as session:
            docs = session.query(Document).filter(
                Document.collection == collection.strip("/")
            ).order_by(Document.created_at, Document.path).all()
            return [(d.doc_id, copy.deepcopy(d.data or {})) for d in docs]

    def _apply_batch(self, ops) -> None:
        with self._get_session() as session:
            try:
                for op, path, fields, merge in ops:
                    if op == "set":
                        self._set(session, path, fields, merge)
                    elif op == "update":
                        self._update(session, path, fields)
                    else:
                        self._delete(session, path)
                    session.flush()
                session.commit()
            except Exception:
                session.rollback()
                raise

    # ========== 会话内操作 ==========

    def _set(self, session: Session, path: str,
             fields: Dict[str, Any], merge: bool) -> None:
        collection, doc_id = split_path(path)
        doc = self._find(session, path)
        if doc is None:
            session.add(Document(
                path=f"{collection}/{doc_id}",
                collection=collection,
                doc_id=doc_id,
                data=copy.deepcopy(fields),
            ))
        elif merge:
            # 重新赋值整个字典，SQLAlchemy 才能检测到 JSON 变更
            doc.data = {**(doc.data or {}), **copy.deepcopy(fields)}
        else:
            doc.data = copy.deepcopy(fields)

    def _update(self, session: Session, path: str,
                fields: Dict[str, Any]) -> None:
        doc = self._find(session, path)
        if doc is None:
            raise DocumentNotFound(path)
        doc.data = {**(doc.data or {}), **copy.deepcopy(fields)}

    def _delete(self, session: Session, path: str) -> None:
        doc = self._find(session, path)
        if doc is not None:
            session.delete(doc)
