"""文档存储接口。

核心逻辑只依赖本模块定义的 DocumentStore 接口，通过构造函数注入，
从而可以在 SQLAlchemy 实现（生产）与内存实现（测试）之间替换。

路径约定为以 "/" 分隔的层级路径，偶数段表示文档，奇数段表示集合：
    bookings/{bookingId}
    users/{customerId}/bookings/{bookingId}

存储只保证单文档读写的原子性；跨文档的原子写入只能通过 batch() 显式获得。
"""
import copy
import threading
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple


class StoreError(Exception):
    """存储层错误基类。"""


class DocumentNotFound(StoreError):
    """对不存在的文档执行 update。"""

    def __init__(self, path: str) -> None:
        super().__init__(f"Document not found: {path}")
        self.path = path


def split_path(path: str) -> Tuple[str, str]:
    """把文档路径拆成 (集合路径, 文档ID)。

    Raises:
        ValueError: 路径不是文档路径（段数不是偶数）。
    """
    segments = [s for s in path.strip("/").split("/") if s]
    if not segments or len(segments) % 2 != 0:
        raise ValueError(f"Not a document path: {path!r}")
    return "/".join(segments[:-1]), segments[-1]


def new_document_id() -> str:
    """生成一个新的文档 ID。"""
    return uuid.uuid4().hex[:20]


class WriteBatch:
    """批量写入。

    收集 set/update/delete 操作，commit 时一次性原子提交。
    作为上下文管理器使用时，正常退出自动提交，异常退出丢弃。

    Example::

        with store.batch() as batch:
            batch.set("bookings/b1", {...})
            batch.set("syncIntents/i1", {...})
    """

    def __init__(self, store: "DocumentStore") -> None:
        self._store = store
        self._ops: List[Tuple[str, str, Optional[Dict[str, Any]], bool]] = []

    def set(self, path: str, fields: Dict[str, Any],
            merge: bool = False) -> "WriteBatch":
        self._ops.append(("set", path, copy.deepcopy(fields), merge))
        return self

    def update(self, path: str, fields: Dict[str, Any]) -> "WriteBatch":
        self._ops.append(("update", path, copy.deepcopy(fields), False))
        return self

    def delete(self, path: str) -> "WriteBatch":
        self._ops.append(("delete", path, None, False))
        return self

    def commit(self) -> None:
        ops, self._ops = self._ops, []
        if ops:
            self._store._apply_batch(ops)

    def __enter__(self) -> "WriteBatch":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.commit()
        else:
            self._ops = []


class DocumentStore(ABC):
    """文档存储抽象接口。"""

    @abstractmethod
    def get(self, path: str) -> Optional[Dict[str, Any]]:
        """读取文档。

        Returns:
            文档字段字典的副本；文档不存在时返回 None。
        """

    @abstractmethod
    def set(self, path: str, fields: Dict[str, Any],
            merge: bool = False) -> None:
        """写入文档。

        Args:
            path: 文档路径。
            fields: 字段字典。
            merge: True 时与已有字段合并，False 时整体替换。
        """

    @abstractmethod
    def update(self, path: str, fields: Dict[str, Any]) -> None:
        """部分更新已存在的文档。

        Raises:
            DocumentNotFound: 文档不存在。
        """

    @abstractmethod
    def delete(self, path: str) -> None:
        """删除文档，文档不存在时不报错。"""

    @abstractmethod
    def list(self, collection: str) -> List[Tuple[str, Dict[str, Any]]]:
        """列出集合下的全部文档，返回 (文档ID, 字段) 列表。"""

    @abstractmethod
    def _apply_batch(self, ops) -> None:
        """原子地应用一组批量操作。"""

    def exists(self, path: str) -> bool:
        return self.get(path) is not None

    def add(self, collection: str, fields: Dict[str, Any]) -> str:
        """在集合中新增文档并返回自动生成的 ID。"""
        doc_id = new_document_id()
        self.set(f"{collection}/{doc_id}", fields)
        return doc_id

    def query(self, collection: str, field: str,
              value: Any) -> List[Tuple[str, Dict[str, Any]]]:
        """按字段等值过滤集合中的文档。"""
        return [
            (doc_id, data) for doc_id, data in self.list(collection)
            if data.get(field) == value
        ]

    def batch(self) -> WriteBatch:
        return WriteBatch(self)


class InMemoryDocumentStore(DocumentStore):
    """基于字典的内存文档存储。

    线程安全，读写都做深拷贝，调用方拿到的字典不会与存储共享。
    主要用于测试和本地演示。
    """

    def __init__(self) -> None:
        self._docs: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.RLock()

    @staticmethod
    def _key(path: str) -> str:
        collection, doc_id = split_path(path)
        return f"{collection}/{doc_id}"

    def get(self, path: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            doc = self._docs.get(self._key(path))
            return copy.deepcopy(doc) if doc is not None else None

    def set(self, path: str, fields: Dict[str, Any],
            merge: bool = False) -> None:
        with self._lock:
            self._set(self._key(path), copy.deepcopy(fields), merge)

    def update(self, path: str, fields: Dict[str, Any]) -> None:
        with self._lock:
            self._update(self._key(path), copy.deepcopy(fields))

    def delete(self, path: str) -> None:
        with self._lock:
            self._docs.pop(self._key(path), None)

    def list(self, collection: str) -> List[Tuple[str, Dict[str, Any]]]:
        prefix = collection.strip("/") + "/"
        with self._lock:
            return [
                (key[len(prefix):], copy.deepcopy(doc))
                for key, doc in self._docs.items()
                if key.startswith(prefix) and "/" not in key[len(prefix):]
            ]

    def _apply_batch(self, ops) -> None:
        with self._lock:
            # 先校验，保证全部成功或全部不生效
            present = set(self._docs)
            for op, path, _fields, _merge in ops:
                key = self._key(path)
                if op == "update" and key not in present:
                    raise DocumentNotFound(path)
                if op == "set":
                    present.add(key)
                elif op == "delete":
                    present.discard(key)
            for op, path, fields, merge in ops:
                key = self._key(path)
                if op == "set":
                    self._set(key, fields, merge)
                elif op == "update":
                    self._update(key, fields)
                else:
                    self._docs.pop(key, None)

    def _set(self, key: str, fields: Dict[str, Any], merge: bool) -> None:
        if merge and key in self._docs:
            self._docs[key].update(fields)
        else:
            self._docs[key] = fields

    def _update(self, key: str, fields: Dict[str, Any]) -> None:
        if key not in self._docs:
            raise DocumentNotFound(key)
        self._docs[key].update(fields)
