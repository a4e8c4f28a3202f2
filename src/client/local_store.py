"""
客户端本地存储（Local Store）。

公开接口：
- LocalStore: 按客户端身份隔离的键值存储契约（get / set / delete）
- MemoryLocalStore: 进程内实现
- FileLocalStore: 每个键一个 JSON 文件，进程重启后仍然保留

多个键之间不保证事务性；调用方需要容忍部分写入。
"""

from __future__ import annotations

import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger

from src.pki import core
from src.pki.errors import InvalidError, TransportError


class LocalStore(ABC):
    """单个客户端身份的键值存储，值为可 JSON 序列化的对象。"""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """键不存在时返回 None。"""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        """键不存在时不做任何事。"""


class MemoryLocalStore(LocalStore):
    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        # 与文件实现一致，存入时序列化，避免调用方共享可变对象
        self._data[key] = json.dumps(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class FileLocalStore(LocalStore):
    """
    文件实现：<home_dir>/<client_id>/<key>.json，单个键的写入是原子的。
    """

    def __init__(self, home_dir: str | os.PathLike[str], client_id: str) -> None:
        if not core.valid_name(client_id):
            raise InvalidError(f"无效的客户端标识: {client_id!r}")
        self._dir = Path(home_dir).expanduser() / client_id
        self._dir.mkdir(parents=True, exist_ok=True)
        os.chmod(self._dir, 0o700)

    @property
    def directory(self) -> Path:
        return self._dir

    def _path(self, key: str) -> Path:
        if not core.valid_name(key):
            raise InvalidError(f"无效的存储键: {key!r}")
        return self._dir / f"{key}.json"

    def get(self, key: str) -> Optional[Any]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except ValueError as e:
            logger.warning(f"本地存储文件损坏，按不存在处理: {path}: {e}")
            return None
        except OSError as e:
            raise TransportError(f"读取本地存储失败: {e}") from e

    def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        fd, tmp = tempfile.mkstemp(dir=self._dir, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(value, f)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp, 0o600)
            os.replace(tmp, path)
        except OSError as e:
            Path(tmp).unlink(missing_ok=True)
            raise TransportError(f"写入本地存储失败: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise TransportError(f"删除本地存储失败: {e}") from e
