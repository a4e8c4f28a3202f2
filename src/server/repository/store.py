"""
证书仓库的存储实现。

公开接口：
- CertificateRepository: 存储契约（待签 CSR 集合与已签发证书集合）
- MemoryCertificateRepository: 进程内实现
- FileCertificateRepository: 文件实现，data_dir/csr/<name> 与 data_dir/cert/<name>

submit_csr 与 publish_certificate 在同一把锁内完成“检查 + 写入”（文件实现还加进程间锁），
因此对同一名称是可线性化的：并发提交只有一个成功，发布与 CSR 退役是一个原子步骤。
"""

from __future__ import annotations

import fcntl
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Set

from loguru import logger

from src.pki.errors import ConflictError, NotFoundError


class CertificateRepository(ABC):
    """待签 CSR 与已签发证书的存储契约，两个集合分别按名称唯一。"""

    @abstractmethod
    def list_pending(self) -> Set[str]:
        """返回所有待签 CSR 的名称。"""

    @abstractmethod
    def get_csr(self, name: str) -> bytes:
        """
        :raises NotFoundError: 名称没有待签 CSR 时。
        """

    @abstractmethod
    def submit_csr(self, name: str, payload: bytes) -> None:
        """
        :raises ConflictError: 名称已有待签 CSR 或已签发证书时。
        """

    @abstractmethod
    def list_certificates(self) -> Set[str]:
        """返回所有已签发证书的名称。"""

    @abstractmethod
    def get_certificate(self, name: str) -> bytes:
        """
        :raises NotFoundError: 名称没有已签发证书时。
        """

    @abstractmethod
    def publish_certificate(self, name: str, payload: bytes) -> None:
        """
        原子地移除名称对应的待签 CSR 并保存证书。
        :raises ConflictError: 名称当前没有待签 CSR 时。
        """


class MemoryCertificateRepository(CertificateRepository):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._csr: Dict[str, bytes] = {}
        self._cert: Dict[str, bytes] = {}

    def list_pending(self) -> Set[str]:
        with self._lock:
            return set(self._csr)

    def get_csr(self, name: str) -> bytes:
        with self._lock:
            payload = self._csr.get(name)
        if payload is None:
            raise NotFoundError(f"CSR 不存在: {name}")
        return payload

    def submit_csr(self, name: str, payload: bytes) -> None:
        with self._lock:
            if name in self._csr or name in self._cert:
                logger.warning(f"CSR 名称冲突: {name}")
                raise ConflictError(f"名称已被使用: {name}")
            self._csr[name] = payload

    def list_certificates(self) -> Set[str]:
        with self._lock:
            return set(self._cert)

    def get_certificate(self, name: str) -> bytes:
        with self._lock:
            payload = self._cert.get(name)
        if payload is None:
            raise NotFoundError(f"证书不存在: {name}")
        return payload

    def publish_certificate(self, name: str, payload: bytes) -> None:
        with self._lock:
            if name not in self._csr:
                logger.warning(f"发布证书被拒绝，没有待签 CSR: {name}")
                raise ConflictError(f"没有待签的 CSR: {name}")
            del self._csr[name]
            self._cert[name] = payload


def _write_temp(directory: Path, name: str, payload: bytes) -> str:
    fd, tmp = tempfile.mkstemp(dir=directory, prefix=f".{name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
    return tmp


def _create_exclusive(path: Path, payload: bytes) -> None:
    """
    仅在 path 不存在时写入完整内容：临时文件写完后用 os.link 放到目标位置，
    目标已存在时 os.link 失败，不会覆盖。
    :raises FileExistsError: 目标已存在时。
    """
    tmp = _write_temp(path.parent, path.name, payload)
    try:
        os.link(tmp, path)
    finally:
        Path(tmp).unlink(missing_ok=True)


class FileCertificateRepository(CertificateRepository):
    """
    文件存储实现。名称由服务层保证合法（不含路径分隔符、不以 '.' 开头）。

    多个进程可以共享同一个 data_dir：检查与写入在 data_dir/.lock 的 flock 内完成，
    文件本身也只以“不存在才创建”的方式写入。

    发布时先写证书、再删除 CSR。若两步之间进程崩溃，会留下证书与 CSR 同时存在的文件；
    所有读操作都把“已有证书”的 CSR 视为已退役，启动时与下一次发布时清理残留文件。
    """

    def __init__(self, data_dir: str | os.PathLike[str]) -> None:
        self._lock = threading.Lock()
        self._root = Path(data_dir)
        self._csr_dir = self._root / "csr"
        self._cert_dir = self._root / "cert"
        self._csr_dir.mkdir(parents=True, exist_ok=True)
        self._cert_dir.mkdir(parents=True, exist_ok=True)
        self._lock_path = self._root / ".lock"
        with self._locked():
            self._sweep_retired()

    @contextmanager
    def _locked(self) -> Iterator[None]:
        # flock 按打开的文件描述区分持有者，每次加锁都重新打开锁文件
        with self._lock, self._lock_path.open("a") as f:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)

    @staticmethod
    def _names(directory: Path) -> Set[str]:
        return {p.name for p in directory.iterdir() if p.is_file() and not p.name.startswith(".")}

    def _sweep_retired(self) -> None:
        for name in self._names(self._csr_dir) & self._names(self._cert_dir):
            logger.warning(f"清理已签发但未删除的 CSR: {name}")
            (self._csr_dir / name).unlink(missing_ok=True)

    def _is_pending(self, name: str) -> bool:
        return (self._csr_dir / name).is_file() and not (self._cert_dir / name).is_file()

    def list_pending(self) -> Set[str]:
        with self._locked():
            return self._names(self._csr_dir) - self._names(self._cert_dir)

    def get_csr(self, name: str) -> bytes:
        with self._locked():
            if not self._is_pending(name):
                raise NotFoundError(f"CSR 不存在: {name}")
            return (self._csr_dir / name).read_bytes()

    def submit_csr(self, name: str, payload: bytes) -> None:
        with self._locked():
            if (self._cert_dir / name).exists():
                logger.warning(f"CSR 名称冲突: {name}")
                raise ConflictError(f"名称已被使用: {name}")
            try:
                _create_exclusive(self._csr_dir / name, payload)
            except FileExistsError:
                logger.warning(f"CSR 名称冲突: {name}")
                raise ConflictError(f"名称已被使用: {name}") from None

    def list_certificates(self) -> Set[str]:
        with self._locked():
            return self._names(self._cert_dir)

    def get_certificate(self, name: str) -> bytes:
        path = self._cert_dir / name
        with self._locked():
            if not path.is_file():
                raise NotFoundError(f"证书不存在: {name}")
            return path.read_bytes()

    def publish_certificate(self, name: str, payload: bytes) -> None:
        with self._locked():
            if not self._is_pending(name):
                logger.warning(f"发布证书被拒绝，没有待签 CSR: {name}")
                raise ConflictError(f"没有待签的 CSR: {name}")
            try:
                _create_exclusive(self._cert_dir / name, payload)
            except FileExistsError:
                raise ConflictError(f"没有待签的 CSR: {name}") from None
            (self._csr_dir / name).unlink(missing_ok=True)
