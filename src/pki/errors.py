"""
证书工作流的错误分类。

公开接口：
- PKIError: 所有错误的基类，携带可选的操作名
- NotFoundError / ConflictError / InvalidError / CAKeyMismatchError
  / UnavailableError / TransportError
- operation: 为经过某个工作流步骤的错误标注操作名（不改变错误类型）
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator


class PKIError(Exception):
    """证书工作流错误基类。"""

    kind = "error"

    def __init__(self, message: str, operation: str | None = None):
        super().__init__(message)
        self.message = message
        self.operation = operation

    def __str__(self) -> str:
        if self.operation:
            return f"{self.operation}: {self.message}"
        return self.message


class NotFoundError(PKIError):
    """引用的 CSR / 证书 / 私钥不存在。"""

    kind = "not_found"


class ConflictError(PKIError):
    """名称冲突，或在没有待签 CSR 的情况下发布证书。"""

    kind = "conflict"


class InvalidError(PKIError):
    """CSR / 证书 / 私钥格式错误，或名称不合法。"""

    kind = "invalid"


class CAKeyMismatchError(InvalidError):
    """CA 私钥与 CA 证书中的公钥不匹配（解析成功但校验失败）。"""

    kind = "ca_key_mismatch"


class UnavailableError(PKIError):
    """缺少本地前置条件，例如私钥或 CA 材料。"""

    kind = "unavailable"


class TransportError(PKIError):
    """网络或存储故障，调用方可以重试。"""

    kind = "transport"


@contextmanager
def operation(name: str) -> Iterator[None]:
    """
    为块内抛出的 PKIError 标注操作名后原样抛出。
    已有操作名的错误保持不变，保证最内层的步骤名可见。
    """
    try:
        yield
    except PKIError as e:
        if e.operation is None:
            e.operation = name
        raise
