"""
证书仓库的业务逻辑层。
此模块在存储之上完成名称与载荷校验，供路由层调用。

公开接口：
- get_repository / set_repository: 获取或替换当前使用的仓库实例
- list_pending_service / get_csr_service / submit_csr_service
- list_certificates_service / get_certificate_service / publish_certificate_service
"""

from __future__ import annotations

import threading
from typing import List, Optional

from loguru import logger

from src.pki import core
from src.pki.errors import ConflictError, InvalidError, NotFoundError
from src.server.ca import services as ca_services
from src.server.config import config

from .store import CertificateRepository, FileCertificateRepository, MemoryCertificateRepository

_REPOSITORY: Optional[CertificateRepository] = None
_LOCK = threading.Lock()


def _create_repository() -> CertificateRepository:
    if config.storage == "memory":
        logger.warning("使用内存存储，重启后待签 CSR 与证书将丢失")
        return MemoryCertificateRepository()
    logger.info(f"使用文件存储: {config.data_dir}")
    return FileCertificateRepository(config.data_dir)


def get_repository() -> CertificateRepository:
    global _REPOSITORY
    with _LOCK:
        if _REPOSITORY is None:
            _REPOSITORY = _create_repository()
        return _REPOSITORY


def set_repository(repository: Optional[CertificateRepository]) -> None:
    """替换仓库实例；传入 None 时下次访问按配置重新创建。"""
    global _REPOSITORY
    with _LOCK:
        _REPOSITORY = repository


def _check_name(name: str) -> None:
    if not core.valid_name(name):
        raise InvalidError(f"名称不合法: {name!r}")


def list_pending_service() -> List[str]:
    return sorted(get_repository().list_pending())


def get_csr_service(name: str) -> bytes:
    _check_name(name)
    return get_repository().get_csr(name)


def submit_csr_service(name: str, payload: bytes) -> None:
    """
    保存待签 CSR。
    :raises InvalidError: 名称不合法，或 CSR 无法解析 / 自签名无效。
    :raises ConflictError: 名称已有待签 CSR 或已签发证书。
    """
    _check_name(name)
    csr = core.load_csr(payload)
    if not csr.is_signature_valid:
        raise InvalidError("CSR 签名无效")
    get_repository().submit_csr(name, payload)
    logger.info(f"已接收 CSR: {name}")


def list_certificates_service() -> List[str]:
    return sorted(get_repository().list_certificates())


def get_certificate_service(name: str) -> bytes:
    _check_name(name)
    return get_repository().get_certificate(name)


def publish_certificate_service(name: str, payload: bytes) -> None:
    """
    发布证书并退役同名 CSR。
    证书必须携带待签 CSR 中的公钥；配置了 CA 证书时还必须由该 CA 直接签发。
    :raises InvalidError: 名称或证书不合法、公钥不一致、签发者不符。
    :raises ConflictError: 名称当前没有待签 CSR。
    """
    _check_name(name)
    core.load_certificate(payload)
    repository = get_repository()

    try:
        csr = repository.get_csr(name)
    except NotFoundError:
        raise ConflictError(f"没有待签的 CSR: {name}") from None
    if not core.csr_matches_certificate(csr, payload):
        raise InvalidError("证书公钥与待签 CSR 不一致")

    if config.verify_issuer:
        ca_cert = ca_services.load_ca_certificate()
        if ca_cert is not None and not core.is_issued_by(payload, ca_cert):
            raise InvalidError("证书不是由本 CA 签发")

    # 校验与发布之间 CSR 可能已被并发发布，此时由存储层返回 ConflictError
    repository.publish_certificate(name, payload)
    logger.info(f"已发布证书: {name}")
