"""
CA 证书公开服务。
CA 证书是公开的构件，客户端据此组装 PKCS#12 包；服务端从不持有 CA 私钥。
"""

from __future__ import annotations

from pathlib import Path

from cryptography.hazmat.primitives import hashes
from loguru import logger

from src.pki import core
from src.pki.errors import InvalidError, NotFoundError, PKIError
from src.server.config import config

from .schemas import CAInfoResponse


def _ca_cert_path() -> Path:
    return Path(config.ca_cert_file)


def load_ca_certificate() -> bytes | None:
    """
    读取配置的 CA 证书。
    :return: 证书内容；未配置或文件不存在时返回 None。
    :raises PKIError: 文件存在但不是合法证书时（服务端配置错误）。
    """
    path = _ca_cert_path()
    if not path.is_file():
        return None
    data = path.read_bytes()
    try:
        core.load_certificate(data)
    except InvalidError as e:
        logger.error(f"CA 证书文件无法解析: {path}")
        raise PKIError(f"CA 证书文件无法解析: {path}") from e
    return data


def get_ca_certificate_service() -> bytes:
    """
    :raises NotFoundError: 服务端没有配置 CA 证书时。
    """
    data = load_ca_certificate()
    if data is None:
        raise NotFoundError("CA 证书未配置")
    return data


def get_ca_info_service() -> CAInfoResponse:
    """
    返回 CA 证书的名称、主体、有效期与指纹。
    :raises NotFoundError: 服务端没有配置 CA 证书时。
    """
    cert = core.load_certificate(get_ca_certificate_service())
    subject = cert.subject.rfc4514_string()
    return CAInfoResponse(
        name=core.common_name(cert.subject) or subject,
        subject=subject,
        not_valid_after=cert.not_valid_after_utc,
        sha256_fingerprint=cert.fingerprint(hashes.SHA256()).hex(),
    )
