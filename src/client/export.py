"""
导出：下载原始证书、原始私钥，或把证书、本地私钥与 CA 证书打包成 PKCS#12。
私钥只从本地会话读取，从不向服务端请求。
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from src.pki import core
from src.pki.errors import NotFoundError, UnavailableError, operation

from .session import ClientSession
from .transport import RepositoryClient


@dataclass(frozen=True)
class Artifact:
    """待下载的文件。"""

    filename: str
    content: bytes = field(repr=False)
    secret: bool = False


class ExportPackager:
    def __init__(self, session: ClientSession, repository: RepositoryClient) -> None:
        self.session = session
        self.repository = repository

    async def download_certificate(self, name: str) -> Artifact:
        with operation("download_certificate"):
            cert = await self.repository.get_certificate(name)
        return Artifact(filename=f"{name}.cer", content=cert)

    def download_key(self, subject_name: str) -> Artifact:
        """
        :raises NotFoundError: 本地从未生成该名称的私钥时。
        """
        with operation("download_key"):
            key = self.session.get_key(subject_name)
            if key is None:
                raise NotFoundError(f"本地没有私钥: {subject_name}")
        return Artifact(filename=f"{subject_name}.key", content=key, secret=True)

    async def download_pkcs12(self, name: str, password: str) -> Artifact:
        """
        组装 PKCS#12 包。空密码被接受，生成不加密的包。
        :raises UnavailableError: 证书尚未发布、本地没有私钥，或服务端没有 CA 证书时。
        :raises InvalidError: 本地私钥与证书不匹配时。
        """
        with operation("download_pkcs12"):
            key = self.session.get_key(name)
            if key is None:
                raise UnavailableError(f"本地没有私钥: {name}")
            try:
                cert = await self.repository.get_certificate(name)
            except NotFoundError as e:
                raise UnavailableError(f"证书尚未签发: {name}") from e
            try:
                ca_cert = await self.repository.get_ca_certificate()
            except NotFoundError as e:
                raise UnavailableError("服务端没有提供 CA 证书") from e
            bundle = core.build_pkcs12(cert, key, ca_cert, password, friendly_name=name)
        if not password:
            logger.warning(f"{name}.pfx 未设置密码")
        return Artifact(filename=f"{name}.pfx", content=bundle, secret=True)

    @staticmethod
    def save(artifact: Artifact, directory: str | os.PathLike[str] = ".") -> Path:
        """写入文件；含私钥的文件权限为 0400。"""
        path = Path(directory) / artifact.filename
        path.parent.mkdir(parents=True, exist_ok=True)
        if artifact.secret:
            path.unlink(missing_ok=True)
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o400)
            with os.fdopen(fd, "wb") as f:
                f.write(artifact.content)
        else:
            path.write_bytes(artifact.content)
        logger.info(f"已保存 {path}")
        return path
