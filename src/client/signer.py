"""
签发编排：由持有 CA 材料的一方把待签 CSR 签成证书并发布回证书仓库。
"""

from __future__ import annotations

from datetime import timedelta
from typing import Set

from loguru import logger

from src.pki import core
from src.pki.errors import UnavailableError, operation

from .session import ClientSession
from .transport import RepositoryClient


class SigningOrchestrator:
    def __init__(
        self,
        session: ClientSession,
        repository: RepositoryClient,
        validity: timedelta = core.DEFAULT_CERT_VALIDITY,
    ) -> None:
        self.session = session
        self.repository = repository
        self.validity = validity

    async def list_pending(self) -> Set[str]:
        with operation("list_pending"):
            return await self.repository.list_pending()

    async def sign_pending(self, name: str) -> None:
        """
        获取名为 name 的待签 CSR，用当前 CA 签名后以同名发布。
        获取与发布之间没有事务：中途失败时 CSR 仍处于待签状态，重新调用即可。
        :raises UnavailableError: 没有导入 CA 材料时。
        :raises NotFoundError: 没有该名称的待签 CSR 时。
        :raises ConflictError: 发布时 CSR 已被其他签发方退役。
        """
        with operation("sign_pending"):
            ca = self.session.ca
            if ca is None:
                raise UnavailableError("请先导入 CA")
            csr = await self.repository.get_csr(name)
            cert = core.sign_csr(ca.certificate, ca.private_key, csr, self.validity)
            await self.repository.publish_certificate(name, cert)
        logger.info(f"已签发并发布证书: {name} (CA: {ca.name})")
