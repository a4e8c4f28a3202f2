"""
客户端工作流：生成私钥与 CSR、提交 CSR、导入 CA 材料。

公开接口：
- ClientWorkflow.create_csr
- ClientWorkflow.submit_current_csr
- ClientWorkflow.import_ca
"""

from __future__ import annotations

from loguru import logger

from src.pki import core
from src.pki.core import CAMaterial
from src.pki.errors import UnavailableError, operation

from .session import ClientSession, LocalRequest
from .transport import RepositoryClient


class ClientWorkflow:
    def __init__(self, session: ClientSession, repository: RepositoryClient) -> None:
        self.session = session
        self.repository = repository

    def create_csr(self, subject_name: str) -> LocalRequest:
        """
        生成新的私钥与 CSR，并作为当前本地 CSR 暂存（覆盖尚未提交的旧 CSR）。
        名称在客户端只做格式校验，唯一性由证书仓库保证。
        :param subject_name: 主体名称。
        :return: 暂存的 LocalRequest。
        :raises InvalidError: 名称不合法时。
        """
        with operation("create_csr"):
            key, csr = core.make_csr(subject_name)
            request = self.session.stage_request(subject_name, key, csr)
        logger.info(f"已生成本地 CSR: {subject_name}")
        return request

    async def submit_current_csr(self) -> str:
        """
        提交当前本地 CSR。成功后清空槽位（私钥保留，用于之后导出）；
        失败时槽位保持不变，调用方可以直接重试而不必重新生成私钥。
        :return: 已提交的名称。
        :raises UnavailableError: 没有本地 CSR 时。
        """
        with operation("submit_current_csr"):
            request = self.session.current_request
            if request is None:
                raise UnavailableError("没有待提交的本地 CSR")
            await self.repository.submit_csr(request.name, request.csr)
            self.session.clear_request()
        logger.info(f"已提交 CSR: {request.name}")
        return request.name

    def import_ca(self, cert_bytes: bytes, key_bytes: bytes) -> CAMaterial:
        """
        导入 CA 证书与私钥（两份文件顺序不限），校验私钥与证书匹配后替换当前 CA 材料。
        校验失败时不保存任何内容，原有的 CA 材料也保持不变。
        :raises CAKeyMismatchError: 私钥与证书不匹配时。
        :raises InvalidError: 无法解析时。
        """
        with operation("import_ca"):
            material = core.load_ca(cert_bytes, key_bytes)
            self.session.set_ca(material)
        logger.info(f"已导入 CA: {material.name}")
        return material
