"""
证书仓库的异步 HTTP 客户端。
HTTP 状态码被映射回错误类型：404 NotFound、409 Conflict、400/422 Invalid，
网络错误与 5xx 为 TransportError（可重试）。
"""

from __future__ import annotations

from typing import Optional, Set

import httpx
from loguru import logger

from src.pki.errors import (
    ConflictError,
    InvalidError,
    NotFoundError,
    PKIError,
    TransportError,
)


def _detail(resp: httpx.Response) -> str:
    try:
        data = resp.json()
        if isinstance(data, dict) and "detail" in data:
            return str(data["detail"])
    except ValueError:
        pass
    return resp.reason_phrase or f"HTTP {resp.status_code}"


def _raise_for_status(resp: httpx.Response) -> None:
    if resp.is_success:
        return
    detail = _detail(resp)
    if resp.status_code == 404:
        raise NotFoundError(detail)
    if resp.status_code == 409:
        raise ConflictError(detail)
    if resp.status_code in (400, 422):
        raise InvalidError(detail)
    if resp.status_code >= 500:
        raise TransportError(f"服务端错误 {resp.status_code}: {detail}")
    raise PKIError(f"意外的响应 {resp.status_code}: {detail}")


class RepositoryClient:
    """
    证书仓库接口的客户端。
    :param base_url: 形如 http://host:port/v1 的服务地址。
    :param client: 可选的 httpx.AsyncClient（测试中注入 ASGITransport）。
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = base_url
        self._timeout = timeout
        self._owns_client = client is None
        self._client = client

    def _http(self) -> httpx.AsyncClient:
        # 延迟创建，仅做本地操作时不打开连接池
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout)
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "RepositoryClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _request(self, method: str, url: str, content: bytes | None = None) -> httpx.Response:
        try:
            resp = await self._http().request(method, url, content=content)
        except httpx.HTTPError as e:
            logger.error(f"请求证书仓库失败: {method} {url}: {e}")
            raise TransportError(f"请求证书仓库失败: {e}") from e
        _raise_for_status(resp)
        return resp

    async def _names(self, url: str) -> Set[str]:
        resp = await self._request("GET", url)
        try:
            names = resp.json()
        except ValueError as e:
            raise TransportError(f"无法解析名称列表: {e}") from e
        return {str(n) for n in names or []}

    async def list_pending(self) -> Set[str]:
        return await self._names("/csr/")

    async def get_csr(self, name: str) -> bytes:
        return (await self._request("GET", f"/csr/{name}")).content

    async def submit_csr(self, name: str, payload: bytes) -> None:
        await self._request("POST", f"/csr/{name}", content=payload)

    async def list_certificates(self) -> Set[str]:
        return await self._names("/cert/")

    async def get_certificate(self, name: str) -> bytes:
        return (await self._request("GET", f"/cert/{name}")).content

    async def publish_certificate(self, name: str, payload: bytes) -> None:
        await self._request("POST", f"/cert/{name}", content=payload)

    async def get_ca_certificate(self) -> bytes:
        return (await self._request("GET", "/ca")).content
