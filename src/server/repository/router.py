"""
证书仓库的 FastAPI 路由定义。
CSR 与证书以原始二进制在请求体/响应体中传输，列表接口返回 JSON 名称数组。
"""

from typing import List

from fastapi import APIRouter, HTTPException, Request, Response, status

from src.pki.errors import ConflictError, InvalidError, NotFoundError, PKIError
from . import services

router = APIRouter(tags=["Certificate Repository"])

CSR_MEDIA_TYPE = "application/pkcs10"
CERT_MEDIA_TYPE = "application/pkix-cert"


def to_http_exception(e: Exception) -> HTTPException:
    """将错误类型映射为 HTTP 状态码。"""
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, InvalidError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if isinstance(e, PKIError):
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    return HTTPException(status_code=500, detail=f"内部服务器错误: {str(e)}")


@router.get("/csr/", response_model=List[str])
async def list_pending() -> List[str]:
    """
    列出所有待签 CSR 的名称。
    """
    try:
        return services.list_pending_service()
    except Exception as e:
        raise to_http_exception(e)


@router.get("/csr/{name}")
async def get_csr(name: str) -> Response:
    """
    获取待签 CSR（DER）。
    """
    try:
        payload = services.get_csr_service(name)
    except Exception as e:
        raise to_http_exception(e)
    return Response(content=payload, media_type=CSR_MEDIA_TYPE)


@router.post("/csr/{name}", status_code=status.HTTP_201_CREATED)
async def submit_csr(name: str, request: Request) -> Response:
    """
    提交待签 CSR。名称已有待签 CSR 或已签发证书时返回 409。
    """
    body = await request.body()
    try:
        services.submit_csr_service(name, body)
    except Exception as e:
        raise to_http_exception(e)
    return Response(status_code=status.HTTP_201_CREATED)


@router.get("/cert/", response_model=List[str])
async def list_certificates() -> List[str]:
    """
    列出所有已签发证书的名称。
    """
    try:
        return services.list_certificates_service()
    except Exception as e:
        raise to_http_exception(e)


@router.get("/cert/{name}")
async def get_certificate(name: str) -> Response:
    """
    获取已签发证书。
    """
    try:
        payload = services.get_certificate_service(name)
    except Exception as e:
        raise to_http_exception(e)
    return Response(content=payload, media_type=CERT_MEDIA_TYPE)


@router.post("/cert/{name}", status_code=status.HTTP_201_CREATED)
async def publish_certificate(name: str, request: Request) -> Response:
    """
    发布证书并退役同名 CSR。没有待签 CSR 时返回 409。
    """
    body = await request.body()
    try:
        services.publish_certificate_service(name, body)
    except Exception as e:
        raise to_http_exception(e)
    return Response(status_code=status.HTTP_201_CREATED)
