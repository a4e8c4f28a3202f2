"""
CA 公开构件的 FastAPI 路由定义。
"""

from fastapi import APIRouter, Response

from src.server.repository.router import CERT_MEDIA_TYPE, to_http_exception
from . import services
from .schemas import CAInfoResponse

router = APIRouter(prefix="/ca", tags=["Certificate Authority"])


@router.get("")
async def get_ca_certificate() -> Response:
    """
    获取 CA 证书，客户端用它组装 PKCS#12 包。
    """
    try:
        payload = services.get_ca_certificate_service()
    except Exception as e:
        raise to_http_exception(e)
    return Response(content=payload, media_type=CERT_MEDIA_TYPE)


@router.get("/info", response_model=CAInfoResponse)
async def get_ca_info() -> CAInfoResponse:
    """
    获取 CA 证书的摘要信息。
    """
    try:
        return services.get_ca_info_service()
    except Exception as e:
        raise to_http_exception(e)
