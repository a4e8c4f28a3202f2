"""
CA 公开信息的数据模型定义。
"""

from datetime import datetime

from pydantic import BaseModel


class CAInfoResponse(BaseModel):
    """
    服务端返回的 CA 证书摘要信息。
    """
    name: str
    subject: str
    not_valid_after: datetime
    sha256_fingerprint: str  # 十六进制
