"""
客户端配置：环境变量（前缀 SIMPLEPKI_）与 .env。
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientConfig(BaseSettings):
    server_url: str = "http://127.0.0.1:44332/v1"
    home_dir: str = "~/.simplepki"
    client_id: str = "default"
    timeout: float = 10.0
    cert_validity_days: int = 360

    model_config = SettingsConfigDict(
        env_prefix="SIMPLEPKI_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
