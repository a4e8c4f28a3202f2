"""
配置加载模块：支持 .env、环境变量、工作目录 config.json（或 CONFIG_FILE 指定）多来源合并。
公开接口：
- Config: 读取配置的设置类
- config: Config 的单例实例
内部方法：
- Config.settings_customise_sources: 自定义配置来源顺序
- Config.parse_storage: 规范化存储后端名称
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Literal, Tuple

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict, PydanticBaseSettingsSource


class Config(BaseSettings):
    # 待签 CSR 与已签发证书的存储后端：file 持久化到 data_dir，memory 仅用于测试/演示
    storage: Literal["file", "memory"] = "file"
    data_dir: str = "data"
    # 对外公开的 CA 证书（/v1/ca），同时用于校验发布的证书是否由该 CA 签发
    ca_cert_file: str = "ca.cert"
    verify_issuer: bool = True
    static_dir: str = "static"
    host: str = "0.0.0.0"
    port: int = 44332
    log_level: str = "INFO"

    # pydantic v2 风格配置（等价于旧版的 class Config）
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("storage", mode="before")
    @classmethod
    def parse_storage(cls, value: Any) -> Any:
        """允许大小写与首尾空白不一致的写法，例如 " FILE "。"""
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """自定义配置来源顺序：入参 > 环境变量 > .env > config.json > secrets。"""

        class JsonFileSettingsSource(PydanticBaseSettingsSource):
            """读取 CONFIG_FILE 或工作目录下的 config.json；文件缺失或无法解析时不提供任何值。"""

            def __init__(self, settings_cls):
                super().__init__(settings_cls)
                path = Path(os.environ.get("CONFIG_FILE") or Path.cwd() / "config.json")
                try:
                    data = json.loads(path.read_text(encoding="utf-8"))
                except (OSError, ValueError):
                    data = {}
                self._data: Dict[str, Any] = data if isinstance(data, dict) else {}

            def __call__(self) -> Dict[str, Any]:
                return dict(self._data)

            def get_field_value(self, field, field_name):  # type: ignore[override]
                return self._data.get(field_name), field_name, False

        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonFileSettingsSource(settings_cls),
            file_secret_settings,
        )


config = Config()
