"""
FastAPI 应用入口点。
"""

from contextlib import asynccontextmanager
from pathlib import Path

from loguru import logger
from fastapi.staticfiles import StaticFiles
from fastapi.middleware.cors import CORSMiddleware

from fastapi import FastAPI
from src.server.ca import services as ca_services
from src.server.ca.router import router as ca_router
from src.server.repository import services as repository_services
from src.server.repository.router import router as repository_router

from src.server.config import config


@asynccontextmanager
async def lifespan(app: FastAPI):
    repository = repository_services.get_repository()
    logger.info(
        f"证书仓库已就绪: 待签 CSR {len(repository.list_pending())} 个, "
        f"已签发证书 {len(repository.list_certificates())} 个"
    )
    if ca_services.load_ca_certificate() is None:
        logger.warning(f"未找到 CA 证书 {config.ca_cert_file}，/v1/ca 将返回 404，且不校验证书签发者")
    yield
    logger.info("应用关闭")


app = FastAPI(title="Simple PKI Certificate Repository", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 包含证书仓库与 CA 公开构件的路由
app.include_router(repository_router, prefix="/v1")
app.include_router(ca_router, prefix="/v1")

logger.info(f"config: {config.model_dump_json(indent=4)}")

if Path(config.static_dir).is_dir():
    app.mount("/", StaticFiles(directory=config.static_dir, html=True), name="frontend")
