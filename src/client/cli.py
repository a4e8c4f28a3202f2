"""
simplepki 客户端命令行入口。

用法：

    simplepki [OPTIONS] COMMAND [ARGS]...

命令：
- new-ca: 生成自签名 CA（离线）
- newcert: 用本地 CA 为若干名称签发私钥、证书与 PKCS#12 包（离线）
- csr create: 生成密钥对并在本地暂存 CSR
- csr submit: 把暂存的 CSR 提交到证书仓库
- csr status: 查看暂存的 CSR
- csr list: 列出证书仓库中的待签 CSR
- cert list: 列出证书仓库中的已签发证书
- keys: 列出本地持有的私钥
- import-ca: 校验 CA 证书与私钥是否匹配
- sign: 用 CA 证书与私钥签发待签 CSR
- download: 下载证书、本地私钥或 PKCS#12 包
"""
from __future__ import annotations

import asyncio
import functools
from datetime import timedelta
from pathlib import Path
from typing import Awaitable, Callable, TypeVar

import click

from src.pki import core
from src.pki.errors import PKIError

from .config import ClientConfig
from .export import Artifact, ExportPackager
from .local_store import FileLocalStore
from .session import ClientSession
from .signer import SigningOrchestrator
from .transport import RepositoryClient
from .workflow import ClientWorkflow

T = TypeVar("T")


def _repository(cfg: ClientConfig) -> RepositoryClient:
    return RepositoryClient(cfg.server_url, timeout=cfg.timeout)


def _session(cfg: ClientConfig) -> ClientSession:
    return ClientSession(FileLocalStore(cfg.home_dir, cfg.client_id))


def _run(cfg: ClientConfig, fn: Callable[[RepositoryClient], Awaitable[T]]) -> T:
    async def main() -> T:
        async with _repository(cfg) as repository:
            return await fn(repository)

    return asyncio.run(main())


def _handle_errors(func):
    """把 PKIError 转成带错误类型的 ClickException。"""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except PKIError as e:
            raise click.ClickException(f"[{e.kind}] {e}") from e

    return wrapper


def _read(path: str) -> bytes:
    return Path(path).read_bytes()


# ------------------------------------------------------------------
# 根命令组
# ------------------------------------------------------------------


@click.group()
@click.option("--server-url", default=None, help="证书仓库地址，例如 http://host:44332/v1。")
@click.option("--home", "home_dir", default=None, help="本地客户端状态所在目录。")
@click.option("--client-id", default=None, help="本地客户端标识。")
@click.pass_context
def cli(ctx: click.Context, server_url: str | None, home_dir: str | None, client_id: str | None) -> None:
    """Simple PKI 客户端：暂存并提交 CSR、签发、导出证书。"""
    overrides = {
        k: v
        for k, v in {"server_url": server_url, "home_dir": home_dir, "client_id": client_id}.items()
        if v is not None
    }
    ctx.obj = ClientConfig(**overrides)


# ------------------------------------------------------------------
# 离线 CA 工具
# ------------------------------------------------------------------


@cli.command("new-ca")
@click.argument("common_name")
@click.option("--cert", "cert_path", default="ca.cert", show_default=True)
@click.option("--key", "key_path", default="ca.key", show_default=True)
@_handle_errors
def new_ca(common_name: str, cert_path: str, key_path: str) -> None:
    """生成自签名 CA 证书与私钥。"""
    if Path(cert_path).exists() or Path(key_path).exists():
        raise click.ClickException(f"拒绝覆盖已有文件: {cert_path} / {key_path}")
    cert, key = core.new_ca(common_name)
    ExportPackager.save(Artifact(filename=key_path, content=key, secret=True))
    ExportPackager.save(Artifact(filename=cert_path, content=cert))
    click.echo(f"CA {common_name} 已写入 {cert_path}, {key_path}")


@cli.command("newcert")
@click.argument("names", nargs=-1, required=True)
@click.option("--ca-cert", default="ca.cert", show_default=True)
@click.option("--ca-key", default="ca.key", show_default=True)
@click.option("--out-dir", default=".", show_default=True)
@click.option("--password", default="", help="PKCS#12 密码（默认为空）。")
@click.pass_obj
@_handle_errors
def newcert(cfg: ClientConfig, names: tuple[str, ...], ca_cert: str, ca_key: str, out_dir: str, password: str) -> None:
    """不经过服务端，为 NAMES 签发私钥、证书与 PKCS#12 包。"""
    ca = core.load_ca(_read(ca_cert), _read(ca_key))
    validity = timedelta(days=cfg.cert_validity_days)
    for name in names:
        key, csr = core.make_csr(name)
        cert = core.sign_csr(ca.certificate, ca.private_key, csr, validity)
        bundle = core.build_pkcs12(cert, key, ca.certificate, password, friendly_name=name)
        ExportPackager.save(Artifact(filename=f"{name}.cert", content=cert), out_dir)
        ExportPackager.save(Artifact(filename=f"{name}.key", content=key, secret=True), out_dir)
        ExportPackager.save(Artifact(filename=f"{name}.pfx", content=bundle, secret=True), out_dir)
        click.echo(f"已签发 {name}")


# ------------------------------------------------------------------
# 本地 CSR 流程
# ------------------------------------------------------------------


@cli.group()
def csr() -> None:
    """暂存与提交证书签名请求。"""


@csr.command("create")
@click.argument("name")
@click.pass_obj
@_handle_errors
def csr_create(cfg: ClientConfig, name: str) -> None:
    """生成密钥对并为 NAME 暂存 CSR。"""
    session = _session(cfg)
    ClientWorkflow(session, _repository(cfg)).create_csr(name)
    click.echo(f"已暂存 CSR {name}")


@csr.command("submit")
@click.pass_obj
@_handle_errors
def csr_submit(cfg: ClientConfig) -> None:
    """提交暂存的 CSR；服务端拒绝时 CSR 保持暂存。"""
    session = _session(cfg)
    name = _run(cfg, lambda repository: ClientWorkflow(session, repository).submit_current_csr())
    click.echo(f"已提交 CSR {name}")


@csr.command("status")
@click.pass_obj
@_handle_errors
def csr_status(cfg: ClientConfig) -> None:
    """查看暂存的 CSR。"""
    request = _session(cfg).current_request
    click.echo(request.name if request else "没有暂存的 CSR")


@csr.command("list")
@click.pass_obj
@_handle_errors
def csr_list(cfg: ClientConfig) -> None:
    """列出证书仓库中的待签 CSR。"""
    for name in sorted(_run(cfg, lambda repository: repository.list_pending())):
        click.echo(name)


@cli.group()
def cert() -> None:
    """查看已签发证书。"""


@cert.command("list")
@click.pass_obj
@_handle_errors
def cert_list(cfg: ClientConfig) -> None:
    """列出证书仓库中的已签发证书。"""
    for name in sorted(_run(cfg, lambda repository: repository.list_certificates())):
        click.echo(name)


@cli.command("keys")
@click.pass_obj
@_handle_errors
def keys(cfg: ClientConfig) -> None:
    """列出本地持有的私钥。"""
    for name in _session(cfg).key_names():
        click.echo(name)


# ------------------------------------------------------------------
# 签发
# ------------------------------------------------------------------


@cli.command("import-ca")
@click.argument("first", type=click.Path(exists=True, dir_okay=False))
@click.argument("second", type=click.Path(exists=True, dir_okay=False))
@click.pass_obj
@_handle_errors
def import_ca(cfg: ClientConfig, first: str, second: str) -> None:
    """校验 CA 证书与私钥（顺序不限）是否匹配。"""
    material = ClientWorkflow(_session(cfg), _repository(cfg)).import_ca(_read(first), _read(second))
    click.echo(f"CA {material.name} 校验通过")


@cli.command("sign")
@click.argument("names", nargs=-1)
@click.option("--ca-cert", default="ca.cert", show_default=True)
@click.option("--ca-key", default="ca.key", show_default=True)
@click.option("--all", "sign_all", is_flag=True, help="签发全部待签 CSR。")
@click.pass_obj
@_handle_errors
def sign(cfg: ClientConfig, names: tuple[str, ...], ca_cert: str, ca_key: str, sign_all: bool) -> None:
    """用指定 CA 签发待签 CSR NAMES；CA 私钥只在本次运行期间保存在内存中。"""
    if not names and not sign_all:
        raise click.UsageError("至少指定一个 NAME 或使用 --all")
    session = _session(cfg)

    async def run(repository: RepositoryClient) -> list[str]:
        ClientWorkflow(session, repository).import_ca(_read(ca_cert), _read(ca_key))
        signer = SigningOrchestrator(session, repository, timedelta(days=cfg.cert_validity_days))
        targets = sorted(await signer.list_pending()) if sign_all else list(names)
        for name in targets:
            await signer.sign_pending(name)
        return targets

    try:
        for name in _run(cfg, run):
            click.echo(f"已签发 {name}")
    finally:
        session.clear_ca()


# ------------------------------------------------------------------
# 下载
# ------------------------------------------------------------------


@cli.group()
def download() -> None:
    """下载证书、本地私钥与 PKCS#12 包。"""


@download.command("cert")
@click.argument("name")
@click.option("--out-dir", default=".", show_default=True)
@click.pass_obj
@_handle_errors
def download_cert(cfg: ClientConfig, name: str, out_dir: str) -> None:
    """下载已签发证书 NAME.cer。"""
    session = _session(cfg)
    artifact = _run(cfg, lambda repository: ExportPackager(session, repository).download_certificate(name))
    click.echo(str(ExportPackager.save(artifact, out_dir)))


@download.command("key")
@click.argument("name")
@click.option("--out-dir", default=".", show_default=True)
@click.pass_obj
@_handle_errors
def download_key(cfg: ClientConfig, name: str, out_dir: str) -> None:
    """导出本地私钥 NAME.key（权限 0400）。"""
    artifact = ExportPackager(_session(cfg), _repository(cfg)).download_key(name)
    click.echo(str(ExportPackager.save(artifact, out_dir)))


@download.command("pfx")
@click.argument("name")
@click.option("--password", default="", help="PKCS#12 密码；为空时不加密。")
@click.option("--out-dir", default=".", show_default=True)
@click.pass_obj
@_handle_errors
def download_pfx(cfg: ClientConfig, name: str, password: str, out_dir: str) -> None:
    """组装并下载 PKCS#12 包 NAME.pfx。"""
    session = _session(cfg)
    artifact = _run(cfg, lambda repository: ExportPackager(session, repository).download_pkcs12(name, password))
    click.echo(str(ExportPackager.save(artifact, out_dir)))


if __name__ == "__main__":
    cli()
