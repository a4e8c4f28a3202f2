"""
命令行测试：离线命令直接运行，访问仓库的命令通过 ASGITransport 连接进程内应用。
"""

import httpx
import pytest
from click.testing import CliRunner
from fastapi import FastAPI

from src.client import cli as cli_module
from src.client.cli import cli
from src.client.transport import RepositoryClient
from src.pki import core
from src.server.ca.router import router as ca_router
from src.server.config import config
from src.server.repository import services
from src.server.repository.router import router as repository_router
from src.server.repository.store import MemoryCertificateRepository

BASE_URL = "http://testserver/v1"

app = FastAPI()
app.include_router(repository_router, prefix="/v1")
app.include_router(ca_router, prefix="/v1")


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def server(workdir, monkeypatch):
    """仓库与 CA 证书都在进程内；CLI 的仓库客户端被替换为 ASGI 客户端"""
    monkeypatch.setattr(config, "ca_cert_file", str(workdir / "ca.cert"))
    monkeypatch.setattr(config, "verify_issuer", True)
    services.set_repository(MemoryCertificateRepository())

    def repository(cfg):
        http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url=BASE_URL)
        return RepositoryClient(BASE_URL, client=http)

    monkeypatch.setattr(cli_module, "_repository", repository)
    yield
    services.set_repository(None)


def invoke(runner, workdir, *args):
    return runner.invoke(cli, ["--home", str(workdir / "home"), *args])


def test_new_ca_writes_files_and_refuses_overwrite(runner, workdir):
    result = invoke(runner, workdir, "new-ca", "Test CA")
    assert result.exit_code == 0, result.output
    assert core.load_ca((workdir / "ca.cert").read_bytes(), (workdir / "ca.key").read_bytes()).name == "Test CA"

    result = invoke(runner, workdir, "new-ca", "Test CA")
    assert result.exit_code != 0
    assert "拒绝覆盖" in result.output


def test_newcert_issues_offline(runner, workdir):
    invoke(runner, workdir, "new-ca", "Offline CA")
    result = invoke(runner, workdir, "newcert", "web", "db", "--out-dir", "out", "--password", "pw")
    assert result.exit_code == 0, result.output
    for name in ("web", "db"):
        cert = (workdir / "out" / f"{name}.cert").read_bytes()
        key = (workdir / "out" / f"{name}.key").read_bytes()
        assert core.validate_key_matches_cert(cert, key)
        assert core.is_issued_by(cert, (workdir / "ca.cert").read_bytes())
        bundle = core.load_pkcs12((workdir / "out" / f"{name}.pfx").read_bytes(), "pw")
        assert bundle.certificate == cert


def test_csr_create_status_and_keys(runner, workdir):
    assert "没有暂存的 CSR" in invoke(runner, workdir, "csr", "status").output
    result = invoke(runner, workdir, "csr", "create", "alice")
    assert result.exit_code == 0, result.output
    assert invoke(runner, workdir, "csr", "status").output.strip() == "alice"
    assert invoke(runner, workdir, "keys").output.split() == ["alice"]


def test_csr_create_invalid_name(runner, workdir):
    result = invoke(runner, workdir, "csr", "create", "bad name")
    assert result.exit_code != 0
    assert "[invalid]" in result.output


def test_import_ca_mismatch(runner, workdir):
    cert, _ = core.new_ca("Real CA")
    _, other_key = core.new_ca("Other CA")
    (workdir / "a.cert").write_bytes(cert)
    (workdir / "b.key").write_bytes(other_key)
    result = invoke(runner, workdir, "import-ca", "b.key", "a.cert")
    assert result.exit_code != 0
    assert "[ca_key_mismatch]" in result.output


def test_submit_sign_download(runner, workdir, server):
    assert invoke(runner, workdir, "new-ca", "Online CA").exit_code == 0
    assert invoke(runner, workdir, "csr", "create", "alice").exit_code == 0

    result = invoke(runner, workdir, "csr", "submit")
    assert result.exit_code == 0, result.output
    assert invoke(runner, workdir, "csr", "list").output.split() == ["alice"]
    assert "没有暂存的 CSR" in invoke(runner, workdir, "csr", "status").output

    result = invoke(runner, workdir, "sign", "--all")
    assert result.exit_code == 0, result.output
    assert "已签发 alice" in result.output
    assert invoke(runner, workdir, "csr", "list").output.split() == []
    assert invoke(runner, workdir, "cert", "list").output.split() == ["alice"]

    assert invoke(runner, workdir, "download", "cert", "alice", "--out-dir", "dl").exit_code == 0
    assert invoke(runner, workdir, "download", "key", "alice", "--out-dir", "dl").exit_code == 0
    result = invoke(runner, workdir, "download", "pfx", "alice", "--password", "pw", "--out-dir", "dl")
    assert result.exit_code == 0, result.output

    cert = (workdir / "dl" / "alice.cer").read_bytes()
    key = (workdir / "dl" / "alice.key").read_bytes()
    assert core.validate_key_matches_cert(cert, key)
    assert core.load_pkcs12((workdir / "dl" / "alice.pfx").read_bytes(), "pw").certificate == cert


def test_submit_conflict_reported(runner, workdir, server):
    invoke(runner, workdir, "csr", "create", "bob")
    assert invoke(runner, workdir, "csr", "submit").exit_code == 0

    other = ["--client-id", "other"]
    invoke(runner, workdir, *other, "csr", "create", "bob")
    result = invoke(runner, workdir, *other, "csr", "submit")
    assert result.exit_code != 0
    assert "[conflict]" in result.output
    assert invoke(runner, workdir, *other, "csr", "status").output.strip() == "bob"


def test_sign_requires_target(runner, workdir, server):
    invoke(runner, workdir, "new-ca", "Target CA")
    result = invoke(runner, workdir, "sign")
    assert result.exit_code != 0


def test_pfx_before_signing_unavailable(runner, workdir, server):
    invoke(runner, workdir, "new-ca", "Early CA")
    invoke(runner, workdir, "csr", "create", "carol")
    invoke(runner, workdir, "csr", "submit")
    result = invoke(runner, workdir, "download", "pfx", "carol")
    assert result.exit_code != 0
    assert "[unavailable]" in result.output


def test_help_lists_commands(runner):
    result = runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    for command in ("new-ca", "newcert", "csr", "cert", "keys", "import-ca", "sign", "download"):
        assert command in result.output
    assert "暂存" in result.output
