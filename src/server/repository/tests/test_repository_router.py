"""
证书仓库公开接口的测试：通过 HTTP 路由验证状态码与载荷，不测试内部实现。
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from unittest.mock import patch

from src.pki import core
from src.pki.errors import ConflictError, NotFoundError
from src.server.config import config
from src.server.repository import services
from src.server.repository.router import router
from src.server.repository.store import MemoryCertificateRepository

app = FastAPI()
app.include_router(router, prefix="/v1")
client = TestClient(app)


@pytest.fixture(scope="module")
def ca():
    cert, key = core.new_ca("Router Test CA")
    return core.load_ca(cert, key)


@pytest.fixture(autouse=True)
def fresh_repository(tmp_path, monkeypatch, ca):
    """每个测试使用独立的内存仓库与 CA 证书文件"""
    ca_file = tmp_path / "ca.cert"
    ca_file.write_bytes(ca.certificate)
    monkeypatch.setattr(config, "ca_cert_file", str(ca_file))
    monkeypatch.setattr(config, "verify_issuer", True)
    services.set_repository(MemoryCertificateRepository())
    yield
    services.set_repository(None)


def _signed(ca, name):
    key, csr = core.make_csr(name)
    return key, csr, core.sign_csr(ca.certificate, ca.private_key, csr)


def test_lifecycle_over_http(ca):
    """提交 → 列表 → 获取 → 发布 → CSR 退役"""
    _, csr, cert = _signed(ca, "alice")

    assert client.post("/v1/csr/alice", content=csr).status_code == 201
    assert client.get("/v1/csr/").json() == ["alice"]
    resp = client.get("/v1/csr/alice")
    assert resp.status_code == 200
    assert resp.content == csr

    assert client.post("/v1/cert/alice", content=cert).status_code == 201
    assert client.get("/v1/csr/").json() == []
    assert client.get("/v1/cert/").json() == ["alice"]
    assert client.get("/v1/cert/alice").content == cert
    assert client.get("/v1/csr/alice").status_code == 404


def test_lists_are_sorted(ca):
    for name in ["zed", "amy", "mia"]:
        _, csr = core.make_csr(name)
        client.post(f"/v1/csr/{name}", content=csr)
    assert client.get("/v1/csr/").json() == ["amy", "mia", "zed"]


def test_duplicate_submit_conflicts(ca):
    _, first = core.make_csr("bob")
    _, second = core.make_csr("bob")
    assert client.post("/v1/csr/bob", content=first).status_code == 201
    resp = client.post("/v1/csr/bob", content=second)
    assert resp.status_code == 409
    assert client.get("/v1/csr/bob").content == first


def test_publish_without_csr_conflicts(ca):
    _, _, cert = _signed(ca, "carol")
    resp = client.post("/v1/cert/carol", content=cert)
    assert resp.status_code == 409
    assert client.get("/v1/cert/").json() == []


def test_second_publish_rejected(ca):
    _, csr = core.make_csr("dave")
    client.post("/v1/csr/dave", content=csr)
    cert1 = core.sign_csr(ca.certificate, ca.private_key, csr)
    cert2 = core.sign_csr(ca.certificate, ca.private_key, csr)
    assert client.post("/v1/cert/dave", content=cert1).status_code == 201
    assert client.post("/v1/cert/dave", content=cert2).status_code == 409
    assert client.get("/v1/cert/dave").content == cert1


def test_invalid_name_rejected():
    _, csr = core.make_csr("erin")
    assert client.post("/v1/csr/-erin", content=csr).status_code == 400
    assert client.get("/v1/cert/.hidden").status_code == 400


def test_invalid_csr_rejected():
    resp = client.post("/v1/csr/frank", content=b"definitely not a csr")
    assert resp.status_code == 400
    assert client.get("/v1/csr/").json() == []


def test_publish_with_foreign_public_key_rejected(ca):
    """证书公钥与待签 CSR 不一致时拒绝发布"""
    _, csr = core.make_csr("grace")
    _, other_csr = core.make_csr("grace")
    client.post("/v1/csr/grace", content=csr)
    foreign = core.sign_csr(ca.certificate, ca.private_key, other_csr)
    assert client.post("/v1/cert/grace", content=foreign).status_code == 400
    assert client.get("/v1/csr/").json() == ["grace"]


def test_publish_from_other_ca_rejected(ca):
    other = core.load_ca(*core.new_ca("Rogue CA"))
    _, csr = core.make_csr("heidi")
    client.post("/v1/csr/heidi", content=csr)
    cert = core.sign_csr(other.certificate, other.private_key, csr)
    assert client.post("/v1/cert/heidi", content=cert).status_code == 400
    assert client.get("/v1/csr/").json() == ["heidi"]


def test_publish_from_other_ca_accepted_without_issuer_check(ca, monkeypatch):
    monkeypatch.setattr(config, "verify_issuer", False)
    other = core.load_ca(*core.new_ca("Another CA"))
    _, csr = core.make_csr("ivan")
    client.post("/v1/csr/ivan", content=csr)
    cert = core.sign_csr(other.certificate, other.private_key, csr)
    assert client.post("/v1/cert/ivan", content=cert).status_code == 201


def test_publish_garbage_rejected():
    _, csr = core.make_csr("judy")
    client.post("/v1/csr/judy", content=csr)
    assert client.post("/v1/cert/judy", content=b"junk").status_code == 400


@patch("src.server.repository.services.get_certificate_service")
def test_not_found_maps_to_404(mock_service):
    mock_service.side_effect = NotFoundError("证书不存在: x")
    resp = client.get("/v1/cert/x")
    assert resp.status_code == 404
    assert resp.json() == {"detail": "证书不存在: x"}


@patch("src.server.repository.services.submit_csr_service")
def test_conflict_maps_to_409(mock_service):
    mock_service.side_effect = ConflictError("名称已被使用: x")
    assert client.post("/v1/csr/x", content=b"").status_code == 409


@patch("src.server.repository.services.list_pending_service")
def test_unexpected_error_maps_to_500(mock_service):
    mock_service.side_effect = Exception("Unexpected error")
    resp = client.get("/v1/csr/")
    assert resp.status_code == 500
    assert "内部服务器错误" in resp.json()["detail"]
