"""
针对证书仓库服务层的测试：名称与载荷校验、仓库实例的创建。
"""

import pytest

from src.pki import core
from src.pki.errors import ConflictError, InvalidError, NotFoundError
from src.server.config import config
from src.server.repository import services
from src.server.repository.store import FileCertificateRepository, MemoryCertificateRepository


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "ca_cert_file", str(tmp_path / "missing.cert"))
    services.set_repository(MemoryCertificateRepository())
    yield
    services.set_repository(None)


def test_repository_created_from_config(tmp_path, monkeypatch):
    services.set_repository(None)
    monkeypatch.setattr(config, "storage", "file")
    monkeypatch.setattr(config, "data_dir", str(tmp_path / "store"))
    repo = services.get_repository()
    assert isinstance(repo, FileCertificateRepository)
    assert services.get_repository() is repo
    assert (tmp_path / "store" / "csr").is_dir()

    services.set_repository(None)
    monkeypatch.setattr(config, "storage", "memory")
    assert isinstance(services.get_repository(), MemoryCertificateRepository)


def test_submit_and_publish_without_ca_configured():
    """服务端没有 CA 证书时只校验公钥一致"""
    ca = core.load_ca(*core.new_ca("Service CA"))
    _, csr = core.make_csr("alice")
    services.submit_csr_service("alice", csr)
    assert services.list_pending_service() == ["alice"]

    cert = core.sign_csr(ca.certificate, ca.private_key, csr)
    services.publish_certificate_service("alice", cert)
    assert services.list_pending_service() == []
    assert services.list_certificates_service() == ["alice"]
    assert services.get_certificate_service("alice") == cert


def test_submit_pem_csr_accepted():
    _, csr_der = core.make_csr("bob")
    from cryptography import x509
    from cryptography.hazmat.primitives import serialization

    csr_pem = x509.load_der_x509_csr(csr_der).public_bytes(serialization.Encoding.PEM)
    services.submit_csr_service("bob", csr_pem)
    assert services.get_csr_service("bob") == csr_pem


def test_invalid_inputs():
    with pytest.raises(InvalidError):
        services.submit_csr_service("bad name", b"")
    with pytest.raises(InvalidError):
        services.submit_csr_service("carol", b"garbage")
    with pytest.raises(InvalidError):
        services.get_csr_service("../etc")
    with pytest.raises(NotFoundError):
        services.get_csr_service("nobody")


def test_publish_requires_pending():
    ca = core.load_ca(*core.new_ca("Service CA 2"))
    _, csr = core.make_csr("dave")
    cert = core.sign_csr(ca.certificate, ca.private_key, csr)
    with pytest.raises(ConflictError):
        services.publish_certificate_service("dave", cert)


class _RetiredBetweenCalls(MemoryCertificateRepository):
    """CSR 在列出之后、读取之前被其他签发方退役"""

    def get_csr(self, name):
        raise NotFoundError(f"CSR 不存在: {name}")


def test_publish_after_concurrent_retire_conflicts():
    repository = _RetiredBetweenCalls()
    services.set_repository(repository)
    ca = core.load_ca(*core.new_ca("Service CA 3"))
    _, csr = core.make_csr("erin")
    repository.submit_csr("erin", csr)
    cert = core.sign_csr(ca.certificate, ca.private_key, csr)
    with pytest.raises(ConflictError):
        services.publish_certificate_service("erin", cert)
    assert repository.list_certificates() == set()
