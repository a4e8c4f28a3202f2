"""
证书工作流使用的密码学能力（Crypto Engine）。
包括生成私钥与 CSR、用 CA 签发证书、校验 CA 私钥与证书是否匹配、
组装与解析 PKCS#12 包，以及生成自签 CA。

所有输入输出均为 bytes：CSR 为 DER，证书与私钥为 PEM。
解析函数同时接受 PEM 与 DER，格式错误时抛出 InvalidError。
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Tuple

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519, rsa
from cryptography.hazmat.primitives.asymmetric.types import (
    CertificateIssuerPrivateKeyTypes,
    PrivateKeyTypes,
)
from cryptography.hazmat.primitives.serialization import (
    BestAvailableEncryption,
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
    pkcs12,
)
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID
from loguru import logger

from .errors import CAKeyMismatchError, InvalidError

DEFAULT_CERT_VALIDITY = timedelta(days=360)
DEFAULT_CA_VALIDITY = timedelta(days=3650)
MAX_NAME_LENGTH = 64

_NAME_RE = re.compile(r"^[0-9A-Za-z][0-9A-Za-z.\-]*$")
_PEM_BLOCK_RE = re.compile(
    rb"-----BEGIN ([A-Z ]+)-----[\s\S]*?-----END \1-----"
)


@dataclass(frozen=True)
class CAMaterial:
    """CA 证书与私钥（PEM），name 取自证书主体的 Common Name。"""

    name: str
    certificate: bytes
    private_key: bytes = field(repr=False)


@dataclass(frozen=True)
class PKCS12Contents:
    """从 PKCS#12 包中解析出的内容（PEM）。"""

    private_key: bytes = field(repr=False)
    certificate: bytes
    ca_certificates: List[bytes]


def valid_name(name: str) -> bool:
    """
    判断名称是否可以作为证书主体名与存储键。
    仅允许字母、数字、'.' 与 '-'，不能以 '-' 或 '.' 开头。
    :param name: 待检查的名称。
    :return: 合法返回 True。
    """
    if not name or len(name) > MAX_NAME_LENGTH:
        return False
    return _NAME_RE.match(name) is not None


def _pem_block(data: bytes, *labels: bytes) -> bytes | None:
    for match in _PEM_BLOCK_RE.finditer(data):
        if match.group(1) in labels:
            return match.group(0)
    return None


def load_certificate(data: bytes) -> x509.Certificate:
    """
    解析证书，兼容 PEM（取第一个 CERTIFICATE 块）与 DER。
    :raises InvalidError: 无法识别/解析证书时。
    """
    try:
        if b"-----BEGIN" in data:
            block = _pem_block(data, b"CERTIFICATE")
            if block is None:
                raise ValueError("缺少 CERTIFICATE 块")
            return x509.load_pem_x509_certificate(block)
        return x509.load_der_x509_certificate(data)
    except (ValueError, TypeError) as e:
        raise InvalidError(f"无效的证书格式: {e}") from e


def load_csr(data: bytes) -> x509.CertificateSigningRequest:
    """
    解析 CSR，兼容 PEM 与 DER。
    :raises InvalidError: 无法解析时。
    """
    try:
        if b"-----BEGIN" in data:
            block = _pem_block(data, b"CERTIFICATE REQUEST", b"NEW CERTIFICATE REQUEST")
            if block is None:
                raise ValueError("缺少 CERTIFICATE REQUEST 块")
            return x509.load_pem_x509_csr(block)
        return x509.load_der_x509_csr(data)
    except (ValueError, TypeError) as e:
        raise InvalidError(f"无效的 CSR 格式: {e}") from e


def load_private_key(data: bytes) -> PrivateKeyTypes:
    """
    解析未加密的私钥，兼容 PEM 与 DER。
    :raises InvalidError: 无法解析时。
    """
    try:
        if b"-----BEGIN" in data:
            block = _pem_block(data, b"PRIVATE KEY", b"EC PRIVATE KEY", b"RSA PRIVATE KEY")
            if block is None:
                raise ValueError("缺少 PRIVATE KEY 块")
            return serialization.load_pem_private_key(block, password=None)
        return serialization.load_der_private_key(data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise InvalidError(f"无效的私钥格式: {e}") from e


def _private_key_pem(key: PrivateKeyTypes) -> bytes:
    return key.private_bytes(
        encoding=Encoding.PEM,
        format=PrivateFormat.PKCS8,
        encryption_algorithm=NoEncryption(),
    )


def _public_key_der(key) -> bytes:
    return key.public_bytes(
        encoding=Encoding.DER,
        format=PublicFormat.SubjectPublicKeyInfo,
    )


def _hash_for_key(key) -> hashes.HashAlgorithm | None:
    """按签名私钥选择摘要算法；Ed25519/Ed448 不需要单独的摘要。"""
    if isinstance(key, (ed25519.Ed25519PrivateKey, ed448.Ed448PrivateKey)):
        return None
    if isinstance(key, ec.EllipticCurvePrivateKey):
        if key.curve.key_size >= 521:
            return hashes.SHA512()
        if key.curve.key_size >= 384:
            return hashes.SHA384()
    return hashes.SHA256()


def common_name(name: x509.Name) -> str | None:
    try:
        return name.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value
    except (IndexError, AttributeError):
        return None


def make_csr(name: str) -> Tuple[bytes, bytes]:
    """
    生成新的 EC P-256 私钥，并构造主体为 name 的 CSR。
    :param name: 主体名称，同时写入 CN 与 SAN DNSName。
    :return: (PKCS#8 PEM 私钥, DER 编码的 CSR)
    :raises InvalidError: 名称不合法时。
    """
    if not valid_name(name):
        raise InvalidError(f"无效的名称: {name!r}")

    private_key = ec.generate_private_key(ec.SECP256R1())
    csr = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, name)]))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(name)]), critical=False)
        .sign(private_key, hashes.SHA256())
    )
    logger.debug(f"已为 {name} 生成私钥与 CSR")
    return _private_key_pem(private_key), csr.public_bytes(Encoding.DER)


def validate_key_matches_cert(cert: bytes, key: bytes) -> bool:
    """
    校验私钥是否为证书中公钥的对应私钥。
    :return: 匹配返回 True，不匹配返回 False。
    :raises InvalidError: 证书或私钥无法解析时（与不匹配区分开）。
    """
    certificate = load_certificate(cert)
    private_key = load_private_key(key)
    return _public_key_der(certificate.public_key()) == _public_key_der(private_key.public_key())


def csr_matches_certificate(csr: bytes, cert: bytes) -> bool:
    """判断证书携带的公钥是否与 CSR 中的公钥一致。"""
    request = load_csr(csr)
    certificate = load_certificate(cert)
    return _public_key_der(request.public_key()) == _public_key_der(certificate.public_key())


def is_issued_by(cert: bytes, ca_cert: bytes) -> bool:
    """
    判断证书是否由给定 CA 直接签发：签发者与 CA 主体一致且签名可以被 CA 公钥验证。
    """
    certificate = load_certificate(cert)
    ca = load_certificate(ca_cert)
    if certificate.issuer != ca.subject:
        return False
    try:
        certificate.verify_directly_issued_by(ca)
        return True
    except (ValueError, TypeError, InvalidSignature):
        return False


def load_ca(first: bytes, second: bytes) -> CAMaterial:
    """
    从两份文件内容中解析 CA 证书与私钥，两者顺序不限。
    :param first: 证书或私钥文件内容。
    :param second: 另一份文件内容。
    :return: 校验通过的 CAMaterial。
    :raises CAKeyMismatchError: 两者都能解析但私钥与证书不匹配时。
    :raises InvalidError: 无法从输入中解析出证书与私钥时。
    """
    for cert_bytes, key_bytes in ((first, second), (second, first)):
        try:
            certificate = load_certificate(cert_bytes)
            private_key = load_private_key(key_bytes)
        except InvalidError:
            continue
        if _public_key_der(certificate.public_key()) != _public_key_der(private_key.public_key()):
            raise CAKeyMismatchError("CA 私钥与 CA 证书不匹配")
        name = common_name(certificate.subject) or certificate.subject.rfc4514_string()
        return CAMaterial(
            name=name,
            certificate=certificate.public_bytes(Encoding.PEM),
            private_key=_private_key_pem(private_key),
        )
    raise InvalidError("无法从输入中解析 CA 证书与私钥")


def sign_csr(
    ca_cert: bytes,
    ca_key: bytes,
    csr: bytes,
    validity: timedelta = DEFAULT_CERT_VALIDITY,
) -> bytes:
    """
    使用 CA 对 CSR 签名，返回 PEM 证书。
    主体与 SAN 复制自 CSR，用途为 digitalSignature/keyEncipherment，
    扩展用途为 serverAuth 与 clientAuth。
    :raises InvalidError: CSR 无法解析或自签名无效时。
    :raises CAKeyMismatchError: CA 私钥与证书不匹配时。
    """
    ca = load_certificate(ca_cert)
    ca_private_key = load_private_key(ca_key)
    if _public_key_der(ca.public_key()) != _public_key_der(ca_private_key.public_key()):
        raise CAKeyMismatchError("CA 私钥与 CA 证书不匹配")
    if not isinstance(
        ca_private_key,
        (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey, ed25519.Ed25519PrivateKey, ed448.Ed448PrivateKey),
    ):
        raise InvalidError("不支持的 CA 私钥类型")
    issuer_key: CertificateIssuerPrivateKeyTypes = ca_private_key

    request = load_csr(csr)
    if not request.is_signature_valid:
        raise InvalidError("CSR 签名无效")

    now = datetime.now(timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(request.subject)
        .issuer_name(ca.subject)
        .public_key(request.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + validity)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                key_encipherment=True,
                key_cert_sign=False,
                crl_sign=False,
                content_commitment=False,
                data_encipherment=False,
                key_agreement=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]),
            critical=False,
        )
    )

    # 仅复制 CSR 中请求的 SAN
    try:
        san = request.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        builder = builder.add_extension(san.value, critical=san.critical)
    except x509.ExtensionNotFound:
        pass

    cert = builder.sign(private_key=issuer_key, algorithm=_hash_for_key(issuer_key))
    logger.info(f"已签发证书: subject={request.subject.rfc4514_string()}, serial=0x{cert.serial_number:x}")
    return cert.public_bytes(Encoding.PEM)


def new_ca(common_name_value: str, validity: timedelta = DEFAULT_CA_VALIDITY) -> Tuple[bytes, bytes]:
    """
    生成新的自签 CA（EC P-521，路径长度为 0）。
    :return: (PEM 证书, PKCS#8 PEM 私钥)
    """
    ca_key = ec.generate_private_key(ec.SECP521R1())
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name_value)])
    now = datetime.now(timezone.utc)
    ca_cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(ca_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + validity)
        .add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=False,
                key_encipherment=False,
                key_cert_sign=True,
                crl_sign=False,
                content_commitment=False,
                data_encipherment=False,
                key_agreement=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .sign(private_key=ca_key, algorithm=hashes.SHA512())
    )
    logger.info(f"已生成自签 CA: {common_name_value}")
    return ca_cert.public_bytes(Encoding.PEM), _private_key_pem(ca_key)


def build_pkcs12(
    cert: bytes,
    key: bytes,
    ca_cert: bytes,
    password: str,
    friendly_name: str | None = None,
) -> bytes:
    """
    组装 PKCS#12 包（证书、私钥与 CA 证书）。
    空密码被接受，此时生成不加密的包。
    :raises InvalidError: 输入无法解析，或私钥与证书不匹配时。
    """
    certificate = load_certificate(cert)
    private_key = load_private_key(key)
    ca = load_certificate(ca_cert)
    if _public_key_der(certificate.public_key()) != _public_key_der(private_key.public_key()):
        raise InvalidError("私钥与证书不匹配")

    encryption = BestAvailableEncryption(password.encode("utf-8")) if password else NoEncryption()
    name = friendly_name or common_name(certificate.subject)
    return pkcs12.serialize_key_and_certificates(
        name=name.encode("utf-8") if name else None,
        key=private_key,
        cert=certificate,
        cas=[ca],
        encryption_algorithm=encryption,
    )


def load_pkcs12(bundle: bytes, password: str) -> PKCS12Contents:
    """
    build_pkcs12 的逆操作。
    :raises InvalidError: 密码错误或数据损坏时。
    """
    try:
        private_key, certificate, cas = pkcs12.load_key_and_certificates(
            bundle, password.encode("utf-8") if password else None
        )
    except (ValueError, TypeError) as e:
        raise InvalidError(f"无法解析 PKCS#12: {e}") from e
    if private_key is None or certificate is None:
        raise InvalidError("PKCS#12 中缺少证书或私钥")
    return PKCS12Contents(
        private_key=_private_key_pem(private_key),
        certificate=certificate.public_bytes(Encoding.PEM),
        ca_certificates=[ca.public_bytes(Encoding.PEM) for ca in cas],
    )
