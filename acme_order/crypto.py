"""
Certificate key material and CSR creation.

Boundary: this module owns everything cryptographic that is *certificate*-
specific.  Account-key signing lives in acme_order/jws.py.
"""
from __future__ import annotations

import re
from typing import List, Sequence, Tuple

from cryptography import x509
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID

from acme_order.errors import InvalidKeyType

PrivateKey = rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey

DEFAULT_KEY_SIZES = {"rsa": 4096, "ec": 256}
MIN_RSA_KEY_SIZE = 1024

_EC_CURVES = {256: ec.SECP256R1, 384: ec.SECP384R1}
_KEY_TYPE = re.compile(r"(rsa|ec)-([0-9]{3,4})")
_PEM_CERTIFICATE = re.compile(
    r"-----BEGIN\sCERTIFICATE-----[\s\S]+?-----END\sCERTIFICATE-----", re.IGNORECASE
)


# ─── Key type & generation ────────────────────────────────────────────────────


def parse_key_type(key_type: str) -> Tuple[str, int]:
    """
    Parse ``rsa``, ``ec``, ``rsa-<bits>`` or ``ec-<bits>`` into (algorithm, size).

    Raises InvalidKeyType for anything else, including EC sizes with no curve
    and RSA sizes below MIN_RSA_KEY_SIZE.
    """
    if key_type in DEFAULT_KEY_SIZES:
        return key_type, DEFAULT_KEY_SIZES[key_type]

    match = _KEY_TYPE.fullmatch(key_type or "")
    if not match:
        raise InvalidKeyType(key_type)
    algorithm, size = match.group(1), int(match.group(2))
    if algorithm == "ec" and size not in _EC_CURVES:
        raise InvalidKeyType(key_type)
    if algorithm == "rsa" and size < MIN_RSA_KEY_SIZE:
        raise InvalidKeyType(key_type)
    return algorithm, size


def generate_private_key(algorithm: str, size: int) -> PrivateKey:
    if algorithm == "rsa":
        return rsa.generate_private_key(
            public_exponent=65537,
            key_size=size,
            backend=default_backend(),
        )
    if algorithm == "ec" and size in _EC_CURVES:
        return ec.generate_private_key(_EC_CURVES[size](), default_backend())
    raise InvalidKeyType(f"{algorithm}-{size}")


def private_key_to_pem(key: PrivateKey) -> str:
    """Serialize a private key to an unencrypted PKCS#8 PEM string."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


def public_key_to_pem(key: PrivateKey) -> str:
    return key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()


# ─── CSR ──────────────────────────────────────────────────────────────────────


def select_common_name(identifiers: Sequence[str], primary_name: str) -> str:
    """
    Pick the certificate CN: the primary name itself, else its wildcard form,
    else the first identifier of the order.
    """
    if primary_name in identifiers:
        return primary_name
    if f"*.{primary_name}" in identifiers:
        return f"*.{primary_name}"
    return identifiers[0]


def subject_alt_names(identifiers: Sequence[str]) -> str:
    """OpenSSL-style SAN line, e.g. ``DNS:example.org,DNS:www.example.org``."""
    return ",".join(f"DNS:{d}" for d in identifiers)


def build_csr(identifiers: Sequence[str], primary_name: str, private_key: PrivateKey) -> str:
    """
    Create a PEM CSR covering every identifier as a DNS SAN.

    Does not touch order state: the result depends only on the arguments.
    """
    if not identifiers:
        raise ValueError("Cannot build a CSR without identifiers")

    common_name = select_common_name(identifiers, primary_name)
    builder = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)]))
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=False)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=True,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=False,
        )
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName(d) for d in identifiers]),
            critical=False,
        )
    )
    csr = builder.sign(private_key, hashes.SHA256())
    return csr.public_bytes(serialization.Encoding.PEM).decode()


def csr_to_der(csr_pem: str | bytes) -> bytes:
    data = csr_pem.encode() if isinstance(csr_pem, str) else csr_pem
    csr = x509.load_pem_x509_csr(data, default_backend())
    return csr.public_bytes(serialization.Encoding.DER)


# ─── Certificates ─────────────────────────────────────────────────────────────


def split_pem_certificates(text: str) -> List[str]:
    """Every PEM certificate block in *text*, in order (leaf first)."""
    return _PEM_CERTIFICATE.findall(text or "")


def certificate_der(cert_pem: str) -> bytes:
    cert = x509.load_pem_x509_certificate(cert_pem.encode(), default_backend())
    return cert.public_bytes(serialization.Encoding.DER)
