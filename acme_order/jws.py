"""
JWK / JWS utilities for the ACME protocol (RFC 8555 §6.2).

Uses *josepy* for the RSA account key and plain *cryptography* for everything
else.  Two header forms are supported:

  - ``kid``: signed with the account key, header carries the account URL
  - ``jwk``: header carries the public key itself; used for revocation, where
    the request is signed with the certificate's own key (RSA or EC)
"""
from __future__ import annotations

import base64
import json
from pathlib import Path
from typing import Any, Union

from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from josepy.jwk import JWKRSA

SigningKey = Union[JWKRSA, rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey]

# curve key size -> (JWS alg, digest, JWK crv)
_EC_ALGORITHMS = {
    256: ("ES256", hashes.SHA256, "P-256"),
    384: ("ES384", hashes.SHA384, "P-384"),
}


# ─── Key I/O ──────────────────────────────────────────────────────────────────


def load_account_key(path: str | Path) -> JWKRSA:
    """Load the RSA account key from a PEM file."""
    key = load_private_key(path)
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ValueError(f"Account key at {path} is not an RSA key")
    return JWKRSA(key=key)


def load_private_key(path: str | Path) -> rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey:
    """Load an unencrypted RSA or EC private key from a PEM file."""
    pem = Path(path).read_bytes()
    return serialization.load_pem_private_key(pem, password=None, backend=default_backend())


# ─── JWK ──────────────────────────────────────────────────────────────────────


def public_jwk(key: SigningKey) -> dict:
    """Return the public JWK dict for *key*, including ``kty``."""
    key = _normalize(key)
    if isinstance(key, JWKRSA):
        jwk = key.public_key().fields_to_partial_json()
        jwk["kty"] = "RSA"
        return jwk

    numbers = key.public_key().public_numbers()
    size = (key.curve.key_size + 7) // 8
    _, _, crv = _ec_algorithm(key)
    return {
        "crv": crv,
        "kty": "EC",
        "x": b64url(numbers.x.to_bytes(size, "big")),
        "y": b64url(numbers.y.to_bytes(size, "big")),
    }


# ─── JWS signing ─────────────────────────────────────────────────────────────


def sign_request(
    payload: dict | None,
    key: SigningKey,
    nonce: str,
    url: str,
    account_url: str | None = None,
) -> dict:
    """
    Sign an ACME request payload and return the flattened JWS dict to POST.

    *payload* None produces the empty payload used for POST-as-GET.
    If *account_url* is set the header uses the "kid" form, otherwise the full
    public JWK is embedded.
    """
    key = _normalize(key)
    header: dict[str, Any] = {
        "alg": _alg(key),
        "nonce": nonce,
        "url": url,
    }
    if account_url:
        header["kid"] = account_url
    else:
        header["jwk"] = public_jwk(key)

    protected = b64url(json.dumps(header).encode())
    payload_b64 = "" if payload is None else b64url(json.dumps(payload).encode())

    signing_input = f"{protected}.{payload_b64}".encode()
    return {
        "protected": protected,
        "payload": payload_b64,
        "signature": b64url(_sign(key, signing_input)),
    }


# ─── Helpers ──────────────────────────────────────────────────────────────────


def b64url(data: bytes) -> str:
    """URL-safe base64 encoding with no padding (as required by JOSE)."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def b64url_decode(s: str) -> bytes:
    """URL-safe base64 decode, adding padding as needed."""
    return base64.urlsafe_b64decode(s + "=" * (-len(s) % 4))


def _normalize(key: SigningKey) -> JWKRSA | ec.EllipticCurvePrivateKey:
    if isinstance(key, rsa.RSAPrivateKey):
        return JWKRSA(key=key)
    return key


def _ec_algorithm(key: ec.EllipticCurvePrivateKey) -> tuple:
    try:
        return _EC_ALGORITHMS[key.curve.key_size]
    except KeyError:
        raise ValueError(f"Unsupported EC curve: {key.curve.name}") from None


def _alg(key: JWKRSA | ec.EllipticCurvePrivateKey) -> str:
    if isinstance(key, JWKRSA):
        return "RS256"
    return _ec_algorithm(key)[0]


def _sign(key: JWKRSA | ec.EllipticCurvePrivateKey, data: bytes) -> bytes:
    if isinstance(key, JWKRSA):
        return key.key.sign(data, padding.PKCS1v15(), hashes.SHA256())

    # JWS wants the raw r || s concatenation, not the DER structure
    _, digest, _ = _ec_algorithm(key)
    r, s = decode_dss_signature(key.sign(data, ec.ECDSA(digest())))
    size = (key.curve.key_size + 7) // 8
    return r.to_bytes(size, "big") + s.to_bytes(size, "big")
