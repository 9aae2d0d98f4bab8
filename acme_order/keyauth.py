"""
Key-authorization computation (RFC 8555 §8.1, §8.4).

    thumbprint        = base64url(SHA-256({"e":…,"kty":"RSA","n":…}))
    key_authorization = token + "." + thumbprint
    dns-01 TXT value  = base64url(SHA-256(key_authorization))

Pure functions: challenge enumeration and verification both go through here,
so the values they produce are byte-identical.
"""
from __future__ import annotations

import hashlib
import json

from acme_order.jws import b64url


def thumbprint(e: int, n: int) -> str:
    """Thumbprint of an RSA public key given its exponent and modulus."""
    jwk = {"e": b64url(_int_bytes(e)), "kty": "RSA", "n": b64url(_int_bytes(n))}
    canonical = json.dumps(jwk, sort_keys=True, separators=(",", ":"))
    return b64url(hashlib.sha256(canonical.encode()).digest())


def account_thumbprint(account_key) -> str:
    """Thumbprint of an account key (a josepy JWKRSA or a cryptography RSA key)."""
    key = getattr(account_key, "key", account_key)
    public = key.public_key() if hasattr(key, "private_numbers") else key
    numbers = public.public_numbers()
    return thumbprint(numbers.e, numbers.n)


def key_authorization(token: str, account_thumbprint: str) -> str:
    return f"{token}.{account_thumbprint}"


def dns_digest(key_auth: str) -> str:
    """Value of the _acme-challenge TXT record for a dns-01 key authorization."""
    return b64url(hashlib.sha256(key_auth.encode("ascii")).digest())


def _int_bytes(value: int) -> bytes:
    return value.to_bytes((value.bit_length() + 7) // 8 or 1, "big")
