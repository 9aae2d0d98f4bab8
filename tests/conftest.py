"""
Shared pytest fixtures.

FakeCA
------
An in-memory ACME server that implements the connector interface the Order
talks to (sign_request_kid / sign_request_jwk / post plus the account and
endpoint attributes).  Signing is skipped: the "signed" envelope is a plain
dict carrying the payload so tests can assert on what was sent.

Knobs:
  overrides         url -> AcmeResponse (or callable(payload) -> AcmeResponse)
  validation_polls  authorization fetches that still answer 'pending' after
                    the challenge was triggered
  processing_polls  order fetches that still answer 'processing' after finalize
  certificate_pem   body served at the certificate URL
  location_header   header name used for the new-order Location
"""
from __future__ import annotations

import copy
import datetime
import itertools
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import MagicMock

import josepy as jose
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID

from acme_order.connector import AcmeResponse
from acme_order.waiting import Waiter
from storage.order_files import OrderFiles

BASE = "https://ca.test"


# ─── Fake CA ──────────────────────────────────────────────────────────────────


@dataclass
class Call:
    url: str
    payload: Any
    accept: str
    signed_with: str      # "kid" | "jwk"
    key_path: Optional[str] = None


class FakeCA:
    def __init__(self, account_key: jose.JWKRSA) -> None:
        self.account_key = account_key
        self.account_url = f"{BASE}/acct/1"
        self.new_order = f"{BASE}/new-order"
        self.revoke_cert = f"{BASE}/revoke-cert"

        self.orders: Dict[str, dict] = {}
        self.authorizations: Dict[str, dict] = {}
        self.challenges: Dict[str, str] = {}            # challenge url -> authz url
        self.overrides: Dict[str, Any] = {}
        self.calls: List[Call] = []

        self.validation_polls = 0
        self.processing_polls = 1
        self.certificate_pem = ""
        self.location_header = "Location"

        self._ids = itertools.count(1)
        self._triggered: Dict[str, int] = {}             # authz url -> pending polls left
        self._processing: Dict[str, int] = {}            # order url -> processing polls left
        self._finalize: Dict[str, str] = {}              # finalize url -> order url

    # ── Connector interface ───────────────────────────────────────────────

    def sign_request_kid(self, payload, account_url, url):
        return {"payload": payload, "kid": account_url, "url": url}

    def sign_request_jwk(self, payload, url, key_path=None):
        return {"payload": payload, "jwk": str(key_path) if key_path else None, "url": url}

    def post(self, url, signed, accept="application/json"):
        payload = signed["payload"]
        self.calls.append(Call(
            url=url,
            payload=copy.deepcopy(payload),
            accept=accept,
            signed_with="kid" if "kid" in signed else "jwk",
            key_path=signed.get("jwk"),
        ))

        if url in self.overrides:
            override = self.overrides[url]
            return override(payload) if callable(override) else override

        if url == self.new_order:
            return self._create(payload)
        if url in self.orders:
            return self._get_order(url)
        if url in self.authorizations:
            return self._authorization(url, payload)
        if url in self.challenges:
            return self._respond_challenge(url)
        if url in self._finalize:
            return self._do_finalize(url)
        if url.startswith(f"{BASE}/cert/"):
            return AcmeResponse(200, {"Content-Type": "application/pem-certificate-chain"},
                                self.certificate_pem)
        if url == self.revoke_cert:
            return AcmeResponse(200, {}, "")
        return AcmeResponse(404, {}, {"type": "urn:ietf:params:acme:error:malformed"})

    # ── Helpers for tests ─────────────────────────────────────────────────

    def calls_to(self, url: str) -> List[Call]:
        return [c for c in self.calls if c.url == url]

    def authorization_for(self, identifier: str) -> dict:
        return next(a for a in self.authorizations.values() if a["identifier"]["value"] == identifier)

    # ── Server behavior ───────────────────────────────────────────────────

    def _create(self, payload) -> AcmeResponse:
        n = next(self._ids)
        order_url = f"{BASE}/order/{n}"
        auth_urls = []
        for i, ident in enumerate(payload["identifiers"]):
            value = ident["value"]
            wildcard = value.startswith("*.")
            auth_url = f"{BASE}/authz/{n}-{i}"
            kinds = ["dns-01"] if wildcard else ["http-01", "dns-01"]
            challenges = []
            for kind in kinds:
                ch_url = f"{BASE}/chall/{n}-{i}-{kind}"
                self.challenges[ch_url] = auth_url
                challenges.append({
                    "type": kind, "url": ch_url, "status": "pending",
                    "token": f"tok{n}{i}{kind.replace('-', '')}",
                })
            body = {
                "identifier": {"type": "dns", "value": value.removeprefix("*.")},
                "status": "pending",
                "expires": "2030-01-01T00:00:00Z",
                "challenges": challenges,
            }
            if wildcard:
                body["wildcard"] = True
            self.authorizations[auth_url] = body
            auth_urls.append(auth_url)

        order = {
            "status": "pending",
            "expires": "2030-01-01T00:00:00Z",
            "identifiers": payload["identifiers"],
            "authorizations": auth_urls,
            "finalize": f"{BASE}/finalize/{n}",
        }
        for key in ("notBefore", "notAfter"):
            if key in payload:
                order[key] = payload[key]
        self.orders[order_url] = order
        self._finalize[order["finalize"]] = order_url
        return AcmeResponse(201, {self.location_header: order_url}, copy.deepcopy(order))

    def _get_order(self, url: str) -> AcmeResponse:
        order = self.orders[url]
        if order["status"] == "processing":
            self._processing[url] -= 1
            if self._processing[url] <= 0:
                self._issue(url)
        return AcmeResponse(200, {}, copy.deepcopy(order))

    def _authorization(self, url: str, payload) -> AcmeResponse:
        auth = self.authorizations[url]
        if payload == {"status": "deactivated"}:
            auth["status"] = "deactivated"
        elif url in self._triggered:
            if self._triggered[url] > 0:
                self._triggered[url] -= 1
            else:
                del self._triggered[url]
                auth["status"] = "valid"
                for challenge in auth["challenges"]:
                    if challenge["status"] == "processing":
                        challenge["status"] = "valid"
                self._update_order_status()
        return AcmeResponse(200, {}, copy.deepcopy(auth))

    def _respond_challenge(self, url: str) -> AcmeResponse:
        auth_url = self.challenges[url]
        challenge = next(c for c in self.authorizations[auth_url]["challenges"] if c["url"] == url)
        challenge["status"] = "processing"
        self._triggered[auth_url] = self.validation_polls
        return AcmeResponse(200, {}, copy.deepcopy(challenge))

    def _do_finalize(self, url: str) -> AcmeResponse:
        order_url = self._finalize[url]
        order = self.orders[order_url]
        if order["status"] != "ready":
            return AcmeResponse(403, {}, {"type": "urn:ietf:params:acme:error:orderNotReady"})
        order["status"] = "processing"
        self._processing[order_url] = self.processing_polls
        if self.processing_polls <= 0:
            self._issue(order_url)
        return AcmeResponse(200, {}, copy.deepcopy(order))

    def _issue(self, order_url: str) -> None:
        order = self.orders[order_url]
        order["status"] = "valid"
        order["certificate"] = f"{BASE}/cert/{order_url.rsplit('/', 1)[-1]}"

    def _update_order_status(self) -> None:
        for order in self.orders.values():
            if order["status"] != "pending":
                continue
            auths = [self.authorizations[u] for u in order["authorizations"]]
            if all(a["status"] == "valid" for a in auths):
                order["status"] = "ready"


# ─── Waiter that never sleeps ─────────────────────────────────────────────────


class RecordingWaiter(Waiter):
    """Records requested sleeps; returns False once *budget* sleeps are used up."""

    def __init__(self, budget: Optional[int] = None) -> None:
        super().__init__()
        self.budget = budget
        self.sleeps: List[float] = []

    def sleep(self, seconds: float) -> bool:
        if self.budget is not None and len(self.sleeps) >= self.budget:
            return False
        self.sleeps.append(seconds)
        return True


# ─── Certificates ─────────────────────────────────────────────────────────────


def make_certificate(common_name: str, key=None, issuer_key=None, issuer_name: Optional[str] = None) -> str:
    """Self-signed (or issuer-signed) PEM certificate for tests."""
    key = key or ec.generate_private_key(ec.SECP256R1())
    issuer_key = issuer_key or key
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, issuer_name or common_name)])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=90))
        .sign(issuer_key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM).decode()


# ─── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def account_key() -> jose.JWKRSA:
    return jose.JWKRSA(key=rsa.generate_private_key(public_exponent=65537, key_size=2048))


@pytest.fixture()
def account_key_file(account_key, tmp_path: Path) -> Path:
    path = tmp_path / "account.key"
    path.write_bytes(account_key.key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ))
    return path


@pytest.fixture()
def ca(account_key) -> FakeCA:
    return FakeCA(account_key)


@pytest.fixture()
def files(tmp_path: Path) -> OrderFiles:
    return OrderFiles.in_directory(tmp_path / "order")


@pytest.fixture()
def waiter() -> RecordingWaiter:
    return RecordingWaiter()


@pytest.fixture()
def checker() -> MagicMock:
    """Local pre-check stand-in that always passes."""
    mock = MagicMock()
    mock.check_http.return_value = True
    mock.check_dns.return_value = True
    return mock


@pytest.fixture()
def make_order(ca, files, waiter, checker) -> Callable:
    from acme_order.order import Order

    def _make(domains=("example.org",), primary_name=None, key_type="ec-256", **kwargs):
        kwargs.setdefault("waiter", waiter)
        kwargs.setdefault("checker", checker)
        return Order(ca, files, primary_name or domains[0].removeprefix("*."), list(domains),
                     key_type, **kwargs)

    return _make


@pytest.fixture(scope="session")
def pem_chain() -> List[str]:
    """[leaf, intermediate, root] PEM blocks, each without trailing newline."""
    root_key = ec.generate_private_key(ec.SECP256R1())
    inter_key = ec.generate_private_key(ec.SECP256R1())
    root = make_certificate("Test Root", key=root_key)
    inter = make_certificate("Test Intermediate", key=inter_key, issuer_key=root_key,
                             issuer_name="Test Root")
    leaf = make_certificate("example.org", issuer_key=inter_key, issuer_name="Test Intermediate")
    return [leaf.strip(), inter.strip(), root.strip()]
