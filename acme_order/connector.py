"""
ACME connector: signs requests, POSTs them, and tracks the account identity.

The connector holds no order-specific state, so one instance can be shared by
several Order objects.  The nonce cache and the directory are guarded by a
lock for that reason.

RFC 8555 notes
--------------
* Every request consumes one anti-replay nonce.  The connector remembers the
  ``Replay-Nonce`` of the last response and falls back to ``HEAD newNonce``.
* A ``None`` payload signs the empty string, i.e. POST-as-GET.
* Non-2xx answers are returned, not raised; the caller decides what counts as
  success (201 for new orders, 200 for everything else).
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

import requests

from acme_order import jws as jwslib

logger = logging.getLogger(__name__)

PEM_CHAIN = "application/pem-certificate-chain"


class AcmeError(Exception):
    """Raised when the ACME server cannot be reached or answers unusably."""

    def __init__(self, status_code: int, body: dict, new_nonce: str = "") -> None:
        self.status_code = status_code
        self.body = body
        self.new_nonce = new_nonce
        problem_type = body.get("type", "unknown")
        detail = body.get("detail", str(body))
        super().__init__(f"ACME {status_code}: {problem_type} — {detail}")


@dataclass
class AcmeResponse:
    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup that also works on plain dicts."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None


class AcmeConnector:
    """RFC 8555 transport bound to one account key."""

    def __init__(
        self,
        directory_url: str,
        account_key_path: str | Path,
        account_url: str = "",
        timeout: int = 30,
        ca_bundle: str = "",
        insecure: bool = False,
        session: requests.Session | None = None,
    ) -> None:
        self.directory_url = directory_url
        self.account_key_path = Path(account_key_path)
        self.account_key = jwslib.load_account_key(account_key_path)
        self.account_url = account_url
        self.timeout = timeout

        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": "acme-order-manager/1.0"})
        if insecure:
            import urllib3
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
            self._session.verify = False
        elif ca_bundle:
            self._session.verify = ca_bundle

        self._lock = threading.Lock()
        self._directory: dict | None = None
        self._nonce: str | None = None

    # ── Directory & nonce ─────────────────────────────────────────────────

    @property
    def directory(self) -> dict:
        with self._lock:
            if self._directory is None:
                self._directory = self.get_directory()
            return self._directory

    @property
    def new_order(self) -> str:
        return self.directory["newOrder"]

    @property
    def revoke_cert(self) -> str:
        return self.directory["revokeCert"]

    def get_directory(self) -> dict:
        """GET /directory — discover ACME endpoint URLs."""
        try:
            resp = self._session.get(self.directory_url, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise AcmeError(0, {"type": "directory", "detail": str(exc)}) from exc

    def get_nonce(self) -> str:
        """HEAD /newNonce — fetch a fresh anti-replay nonce."""
        try:
            resp = self._session.head(self.directory["newNonce"], timeout=self.timeout)
        except requests.RequestException as exc:
            raise AcmeError(0, {"type": "transport", "detail": str(exc)}) from exc
        nonce = resp.headers.get("Replay-Nonce")
        if not nonce:
            raise AcmeError(resp.status_code, {"detail": "No Replay-Nonce header"})
        return nonce

    def _take_nonce(self) -> str:
        with self._lock:
            nonce, self._nonce = self._nonce, None
        return nonce or self.get_nonce()

    # ── Account ───────────────────────────────────────────────────────────

    def lookup_account(self) -> str:
        """
        POST /newAccount with onlyReturnExisting=True and remember the account URL.
        Registration is not performed; an unknown key raises AcmeError.
        """
        url = self.directory["newAccount"]
        resp = self.post(url, self.sign_request_jwk({"onlyReturnExisting": True}, url))
        location = resp.header("Location")
        if resp.status_code != 200 or not location:
            body = resp.body if isinstance(resp.body, dict) else {"detail": str(resp.body)}
            raise AcmeError(resp.status_code, body)
        self.account_url = location
        logger.info("Using ACME account %s", location)
        return location

    # ── Signing ───────────────────────────────────────────────────────────

    def sign_request_kid(self, payload: dict | None, account_url: str, url: str) -> dict:
        """Sign with the account key, identifying the account by URL."""
        return jwslib.sign_request(payload, self.account_key, self._take_nonce(), url, account_url)

    def sign_request_jwk(
        self,
        payload: dict | None,
        url: str,
        key_path: str | Path | None = None,
    ) -> dict:
        """Sign embedding the public JWK; *key_path* defaults to the account key."""
        key = jwslib.load_private_key(key_path) if key_path else self.account_key
        return jwslib.sign_request(payload, key, self._take_nonce(), url)

    # ── Transport ─────────────────────────────────────────────────────────

    def post(self, url: str, signed: dict, accept: str = "application/json") -> AcmeResponse:
        """POST a signed JWS body.  Raises AcmeError only on transport failure."""
        try:
            resp = self._session.post(
                url,
                json=signed,
                headers={
                    "Content-Type": "application/jose+json",
                    "Accept": accept,
                },
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise AcmeError(0, {"type": "transport", "detail": str(exc)}) from exc

        fresh = resp.headers.get("Replay-Nonce")
        if fresh:
            with self._lock:
                self._nonce = fresh

        content_type = resp.headers.get("Content-Type", "")
        if "json" in content_type:
            try:
                body: Any = resp.json()
            except ValueError:
                body = resp.text
        else:
            body = resp.text

        logger.debug("POST %s -> %d", url, resp.status_code)
        return AcmeResponse(resp.status_code, resp.headers, body)


def make_connector() -> AcmeConnector:
    """
    Create an AcmeConnector from the current application settings.
    Late-imports config to avoid circular imports at module load time.
    """
    from config import settings  # noqa: PLC0415

    connector = AcmeConnector(
        directory_url=settings.ACME_DIRECTORY_URL,
        account_key_path=settings.ACCOUNT_KEY_PATH,
        account_url=settings.ACME_ACCOUNT_URL,
        ca_bundle=settings.ACME_CA_BUNDLE,
        insecure=settings.ACME_INSECURE,
    )
    if not connector.account_url:
        connector.lookup_account()
    return connector
