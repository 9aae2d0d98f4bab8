"""
Order state machine: one certificate order against an ACME CA.

An Order either recovers the order persisted in its OrderFiles or creates a
new one, then lets the caller walk it through

    pending --(challenges)--> ready --(finalize)--> processing --> valid

and fetch or revoke the resulting certificate.

Failures of the remote side are *reported* (False / a VerificationResult);
only argument and configuration problems raise (see acme_order.errors).
"""
from __future__ import annotations

import functools
import logging
import re
import threading
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, List, Optional, Sequence, Union
from urllib.parse import urlparse

from acme_order import crypto
from acme_order.authorization import Authorization, ChallengeType
from acme_order.checks import LocalChallengeChecker
from acme_order.connector import PEM_CHAIN, AcmeError
from acme_order.errors import (
    CreateFailed,
    InvalidArgument,
    InvalidConfiguration,
    InvalidOrderStatus,
)
from acme_order.events import OrderEvents
from acme_order.jws import b64url
from acme_order.keyauth import account_thumbprint, dns_digest, key_authorization
from acme_order.waiting import Waiter
from storage.order_files import PRESERVED_SLOTS, OrderFiles

log = logging.getLogger(__name__)

_TIMESTAMP = re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z")
_ORDER_FIELDS = ("status", "identifiers", "authorizations", "finalize")

AUTHORIZATION_POLL_SECONDS = 1.0
CERTIFICATE_POLL_SECONDS = 5.0
CERTIFICATE_POLL_ATTEMPTS = 4
DNS_PROPAGATION_SECONDS = 10.0


class RevocationReason(IntEnum):
    """CRLReason codes from RFC 5280 §5.3.1."""

    UNSPECIFIED = 0
    KEY_COMPROMISE = 1
    CA_COMPROMISE = 2
    AFFILIATION_CHANGED = 3
    SUPERSEDED = 4
    CESSATION_OF_OPERATION = 5
    CERTIFICATE_HOLD = 6
    REMOVE_FROM_CRL = 8
    PRIVILEGE_WITHDRAWN = 9
    AA_COMPROMISE = 10


class VerificationResult(str, Enum):
    """Outcome of verify_pending_order_authorization; truthy only when ACCEPTED."""

    ACCEPTED = "accepted"
    NOT_PENDING = "not_pending"
    PRECHECK_FAILED = "precheck_failed"
    REJECTED = "rejected"
    ABORTED = "aborted"

    def __bool__(self) -> bool:
        return self is VerificationResult.ACCEPTED


@dataclass(frozen=True)
class HttpChallengeData:
    identifier: str
    filename: str
    content: str
    type: ChallengeType = ChallengeType.HTTP_01


@dataclass(frozen=True)
class DnsChallengeData:
    identifier: str
    dns_digest: str
    type: ChallengeType = ChallengeType.DNS_01


PendingChallenge = Union[HttpChallengeData, DnsChallengeData]


def validate_timestamp(value: str, name: str = "timestamp") -> str:
    """Accept '' or YYYY-MM-DDTHH:MM:SSZ; raise InvalidArgument otherwise."""
    if value and not _TIMESTAMP.fullmatch(value):
        raise InvalidArgument(
            f"{name} must be empty or a string like 0000-00-00T00:00:00Z, got {value!r}"
        )
    return value


def is_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _synchronized(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)
    return wrapper


class Order:
    """
    Args:
        connector:     signs and POSTs requests; see acme_order.connector.
        files:         where the order URL, key pair and certificates live.
        primary_name:  preferred certificate CN, usually the apex domain.
        domains:       identifiers the certificate must cover.
        key_type:      "rsa", "ec", "rsa-<bits>" or "ec-256"/"ec-384".
        not_before / not_after: "" or YYYY-MM-DDTHH:MM:SSZ.
        logger:        anything with info/warning/debug; defaults to this
                       module's stdlib logger.
        waiter:        default Waiter for the polling loops.
        checker:       local pre-check implementation (check_http/check_dns).
        events:        OrderEvents to publish challenge validations on.
    """

    def __init__(
        self,
        connector,
        files: OrderFiles,
        primary_name: str,
        domains: Sequence[str],
        key_type: str = "rsa-4096",
        not_before: str = "",
        not_after: str = "",
        *,
        logger: Any = None,
        waiter: Optional[Waiter] = None,
        checker: Optional[LocalChallengeChecker] = None,
        events: Optional[OrderEvents] = None,
        dns_propagation_delay: float = DNS_PROPAGATION_SECONDS,
    ) -> None:
        self.connector = connector
        self.files = files
        self.primary_name = primary_name
        self.key_algorithm, self.key_size = crypto.parse_key_type(key_type)
        self.not_before = validate_timestamp(not_before, "notBefore")
        self.not_after = validate_timestamp(not_after, "notAfter")

        self.log = logger if logger is not None else log
        self.waiter = waiter or Waiter()
        self.checker = checker or LocalChallengeChecker()
        self.events = events or OrderEvents()
        self.dns_propagation_delay = dns_propagation_delay

        self.order_url: str = ""
        self.status: str = ""
        self.expires: str = ""
        self.identifiers: List[str] = []
        self.authorization_urls: List[str] = []
        self.authorizations: List[Authorization] = []
        self.finalize_url: str = ""
        self.certificate_url: str = ""
        # False when construction had to place a new order
        self.recovered: bool = False

        self._lock = threading.RLock()
        with self._lock:
            self._load_or_create(list(domains))

    # ── Recovery & creation ───────────────────────────────────────────────

    def _load_or_create(self, domains: List[str]) -> None:
        if not self.files.has_order_artifacts():
            self.log.info("No order found for '%s'. Creating new order.", self.primary_name)
            self._create_order(domains)
            return

        order_url = self.files.read_order_url()
        if not is_url(order_url):
            self.files.delete_all()
            self.log.info(
                "Order data for '%s' invalid (order URL %r). Deleting order data and creating new order.",
                self.primary_name, order_url,
            )
            self._create_order(domains)
            return

        try:
            body = self._fetch_order(order_url)
            if body.get("status") == "invalid":
                raise InvalidOrderStatus(order_url)
            missing = [k for k in _ORDER_FIELDS if k not in body]
            if missing:
                raise KeyError(missing[0])
            mismatch = bool({i["value"] for i in body["identifiers"]} ^ set(domains))
            if not mismatch:
                self._adopt(body)
        except (AcmeError, InvalidOrderStatus, KeyError, TypeError) as exc:
            self.files.delete_all(keep=PRESERVED_SLOTS)
            self.log.info(
                "Order data for '%s' invalid (%s). Deleting order data and creating new order.",
                self.primary_name, exc,
            )
            self._create_order(domains)
            return

        if mismatch:
            self.files.rename_all_to_old()
            self.log.info("Domains do not match order data. Renaming current files and creating new order.")
            self._create_order(domains)
            return

        self.order_url = order_url
        self.recovered = True
        self.log.info("Resumed order for '%s' with status '%s'.", self.primary_name, self.status)

    def _create_order(self, domains: List[str]) -> None:
        for domain in domains:
            if domain.count("*.") > 1:
                raise InvalidArgument(f"Cannot create orders with multiple wildcards in one domain: {domain!r}")

        payload: dict = {"identifiers": [{"type": "dns", "value": d} for d in domains]}
        if self.not_before:
            payload["notBefore"] = self.not_before
        if self.not_after:
            payload["notAfter"] = self.not_after

        new_order = self.connector.new_order
        try:
            signed = self.connector.sign_request_kid(payload, self.connector.account_url, new_order)
            resp = self.connector.post(new_order, signed)
        except AcmeError as exc:
            raise CreateFailed(f"Creating new order failed: {exc}") from exc

        if resp.status_code != 201:
            raise CreateFailed(f"Creating new order failed (HTTP {resp.status_code}).")
        location = resp.header("Location")
        if not location or not isinstance(resp.body, dict):
            raise CreateFailed("New-order returned invalid response.")

        self.order_url = location.strip()
        self.files.write_order_url(self.order_url)

        key = crypto.generate_private_key(self.key_algorithm, self.key_size)
        self.files.write_key_pair(crypto.private_key_to_pem(key), crypto.public_key_to_pem(key))

        try:
            self._adopt(resp.body)
        except KeyError as exc:
            raise CreateFailed(f"New-order response is missing {exc}.") from exc
        except AcmeError as exc:
            raise CreateFailed(f"Fetching authorizations of the new order failed: {exc}") from exc
        self.log.info("Created order for '%s'.", self.primary_name)

    def _fetch_order(self, order_url: str) -> dict:
        signed = self.connector.sign_request_kid(None, self.connector.account_url, order_url)
        resp = self.connector.post(order_url, signed)
        if resp.status_code != 200 or not isinstance(resp.body, dict):
            raise AcmeError(resp.status_code, resp.body if isinstance(resp.body, dict) else {})
        return resp.body

    def _adopt(self, body: dict) -> None:
        status = body["status"]
        identifiers = [i["value"] for i in body["identifiers"]]
        authorization_urls = list(body["authorizations"])
        finalize_url = body["finalize"]
        authorizations = self._fetch_authorizations(authorization_urls)

        self.status = status
        self.expires = body.get("expires", "")
        self.identifiers = identifiers
        self.authorization_urls = authorization_urls
        self.finalize_url = finalize_url
        if "certificate" in body:
            self.certificate_url = body["certificate"]
        self.authorizations = authorizations

    def _fetch_authorizations(self, urls: List[str]) -> List[Authorization]:
        authorizations = []
        for url in urls:
            if not is_url(url):
                continue
            auth = Authorization.fetch(self.connector, url)
            if auth is not None:
                authorizations.append(auth)
        return authorizations

    def _update_authorizations(self) -> None:
        self.authorizations = self._fetch_authorizations(self.authorization_urls)

    # ── Order data ────────────────────────────────────────────────────────

    @_synchronized
    def update_order_data(self) -> bool:
        """Re-fetch the order; on failure keep the current state and return False."""
        try:
            body = self._fetch_order(self.order_url)
            self._adopt(body)
        except (AcmeError, KeyError, TypeError) as exc:
            self.log.info("Cannot update data for order '%s': %s", self.primary_name, exc)
            return False
        return True

    @_synchronized
    def all_authorizations_valid(self) -> bool:
        return bool(self.authorizations) and all(a.status == "valid" for a in self.authorizations)

    @property
    def is_finalized(self) -> bool:
        """True once the CA accepted the CSR; the certificate may still be processing."""
        return self.status in ("processing", "valid")

    # ── Challenges ────────────────────────────────────────────────────────

    @_synchronized
    def get_pending_authorizations(self, challenge_type: ChallengeType | str) -> List[PendingChallenge]:
        """
        Data needed to publish every pending challenge of *challenge_type*.

        An empty list means nothing is pending.  Keep in mind a wildcard
        authorization only offers dns-01.
        """
        challenge_type = ChallengeType(challenge_type)
        thumbprint = account_thumbprint(self.connector.account_key)

        pending: List[PendingChallenge] = []
        for auth in self.authorizations:
            if auth.status != "pending":
                continue
            challenge = auth.get_challenge(challenge_type)
            if challenge is None or challenge.status != "pending":
                continue
            key_auth = key_authorization(challenge.token, thumbprint)
            if challenge_type is ChallengeType.HTTP_01:
                pending.append(HttpChallengeData(auth.identifier, challenge.token, key_auth))
            else:
                pending.append(DnsChallengeData(auth.identifier, dns_digest(key_auth)))
        return pending

    @_synchronized
    def verify_pending_order_authorization(
        self,
        identifier: str,
        challenge_type: ChallengeType | str,
        local_check: bool = True,
        waiter: Optional[Waiter] = None,
    ) -> VerificationResult:
        """
        Ask the CA to validate the pending *challenge_type* challenge of
        *identifier*, then poll the authorization until it leaves 'pending'.

        With *local_check* the challenge is first checked from here and the CA
        is only contacted if that succeeds.  Never retries; the caller decides.
        """
        challenge_type = ChallengeType(challenge_type)
        waiter = waiter or self.waiter
        thumbprint = account_thumbprint(self.connector.account_key)

        for auth in self.authorizations:
            if auth.identifier != identifier or auth.status != "pending":
                continue
            challenge = auth.get_challenge(challenge_type)
            if challenge is None or challenge.status != "pending":
                continue

            key_auth = key_authorization(challenge.token, thumbprint)
            if challenge_type is ChallengeType.HTTP_01:
                if local_check and not self.checker.check_http(identifier, challenge.token, key_auth):
                    self.log.info("HTTP challenge for '%s' tested locally, found invalid.", identifier)
                    return VerificationResult.PRECHECK_FAILED
            else:
                if local_check and not self.checker.check_dns(identifier, dns_digest(key_auth)):
                    self.log.info("DNS challenge for '%s' tested locally, found invalid.", identifier)
                    return VerificationResult.PRECHECK_FAILED
                if not waiter.sleep(self.dns_propagation_delay):
                    return VerificationResult.ABORTED

            signed = self.connector.sign_request_kid({}, self.connector.account_url, challenge.url)
            resp = self.connector.post(challenge.url, signed)
            if resp.status_code != 200:
                self.log.warning("CA rejected %s challenge for '%s' (HTTP %d).",
                                 challenge_type, identifier, resp.status_code)
                return VerificationResult.REJECTED

            self.log.info("%s challenge for '%s' accepted by the CA.", challenge_type, identifier)
            self.events.challenge_validated(identifier, challenge_type)

            while auth.status == "pending":
                if not waiter.sleep(AUTHORIZATION_POLL_SECONDS):
                    self.log.info("Stopped waiting for authorization of '%s'.", identifier)
                    return VerificationResult.ABORTED
                auth.refresh()
            self.log.info("Authorization for '%s' is now '%s'.", identifier, auth.status)
            return VerificationResult.ACCEPTED

        return VerificationResult.NOT_PENDING

    @_synchronized
    def deactivate_order_authorization(self, identifier: str) -> bool:
        for auth in self.authorizations:
            if auth.identifier != identifier:
                continue
            signed = self.connector.sign_request_kid(
                {"status": "deactivated"}, self.connector.account_url, auth.url
            )
            resp = self.connector.post(auth.url, signed)
            if resp.status_code == 200:
                self.log.info("Authorization for '%s' deactivated.", identifier)
                self._update_authorizations()
                return True
            self.log.info("CA refused to deactivate authorization for '%s' (HTTP %d).",
                          identifier, resp.status_code)
            return False
        self.log.info("No authorization found for '%s', cannot deactivate.", identifier)
        return False

    # ── Finalize & certificate ────────────────────────────────────────────

    @_synchronized
    def generate_csr(self) -> str:
        return crypto.build_csr(self.identifiers, self.primary_name, self.files.load_private_key())

    @_synchronized
    def finalize_order(self, csr: Optional[str] = None) -> bool:
        """
        Submit a CSR (generated unless given, as PEM) once the order is ready
        and every authorization is valid.
        """
        self.update_order_data()
        if self.status != "ready":
            self.log.info("Order status for '%s' is '%s'. Cannot finalize order.",
                          self.primary_name, self.status)
            return False
        if not self.all_authorizations_valid():
            self.log.info("Not all authorizations are valid for '%s'. Cannot finalize order.",
                          self.primary_name)
            return False

        if not csr:
            csr = self.generate_csr()
        self.files.write_csr(csr)

        signed = self.connector.sign_request_kid(
            {"csr": b64url(crypto.csr_to_der(csr))}, self.connector.account_url, self.finalize_url
        )
        resp = self.connector.post(self.finalize_url, signed)
        if resp.status_code != 200 or not isinstance(resp.body, dict):
            self.log.warning("Finalize request for '%s' failed (HTTP %d).",
                             self.primary_name, resp.status_code)
            return False

        self._adopt(resp.body)
        self.log.info("Order for '%s' finalized.", self.primary_name)
        return True

    @_synchronized
    def get_certificate(self, waiter: Optional[Waiter] = None) -> bool:
        """
        Download and store the certificate chain.  A 'processing' order is
        polled up to four times, five seconds apart.
        """
        waiter = waiter or self.waiter
        polls = 0
        while self.status == "processing" and polls < CERTIFICATE_POLL_ATTEMPTS:
            self.log.info("Certificate for '%s' being processed. Retrying in %d seconds...",
                          self.primary_name, CERTIFICATE_POLL_SECONDS)
            if not waiter.sleep(CERTIFICATE_POLL_SECONDS):
                break
            self.update_order_data()
            polls += 1

        if self.status != "valid":
            self.log.info("Order for '%s' not valid. Cannot retrieve certificate.", self.primary_name)
            return False
        if not self.certificate_url:
            self.log.info("Order for '%s' not valid. Cannot find certificate URL.", self.primary_name)
            return False

        signed = self.connector.sign_request_kid(None, self.connector.account_url, self.certificate_url)
        resp = self.connector.post(self.certificate_url, signed, accept=PEM_CHAIN)
        if resp.status_code != 200:
            self.log.info("Invalid response for certificate request for '%s'. Cannot save certificate.",
                          self.primary_name)
            return False

        blocks = crypto.split_pem_certificates(resp.body if isinstance(resp.body, str) else "")
        if not blocks:
            self.log.info("Received invalid certificate for '%s'. Cannot save certificate.",
                          self.primary_name)
            return False

        written = self.files.store_certificates(blocks)
        self.log.info("Certificate for '%s' saved (%d blocks, %d files).",
                      self.primary_name, len(blocks), len(written))
        return True

    # ── Revocation ────────────────────────────────────────────────────────

    @_synchronized
    def revoke_certificate(self, reason: int = RevocationReason.UNSPECIFIED) -> bool:
        """
        Revoke this order's certificate.  The request is signed with the
        certificate's own private key, not the account key.
        """
        if self.status not in ("valid", "ready"):
            self.log.info("Order for '%s' not valid. Cannot revoke certificate.", self.primary_name)
            return False

        cert_path = self.files.certificate or self.files.fullchain
        if cert_path is None:
            raise InvalidConfiguration("A certificate or fullchain path is required to revoke.")
        if not cert_path.is_file() or not self.files.private_key.is_file():
            raise InvalidConfiguration(
                f"Revocation needs {cert_path} and {self.files.private_key}; at least one is missing."
            )

        blocks = crypto.split_pem_certificates(cert_path.read_text(encoding="utf-8"))
        if not blocks:
            self.log.info("No certificate found in %s. Cannot revoke certificate.", cert_path)
            return False

        payload = {"certificate": b64url(crypto.certificate_der(blocks[0])), "reason": int(reason)}
        revoke_url = self.connector.revoke_cert
        signed = self.connector.sign_request_jwk(payload, revoke_url, self.files.private_key)
        resp = self.connector.post(revoke_url, signed)
        if resp.status_code == 200:
            self.log.info("Certificate for order '%s' revoked.", self.primary_name)
            return True
        self.log.info("Certificate for order '%s' cannot be revoked (HTTP %d).",
                      self.primary_name, resp.status_code)
        return False

    def __repr__(self) -> str:
        return f"Order({self.order_url!r}, status={self.status!r}, identifiers={self.identifiers!r})"
