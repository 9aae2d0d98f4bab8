"""
Local challenge pre-checks, run before asking the CA to validate.

HTTP-01: fetch http://<domain>/.well-known/acme-challenge/<token> ourselves.
DNS-01:  resolve the _acme-challenge.<domain> TXT record ourselves.

Both only answer yes/no; a failed check just means "don't notify the CA yet".
"""
from __future__ import annotations

import logging

import dns.exception
import dns.resolver
import requests

logger = logging.getLogger(__name__)


class LocalChallengeChecker:
    def __init__(
        self,
        timeout: float = 10.0,
        session: requests.Session | None = None,
        resolver: dns.resolver.Resolver | None = None,
    ) -> None:
        self.timeout = timeout
        self._session = session or requests.Session()
        self._resolver = resolver

    def check_http(self, identifier: str, token: str, key_authorization: str) -> bool:
        url = f"http://{identifier}/.well-known/acme-challenge/{token}"
        try:
            resp = self._session.get(url, timeout=self.timeout, allow_redirects=True)
        except requests.RequestException as exc:
            logger.info("HTTP pre-check for %s failed: %s", identifier, exc)
            return False
        found = resp.ok and resp.text.strip() == key_authorization
        if not found:
            logger.info("HTTP pre-check for %s: unexpected response (HTTP %d)",
                        identifier, resp.status_code)
        return found

    def check_dns(self, identifier: str, digest: str) -> bool:
        name = f"_acme-challenge.{identifier.removeprefix('*.')}"
        resolver = self._resolver or dns.resolver.Resolver()
        resolver.lifetime = self.timeout
        try:
            answer = resolver.resolve(name, "TXT")
        except dns.exception.DNSException as exc:
            logger.info("DNS pre-check for %s failed: %s: %s",
                        identifier, type(exc).__name__, exc)
            return False
        values = [b"".join(rdata.strings).decode("ascii", "replace") for rdata in answer]
        if digest in values:
            return True
        logger.info("DNS pre-check for %s: %s does not carry the expected value", identifier, name)
        return False
