"""
DNS-01 challenge publishing.

  DnsProvider (ABC)
      Interface a DNS backend must satisfy: create/delete one TXT record.

  ManualDnsProvider
      Logs the records an operator has to create by hand.  The order's
      propagation delay and local pre-check then decide whether they exist.

  DnsPublisher
      Adapts a DnsProvider to the publish()/cleanup() interface shared with
      the HTTP-01 publishers.

DNS-01 protocol (RFC 8555 §8.4):
  1. key_authorization = token + "." + jwk_thumbprint  (same as HTTP-01)
  2. TXT record value  = base64url(SHA-256(key_authorization))
  3. DNS name          = _acme-challenge.{domain}
  4. Create record → wait for propagation → POST challenge URL → poll
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Tuple

from acme_order.order import DnsChallengeData

logger = logging.getLogger(__name__)


def acme_record_name(domain: str) -> str:
    """Full _acme-challenge DNS name for a domain; a wildcard shares its base name."""
    return f"_acme-challenge.{domain.removeprefix('*.')}"


# ─── Provider ABC ─────────────────────────────────────────────────────────────


class DnsProvider(ABC):
    """Abstract base for DNS-01 TXT record management."""

    @abstractmethod
    def create_txt_record(self, domain: str, txt_value: str) -> None:
        """Create (or update) the _acme-challenge.<domain> TXT record."""

    @abstractmethod
    def delete_txt_record(self, domain: str, txt_value: str) -> None:
        """Delete the _acme-challenge.<domain> TXT record with the given value."""


class ManualDnsProvider(DnsProvider):
    """Prints the TXT records to create; nothing is changed remotely."""

    def __init__(self) -> None:
        self.records: List[Tuple[str, str]] = []

    def create_txt_record(self, domain: str, txt_value: str) -> None:
        name = acme_record_name(domain)
        self.records.append((name, txt_value))
        logger.warning("Create DNS record: %s. 300 IN TXT \"%s\"", name, txt_value)

    def delete_txt_record(self, domain: str, txt_value: str) -> None:
        name = acme_record_name(domain)
        if (name, txt_value) in self.records:
            self.records.remove((name, txt_value))
        logger.info("DNS record %s TXT \"%s\" may now be removed", name, txt_value)


# ─── Publisher ────────────────────────────────────────────────────────────────


class DnsPublisher:
    def __init__(self, provider: DnsProvider) -> None:
        self.provider = provider
        self._published: List[DnsChallengeData] = []

    def publish(self, challenges: Iterable[DnsChallengeData]) -> None:
        for challenge in challenges:
            self.provider.create_txt_record(challenge.identifier, challenge.dns_digest)
            self._published.append(challenge)

    def cleanup(self) -> None:
        while self._published:
            challenge = self._published.pop()
            self.provider.delete_txt_record(challenge.identifier, challenge.dns_digest)
