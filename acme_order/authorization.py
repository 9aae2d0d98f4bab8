"""
Authorization tracker: remote proof-of-control state for one identifier.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

logger = logging.getLogger(__name__)


class ChallengeType(str, Enum):
    HTTP_01 = "http-01"
    DNS_01 = "dns-01"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Challenge:
    type: str
    url: str
    token: str
    status: str


class Authorization:
    """
    One authorization object as served by the CA.

    ``identifier`` is the bare domain; for wildcard orders the CA strips the
    ``*.`` prefix and sets ``wildcard``.
    """

    def __init__(self, connector, url: str) -> None:
        self.connector = connector
        self.url = url
        self.identifier: str = ""
        self.wildcard: bool = False
        self.status: str = ""
        self.expires: str = ""
        self.challenges: List[Challenge] = []

    @classmethod
    def fetch(cls, connector, url: str) -> Optional["Authorization"]:
        """Build an Authorization from its URL; None if the CA would not serve it."""
        auth = cls(connector, url)
        return auth if auth.refresh() else None

    def refresh(self) -> bool:
        """POST-as-GET the authorization and adopt its fields."""
        signed = self.connector.sign_request_kid(None, self.connector.account_url, self.url)
        resp = self.connector.post(self.url, signed)
        if resp.status_code != 200 or not isinstance(resp.body, dict):
            logger.warning("Cannot fetch authorization %s (HTTP %s)", self.url, resp.status_code)
            return False

        body = resp.body
        identifier = body.get("identifier", {})
        self.identifier = identifier.get("value", "")
        self.wildcard = bool(body.get("wildcard", False))
        self.status = body.get("status", "")
        self.expires = body.get("expires", "")
        self.challenges = [
            Challenge(
                type=c.get("type", ""),
                url=c.get("url", ""),
                token=c.get("token", ""),
                status=c.get("status", ""),
            )
            for c in body.get("challenges", [])
        ]
        return True

    def get_challenge(self, challenge_type: ChallengeType | str) -> Optional[Challenge]:
        wanted = ChallengeType(challenge_type).value
        return next((c for c in self.challenges if c.type == wanted), None)

    def __repr__(self) -> str:
        return f"Authorization({self.identifier!r}, status={self.status!r})"
