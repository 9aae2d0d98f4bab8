"""
Order lifecycle events a host application can subscribe to.

The state machine never touches host storage itself; it emits events and the
host decides what to record.
"""
from __future__ import annotations

import logging
from typing import Callable, List

from acme_order.authorization import ChallengeType

logger = logging.getLogger(__name__)

ChallengeValidatedHandler = Callable[[str, ChallengeType], None]


class OrderEvents:
    def __init__(self) -> None:
        self._challenge_validated: List[ChallengeValidatedHandler] = []

    def on_challenge_validated(self, handler: ChallengeValidatedHandler) -> ChallengeValidatedHandler:
        """Register *handler*; usable as a decorator."""
        self._challenge_validated.append(handler)
        return handler

    def challenge_validated(self, identifier: str, challenge_type: ChallengeType) -> None:
        """Called once the CA accepted a challenge response for *identifier*."""
        logger.debug("challenge.validated %s %s (%d handlers)",
                     identifier, challenge_type, len(self._challenge_validated))
        for handler in self._challenge_validated:
            handler(identifier, challenge_type)
