"""
challenge_setup and challenge_verifier nodes.

challenge_setup    — asks the order for its pending challenges and hands them to
                     the publisher (standalone server, webroot or DNS).
challenge_verifier — verifies each published identifier through the order,
                     then removes the published material again.

Both are in one file because they share the publisher lifecycle.  The order and
the publisher are bound by closures in workflow/graph.py.
"""
from __future__ import annotations

import logging
from typing import Optional

from acme_order.order import Order
from acme_order.waiting import Waiter
from workflow.state import IssuanceState

logger = logging.getLogger(__name__)


# ─── challenge_setup ──────────────────────────────────────────────────────────


def challenge_setup(state: IssuanceState, *, order: Order, publisher) -> dict:
    """
    Publish every pending challenge of the configured type.

    Returns updates to: pending_identifiers.
    """
    challenge_type = state["challenge_type"]
    pending = order.get_pending_authorizations(challenge_type)
    if not pending:
        logger.info("No pending %s challenges for %s", challenge_type, state["primary_name"])
        return {"pending_identifiers": []}

    publisher.publish(pending)
    identifiers = [p.identifier for p in pending]
    logger.info("Published %d %s challenge(s): %s", len(pending), challenge_type, ", ".join(identifiers))
    return {"pending_identifiers": identifiers}


# ─── challenge_verifier ───────────────────────────────────────────────────────


def challenge_verifier(
    state: IssuanceState,
    *,
    order: Order,
    publisher,
    verify_timeout: Optional[float] = None,
) -> dict:
    """
    For each published identifier: pre-check, notify the CA, poll until the
    authorization leaves 'pending'.  Published material is always cleaned up.

    Without *verify_timeout* the order's own waiter bounds the polling.

    Returns updates to: validated, failed, order_status, error_log.
    """
    challenge_type = state["challenge_type"]
    validated = list(state.get("validated", []))
    failed = list(state.get("failed", []))
    error_log = list(state.get("error_log", []))

    try:
        for identifier in state.get("pending_identifiers", []):
            result = order.verify_pending_order_authorization(
                identifier,
                challenge_type,
                local_check=state.get("local_check", True),
                waiter=Waiter(timeout=verify_timeout) if verify_timeout is not None else None,
            )
            if result:
                validated.append(identifier)
            else:
                failed.append(f"{identifier}: {result.value}")
                error_log.append(f"{challenge_type} verification for {identifier} ended with {result.value}")
                logger.error("Verification for %s failed: %s", identifier, result.value)
    finally:
        publisher.cleanup()

    order.update_order_data()
    return {
        "validated": validated,
        "failed": failed,
        "order_status": order.status,
        "error_log": error_log,
    }
