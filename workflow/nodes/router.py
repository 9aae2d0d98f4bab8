"""
Conditional edge logic for the issuance graph.

These are not nodes but routing functions used with
graph.add_conditional_edges().
"""
from __future__ import annotations

import logging

from workflow.state import IssuanceState

logger = logging.getLogger(__name__)


def resume_router(state: IssuanceState) -> str:
    """
    Entry routing: a resumed order continues where it stopped.

    Returns: "pending" | "ready" | "finalized" | "done"
    """
    status = state.get("order_status", "")
    if status == "pending":
        return "pending"
    if status == "ready":
        return "ready"
    if status in ("processing", "valid"):
        logger.info("Order already finalized (status %s); downloading certificate", status)
        return "finalized"
    logger.warning("Order status %r leaves nothing to do", status)
    return "done"


def challenge_router(state: IssuanceState) -> str:
    """
    After challenge_verifier: finalize once the CA marked the order ready.

    Returns: "challenge_ok" | "challenge_failed"
    """
    return "challenge_ok" if state.get("order_status") == "ready" else "challenge_failed"


def finalize_router(state: IssuanceState) -> str:
    """
    After order_finalizer.

    Returns: "finalized" | "not_finalized"
    """
    if state.get("order_status") in ("processing", "valid"):
        return "finalized"
    return "not_finalized"
