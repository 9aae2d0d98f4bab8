"""
order_finalizer + cert_downloader nodes.

order_finalizer  — submit the CSR once the order is ready.
cert_downloader  — wait out 'processing' and store the certificate chain.
"""
from __future__ import annotations

import logging

from acme_order.order import Order
from workflow.state import IssuanceState

logger = logging.getLogger(__name__)


def order_finalizer(state: IssuanceState, *, order: Order) -> dict:
    """
    Returns updates to: order_status, error_log on failure.
    """
    if order.finalize_order():
        logger.info("Order for %s finalized (status %s)", state["primary_name"], order.status)
        return {"order_status": order.status}

    error = f"Finalization failed for {state['primary_name']} (status {order.status})"
    logger.error(error)
    return {
        "order_status": order.status,
        "error_log": state.get("error_log", []) + [error],
    }


def cert_downloader(state: IssuanceState, *, order: Order) -> dict:
    """
    Returns updates to: certificate_saved, order_status, error_log on failure.
    """
    saved = order.get_certificate()
    update: dict = {"certificate_saved": saved, "order_status": order.status}
    if not saved:
        error = f"Certificate download failed for {state['primary_name']} (status {order.status})"
        logger.error(error)
        update["error_log"] = state.get("error_log", []) + [error]
    return update
