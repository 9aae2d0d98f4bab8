"""
LangGraph StateGraph builder for one certificate issuance.

Graph topology:
  START
    → [conditional on order status:
         pending   → challenge_setup
         ready     → order_finalizer
         finalized → cert_downloader
         done      → summary_reporter]
  challenge_setup
    → challenge_verifier
    → [conditional: challenge_ok → order_finalizer
                    challenge_failed → summary_reporter]
  order_finalizer
    → [conditional: finalized → cert_downloader
                    not_finalized → summary_reporter]
  cert_downloader → summary_reporter → END

The graph is bound to one Order and one challenge publisher; neither lives in
the state.
"""
from __future__ import annotations

from typing import Callable, Optional

from langgraph.checkpoint.memory import MemorySaver
from langgraph.graph import END, START, StateGraph

from acme_order.authorization import ChallengeType
from acme_order.order import Order
from workflow.nodes.challenge import challenge_setup, challenge_verifier
from workflow.nodes.finalizer import cert_downloader, order_finalizer
from workflow.nodes.reporter import summary_reporter
from workflow.nodes.router import challenge_router, finalize_router, resume_router
from workflow.state import IssuanceState


def _bind(node: Callable[..., dict], **bound) -> Callable[[IssuanceState], dict]:
    def bound_node(state: IssuanceState) -> dict:
        return node(state, **bound)

    bound_node.__name__ = node.__name__
    return bound_node


def build_issuance_graph(
    order: Order,
    publisher,
    verify_timeout: Optional[float] = None,
    use_checkpointing: bool = False,
):
    """
    Build and compile the issuance StateGraph.

    Args:
        order:             the Order to drive.
        publisher:         object with publish(challenges) and cleanup().
        verify_timeout:    per-identifier bound on challenge verification (seconds).
        use_checkpointing: If True, attach a MemorySaver for resumable runs.

    Returns:
        CompiledGraph ready to invoke / stream.
    """
    builder = StateGraph(IssuanceState)

    # ── Register nodes ────────────────────────────────────────────────────
    builder.add_node("challenge_setup", _bind(challenge_setup, order=order, publisher=publisher))
    builder.add_node(
        "challenge_verifier",
        _bind(challenge_verifier, order=order, publisher=publisher, verify_timeout=verify_timeout),
    )
    builder.add_node("order_finalizer", _bind(order_finalizer, order=order))
    builder.add_node("cert_downloader", _bind(cert_downloader, order=order))
    builder.add_node("summary_reporter", summary_reporter)

    # ── Edges ─────────────────────────────────────────────────────────────
    builder.add_conditional_edges(
        START,
        resume_router,
        {
            "pending": "challenge_setup",
            "ready": "order_finalizer",
            "finalized": "cert_downloader",
            "done": "summary_reporter",
        },
    )
    builder.add_edge("challenge_setup", "challenge_verifier")
    builder.add_conditional_edges(
        "challenge_verifier",
        challenge_router,
        {
            "challenge_ok": "order_finalizer",
            "challenge_failed": "summary_reporter",
        },
    )
    builder.add_conditional_edges(
        "order_finalizer",
        finalize_router,
        {
            "finalized": "cert_downloader",
            "not_finalized": "summary_reporter",
        },
    )
    builder.add_edge("cert_downloader", "summary_reporter")
    builder.add_edge("summary_reporter", END)

    # ── Compile ───────────────────────────────────────────────────────────
    checkpointer = MemorySaver() if use_checkpointing else None
    return builder.compile(checkpointer=checkpointer)


def initial_state(
    order: Order,
    challenge_type: ChallengeType | str = ChallengeType.HTTP_01,
    local_check: bool = True,
) -> dict:
    """
    Build the initial IssuanceState dict for *order*.
    Callers can override any field by merging the returned dict.
    """
    return {
        "domains": list(order.identifiers),
        "primary_name": order.primary_name,
        "challenge_type": ChallengeType(challenge_type).value,
        "local_check": local_check,
        "order_status": order.status,
        "pending_identifiers": [],
        "validated": [],
        "failed": [],
        "certificate_saved": False,
        "error_log": [],
        "summary": None,
    }
