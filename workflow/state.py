"""
Issuance workflow state.

The Order object itself is not part of the state: it holds a connector, a
lock and open key material, so the graph nodes are bound to it when the graph
is built (see workflow/graph.py).  The state only carries plain values so it
can be checkpointed.
"""
from __future__ import annotations

from typing import List, Optional

from typing_extensions import TypedDict


class IssuanceState(TypedDict):
    # ── Configuration ──────────────────────────────────────────────────────
    domains: List[str]
    primary_name: str
    challenge_type: str               # "http-01" | "dns-01"
    local_check: bool                 # run the HTTP/DNS pre-check before notifying the CA

    # ── Order progress ─────────────────────────────────────────────────────
    order_status: str                 # pending | ready | processing | valid | invalid
    pending_identifiers: List[str]    # identifiers whose challenge was published
    validated: List[str]
    failed: List[str]                 # "<identifier>: <verification result>"
    certificate_saved: bool

    # ── Reporting ──────────────────────────────────────────────────────────
    error_log: List[str]
    summary: Optional[str]
