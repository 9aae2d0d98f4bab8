"""
summary_reporter node — final human-readable issuance summary.
"""
from __future__ import annotations

import logging

from workflow.state import IssuanceState

logger = logging.getLogger(__name__)


def summary_reporter(state: IssuanceState) -> dict:
    """Returns: summary."""
    validated = state.get("validated", [])
    failed = state.get("failed", [])
    error_log = state.get("error_log", [])

    lines = [
        f"Order for {state['primary_name']}: status {state.get('order_status') or 'unknown'}",
        f"Validated: {', '.join(validated) or '(none)'}",
        f"Failed: {', '.join(failed) or '(none)'}",
        f"Certificate saved: {'yes' if state.get('certificate_saved') else 'no'}",
    ]
    if error_log:
        lines.append("Errors:")
        lines.extend(f"  - {e}" for e in error_log)
    summary = "\n".join(lines)

    logger.info("\n=== Certificate Issuance Summary ===\n%s\n====================================", summary)
    print(f"\n{'='*50}\nCertificate Issuance Summary\n{'='*50}")
    print(summary)
    print("=" * 50)
    return {"summary": summary}
