"""
ACME order manager — CLI entry point.

Usage:
  python main.py --issue                       # Create/resume the order and issue the certificate
  python main.py --issue --domains a.com b.com # Override managed domains for this run
  python main.py --status                      # Show order status and pending challenges
  python main.py --revoke --reason 4           # Revoke the order's certificate
"""
from __future__ import annotations

import argparse
import logging
import sys

import structlog

# ── Logging setup ─────────────────────────────────────────────────────────────

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
log = structlog.get_logger("main")


# ── Wiring ────────────────────────────────────────────────────────────────────


def open_order(domains: list[str] | None = None, require_existing: bool = False):
    """
    Build the connector and the Order (recovering or creating it) from settings.

    With *require_existing* the command stops before contacting the CA when no
    order is persisted, and warns when the persisted one could not be resumed.
    """
    from acme_order.connector import make_connector
    from acme_order.order import Order
    from config import settings
    from storage.order_files import OrderFiles

    effective_domains = domains or settings.MANAGED_DOMAINS
    if not effective_domains:
        log.error("no_domains", hint="Set MANAGED_DOMAINS in .env or pass --domains.")
        sys.exit(1)

    primary_name = settings.primary_name or effective_domains[0].removeprefix("*.")
    files = OrderFiles.in_directory(settings.order_directory(primary_name))
    if require_existing and not files.has_order_artifacts():
        log.error("no_order", primary_name=primary_name,
                  hint="Run --issue first; this command does not place orders.")
        sys.exit(1)

    order = Order(
        make_connector(),
        files,
        primary_name,
        effective_domains,
        key_type=settings.KEY_TYPE,
        not_before=settings.NOT_BEFORE,
        not_after=settings.NOT_AFTER,
        logger=logging.getLogger("acme_order"),
        dns_propagation_delay=settings.DNS_PROPAGATION_WAIT_SECONDS,
    )
    if require_existing and not order.recovered:
        log.warning("new_order_placed", primary_name=primary_name, order_url=order.order_url,
                    hint="The persisted order could not be resumed; its files were replaced.")
    return order


def make_publisher(challenge_type: str):
    """Challenge publisher for the configured challenge type and HTTP mode."""
    from acme_order.dns_challenge import DnsPublisher, ManualDnsProvider
    from acme_order.http_challenge import StandalonePublisher, WebrootPublisher
    from config import settings

    if challenge_type == "dns-01":
        return DnsPublisher(ManualDnsProvider())
    if settings.HTTP_CHALLENGE_MODE == "webroot":
        return WebrootPublisher(settings.WEBROOT_PATH)
    return StandalonePublisher(port=settings.HTTP_CHALLENGE_PORT)


# ── Commands ──────────────────────────────────────────────────────────────────


def run_issue(
    domains: list[str] | None = None,
    challenge_type: str | None = None,
    local_check: bool | None = None,
    use_checkpoint: bool = False,
) -> dict:
    """Drive the order through challenges, finalize and download; return final state."""
    from config import settings
    from workflow.graph import build_issuance_graph, initial_state

    challenge_type = challenge_type or settings.CHALLENGE_TYPE
    local_check = settings.LOCAL_CHECK if local_check is None else local_check

    order = open_order(domains)
    log.info("issue_start", primary_name=order.primary_name,
             identifiers=order.identifiers, status=order.status)

    graph = build_issuance_graph(
        order,
        make_publisher(challenge_type),
        verify_timeout=settings.VERIFY_TIMEOUT_SECONDS,
        use_checkpointing=use_checkpoint,
    )
    state = initial_state(order, challenge_type=challenge_type, local_check=local_check)
    config = {"configurable": {"thread_id": order.primary_name}} if use_checkpoint else {}

    final_state = graph.invoke(state, config=config)
    log.info("issue_complete", status=final_state.get("order_status"),
             certificate_saved=final_state.get("certificate_saved"))
    return final_state


def run_status(domains: list[str] | None = None, challenge_type: str | None = None) -> None:
    from config import settings

    order = open_order(domains, require_existing=True)
    challenge_type = challenge_type or settings.CHALLENGE_TYPE
    print(f"Order:      {order.order_url}")
    print(f"Status:     {order.status}")
    print(f"Expires:    {order.expires or '-'}")
    print(f"Identifiers: {', '.join(order.identifiers)}")
    for auth in order.authorizations:
        print(f"  {auth.identifier:<40} {auth.status}")
    for pending in order.get_pending_authorizations(challenge_type):
        print(f"  pending {challenge_type}: {pending}")


def run_revoke(domains: list[str] | None = None, reason: int = 0) -> bool:
    from acme_order.order import RevocationReason

    try:
        reason_code = RevocationReason(reason)
    except ValueError:
        log.error("invalid_reason", reason=reason, allowed=[int(r) for r in RevocationReason])
        sys.exit(1)

    order = open_order(domains, require_existing=True)
    if not order.recovered:
        return False
    revoked = order.revoke_certificate(reason_code)
    log.info("revoke_complete", primary_name=order.primary_name,
             reason=reason_code.name, revoked=revoked)
    return revoked


# ── CLI ───────────────────────────────────────────────────────────────────────


def main() -> None:
    parser = argparse.ArgumentParser(
        description="ACME order manager",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --issue
  python main.py --issue --domains example.org www.example.org
  python main.py --issue --challenge dns-01 --no-local-check
  python main.py --status
  python main.py --revoke --reason 4
        """,
    )
    parser.add_argument("--issue", action="store_true",
                        help="Create or resume the order and issue the certificate")
    parser.add_argument("--status", action="store_true",
                        help="Print order status and pending challenges")
    parser.add_argument("--revoke", action="store_true",
                        help="Revoke the certificate of the order")
    parser.add_argument(
        "--reason",
        type=int,
        default=0,
        metavar="CODE",
        help="RFC 5280 revocation reason code (default: 0=unspecified; e.g. 1=keyCompromise, 4=superseded)",
    )
    parser.add_argument("--domains", nargs="+", metavar="DOMAIN",
                        help="Override MANAGED_DOMAINS for this run")
    parser.add_argument("--challenge", choices=["http-01", "dns-01"],
                        help="Challenge type (default: CHALLENGE_TYPE)")
    parser.add_argument("--no-local-check", action="store_true",
                        help="Notify the CA without checking the challenge locally first")
    parser.add_argument("--checkpoint", action="store_true",
                        help="Enable MemorySaver checkpointing for the issuance graph")

    args = parser.parse_args()

    if not (args.issue or args.status or args.revoke):
        parser.print_help()
        sys.exit(1)

    if args.revoke:
        sys.exit(0 if run_revoke(domains=args.domains, reason=args.reason) else 2)
    elif args.status:
        run_status(domains=args.domains, challenge_type=args.challenge)
    else:
        final_state = run_issue(
            domains=args.domains,
            challenge_type=args.challenge,
            local_check=False if args.no_local_check else None,
            use_checkpoint=args.checkpoint,
        )
        sys.exit(0 if final_state.get("certificate_saved") else 2)


if __name__ == "__main__":
    main()
