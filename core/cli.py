#!/usr/bin/env python3
"""
CLI for operating the listing ingestion pipeline.

Usage:
    python -m core.cli run [--limit N]
    python -m core.cli enqueue <url> [<url> ...]
    python -m core.cli policy <domain> [--republish] [--fields title,price] [--no-fetch]
    python -m core.cli policy --list
    python -m core.cli retry-errors [--limit N]
    python -m core.cli reclaim
    python -m core.cli stats
    python -m core.cli score <listing_id> [--admin <id>]
    python -m core.cli override <listing_id> <allow|hold|reject> --admin <id> [--notes TEXT]

Examples:
    # Allow a domain to be fetched as link-out, queue a page and ingest it
    python -m core.cli policy example-homes.mt --fields title,price,bedrooms,area,url
    python -m core.cli enqueue https://example-homes.mt/listing/123
    python -m core.cli run --limit 10
"""

import argparse
import json
import sys
from typing import Optional

from core.audit import ActorType, AuditActions
from core.decisions import Decision
from core.inventory import InventoryError
from core.models import DomainPolicy, parse_fields
from core.pipeline import PipelineServices, get_services
from utils.config import Config
from utils.formatting import format_currency


CLI_ACTOR_ID = "cli"


def cmd_run(args, services: PipelineServices):
    """Run one ingestion batch."""
    stats = services.pipeline.run_batch(limit=args.limit)

    print(f"Processed:       {stats.processed}")
    print(f"Created:         {stats.created}")
    print(f"Duplicates:      {stats.duplicates}")
    print(f"Errors:          {stats.errors}")
    print(f"Held:            {stats.held}")
    print(f"Review required: {stats.review_required}")
    if stats.reclaimed:
        print(f"Reclaimed:       {stats.reclaimed}")
    return 0


def cmd_enqueue(args, services: PipelineServices):
    """Add URLs to the queue."""
    for url in args.urls:
        item = services.queue.enqueue(url)
        policy = services.queue.get_policy(item.domain)
        note = "" if policy else " (no domain policy, will not be fetched)"
        print(f"{item.id}  {item.status.value:<10} {url}{note}")
    return 0


def cmd_policy(args, services: PipelineServices):
    """Create or replace a domain policy, or list policies."""
    if args.list or not args.domain:
        for policy in services.queue.list_policies():
            print(json.dumps(policy.to_dict()))
        return 0

    fields = parse_fields(args.fields.split(",")) if args.fields else frozenset()
    policy = services.queue.set_policy(DomainPolicy(
        domain=args.domain.lower(),
        allowed_to_republish=args.republish,
        fields_allowed=fields,
        allowed_to_fetch=not args.no_fetch,
        notes=args.notes,
    ))

    print(f"Policy saved for {policy.domain}")
    print(f"  Source type: {policy.source_type.value}")
    print(f"  Fetch:       {'yes' if policy.allowed_to_fetch else 'no'}")
    print(f"  Fields:      {', '.join(sorted(f.value for f in policy.effective_fields))}")
    return 0


def cmd_retry_errors(args, services: PipelineServices):
    """Requeue failed URLs."""
    count = services.pipeline.retry_errors(limit=args.limit)
    print(f"Requeued {count} URLs")
    return 0


def cmd_reclaim(args, services: PipelineServices):
    """Return items with expired leases to the queue."""
    count = services.pipeline.reclaim()
    print(f"Reclaimed {count} URLs")
    return 0


def cmd_stats(args, services: PipelineServices):
    """Print queue and inventory statistics as JSON."""
    print(json.dumps(services.pipeline.get_stats(), indent=2))
    return 0


def cmd_score(args, services: PipelineServices):
    """Score a listing, fingerprinting it first if no fingerprint is stored."""
    try:
        listing = services.inventory.require_listing(args.listing_id)
        assessment = services.scorer.score_listing(args.listing_id)
    except InventoryError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"Listing: {listing.title} ({format_currency(listing.price_amount, listing.price_currency)})")
    if assessment is None:
        print("Risk scoring is disabled")
        return 0

    if args.admin:
        actor_type, actor_id = ActorType.USER, args.admin
    else:
        actor_type, actor_id = ActorType.SYSTEM, CLI_ACTOR_ID
    services.audit_log.record(
        actor_type=actor_type,
        actor_id=actor_id,
        action=AuditActions.RISK_SCORED,
        entity="listing",
        entity_id=args.listing_id,
        payload={"risk_score": assessment.risk_score, "status": assessment.status.value},
    )

    print(f"Score:   {assessment.risk_score} ({assessment.risk_level.value})")
    print(f"Status:  {assessment.status.value}")
    for reason in assessment.reasons:
        print(f"  - {reason}")
    return 0


def cmd_override(args, services: PipelineServices):
    """Apply an admin decision to a scored listing."""
    try:
        result = services.overrides.apply(
            args.listing_id,
            Decision(args.decision),
            admin_id=args.admin,
            notes=args.notes,
        )
    except InventoryError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"Listing {result.listing_id}: {result.decision.value} -> {result.final_status.value}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Link-out listing ingestion and risk pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m core.cli policy example-homes.mt --fields title,price,url
    python -m core.cli enqueue https://example-homes.mt/listing/123
    python -m core.cli run --limit 10
    python -m core.cli override <listing_id> allow --admin admin-1

Data:
    Queue, inventory and audit files live under DATA_DIR (default ./data)
        """,
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # Run command
    run_parser = subparsers.add_parser("run", help="Process one batch of queued URLs")
    run_parser.add_argument("--limit", type=int, default=None, help="Max URLs (default BATCH_SIZE)")
    run_parser.set_defaults(func=cmd_run)

    # Enqueue command
    enqueue_parser = subparsers.add_parser("enqueue", help="Add URLs to the queue")
    enqueue_parser.add_argument("urls", nargs="+", help="Listing page URLs")
    enqueue_parser.set_defaults(func=cmd_enqueue)

    # Policy command
    policy_parser = subparsers.add_parser("policy", help="Set or list domain policies")
    policy_parser.add_argument("domain", nargs="?", help="Domain, without www.")
    policy_parser.add_argument("--list", action="store_true", help="List all policies")
    policy_parser.add_argument(
        "--republish",
        action="store_true",
        help="Domain allows full republication (partner)",
    )
    policy_parser.add_argument(
        "--fields",
        help="Comma-separated fields to keep for link-out listings",
    )
    policy_parser.add_argument("--no-fetch", action="store_true", help="Never fetch this domain")
    policy_parser.add_argument("--notes", help="Free-text notes")
    policy_parser.set_defaults(func=cmd_policy)

    # Retry command
    retry_parser = subparsers.add_parser("retry-errors", help="Requeue failed URLs")
    retry_parser.add_argument("--limit", type=int, default=20, help="Max URLs (default 20)")
    retry_parser.set_defaults(func=cmd_retry_errors)

    # Reclaim command
    reclaim_parser = subparsers.add_parser("reclaim", help="Requeue URLs with expired leases")
    reclaim_parser.set_defaults(func=cmd_reclaim)

    # Stats command
    stats_parser = subparsers.add_parser("stats", help="Show queue and inventory statistics")
    stats_parser.set_defaults(func=cmd_stats)

    # Score command
    score_parser = subparsers.add_parser(
        "score",
        help="Score a listing (fingerprinted first when none is stored)",
    )
    score_parser.add_argument("listing_id", help="Listing id")
    score_parser.add_argument("--admin", help="Admin id recorded in the audit log")
    score_parser.set_defaults(func=cmd_score)

    # Override command
    override_parser = subparsers.add_parser("override", help="Apply an admin risk decision")
    override_parser.add_argument("listing_id", help="Listing id")
    override_parser.add_argument("decision", choices=[d.value for d in Decision])
    override_parser.add_argument("--admin", required=True, help="Admin id recorded on the review")
    override_parser.add_argument("--notes", help="Review notes")
    override_parser.set_defaults(func=cmd_override)

    return parser


def main(argv: Optional[list[str]] = None, services: Optional[PipelineServices] = None):
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    if services is None:
        config = Config.load()
        config.configure_logging()
        services = get_services(config)

    return args.func(args, services)


if __name__ == "__main__":
    sys.exit(main())
