#!/usr/bin/env python3
"""
Science AI - usage limits and citation formatting.

Usage:
    python -m scienceai.main usage show <user>                 Show counters and limits
    python -m scienceai.main usage create <user> --plan pro    Create a usage record
    python -m scienceai.main usage plan <user> <plan>          Change a user's plan
    python -m scienceai.main usage trial <user>                Start the one-time Pro trial
    python -m scienceai.main usage referral <user>             Credit a referral bonus
    python -m scienceai.main usage reset <user> --daily        Reset daily counters
    python -m scienceai.main cite <sources.json> --style apa7   Format a bibliography
    python -m scienceai.main serve                             Start the API server
"""
from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import List

from dotenv import load_dotenv

from scienceai.citations.export import export_bibtex, export_ris
from scienceai.citations.formatter import generate_bibliography
from scienceai.citations.models import CitationStyle, Source, parse_source_type
from scienceai.config import configure_logging, get_config
from scienceai.db.usage_store import UsageStore
from scienceai.errors import ScienceAIError
from scienceai.subscription.limiter import UsageLimiter
from scienceai.subscription.state import COUNTERS, SubscriptionPlan, is_unlimited


def _limiter() -> UsageLimiter:
    return UsageLimiter(UsageStore(get_config().database_path))


def cmd_usage_show(args: argparse.Namespace) -> None:
    """Show a user's counters against their plan limits."""
    snapshot = _limiter().get_usage(args.user)
    record = snapshot.record

    print(f"Usage for {record.user_id} ({snapshot.plan_name})")
    print("-" * 40)
    for counter in COUNTERS:
        limit = snapshot.limits[counter]
        limit_str = "unlimited" if is_unlimited(limit) else str(limit)
        print(f"  {counter}: {record.counters[counter]} / {limit_str}")
    print()
    print(f"  Last daily reset:   {record.last_daily_reset.isoformat()}")
    print(f"  Last monthly reset: {record.last_monthly_reset.isoformat()}")
    print(f"  Subscription:       {record.status.value}")
    if record.expires_at:
        print(f"  Expires:            {record.expires_at.isoformat()}")
    if record.referrals:
        print(f"  Referrals:          {record.referrals}")


def cmd_usage_create(args: argparse.Namespace) -> None:
    record = _limiter().ensure_user(args.user, SubscriptionPlan(args.plan))
    print(f"User {record.user_id} is on the {record.plan.value} plan")


def cmd_usage_plan(args: argparse.Namespace) -> None:
    expires_at = datetime.utcnow() + timedelta(days=args.days) if args.days else None
    record = _limiter().change_plan(args.user, args.plan, expires_at)
    print(f"User {record.user_id} switched to the {record.plan.value} plan")
    if expires_at:
        print(f"  Expires: {expires_at.isoformat()}")


def cmd_usage_cancel(args: argparse.Namespace) -> None:
    _limiter().cancel_subscription(args.user)
    print(f"Subscription cancelled for {args.user}")


def cmd_usage_trial(args: argparse.Namespace) -> None:
    record = _limiter().start_trial(args.user)
    print(f"Trial of the {record.plan.value} plan started for {record.user_id}")
    print(f"  Expires: {record.expires_at.isoformat()}")


def cmd_usage_referral(args: argparse.Namespace) -> None:
    record = _limiter().add_referral(args.user)
    print(f"Referral credited to {record.user_id} ({record.referrals} total)")


def cmd_usage_reset(args: argparse.Namespace) -> None:
    limiter = _limiter()
    if args.monthly:
        limiter.reset_monthly(args.user)
        print(f"Monthly counters reset for {args.user}")
    else:
        limiter.reset_daily(args.user)
        print(f"Daily counters reset for {args.user}")


def load_sources(path: str) -> List[Source]:
    """Read sources from a JSON file holding a list of source objects."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)

    if isinstance(data, dict):
        data = data.get("sources", [])

    sources = []
    for i, item in enumerate(data):
        sources.append(Source(
            id=str(item.get("id", i + 1)),
            title=item.get("title", ""),
            authors=list(item.get("authors") or []),
            year=item.get("year"),
            journal=item.get("journal"),
            volume=item.get("volume"),
            issue=item.get("issue"),
            pages=item.get("pages"),
            doi=item.get("doi"),
            url=item.get("url"),
            abstract=item.get("abstract"),
            citation_count=item.get("citationCount"),
            type=parse_source_type(item.get("type", "article")),
        ))
    return sources


def cmd_cite(args: argparse.Namespace) -> None:
    """Format sources from a JSON file."""
    if not Path(args.file).exists():
        print(f"Error: File '{args.file}' does not exist")
        sys.exit(1)

    sources = load_sources(args.file)

    if args.bibtex:
        print(export_bibtex(sources))
    elif args.ris:
        print(export_ris(sources))
    else:
        print(generate_bibliography(sources, args.style))


def cmd_serve(args: argparse.Namespace) -> None:
    from scienceai.api.server import run

    config = get_config()
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    run(config)


def main() -> None:
    load_dotenv()
    configure_logging(get_config().log_level)

    parser = argparse.ArgumentParser(
        description="Science AI - usage limits and citation formatting",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    plans = [p.value for p in SubscriptionPlan]

    usage_parser = subparsers.add_parser("usage", help="Inspect and manage usage counters")
    usage_sub = usage_parser.add_subparsers(dest="usage_command")

    show_parser = usage_sub.add_parser("show", help="Show counters and limits")
    show_parser.add_argument("user", help="User ID")
    show_parser.set_defaults(func=cmd_usage_show)

    create_parser = usage_sub.add_parser("create", help="Create a usage record")
    create_parser.add_argument("user", help="User ID")
    create_parser.add_argument("--plan", choices=plans, default=SubscriptionPlan.FREE.value,
                               help="Subscription plan (default: free)")
    create_parser.set_defaults(func=cmd_usage_create)

    plan_parser = usage_sub.add_parser("plan", help="Change a user's plan")
    plan_parser.add_argument("user", help="User ID")
    plan_parser.add_argument("plan", choices=plans, help="New subscription plan")
    plan_parser.add_argument("--days", type=int, help="Subscription length in days (default: no expiry)")
    plan_parser.set_defaults(func=cmd_usage_plan)

    cancel_parser = usage_sub.add_parser("cancel", help="Cancel a user's subscription")
    cancel_parser.add_argument("user", help="User ID")
    cancel_parser.set_defaults(func=cmd_usage_cancel)

    trial_parser = usage_sub.add_parser("trial", help="Start the one-time Pro trial")
    trial_parser.add_argument("user", help="User ID")
    trial_parser.set_defaults(func=cmd_usage_trial)

    referral_parser = usage_sub.add_parser("referral", help="Credit a referral bonus")
    referral_parser.add_argument("user", help="User ID")
    referral_parser.set_defaults(func=cmd_usage_referral)

    reset_parser = usage_sub.add_parser("reset", help="Reset counters")
    reset_parser.add_argument("user", help="User ID")
    period = reset_parser.add_mutually_exclusive_group(required=True)
    period.add_argument("--daily", action="store_true", help="Reset daily counters")
    period.add_argument("--monthly", action="store_true", help="Reset all counters")
    reset_parser.set_defaults(func=cmd_usage_reset)

    cite_parser = subparsers.add_parser("cite", help="Format sources from a JSON file")
    cite_parser.add_argument("file", help="JSON file with a list of sources")
    cite_parser.add_argument("-s", "--style", choices=[s.value for s in CitationStyle],
                             default=CitationStyle.APA7.value,
                             help="Citation style (default: apa7)")
    export_group = cite_parser.add_mutually_exclusive_group()
    export_group.add_argument("--bibtex", action="store_true", help="Export as BibTeX")
    export_group.add_argument("--ris", action="store_true", help="Export as RIS")
    cite_parser.set_defaults(func=cmd_cite)

    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", help="Bind address")
    serve_parser.add_argument("--port", type=int, help="Port")
    serve_parser.set_defaults(func=cmd_serve)

    args = parser.parse_args()

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except ScienceAIError as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
