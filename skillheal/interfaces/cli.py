"""Operator CLI: routing, healing and reporting commands."""

import argparse
import asyncio
import json
import logging
from datetime import datetime

from skillheal.config import (
    DEFAULT_POLICY,
    HEALING_DB_PATH,
    LOG_FILE,
    OPENROUTER_API_KEY,
    VERSION,
    setup_logging,
)
from skillheal.db_globals import close_db, get_db
from skillheal.routing import RoutingPolicy

logger = logging.getLogger(__name__)

POLICY_CHOICES = [p.value for p in RoutingPolicy]


def _builtin_status() -> str:
    from skillheal.core.runner import get_catalog

    return (
        f"skillheal v{VERSION}\n"
        f"Default policy: {DEFAULT_POLICY}\n"
        f"API key configured: {'yes' if OPENROUTER_API_KEY else 'no'}\n"
        f"Models in catalog: {len(get_catalog())}\n"
        f"Healing store: SQLite ({HEALING_DB_PATH})\n\n"
        "Usage: python -m skillheal route 'your prompt' [--policy free-first|paid-first|...]"
    )


def _fmt_time(ts: float | None) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


def _show_models() -> None:
    from skillheal.core.runner import get_catalog
    from skillheal.routing import ModelTier

    catalog = get_catalog()
    print(f"{'MODEL':<64} {'IN/1M':>8} {'OUT/1M':>8}")
    print("-" * 82)
    for tier in ModelTier:
        models = catalog.by_tier(tier)
        if not models:
            continue
        print(f"[{tier.value}]")
        for m in models:
            print(f"{m.model_id:<64} {m.cost_per_input_unit:>8.4f} {m.cost_per_output_unit:>8.4f}")


def _select_model(policy: str, allow_uncensored: bool, allow_censored: bool) -> None:
    from skillheal.core.runner import get_catalog
    from skillheal.routing import FallbackChainSelector

    selector = FallbackChainSelector(get_catalog())
    chain = selector.select_chain(policy, allow_uncensored, allow_censored)
    print(chain[0])
    if len(chain) > 1:
        print("fallbacks: " + ", ".join(chain[1:]))


async def _route(prompt: str, policy: str, max_attempts: int | None, system: str | None) -> int:
    from skillheal.core.runner import cleanup, route
    from skillheal.routing import ChainExhausted

    messages = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})

    try:
        result = await route(messages, policy=policy, max_attempts=max_attempts)
    except ChainExhausted as e:
        print(f"Error: {e}")
        return 1
    finally:
        await cleanup()

    print(result.content)
    print(
        f"\n--- model: {result.model_used}  cost: ${result.total_cost:.6f}  "
        f"attempts: {len(result.attempts)}  fallback: {'yes' if result.fallback_occurred else 'no'}"
    )
    return 0


async def _add_item(item_id: str, disabled: bool) -> None:
    try:
        db = await get_db()
        schedule_id = await db.add_work_item(item_id, enabled=not disabled)
        print(f"Work item {item_id} registered with schedule id {schedule_id}")
    finally:
        await close_db()


async def _heal(schedule_id: int, item_id: str, error: str, attempt: int, stack: str | None) -> None:
    from skillheal.core.runner import cleanup, heal_failed_item
    from skillheal.healing import ErrorContext

    context = ErrorContext(
        schedule_id=schedule_id,
        item_id=item_id,
        error_message=error,
        error_stack=stack,
        attempt_number=attempt,
    )
    try:
        outcome = await heal_failed_item(context)
    finally:
        await cleanup()
    print(json.dumps(outcome.to_dict(), indent=2))


async def _confirm(error_id: int, succeeded: bool) -> int:
    from skillheal.core.runner import cleanup, confirm_fix

    try:
        ok = await confirm_fix(error_id, succeeded)
    finally:
        await cleanup()
    if not ok:
        print(f"Error entry {error_id} not found.")
        return 1
    print(f"Error entry {error_id} marked {'fixed' if succeeded else 'not fixed'}.")
    return 0


async def _show_stats() -> None:
    try:
        db = await get_db()
        stats = await db.get_healing_stats(top=5)
        print("=== Healing Stats ===\n")
        print(f"Errors: {stats['total_errors']}")
        print(f"Resolved: {stats['resolved']}  Escalated: {stats['escalated']}  Pending: {stats['pending']}")
        print(f"Resolution rate: {stats['resolution_rate']:.0%}")
        if stats["top_patterns"]:
            print("\nTop failure patterns:")
            for p in stats["top_patterns"]:
                print(f"  {p['occurrence_count']:>4}x [{p['error_type']}] {p['signature'][:70]}")
    finally:
        await close_db()


async def _show_errors(limit: int) -> None:
    try:
        db = await get_db()
        errors = await db.get_recent_errors(limit=limit)
        if not errors:
            print("No errors recorded.")
            return
        print("ID    WHEN                 ITEM                 TYPE            STATE")
        print("-" * 80)
        for e in errors:
            if e["escalated"]:
                state = "escalated"
            elif e["fix_successful"] is True:
                state = "fixed"
            elif e["fix_successful"] is False:
                state = "fix failed"
            else:
                state = e["fix_attempted"] or "open"
            print(f"{e['id']:<5} {_fmt_time(e['created_at']):<20} {e['item_id'][:20]:<20} {e['error_type']:<15} {state[:30]}")
    finally:
        await close_db()


async def _show_patterns(limit: int) -> None:
    try:
        db = await get_db()
        patterns = await db.list_failure_patterns(limit=limit)
        if not patterns:
            print("No failure patterns.")
            return
        for p in patterns:
            print(f"{p.fingerprint[:12]}  {p.occurrence_count}x  last {_fmt_time(p.last_occurrence)}  [{p.error_type}]")
            print(f"   {p.signature[:100]}")
            if p.known_fix:
                print(f"   known fix: {p.known_fix}")
    finally:
        await close_db()


async def _show_usage() -> None:
    try:
        db = await get_db()
        usage = await db.get_usage_stats()
        print(f"Calls: {usage['total_calls']}  Total cost: ${usage['total_cost']:.6f}\n")
        for m in usage["models"]:
            print(
                f"{m['model_id']:<64} {m['calls']:>5} calls  {m['success_rate']:>4.0%} ok  "
                f"{m['input_tokens']}/{m['output_tokens']} tok  ${m['cost']:.6f}  {m['avg_latency_ms']}ms"
            )
    finally:
        await close_db()


def _show_logs(n: int) -> None:
    try:
        with open(LOG_FILE, encoding="utf-8") as f:
            lines = f.readlines()
    except FileNotFoundError:
        print(f"Log file not found: {LOG_FILE}")
        return
    tail = lines[-n:] if len(lines) > n else lines
    print(f"--- last {len(tail)} of {len(lines)} log entries ---")
    print("".join(tail), end="")


def main() -> int:
    parser = argparse.ArgumentParser(
        prog="python -m skillheal",
        description=f"skillheal v{VERSION}: tiered LLM routing and self-healing for scheduled skills",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at INFO level")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Show configuration summary")
    sub.add_parser("models", help="List models in the catalog")

    select_parser = sub.add_parser("select-model", help="Show the model a policy would try first")
    select_parser.add_argument("--policy", choices=POLICY_CHOICES, default=DEFAULT_POLICY)
    select_parser.add_argument("--no-uncensored", action="store_true", help="Exclude uncensored models")
    select_parser.add_argument("--no-censored", action="store_true", help="Exclude censored models")

    route_parser = sub.add_parser("route", help="Send a prompt through the fallback chain")
    route_parser.add_argument("prompt", help="User message")
    route_parser.add_argument("--policy", choices=POLICY_CHOICES, default=DEFAULT_POLICY)
    route_parser.add_argument("--max-attempts", type=int, help="Candidates to try")
    route_parser.add_argument("--system", help="Optional system message")

    add_parser = sub.add_parser("add-item", help="Register a work item")
    add_parser.add_argument("item_id", help="Skill id")
    add_parser.add_argument("--disabled", action="store_true", help="Register disabled")

    heal_parser = sub.add_parser("heal", help="Run the healing pass for a failed run")
    heal_parser.add_argument("schedule_id", type=int, help="Work item schedule id")
    heal_parser.add_argument("item_id", help="Skill id")
    heal_parser.add_argument("error", help="Error message of the failed run")
    heal_parser.add_argument("--attempt", type=int, default=1, help="Attempt number (1-based)")
    heal_parser.add_argument("--stack", help="Stack trace")

    confirm_parser = sub.add_parser("confirm", help="Report the result of the retried run")
    confirm_parser.add_argument("error_id", type=int, help="Error entry id from the heal outcome")
    confirm_parser.add_argument("--failed", action="store_true", help="The retried run failed again")

    sub.add_parser("stats", help="Show healing statistics")

    errors_parser = sub.add_parser("errors", help="Show recent errors")
    errors_parser.add_argument("--limit", type=int, default=20, help="Max errors to show")

    patterns_parser = sub.add_parser("patterns", help="Show failure patterns")
    patterns_parser.add_argument("--limit", type=int, default=10, help="Max patterns to show")

    sub.add_parser("usage", help="Show LLM usage and cost per model")

    logs_parser = sub.add_parser("logs", help="Show log tail")
    logs_parser.add_argument("n", type=int, nargs="?", default=30, help="Number of lines")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return 0

    if args.command not in ("status", "models", "select-model", "logs"):
        setup_logging(logging.INFO if args.verbose else logging.WARNING)

    if args.command == "status":
        print(_builtin_status())
    elif args.command == "models":
        _show_models()
    elif args.command == "select-model":
        _select_model(args.policy, not args.no_uncensored, not args.no_censored)
    elif args.command == "route":
        return asyncio.run(_route(args.prompt, args.policy, args.max_attempts, args.system))
    elif args.command == "add-item":
        asyncio.run(_add_item(args.item_id, args.disabled))
    elif args.command == "heal":
        asyncio.run(_heal(args.schedule_id, args.item_id, args.error, args.attempt, args.stack))
    elif args.command == "confirm":
        return asyncio.run(_confirm(args.error_id, not args.failed))
    elif args.command == "stats":
        asyncio.run(_show_stats())
    elif args.command == "errors":
        asyncio.run(_show_errors(args.limit))
    elif args.command == "patterns":
        asyncio.run(_show_patterns(args.limit))
    elif args.command == "usage":
        asyncio.run(_show_usage())
    elif args.command == "logs":
        _show_logs(args.n)
    else:
        parser.print_help()
    return 0
