#!/usr/bin/env python3
"""
Review crawler CLI - manage the crawl queue, run crawls and inspect results.

Usage: python crawler_cli.py <command> [options]

Commands:
    enqueue <url> [url ...] [--ratings 1,2,3]   - Add product URLs to the queue (default: all ratings)
    queue [status] [--rating N] [--limit N]     - List queue items, newest first
    remove <id>                                 - Remove a pending queue item
    requeue <id>                                - Put an errored/stuck item back to pending
    run [--ratings 1,2,3]                       - Run one crawl pass now
    status                                      - Queue counts, latest items and sync counts
    data [product_id] [--rating N] [--page N] [--limit N]
                                                - List crawled comments
    export <csv|json> <path> [--product ID] [--rating N]
                                                - Export crawled comments
    alerts [N]                                  - Show the N most recent alerts (default: 10)
    config                                      - Show the crawl configuration
    set-key <api_key>                           - Set the RapidAPI key
    set-proxies <proxy> [proxy ...] | none      - Replace the proxy list
    set-sheet <spreadsheet_id> | none           - Set the Google Sheet id used for sync
    set-crawl key=value [key=value ...]         - Tune crawl settings (delays in ms)
"""

import asyncio
import logging
import os
import sys
from typing import List, Optional, Tuple

# Add project root to PYTHONPATH
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from pydantic import ValidationError

from core.app import CrawlerApp
from core.config import load_settings
from core.exceptions import InvalidTransition
from core.models import VALID_RATINGS, CrawlSettings, QueueItem
from core.queue import RemoveResult
from plugins.shopee_ratings.export import export_comments


class Colors:
    """ANSI color codes for terminal output."""
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BLUE = "\033[94m"
    CYAN = "\033[96m"
    BOLD = "\033[1m"
    END = "\033[0m"


STATUS_COLORS = {
    "pending": Colors.YELLOW,
    "processing": Colors.BLUE,
    "completed": Colors.GREEN,
    "error": Colors.RED,
}


def pop_option(args: List[str], name: str, default: Optional[str] = None) -> Optional[str]:
    """Remove ``--name value`` or ``--name=value`` from *args* and return the value."""
    flag = f"--{name}"
    for i, arg in enumerate(args):
        if arg == flag and i + 1 < len(args):
            value = args[i + 1]
            del args[i:i + 2]
            return value
        if arg.startswith(flag + "="):
            del args[i]
            return arg.split("=", 1)[1]
    return default


def parse_ratings(value: Optional[str]) -> List[int]:
    if not value:
        return list(VALID_RATINGS)
    return [int(part) for part in value.replace(" ", "").split(",") if part]


def format_item(item: QueueItem) -> str:
    color = STATUS_COLORS.get(item.status.value, "")
    line = (
        f"{Colors.BOLD}#{item.id}{Colors.END} {color}{item.status.value:<10}{Colors.END} "
        f"product {item.product_id} ratings {item.target_ratings} "
        f"done {item.completed_ratings}\n    {item.url}"
    )
    if item.error_message:
        line += f"\n    {Colors.RED}{item.error_message}{Colors.END}"
    return line


# ---------------------------------------------------------------------- #
async def cmd_enqueue(app: CrawlerApp, args: List[str]) -> None:
    ratings = parse_ratings(pop_option(args, "ratings"))
    if not args:
        print(f"{Colors.RED}At least one URL is required{Colors.END}")
        return
    result = await app.queue.enqueue_many(args, ratings)
    for r in result.results:
        icon = "✅" if r.accepted else "⚠️ "
        print(f"{icon} {r.url}: {r.reason}")
    for r in result.errors:
        print(f"{Colors.RED}❌ {r.url}: {r.reason}{Colors.END}")


async def cmd_queue(app: CrawlerApp, args: List[str]) -> None:
    rating = pop_option(args, "rating")
    limit = int(pop_option(args, "limit", "50"))
    status = args[0] if args else None
    items = await app.queue.list_items(status=status, rating=int(rating) if rating else None, limit=limit)
    if not items:
        print(f"{Colors.YELLOW}Queue is empty{Colors.END}")
        return
    for item in items:
        print(format_item(item))


async def cmd_remove(app: CrawlerApp, args: List[str]) -> None:
    item_id = int(args[0])
    result = await app.queue.remove(item_id)
    if result is RemoveResult.REMOVED:
        print(f"{Colors.GREEN}✅ Removed item {item_id}{Colors.END}")
    elif result is RemoveResult.NOT_FOUND:
        print(f"{Colors.RED}❌ Queue item {item_id} not found{Colors.END}")
    else:
        print(f"{Colors.RED}❌ Cannot remove item {item_id}: only pending items can be removed{Colors.END}")


async def cmd_requeue(app: CrawlerApp, args: List[str]) -> None:
    item_id = int(args[0])
    try:
        item = await app.queue.requeue(item_id)
    except InvalidTransition as e:
        print(f"{Colors.RED}❌ {e}{Colors.END}")
        return
    if item is None:
        print(f"{Colors.RED}❌ Queue item {item_id} not found{Colors.END}")
    else:
        print(f"{Colors.GREEN}✅ Item {item_id} is pending again{Colors.END}")


async def cmd_run(app: CrawlerApp, args: List[str]) -> None:
    ratings = parse_ratings(pop_option(args, "ratings"))
    print(f"{Colors.BLUE}🚀 Crawling ratings {ratings}...{Colors.END}")
    summary = await app.orchestrator.run(ratings)
    if summary is None:
        print(f"{Colors.YELLOW}⚠️  A crawl process is already running{Colors.END}")
        return
    print(
        f"{Colors.GREEN}✅ Done:{Colors.END} {summary.claimed} claimed, {summary.completed} completed, "
        f"{summary.failed} failed, {summary.new_comments} new comments"
    )


async def cmd_status(app: CrawlerApp, args: List[str]) -> None:
    status = await app.orchestrator.status()
    counts = status["counts"]
    print(f"{Colors.BOLD}{Colors.CYAN}Crawl queue{Colors.END}")
    for name in ("pending", "processing", "completed", "error"):
        print(f"  {STATUS_COLORS[name]}{name:<12}{Colors.END} {counts[name]}")
    print(f"  {'total':<12} {counts['total']}")

    for name, item in status["latest"].items():
        if item is not None:
            print(f"\n{Colors.BOLD}Latest {name}{Colors.END}")
            print(format_item(item))

    sync = await app.comments.sync_counts()
    print(f"\n{Colors.BOLD}{Colors.CYAN}Comments{Colors.END}")
    print(f"  total {sync['total']}, synced {sync['synced']}, pending sync {sync['pending']}")


async def cmd_data(app: CrawlerApp, args: List[str]) -> None:
    rating = pop_option(args, "rating")
    page = int(pop_option(args, "page", "1"))
    limit = int(pop_option(args, "limit", "50"))
    product_id = args[0] if args else None
    rating_value = int(rating) if rating else None

    total = await app.comments.count(product_id, rating_value)
    comments = await app.comments.list_comments(product_id, rating_value, limit=limit, page=page)
    pages = max((total + limit - 1) // limit, 1)
    print(f"{Colors.BOLD}{total} comments{Colors.END} (page {page}/{pages})")
    for c in comments:
        text = c.comment_text.replace("\n", " ")
        print(
            f"{Colors.YELLOW}{'★' * c.rating_star}{Colors.END} {c.product_id}/{c.comment_id} "
            f"{c.commenter_username} {c.comment_timestamp:%Y-%m-%d}\n    {text[:200]}"
        )


async def cmd_export(app: CrawlerApp, args: List[str]) -> None:
    product_id = pop_option(args, "product")
    rating = pop_option(args, "rating")
    if len(args) < 2:
        print(f"{Colors.RED}Usage: export <csv|json> <path>{Colors.END}")
        return
    fmt, path = args[0], args[1]
    count = await export_comments(
        app.comments, path, fmt,
        product_id=product_id, rating=int(rating) if rating else None,
    )
    print(f"{Colors.GREEN}✅ Exported {count} comments to {path}{Colors.END}")


async def cmd_alerts(app: CrawlerApp, args: List[str]) -> None:
    limit = int(args[0]) if args else 10
    alerts = app.alert_log.recent(limit)
    if not alerts:
        print(f"{Colors.GREEN}No alerts{Colors.END}")
        return
    for alert in alerts:
        kind = alert.get("data", {}).get("type", "")
        print(f"{Colors.RED}[{alert.get('timestamp')}] {kind}{Colors.END} {alert.get('message')}")


async def cmd_config(app: CrawlerApp, args: List[str]) -> None:
    config = await app.config_store.get()
    settings = config.crawl_settings
    print(f"{Colors.BOLD}{Colors.CYAN}Crawl configuration{Colors.END}")
    print(f"  api key:      {config.masked_key() or '(not set)'}")
    print(f"  base url:     {config.base_url}")
    print(f"  headers:      {config.default_headers}")
    print(f"  proxies:      {len(config.proxy_list)}")
    print(f"  google sheet: {config.google_sheet_id or '(not set)'}")
    for key, value in settings.model_dump().items():
        print(f"  {key + ':':<23} {value}")


async def cmd_set_key(app: CrawlerApp, args: List[str]) -> None:
    config = await app.config_store.update(api_key=args[0].strip())
    print(f"{Colors.GREEN}✅ API key set ({config.masked_key()}){Colors.END}")


async def cmd_set_proxies(app: CrawlerApp, args: List[str]) -> None:
    proxies = [] if args == ["none"] else args
    config = await app.config_store.set_proxies(proxies)
    print(f"{Colors.GREEN}✅ {len(config.proxy_list)} proxies configured{Colors.END}")


async def cmd_set_sheet(app: CrawlerApp, args: List[str]) -> None:
    sheet_id = None if args[0] == "none" else args[0]
    await app.config_store.update(google_sheet_id=sheet_id)
    print(f"{Colors.GREEN}✅ Google Sheet id {'cleared' if sheet_id is None else 'set'}{Colors.END}")


def parse_assignments(args: List[str]) -> List[Tuple[str, int]]:
    pairs = []
    for arg in args:
        key, _, value = arg.partition("=")
        key = key.strip().replace("-", "_")
        if key not in CrawlSettings.model_fields:
            raise ValueError(f"Unknown crawl setting: {key}")
        pairs.append((key, int(value)))
    return pairs


async def cmd_set_crawl(app: CrawlerApp, args: List[str]) -> None:
    changes = dict(parse_assignments(args))
    config = await app.config_store.update_crawl_settings(**changes)
    print(f"{Colors.GREEN}✅ Crawl settings updated{Colors.END}")
    for key in changes:
        print(f"  {key} = {getattr(config.crawl_settings, key)}")


COMMANDS = {
    "enqueue": (cmd_enqueue, 1),
    "queue": (cmd_queue, 0),
    "remove": (cmd_remove, 1),
    "requeue": (cmd_requeue, 1),
    "run": (cmd_run, 0),
    "status": (cmd_status, 0),
    "data": (cmd_data, 0),
    "export": (cmd_export, 2),
    "alerts": (cmd_alerts, 0),
    "config": (cmd_config, 0),
    "set-key": (cmd_set_key, 1),
    "set-proxies": (cmd_set_proxies, 1),
    "set-sheet": (cmd_set_sheet, 1),
    "set-crawl": (cmd_set_crawl, 1),
}


async def main(argv: List[str]) -> int:
    """Main CLI entry point."""
    if not argv:
        print(__doc__)
        return 1

    command, args = argv[0].lower(), list(argv[1:])
    if command not in COMMANDS:
        print(f"{Colors.RED}Unknown command: {command}{Colors.END}")
        print(__doc__)
        return 1

    handler, min_args = COMMANDS[command]
    if len(args) < min_args:
        print(f"{Colors.RED}Missing arguments for {command}{Colors.END}")
        print(__doc__)
        return 1

    app = CrawlerApp(load_settings())
    await app.open()
    try:
        await handler(app, args)
        return 0
    except KeyboardInterrupt:
        print(f"\n{Colors.YELLOW}Interrupted{Colors.END}")
        return 130
    except (ValueError, ValidationError, InvalidTransition) as e:
        print(f"{Colors.RED}Error: {e}{Colors.END}")
        return 1
    finally:
        await app.close()


def run_cli():
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "WARNING"),
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s"
    )
    sys.exit(asyncio.run(main(sys.argv[1:])))


if __name__ == "__main__":
    run_cli()
