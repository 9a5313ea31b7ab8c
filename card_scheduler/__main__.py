"""
Command line entry point

    card-scheduler run --player <id>
    card-scheduler list
    card-scheduler add --card-id c1 --card-uri https://yoto.io/c1 --player-id p1 --time 07:30 --days 1 2 3 4 5
    card-scheduler remove <id>
    card-scheduler toggle <id> --off
    card-scheduler next
    card-scheduler login
"""

import argparse
import secrets
import signal
import sys
import threading
from typing import List, Optional

from pydantic import ValidationError

from .config import CardSchedulerConfig
from .context import SchedulerContext
from .due import format_days, format_time, next_execution
from .errors import CardSchedulerError, ScheduleNotFound
from .logging_utils import get_logger, setup_logging
from .tokens import generate_pkce_pair

logger = get_logger(__name__)


def cmd_run(ctx: SchedulerContext, args: argparse.Namespace) -> int:
    stop = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop.set())
    signal.signal(signal.SIGTERM, lambda *_: stop.set())

    ctx.start()
    if args.player:
        try:
            ctx.connect_channel(args.player)
        except CardSchedulerError as e:
            logger.warning(f"Running without a device channel: {e}")
    try:
        stop.wait()
    finally:
        ctx.shutdown()
    return 0


def cmd_list(ctx: SchedulerContext, args: argparse.Namespace) -> int:
    schedules = ctx.store.get_all()
    if not schedules:
        print("No schedules")
        return 0
    for s in schedules:
        state = "on " if s.is_enabled else "off"
        print(f"{s.id}  [{state}]  {format_time(s.scheduled_time):>8}  {format_days(s.days_of_week):<20}"
              f"  '{s.card_title or s.card_id}' on {s.player_name or s.player_id}")
    return 0


def cmd_add(ctx: SchedulerContext, args: argparse.Namespace) -> int:
    schedule = ctx.store.create({
        "cardId": args.card_id,
        "cardTitle": args.card_title or args.card_id,
        "cardUri": args.card_uri,
        "playerId": args.player_id,
        "playerName": args.player_name or args.player_id,
        "scheduledTime": args.time,
        "daysOfWeek": args.days,
        "repeatWeekly": not args.once,
        "notifyIfOffline": args.notify_offline,
    })
    print(schedule.id)
    return 0


def cmd_remove(ctx: SchedulerContext, args: argparse.Namespace) -> int:
    ctx.store.delete(args.schedule_id)
    return 0


def cmd_toggle(ctx: SchedulerContext, args: argparse.Namespace) -> int:
    schedule = ctx.store.toggle(args.schedule_id, not args.off)
    print(f"{schedule.id} {'enabled' if schedule.is_enabled else 'disabled'}")
    return 0


def cmd_next(ctx: SchedulerContext, args: argparse.Namespace) -> int:
    upcoming = []
    for s in ctx.store.get_all():
        if not s.is_enabled:
            continue
        fire_at = next_execution(s)
        if fire_at is not None:
            upcoming.append((fire_at, s))
    for fire_at, s in sorted(upcoming, key=lambda item: item[0]):
        print(f"{fire_at:%a %Y-%m-%d %H:%M}  '{s.card_title or s.card_id}' on {s.player_name or s.player_id}")
    return 0


def cmd_login(ctx: SchedulerContext, args: argparse.Namespace) -> int:
    verifier, challenge = generate_pkce_pair()
    state = secrets.token_urlsafe(16)
    print("Open this URL, sign in, and paste the 'code' parameter of the redirect:")
    print(ctx.tokens.build_authorize_url(challenge, state=state))
    code = input("code: ").strip()
    if not code:
        print("No code entered", file=sys.stderr)
        return 1
    ctx.tokens.exchange_code(code, verifier)
    print("Signed in")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="card-scheduler", description="Scheduled card playback")
    parser.add_argument("--log-level", help="Override CARD_SCHEDULER_LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run the foreground poller and background trigger")
    run.add_argument("--player", help="Player id to keep a device channel open to")
    run.set_defaults(func=cmd_run)

    sub.add_parser("list", help="List schedules").set_defaults(func=cmd_list)

    add = sub.add_parser("add", help="Create a schedule")
    add.add_argument("--card-id", required=True)
    add.add_argument("--card-uri", required=True)
    add.add_argument("--card-title")
    add.add_argument("--player-id", required=True)
    add.add_argument("--player-name")
    add.add_argument("--time", required=True, help="HH:MM, local time")
    add.add_argument("--days", type=int, nargs="+", required=True, help="Weekdays, 0 = Sunday")
    add.add_argument("--once", action="store_true", help="Do not repeat weekly")
    add.add_argument("--notify-offline", action="store_true")
    add.set_defaults(func=cmd_add)

    remove = sub.add_parser("remove", help="Delete a schedule")
    remove.add_argument("schedule_id")
    remove.set_defaults(func=cmd_remove)

    toggle = sub.add_parser("toggle", help="Enable or disable a schedule")
    toggle.add_argument("schedule_id")
    toggle.add_argument("--off", action="store_true", help="Disable instead of enable")
    toggle.set_defaults(func=cmd_toggle)

    sub.add_parser("next", help="Show the next fire time of each schedule").set_defaults(func=cmd_next)
    sub.add_parser("login", help="Sign in with an authorization code").set_defaults(func=cmd_login)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = CardSchedulerConfig.from_env()
    setup_logging(args.log_level or config.log_level)

    ctx = SchedulerContext.build(config)
    try:
        return args.func(ctx, args)
    except ScheduleNotFound as e:
        print(f"Schedule not found: {e.schedule_id}", file=sys.stderr)
        return 1
    except (CardSchedulerError, ValidationError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
