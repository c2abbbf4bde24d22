"""
Command line entry point.

Runs the scheduled booking check, manages stored credentials and rules, and
performs one-off account actions such as a manual booking.
"""

import argparse
import asyncio
import json
import logging
import sys

from classbooker.account import build_account_service
from classbooker.config import BookingConstants
from classbooker.exceptions import AuthError, ClassBookerError
from classbooker.models import Credentials
from classbooker.orchestrator import build_orchestrator
from classbooker.session import authenticated_session
from classbooker.trigger import check_bookings

logger = logging.getLogger(__name__)


async def verify_credentials(username: str, password: str) -> bool:
    try:
        async with authenticated_session(Credentials(username, password)):
            return True
    except AuthError as e:
        print(f"❌ Invalid credentials: {e}")
        return False


async def test_connection(user_id: str) -> bool:
    connected = await build_account_service().test_connection(user_id)
    print("✅ Connection successful" if connected else "❌ Connection failed")
    return connected


async def preview_classes(user_id: str, days: int) -> bool:
    classes = await build_account_service().list_classes(user_id, days)
    for class_instance in classes:
        print(
            f"  {class_instance.start_date_time}  {class_instance.name} @ "
            f"{class_instance.location_name} "
            f"(spots: {class_instance.spots_available}, "
            f"waiting: {class_instance.waiting_list_count}) [{class_instance.id}]"
        )
    print(f"📋 {len(classes)} classes")
    return True


async def list_gyms(user_id: str) -> bool:
    locations = await build_account_service().list_locations(user_id)
    for location in locations:
        city = f" ({location.city})" if location.city else ""
        print(f"  {location.id}: {location.name}{city}")
    print(f"🏋️ {len(locations)} gyms")
    return True


async def list_bookings(user_id: str) -> bool:
    bookings = await build_account_service().list_bookings(user_id)
    for booking in bookings:
        print(f"  {booking.event_id}")
    print(f"📅 {len(bookings)} current bookings")
    return True


async def book_now(args) -> bool:
    result, record = await build_account_service().book_class(
        args.user_id,
        args.event_id,
        class_name=args.class_name,
        class_time=args.class_time,
        gym=args.gym,
        instructor=args.instructor,
    )
    if result.success:
        print(f"✅ Booked class {record.event_id}")
    else:
        print(f"❌ Booking refused: {result.error}")
    return result.success


def handle_set_credentials(args) -> bool:
    if not args.skip_verify:
        if not asyncio.run(verify_credentials(args.username, args.password)):
            return False

    build_orchestrator().credentials.save(args.user_id, args.username, args.password)
    print("✅ Credentials saved successfully")
    return True


def handle_add_rule(args) -> bool:
    rule = build_orchestrator().rules.add_rule(
        args.user_id,
        class_name=args.class_name,
        day_of_week=args.day,
        time=args.time,
        instructor=args.instructor,
        location=args.location,
        enabled=not args.disabled,
        max_waiting_list=args.max_waiting_list,
    )
    print(f"✅ Added rule {rule.id}")
    return True


def handle_list_rules(args) -> bool:
    rules = build_orchestrator().rules.list_rules(args.user_id)
    if not rules:
        print("No booking rules")
    for rule in rules:
        status = "✅" if rule.enabled else "⏸️"
        location = f" @ {rule.location}" if rule.location else ""
        print(
            f"  {status} {rule.id}: {rule.class_name} on {rule.day_of_week} "
            f"at {rule.time}{location} (max waiting list: {rule.max_waiting_list})"
        )
    return True


def handle_update_rule(args) -> bool:
    changes = {
        key: value
        for key, value in (
            ("className", args.class_name),
            ("dayOfWeek", args.day),
            ("time", args.time),
            ("location", args.location),
            ("instructor", args.instructor),
            ("maxWaitingList", args.max_waiting_list),
            ("enabled", args.enabled),
        )
        if value is not None
    }
    if not changes:
        print("❌ Nothing to update")
        return False

    rule = build_orchestrator().rules.update_rule(args.user_id, args.rule_id, **changes)
    print(f"✅ Updated rule {rule.id}" if rule else f"❌ No rule {args.rule_id}")
    return rule is not None


def handle_delete_rule(args) -> bool:
    deleted = build_orchestrator().rules.delete_rule(args.user_id, args.rule_id)
    print("✅ Rule deleted" if deleted else f"❌ No rule {args.rule_id}")
    return deleted


def handle_history(args) -> bool:
    entries = build_orchestrator().history.recent(
        args.user_id, limit=BookingConstants.HISTORY_LIMIT
    )
    print(json.dumps(entries, indent=2, default=str))
    return True


def handle_run(args) -> bool:
    headers = {BookingConstants.SCHEDULER_HEADER: "cli"}
    response = asyncio.run(check_bookings(headers))
    print(json.dumps(response, indent=2))
    return response["success"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Automatic recurring class bookings",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s run
  %(prog)s set-credentials alice --username a@example.com --password secret
  %(prog)s add-rule alice --class-name WOD --day monday --time 18:00 --location Kirken
  %(prog)s history alice
  %(prog)s disable alice 3f2a9c1d0b7e4a65
  %(prog)s book alice 12345 --class-name WOD
        """,
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="Run the booking check for all users")
    run.set_defaults(handler=handle_run)

    creds = commands.add_parser("set-credentials", help="Store platform credentials")
    creds.add_argument("user_id")
    creds.add_argument("--username", required=True)
    creds.add_argument("--password", required=True)
    creds.add_argument(
        "--skip-verify", action="store_true", help="Store without a test login"
    )
    creds.set_defaults(handler=handle_set_credentials)

    add_rule = commands.add_parser("add-rule", help="Add a recurring booking rule")
    add_rule.add_argument("user_id")
    add_rule.add_argument("--class-name", required=True)
    add_rule.add_argument("--day", required=True, help="Weekday, e.g. monday")
    add_rule.add_argument("--time", required=True, help="HH:MM, platform local time")
    add_rule.add_argument("--location")
    add_rule.add_argument("--instructor")
    add_rule.add_argument("--max-waiting-list", type=int, default=0)
    add_rule.add_argument("--disabled", action="store_true")
    add_rule.set_defaults(handler=handle_add_rule)

    list_rules = commands.add_parser("list-rules", help="List booking rules")
    list_rules.add_argument("user_id")
    list_rules.set_defaults(handler=handle_list_rules)

    update_rule = commands.add_parser("update-rule", help="Change a booking rule")
    update_rule.add_argument("user_id")
    update_rule.add_argument("rule_id")
    update_rule.add_argument("--class-name")
    update_rule.add_argument("--day")
    update_rule.add_argument("--time")
    update_rule.add_argument("--location")
    update_rule.add_argument("--instructor")
    update_rule.add_argument("--max-waiting-list", type=int)
    update_rule.set_defaults(handler=handle_update_rule, enabled=None)

    for verb, enabled in (("enable", True), ("disable", False)):
        toggle = commands.add_parser(verb, help=f"{verb.capitalize()} a booking rule")
        toggle.add_argument("user_id")
        toggle.add_argument("rule_id")
        toggle.set_defaults(
            handler=handle_update_rule,
            enabled=enabled,
            class_name=None,
            day=None,
            time=None,
            location=None,
            instructor=None,
            max_waiting_list=None,
        )

    delete_rule = commands.add_parser("delete-rule", help="Delete a booking rule")
    delete_rule.add_argument("user_id")
    delete_rule.add_argument("rule_id")
    delete_rule.set_defaults(handler=handle_delete_rule)

    history = commands.add_parser("history", help="Show recent booking attempts")
    history.add_argument("user_id")
    history.set_defaults(handler=handle_history)

    connection = commands.add_parser(
        "test-connection", help="Log in with the stored credentials"
    )
    connection.add_argument("user_id")
    connection.set_defaults(
        handler=lambda args: asyncio.run(test_connection(args.user_id))
    )

    preview = commands.add_parser("classes", help="Preview the upcoming catalog")
    preview.add_argument("user_id")
    preview.add_argument("--days", type=int, default=7)
    preview.set_defaults(
        handler=lambda args: asyncio.run(preview_classes(args.user_id, args.days))
    )

    gyms = commands.add_parser("gyms", help="List the platform's gyms")
    gyms.add_argument("user_id")
    gyms.set_defaults(handler=lambda args: asyncio.run(list_gyms(args.user_id)))

    bookings = commands.add_parser("bookings", help="List current platform bookings")
    bookings.add_argument("user_id")
    bookings.set_defaults(handler=lambda args: asyncio.run(list_bookings(args.user_id)))

    book = commands.add_parser("book", help="Book one class by event id")
    book.add_argument("user_id")
    book.add_argument("event_id")
    book.add_argument("--class-name")
    book.add_argument("--class-time")
    book.add_argument("--gym")
    book.add_argument("--instructor")
    book.set_defaults(handler=lambda args: asyncio.run(book_now(args)))

    return parser


def main():
    """Main entry point with argument parsing."""
    args = build_parser().parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        success = args.handler(args)
    except ClassBookerError as e:
        print(f"❌ {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\n👋 Cancelled by user")
        sys.exit(1)

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
