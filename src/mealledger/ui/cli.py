# ruff: noqa: T201

from __future__ import annotations

import argparse
import logging
import sys
from datetime import date
from pathlib import Path
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from mealledger.app import (
    audit_names,
    build_ledger,
    event_attendance,
    find_event_duplicates,
    reconcile_ticket_export,
    remove_event_duplicates,
)
from mealledger.config import configure_logging
from mealledger.domain.errors import InvalidRequestError
from mealledger.domain.ledger import CardPurchase, ReservationRequest
from mealledger.domain.model import MealType, PaymentMethod, ReservationStatus, Tier
from mealledger.domain.reconciliation import render_attendance

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from types import FrameType

    from mealledger.domain.reconciliation import DuplicateReport

log = logging.getLogger(__name__)

MEAL_TYPES = {
    "dine-in": MealType.DINE_IN,
    "to-go": MealType.TO_GO,
    "pickup": MealType.TO_GO,
    "delivery": MealType.DELIVERY,
}
MEMBER_STATUSES = {"member": Tier.MEMBER, "non-member": Tier.NON_MEMBER}
PAYMENT_METHODS = {
    "cash": PaymentMethod.CASH,
    "check": PaymentMethod.CHECK,
    "card": PaymentMethod.CARD,
    "lunch-card": PaymentMethod.MEAL_CARD,
    "unknown": PaymentMethod.UNKNOWN,
}
STATUSES = {status.value.casefold(): status for status in ReservationStatus}


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Meal card ledger and ticket reconciliation")
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    reconcile = subparsers.add_parser(
        "reconcile", help="Import a ticket export into an event table"
    )
    reconcile.add_argument("export", type=Path, help="Ticket export (CSV or JSON lines)")
    reconcile.add_argument("--event", type=Path, required=True, help="Event configuration TOML")
    reconcile.add_argument(
        "--expected-total",
        type=int,
        help="Ticket total the export should add up to",
    )
    reconcile.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would be created without writing",
    )

    duplicates = subparsers.add_parser("duplicates", help="Find duplicate ticket records")
    duplicates.add_argument("--event", type=Path, required=True, help="Event configuration TOML")
    duplicates.add_argument(
        "--include-date",
        action="store_true",
        help="Only treat records from the same purchase date as duplicates",
    )
    duplicates.add_argument("--delete", action="store_true", help="Delete after confirmation")
    duplicates.add_argument("--yes", action="store_true", help="Confirm deletion without asking")

    names = subparsers.add_parser("audit-names", help="Fuzzy-match a list of names for review")
    names.add_argument("names_file", type=Path, help="Text file with one name per line")
    names.add_argument("--event", type=Path, help="Match an event's buyers instead of meal cards")

    attendance = subparsers.add_parser("attendance", help="Attendance list for an event")
    attendance.add_argument("--event", type=Path, required=True, help="Event configuration TOML")

    card = subparsers.add_parser("card-purchase", help="Sell a prepaid meal card")
    card.add_argument("--name", required=True)
    card.add_argument("--phone", required=True)
    card.add_argument("--meals", type=int, required=True, help="5, 10, 15 or 20")
    card.add_argument("--meal-type", choices=sorted(MEAL_TYPES), required=True)
    card.add_argument("--member-status", choices=sorted(MEMBER_STATUSES), required=True)
    card.add_argument("--payment", choices=["cash", "check", "card"], required=True)
    card.add_argument("--check-number")
    card.add_argument("--staff", required=True, help="Staff initials")
    card.add_argument("--weekly-delivery", action="store_true")
    card.add_argument("--frozen-friday", action="store_true")
    card.add_argument("--address", help="Delivery address")

    reserve = subparsers.add_parser("reserve", help="Reserve meals, optionally paid by card")
    reserve.add_argument("--name", required=True)
    reserve.add_argument("--date", type=date.fromisoformat, required=True, help="YYYY-MM-DD")
    reserve.add_argument("--meal-type", choices=sorted(MEAL_TYPES), required=True)
    reserve.add_argument("--member-status", choices=sorted(MEMBER_STATUSES), required=True)
    reserve.add_argument(
        "--payment", choices=["cash", "check", "card", "lunch-card"], required=True
    )
    reserve.add_argument("--card", help="Meal card record id (with --payment lunch-card)")
    reserve.add_argument("--quantity", type=int, default=1)
    reserve.add_argument("--notes", default="")
    reserve.add_argument("--staff", required=True, help="Staff initials")

    unlink = subparsers.add_parser("unlink", help="Detach a reservation from its meal card")
    unlink.add_argument("reservation_id")
    unlink.add_argument(
        "--payment",
        choices=["cash", "check", "card", "unknown"],
        default="cash",
        help="Payment method to record instead (default: %(default)s)",
    )
    unlink.add_argument("--note", help="Note appended to the reservation")

    relink = subparsers.add_parser("relink", help="Pay an existing reservation by meal card")
    relink.add_argument("reservation_id")
    relink.add_argument("card_id")

    status = subparsers.add_parser("set-status", help="Change a reservation's status")
    status.add_argument("reservation_id")
    status.add_argument("status", choices=sorted(STATUSES))

    grant = subparsers.add_parser("grant", help="Add meals to a card")
    grant.add_argument("card_id")
    grant.add_argument("meals", type=int)
    grant.add_argument(
        "--correction",
        action="store_true",
        help="Give back meals without raising the card total",
    )
    grant.add_argument("--override", action="store_true", help="Allow exceeding the card total")

    subparsers.add_parser("audit-ledger", help="Check card balances against reservations")

    return parser.parse_args(list(argv))


def _ask_confirmation(report: DuplicateReport) -> bool:
    answer = input(f"Delete {len(report.duplicate_ids)} duplicate records? [y/N] ")
    return answer.strip().casefold() in {"y", "yes"}


def _always_confirm(_report: DuplicateReport) -> bool:
    return True


def _run_reconcile(args: argparse.Namespace) -> None:
    summary = reconcile_ticket_export(
        export_path=args.export,
        event_path=args.event,
        expected_total=args.expected_total,
        dry_run=args.dry_run,
    )
    print(summary.render())


def _run_duplicates(args: argparse.Namespace) -> None:
    event, report = find_event_duplicates(event_path=args.event, include_date=args.include_date)
    names = event.fields
    print(
        report.render(
            describe=lambda record: (
                f"{record.get_str(names.first_name)} {record.get_str(names.last_name)}".strip()
                or "(no name)"
            )
        )
    )
    if not args.delete or not report.groups:
        return
    result = remove_event_duplicates(
        event=event,
        report=report,
        confirm=_always_confirm if args.yes else _ask_confirmation,
    )
    if not result.confirmed:
        print("Nothing deleted.")
        return
    print(f"Deleted {len(result.deleted)} records")
    for record_id, error in result.failed.items():
        print(f"  FAILED {record_id}: {error}")
    for record_id in result.skipped:
        print(f"  SKIPPED {record_id}")


def _run_audit_names(args: argparse.Namespace) -> None:
    names = args.names_file.read_text(encoding="utf-8").splitlines()
    for audit in audit_names(names, event_path=args.event):
        matches = ", ".join(audit.matches) or "-"
        print(f"{audit.kind.value:<6} {audit.name}: {matches}")


def _run_attendance(args: argparse.Namespace) -> None:
    entries, totals = event_attendance(event_path=args.event)
    print(render_attendance(entries))
    print(f"{len(entries)} parties, {totals.total} tickets")
    for tier, count in sorted(totals.by_tier.items()):
        print(f"  {tier}: {count}")
    for method, count in sorted(totals.by_payment_method.items()):
        print(f"  {method}: {count} (${totals.amount_by_payment_method.get(method, 0)})")


def _run_card_purchase(args: argparse.Namespace) -> None:
    account = build_ledger().open_account(
        CardPurchase(
            name=args.name,
            phone=args.phone,
            meals=args.meals,
            meal_type=MEAL_TYPES[args.meal_type],
            member_status=MEMBER_STATUSES[args.member_status],
            payment_method=PAYMENT_METHODS[args.payment],
            staff=args.staff,
            check_number=args.check_number,
            weekly_delivery=args.weekly_delivery,
            frozen_addon=args.frozen_friday,
            delivery_address=args.address,
        )
    )
    print(f"Card {account.id}: {account.total} meals for ${account.amount_paid}")


def _run_reserve(args: argparse.Namespace) -> None:
    outcome = build_ledger().reserve(
        ReservationRequest(
            name=args.name,
            date=args.date,
            meal_type=MEAL_TYPES[args.meal_type],
            member_status=MEMBER_STATUSES[args.member_status],
            payment_method=PAYMENT_METHODS[args.payment],
            staff=args.staff,
            quantity=args.quantity,
            account_id=args.card,
            notes=args.notes,
        )
    )
    reservation = outcome.reservation
    if outcome.account is not None:
        print(
            f"Reservation {reservation.id}: {outcome.debited} meal(s) deducted, "
            f"{outcome.account.remaining} left on card"
        )
    else:
        print(f"Reservation {reservation.id}: amount due ${reservation.amount}")
    if outcome.needs_follow_up:
        print(f"FOLLOW UP: {outcome.failure}")


def _run_unlink(args: argparse.Namespace) -> None:
    reservation = build_ledger().unlink(
        args.reservation_id,
        payment_method=PAYMENT_METHODS[args.payment],
        note=args.note,
    )
    print(f"Reservation {reservation.id} now paid by {reservation.payment_method}")


def _run_relink(args: argparse.Namespace) -> None:
    reservation = build_ledger().relink(args.reservation_id, args.card_id)
    print(f"Reservation {reservation.id} linked to card {reservation.account_id}")


def _run_set_status(args: argparse.Namespace) -> None:
    reservation = build_ledger().set_status(args.reservation_id, STATUSES[args.status])
    print(f"Reservation {reservation.id} is {reservation.status}")


def _run_grant(args: argparse.Namespace) -> None:
    account = build_ledger().grant(
        args.card_id,
        args.meals,
        fresh_purchase=not args.correction,
        override=args.override,
    )
    print(f"Card {account.id}: {account.remaining} of {account.total} meals remaining")


def _run_audit_ledger(_args: argparse.Namespace) -> None:
    print(build_ledger().audit_pairing().render())


COMMANDS: dict[str, Callable[[argparse.Namespace], None]] = {
    "reconcile": _run_reconcile,
    "duplicates": _run_duplicates,
    "audit-names": _run_audit_names,
    "attendance": _run_attendance,
    "card-purchase": _run_card_purchase,
    "reserve": _run_reserve,
    "unlink": _run_unlink,
    "relink": _run_relink,
    "set-status": _run_set_status,
    "grant": _run_grant,
    "audit-ledger": _run_audit_ledger,
}


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    load_dotenv()
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    parsed_args = _parse_args(args_list)
    configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)

    handler = COMMANDS.get(parsed_args.command)
    try:
        if handler is None:
            raise ValueError(f"Unsupported command: {parsed_args.command}")  # noqa: TRY301
        handler(parsed_args)
    except (InvalidRequestError, ValueError):
        log.exception("CLI validation error")
        sys.exit(2)
    except Exception:
        log.exception("Fatal error")
        sys.exit(1)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


if __name__ == "__main__":
    signal(SIGINT, sigint_handler)
    main()
