"""Prepaid meal-card ledger.

Responsibilities of this module:
- open cards and keep ``0 <= remaining <= total`` on every balance change
- pair every card debit with exactly one linked reservation (and back)
- degrade a failed card payment to a fallback method, never to a free meal
- audit the stored cards against their linked reservations

The record store has no multi-record transactions. Pairing is kept by call
order: the balance is written first, then the reservation; when the second
write fails the first one is compensated before the error propagates.
Mutations of one card are serialized by a per-card lock.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from logging import getLogger
from typing import TYPE_CHECKING

from mealledger.domain.errors import (
    AccountNotFoundError,
    BalanceLimitError,
    InsufficientBalanceError,
    InvalidRequestError,
    MealLedgerError,
    RecordNotFoundError,
)
from mealledger.domain.model import (
    Identity,
    LedgerAccount,
    MealType,
    PaymentMethod,
    Reservation,
    ReservationStatus,
    Tier,
    to_number,
)

from .mapping import (
    CARD_FIELDS,
    RESERVATION_FIELDS,
    account_from_record,
    account_to_fields,
    append_note,
    reservation_from_record,
    reservation_to_fields,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator

    from mealledger.config.ledger import LedgerConfig
    from mealledger.domain.ports import RecordStoreGateway

log = getLogger(__name__)

CARD_PAYMENT_FAILED = "Card payment failed"


@dataclass(frozen=True, slots=True, kw_only=True)
class CardPurchase:
    name: str
    phone: str
    meals: int
    meal_type: MealType
    member_status: Tier
    payment_method: PaymentMethod
    staff: str
    check_number: str | None = None
    weekly_delivery: bool = False
    frozen_addon: bool = False
    delivery_address: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class ReservationRequest:
    name: str
    date: date
    meal_type: MealType
    member_status: Tier
    payment_method: PaymentMethod
    staff: str
    quantity: int = 1
    account_id: str | None = None
    notes: str = ""


@dataclass(frozen=True, slots=True)
class ReservationOutcome:
    reservation: Reservation
    account: LedgerAccount | None = None
    debited: int = 0
    needs_follow_up: bool = False
    failure: str | None = None


@dataclass(frozen=True, slots=True)
class PairingDiscrepancy:
    account_id: str
    name: str
    used: int
    linked: int
    reservation_ids: tuple[str, ...] = ()

    @property
    def difference(self) -> int:
        return self.used - self.linked


@dataclass(slots=True)
class PairingAudit:
    checked: int = 0
    discrepancies: list[PairingDiscrepancy] = field(default_factory=list["PairingDiscrepancy"])
    orphaned: dict[str, str] = field(default_factory=dict["str", "str"])
    out_of_bounds: list[str] = field(default_factory=list["str"])

    @property
    def ok(self) -> bool:
        return not (self.discrepancies or self.orphaned or self.out_of_bounds)

    def render(self) -> str:
        lines = [f"Checked {self.checked} meal cards"]
        for item in self.discrepancies:
            lines.append(
                f"  {item.name} ({item.account_id}): card shows {item.used} used, "
                f"{item.linked} on linked reservations ({item.difference:+d})"
            )
        for reservation_id, account_id in self.orphaned.items():
            lines.append(f"  reservation {reservation_id} links missing card {account_id}")
        lines.extend(
            f"  card {account_id} balance outside 0..total" for account_id in self.out_of_bounds
        )
        if self.ok:
            lines.append("  all cards agree with their reservations")
        return "\n".join(lines)


class Ledger:
    def __init__(
        self,
        gateway: RecordStoreGateway,
        config: LedgerConfig,
        *,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._gateway = gateway
        self._config = config
        self._today = today
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @property
    def cards(self) -> str:
        return self._config.collections.lunch_cards

    @property
    def reservations(self) -> str:
        return self._config.collections.lunch_reservations

    @contextmanager
    def account_lock(self, account_id: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(account_id, threading.RLock())
        with lock:
            yield

    # -- reads -----------------------------------------------------------------

    def get_account(self, account_id: str) -> LedgerAccount:
        try:
            record = self._gateway.get(self.cards, account_id)
        except RecordNotFoundError:
            raise AccountNotFoundError(account_id) from None
        return account_from_record(record)

    def get_reservation(self, reservation_id: str) -> Reservation:
        return reservation_from_record(self._gateway.get(self.reservations, reservation_id))

    def list_accounts(self) -> list[LedgerAccount]:
        return [account_from_record(record) for record in self._gateway.list_all(self.cards)]

    def list_reservations(self) -> list[Reservation]:
        return [
            reservation_from_record(record)
            for record in self._gateway.list_all(self.reservations)
        ]

    # -- balance ---------------------------------------------------------------

    def open_account(self, purchase: CardPurchase) -> LedgerAccount:
        """Sell a new card with ``total == remaining == meals``."""

        _validate_purchase(purchase, self._config)
        price = self._config.card_price(purchase.meals, purchase.member_status, purchase.meal_type)
        account = LedgerAccount(
            id="",
            identity=Identity.from_full_name(purchase.name.strip(), phone=purchase.phone.strip()),
            card_tier=purchase.meals,
            total=purchase.meals,
            remaining=purchase.meals,
            member_status=purchase.member_status,
            amount_paid=price,
            payment_method=purchase.payment_method,
            weekly_delivery=purchase.weekly_delivery,
            frozen_addon=purchase.frozen_addon,
            delivery_address=(purchase.delivery_address or "").strip() or None,
        )
        record = self._gateway.create(
            self.cards,
            account_to_fields(account, purchased_on=self._today(), staff=purchase.staff.strip()),
        )
        created = account_from_record(record)
        log.info(
            "Opened card %s for %s: %s meals for $%s",
            created.id,
            created.identity.full_name,
            created.total,
            price,
        )
        return created

    def grant(
        self,
        account_id: str,
        meals: int,
        *,
        fresh_purchase: bool = True,
        override: bool = False,
    ) -> LedgerAccount:
        """Add meals; a fresh purchase raises the total, a correction does not."""

        if not fresh_purchase:
            return self.credit(account_id, meals, override=override)
        _require_positive(meals)
        with self.account_lock(account_id):
            account = self.get_account(account_id)
            return self._write_balance(
                account,
                remaining=account.remaining + meals,
                total=account.total + meals,
                action=f"grant {meals}",
            )

    def debit(self, account_id: str, meals: int, *, override: bool = False) -> LedgerAccount:
        _require_positive(meals)
        with self.account_lock(account_id):
            account = self.get_account(account_id)
            if account.remaining - meals < 0:
                if not override:
                    raise InsufficientBalanceError(
                        account_id,
                        remaining=account.remaining,
                        requested=meals,
                    )
                log.warning(
                    "Override: debiting %s meals from card %s with only %s remaining",
                    meals,
                    account_id,
                    account.remaining,
                )
            return self._write_balance(
                account,
                remaining=account.remaining - meals,
                action=f"debit {meals}",
            )

    def credit(self, account_id: str, meals: int, *, override: bool = False) -> LedgerAccount:
        _require_positive(meals)
        with self.account_lock(account_id):
            account = self.get_account(account_id)
            if account.remaining + meals > account.total:
                if not override:
                    raise BalanceLimitError(
                        account_id,
                        remaining=account.remaining,
                        total=account.total,
                        requested=meals,
                    )
                log.warning(
                    "Override: crediting %s meals to card %s beyond its total of %s",
                    meals,
                    account_id,
                    account.total,
                )
            return self._write_balance(
                account,
                remaining=account.remaining + meals,
                action=f"credit {meals}",
            )

    # -- reservations ----------------------------------------------------------

    def reserve(self, request: ReservationRequest) -> ReservationOutcome:
        """Create a reservation, debiting the linked card when it pays by card.

        A card that is missing or short on meals does not block the
        reservation: it is written with the fallback payment method, a note
        and ``needs_follow_up`` set on the outcome.
        """

        _validate_reservation(request, self._config)
        reservation = Reservation(
            identity=Identity.from_full_name(request.name.strip()),
            date=request.date,
            meal_type=request.meal_type,
            quantity=request.quantity,
            member_status=request.member_status,
            payment_method=request.payment_method,
            amount=self._price(request),
            notes=request.notes.strip(),
            staff=request.staff.strip(),
        )
        if request.payment_method is not PaymentMethod.MEAL_CARD:
            return ReservationOutcome(reservation=self._create_reservation(reservation))

        account_id = request.account_id or ""
        with self.account_lock(account_id):
            try:
                account = self.debit(account_id, request.quantity)
            except (AccountNotFoundError, InsufficientBalanceError) as exc:
                return self._reserve_with_fallback(reservation, exc)

            linked = replace(reservation, account_id=account_id, amount=Decimal(0))
            try:
                created = self._create_reservation(linked)
            except MealLedgerError:
                log.error(
                    "Reservation for %s failed; returning %s meals to card %s",
                    request.name,
                    request.quantity,
                    account_id,
                )
                self._compensate(lambda: self.credit(account_id, request.quantity, override=True))
                raise
        return ReservationOutcome(reservation=created, account=account, debited=request.quantity)

    def unlink(
        self,
        reservation_id: str,
        *,
        payment_method: PaymentMethod = PaymentMethod.CASH,
        note: str | None = None,
    ) -> Reservation:
        """Detach a reservation from its card and give the meals back."""

        if payment_method is PaymentMethod.MEAL_CARD:
            raise InvalidRequestError("An unlinked reservation cannot be paid by meal card")
        reservation = self.get_reservation(reservation_id)
        account_id = reservation.account_id
        if account_id is None:
            raise InvalidRequestError(f"Reservation {reservation_id} is not linked to a meal card")

        with self.account_lock(account_id):
            credited = 0
            if reservation.consumes_credit:
                try:
                    self.credit(account_id, reservation.quantity)
                    credited = reservation.quantity
                except AccountNotFoundError:
                    log.warning(
                        "Card %s of reservation %s no longer exists; unlinking without credit",
                        account_id,
                        reservation_id,
                    )
            fields: dict[str, object] = {
                RESERVATION_FIELDS.account: [],
                RESERVATION_FIELDS.payment_method: payment_method.value,
                RESERVATION_FIELDS.amount: to_number(
                    self._config.meal_price(
                        reservation.member_status, reservation.meal_type, reservation.quantity
                    )
                ),
            }
            if note:
                fields[RESERVATION_FIELDS.notes] = append_note(reservation.notes, note)
            try:
                record = self._gateway.update(self.reservations, reservation_id, fields)
            except MealLedgerError:
                if credited:
                    log.error(
                        "Unlinking %s failed; debiting card %s again", reservation_id, account_id
                    )
                    self._compensate(lambda: self.debit(account_id, credited, override=True))
                raise
        log.info(
            "Unlinked reservation %s from card %s (+%s meals)", reservation_id, account_id, credited
        )
        return reservation_from_record(record)

    def relink(self, reservation_id: str, account_id: str) -> Reservation:
        """Attach an unlinked reservation to a card, debiting its meals."""

        reservation = self.get_reservation(reservation_id)
        if reservation.account_id is not None:
            raise InvalidRequestError(
                f"Reservation {reservation_id} is already linked to card {reservation.account_id}"
            )
        with self.account_lock(account_id):
            debited = 0
            if reservation.status is not ReservationStatus.CANCELLED:
                self.debit(account_id, reservation.quantity)
                debited = reservation.quantity
            try:
                record = self._gateway.update(
                    self.reservations,
                    reservation_id,
                    {
                        RESERVATION_FIELDS.account: [account_id],
                        RESERVATION_FIELDS.payment_method: PaymentMethod.MEAL_CARD.value,
                        RESERVATION_FIELDS.amount: 0,
                    },
                )
            except MealLedgerError:
                if debited:
                    log.error(
                        "Linking %s failed; crediting card %s again", reservation_id, account_id
                    )
                    self._compensate(lambda: self.credit(account_id, debited, override=True))
                raise
        log.info(
            "Linked reservation %s to card %s (-%s meals)", reservation_id, account_id, debited
        )
        return reservation_from_record(record)

    def set_status(self, reservation_id: str, status: ReservationStatus) -> Reservation:
        """Change a reservation's status; cancelling a card-paid meal returns its credit."""

        reservation = self.get_reservation(reservation_id)
        if reservation.status is status:
            return reservation
        account_id = reservation.account_id
        if account_id is None:
            record = self._gateway.update(
                self.reservations, reservation_id, {RESERVATION_FIELDS.status: status.value}
            )
            return reservation_from_record(record)

        cancelling = status is ReservationStatus.CANCELLED
        restoring = reservation.status is ReservationStatus.CANCELLED
        with self.account_lock(account_id):
            if cancelling:
                self.credit(account_id, reservation.quantity)
            elif restoring:
                self.debit(account_id, reservation.quantity)
            try:
                record = self._gateway.update(
                    self.reservations, reservation_id, {RESERVATION_FIELDS.status: status.value}
                )
            except MealLedgerError:
                if cancelling:
                    self._compensate(
                        lambda: self.debit(account_id, reservation.quantity, override=True)
                    )
                elif restoring:
                    self._compensate(
                        lambda: self.credit(account_id, reservation.quantity, override=True)
                    )
                raise
        log.info("Reservation %s is now %s", reservation_id, status)
        return reservation_from_record(record)

    # -- audit -----------------------------------------------------------------

    def audit_pairing(
        self,
        accounts: Iterable[LedgerAccount] | None = None,
        reservations: Iterable[Reservation] | None = None,
    ) -> PairingAudit:
        """Check that every card's used meals equal its linked, uncancelled reservations."""

        account_list = list(self.list_accounts() if accounts is None else accounts)
        reservation_list = list(self.list_reservations() if reservations is None else reservations)
        by_id = {account.id: account for account in account_list}

        linked: dict[str, list[Reservation]] = {}
        audit = PairingAudit(checked=len(account_list))
        for reservation in reservation_list:
            if not reservation.consumes_credit or reservation.account_id is None:
                continue
            if reservation.account_id not in by_id:
                audit.orphaned[reservation.id or ""] = reservation.account_id
                continue
            linked.setdefault(reservation.account_id, []).append(reservation)

        for account in account_list:
            if not 0 <= account.remaining <= account.total:
                audit.out_of_bounds.append(account.id)
            entries = linked.get(account.id, [])
            linked_meals = sum(reservation.quantity for reservation in entries)
            if linked_meals != account.used:
                audit.discrepancies.append(
                    PairingDiscrepancy(
                        account_id=account.id,
                        name=account.identity.full_name,
                        used=account.used,
                        linked=linked_meals,
                        reservation_ids=tuple(r.id for r in entries if r.id),
                    )
                )
        if not audit.ok:
            log.warning(
                "Ledger audit found %s discrepancies and %s orphaned reservations",
                len(audit.discrepancies),
                len(audit.orphaned),
            )
        return audit

    # -- internals -------------------------------------------------------------

    def _write_balance(
        self,
        account: LedgerAccount,
        *,
        remaining: int,
        action: str,
        total: int | None = None,
    ) -> LedgerAccount:
        fields: dict[str, object] = {CARD_FIELDS.remaining: remaining}
        if total is not None:
            fields[CARD_FIELDS.total] = total
        record = self._gateway.update(self.cards, account.id, fields)
        updated = account_from_record(record)
        log.info(
            "Card %s %s: remaining %s -> %s, total %s -> %s",
            account.id,
            action,
            account.remaining,
            updated.remaining,
            account.total,
            updated.total,
        )
        return updated

    def _create_reservation(self, reservation: Reservation) -> Reservation:
        record = self._gateway.create(self.reservations, reservation_to_fields(reservation))
        created = reservation_from_record(record)
        log.info(
            "Reserved %s x %s for %s on %s (%s)",
            created.quantity,
            created.meal_type,
            created.identity.full_name,
            created.date,
            created.payment_method,
        )
        return created

    def _reserve_with_fallback(
        self,
        reservation: Reservation,
        error: MealLedgerError,
    ) -> ReservationOutcome:
        failure = f"{CARD_PAYMENT_FAILED}: {error}"
        log.warning(
            "%s for %s; reserving with %s",
            failure,
            reservation.identity.full_name,
            self._config.fallback_method,
        )
        fallback = replace(
            reservation,
            payment_method=self._config.fallback_method,
            amount=self._config.meal_price(
                reservation.member_status, reservation.meal_type, reservation.quantity
            ),
            notes=append_note(reservation.notes, failure),
        )
        return ReservationOutcome(
            reservation=self._create_reservation(fallback),
            needs_follow_up=True,
            failure=failure,
        )

    def _price(self, request: ReservationRequest) -> Decimal:
        if request.payment_method is PaymentMethod.MEAL_CARD:
            return Decimal(0)
        return self._config.meal_price(request.member_status, request.meal_type, request.quantity)

    @staticmethod
    def _compensate(action: Callable[[], object]) -> None:
        try:
            action()
        except MealLedgerError:
            log.exception("Compensation failed; the card balance needs a manual correction")


def _require_positive(meals: int) -> None:
    if meals <= 0:
        raise InvalidRequestError(f"Meal count must be positive, got {meals}")


def _validate_purchase(purchase: CardPurchase, config: LedgerConfig) -> None:
    if not purchase.name.strip():
        raise InvalidRequestError("Name is required")
    if not purchase.phone.strip():
        raise InvalidRequestError("Phone number is required")
    if purchase.meals not in config.card_sizes:
        sizes = ", ".join(str(size) for size in config.card_sizes)
        raise InvalidRequestError(f"Cards hold {sizes} meals, not {purchase.meals}")
    if purchase.member_status not in {Tier.MEMBER, Tier.NON_MEMBER}:
        raise InvalidRequestError(f"Invalid member status: {purchase.member_status}")
    if purchase.payment_method not in {PaymentMethod.CASH, PaymentMethod.CHECK, PaymentMethod.CARD}:
        raise InvalidRequestError(f"Cards cannot be paid by {purchase.payment_method}")
    if purchase.payment_method is PaymentMethod.CHECK and not (purchase.check_number or "").strip():
        raise InvalidRequestError("Check number is required for check payments")
    if not purchase.staff.strip():
        raise InvalidRequestError("Staff initials are required")
    wants_delivery = purchase.weekly_delivery or purchase.meal_type is MealType.DELIVERY
    if wants_delivery and not (purchase.delivery_address or "").strip():
        raise InvalidRequestError("A delivery address is required for delivery cards")


def _validate_reservation(request: ReservationRequest, config: LedgerConfig) -> None:
    if not request.name.strip():
        raise InvalidRequestError("Name is required")
    if not request.staff.strip():
        raise InvalidRequestError("Staff initials are required")
    if not 1 <= request.quantity <= config.max_meals_per_reservation:
        raise InvalidRequestError(
            f"Quantity must be between 1 and {config.max_meals_per_reservation}"
        )
    if request.member_status not in {Tier.MEMBER, Tier.NON_MEMBER}:
        raise InvalidRequestError(f"Invalid member status: {request.member_status}")
    if request.payment_method is PaymentMethod.MEAL_CARD and not request.account_id:
        raise InvalidRequestError("Lunch card selection is required")
    if request.payment_method is not PaymentMethod.MEAL_CARD and request.account_id:
        raise InvalidRequestError("A linked meal card requires the Lunch Card payment method")
