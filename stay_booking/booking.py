"""Admission and extension rules for unit stays."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional, Protocol


class StayValidationError(ValueError):
    pass


@dataclass(frozen=True)
class Stay:
    guest: str
    unit: str
    check_in: date
    nights: int
    id: Optional[str] = None

    def __post_init__(self) -> None:
        validate_stay_fields(self.guest, self.unit, self.check_in, self.nights)

    @property
    def check_out(self) -> date:
        return self.check_in + timedelta(days=self.nights)

    def with_nights(self, nights: int) -> "Stay":
        return replace(self, nights=nights)


class RejectionReason(Enum):
    DUPLICATE_GUEST_UNIT = "The given guest name cannot book the same unit multiple times"
    GUEST_ALREADY_BOOKED = "The same guest cannot be in multiple units at the same time"
    UNIT_OCCUPIED = "For the given check-in date, the unit is already occupied"
    NOT_FOUND = "This booking does not exist."
    CANNOT_SHORTEN = "This booking cannot be shortened."

    @property
    def message(self) -> str:
        return self.value


@dataclass(frozen=True)
class RuleCheckResult:
    allowed: bool
    reason: RejectionReason | None = None

    @property
    def message(self) -> str | None:
        return self.reason.message if self.reason else None


ADMITTED = RuleCheckResult(allowed=True)


class StayStore(Protocol):
    def find_by_guest_and_unit(self, guest: str, unit: str) -> list[Stay]: ...

    def find_by_guest(self, guest: str) -> list[Stay]: ...

    def find_by_unit_check_in_on_or_before(
        self, unit: str, day: date, exclude_id: str | None = None
    ) -> list[Stay]: ...

    def find_by_unit_check_in_in_range(
        self, unit: str, lo: date, hi: date, exclude_id: str | None = None
    ) -> list[Stay]: ...

    def find_one(self, guest: str, unit: str, check_in: date) -> Stay | None: ...


def validate_stay_fields(guest: object, unit: object, check_in: object, nights: object) -> None:
    if not isinstance(guest, str) or not guest.strip():
        raise StayValidationError("guest must be a non-empty string.")
    if not isinstance(unit, str) or not unit.strip():
        raise StayValidationError("unit must be a non-empty string.")
    if not isinstance(check_in, date) or isinstance(check_in, datetime):
        raise StayValidationError("check_in must be a calendar date.")
    if isinstance(nights, bool) or not isinstance(nights, int):
        raise StayValidationError("nights must be an integer.")
    if nights < 1:
        raise StayValidationError("nights must be at least 1.")
    try:
        check_in + timedelta(days=nights)
    except OverflowError as error:
        raise StayValidationError("numberOfNights puts the check-out date out of range.") from error


def parse_check_in(value: object) -> date:
    """Normalize a check-in value to a calendar date.

    Accepts dates, datetimes and ISO strings. Aware datetimes are shifted to
    UTC before the time of day is dropped, so ``2026-02-24T23:30-05:00`` lands
    on 2026-02-25.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise StayValidationError("checkInDate must be an ISO date string.")

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        if "T" in text or " " in text:
            return parse_check_in(datetime.fromisoformat(text))
        return date.fromisoformat(text)
    except ValueError as error:
        raise StayValidationError(f"checkInDate is not a valid ISO date: {value!r}") from error


def parse_nights(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise StayValidationError("numberOfNights must be an integer.")
    if value < 1:
        raise StayValidationError("numberOfNights must be at least 1.")
    return value


def clashes_at_check_in(candidate: Stay, existing: Stay) -> bool:
    """Return True when the candidate checks in during ``existing``.

    Both bounds are inclusive: checking in on the existing stay's check-out
    day counts as a clash.
    """
    return existing.check_in <= candidate.check_in <= existing.check_out


def overlaps_stay_window(candidate: Stay, existing: Stay) -> bool:
    """Return True when ``existing`` checks in within the candidate's stay.

    The upper bound is inclusive, so an existing check-in on the candidate's
    check-out day counts as an overlap.
    """
    return candidate.check_in <= existing.check_in <= candidate.check_out


StayRule = Callable[[Stay, StayStore, Optional[str]], RuleCheckResult]


def _same_guest_same_unit(candidate: Stay, store: StayStore, exclude_id: str | None) -> RuleCheckResult:
    if store.find_by_guest_and_unit(candidate.guest, candidate.unit):
        return RuleCheckResult(allowed=False, reason=RejectionReason.DUPLICATE_GUEST_UNIT)
    return ADMITTED


def _guest_exclusivity(candidate: Stay, store: StayStore, exclude_id: str | None) -> RuleCheckResult:
    if store.find_by_guest(candidate.guest):
        return RuleCheckResult(allowed=False, reason=RejectionReason.GUEST_ALREADY_BOOKED)
    return ADMITTED


def _check_in_clash(candidate: Stay, store: StayStore, exclude_id: str | None) -> RuleCheckResult:
    earlier = store.find_by_unit_check_in_on_or_before(candidate.unit, candidate.check_in, exclude_id=exclude_id)
    if any(clashes_at_check_in(candidate, existing) for existing in earlier):
        return RuleCheckResult(allowed=False, reason=RejectionReason.UNIT_OCCUPIED)
    return ADMITTED


def _stay_overlap(candidate: Stay, store: StayStore, exclude_id: str | None) -> RuleCheckResult:
    inside = store.find_by_unit_check_in_in_range(
        candidate.unit,
        candidate.check_in,
        candidate.check_out,
        exclude_id=exclude_id,
    )
    if any(overlaps_stay_window(candidate, existing) for existing in inside):
        return RuleCheckResult(allowed=False, reason=RejectionReason.UNIT_OCCUPIED)
    return ADMITTED


# Order matters: it decides which reason is reported when several rules fail.
ADMISSION_RULES: tuple[StayRule, ...] = (
    _same_guest_same_unit,
    _guest_exclusivity,
    _check_in_clash,
    _stay_overlap,
)
INTERVAL_RULES: tuple[StayRule, ...] = (
    _check_in_clash,
    _stay_overlap,
)


def first_failure(
    rules: tuple[StayRule, ...],
    candidate: Stay,
    store: StayStore,
    exclude_id: str | None = None,
) -> RuleCheckResult:
    for rule in rules:
        result = rule(candidate, store, exclude_id)
        if not result.allowed:
            return result
    return ADMITTED


def check_admission(candidate: Stay, store: StayStore) -> RuleCheckResult:
    """Decide whether a not-yet-created stay may be booked."""
    return first_failure(ADMISSION_RULES, candidate, store)


def check_extension(
    store: StayStore,
    guest: str,
    unit: str,
    check_in: date,
    new_nights: int,
) -> tuple[Stay | None, RuleCheckResult]:
    """Decide whether an existing stay may be extended to ``new_nights``.

    Returns the stored stay (or None) together with the decision. The stay's
    own id is excluded from every conflict lookup.
    """
    existing = store.find_one(guest, unit, check_in)
    if existing is None:
        return None, RuleCheckResult(allowed=False, reason=RejectionReason.NOT_FOUND)

    if new_nights <= existing.nights:
        return existing, RuleCheckResult(allowed=False, reason=RejectionReason.CANNOT_SHORTEN)

    extended = existing.with_nights(new_nights)
    return existing, first_failure(INTERVAL_RULES, extended, store, exclude_id=existing.id)
