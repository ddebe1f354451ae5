from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from threading import RLock
from typing import Any, Iterator
from uuid import uuid4
import shutil

import yaml

from .booking import (
    RuleCheckResult,
    Stay,
    StayValidationError,
    check_admission,
    check_extension,
    parse_check_in,
    parse_nights,
    validate_stay_fields,
)


@dataclass(frozen=True)
class StayRecord:
    stay_id: str
    guest: str
    unit: str
    check_in: date
    nights: int
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "stay_id": self.stay_id,
            "guest": self.guest,
            "unit": self.unit,
            "check_in": self.check_in.isoformat(),
            "nights": self.nights,
            "created_at": self.created_at.isoformat(timespec="seconds"),
            "updated_at": self.updated_at.isoformat(timespec="seconds"),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "StayRecord":
        return StayRecord(
            stay_id=str(data["stay_id"]),
            guest=str(data["guest"]),
            unit=str(data["unit"]),
            check_in=date.fromisoformat(str(data["check_in"])),
            nights=int(data["nights"]),
            created_at=datetime.fromisoformat(str(data["created_at"])),
            updated_at=datetime.fromisoformat(str(data["updated_at"])),
        )

    def to_stay(self) -> Stay:
        return Stay(guest=self.guest, unit=self.unit, check_in=self.check_in, nights=self.nights, id=self.stay_id)

    def event_payload(self) -> dict[str, Any]:
        return {
            "stay_id": self.stay_id,
            "guest": self.guest,
            "unit": self.unit,
            "check_in": self.check_in.isoformat(),
            "nights": self.nights,
        }


class StayEventType(str, Enum):
    STAY_CREATED = "STAY_CREATED"
    STAY_EXTENDED = "STAY_EXTENDED"
    STAY_REJECTED = "STAY_REJECTED"
    YAML_RECOVERED = "YAML_RECOVERED"
    YAML_ROW_SKIPPED = "YAML_ROW_SKIPPED"


class StayStorageError(RuntimeError):
    pass


class StayConflictError(StayStorageError):
    pass


class StayNotFoundError(StayStorageError):
    pass


class StayYamlRepository:
    def __init__(self, base_dir: str | Path = "data") -> None:
        self.base_dir = Path(base_dir)
        self.stays_file = self.base_dir / "stays.yaml"
        self.log_file = self.base_dir / "stay_events.yaml"
        self._lock = RLock()
        self._ensure_files()

    def _ensure_files(self) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        for path in (self.stays_file, self.log_file):
            if not path.exists():
                path.write_text("[]\n", encoding="utf-8")

    @contextmanager
    def transaction(self) -> Iterator["StayYamlRepository"]:
        """Hold the repository lock across a check-then-write sequence."""
        with self._lock:
            yield self

    def _read_yaml_list(self, path: Path) -> list[dict[str, Any]]:
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            path.write_text("[]\n", encoding="utf-8")
            return []
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as error:
            self._recover_corrupted_yaml(path, error)
            return []

        if payload is None:
            return []
        if not isinstance(payload, list):
            self._recover_corrupted_yaml(path, ValueError("top-level YAML is not a list"))
            return []

        rows = [row for row in payload if isinstance(row, dict)]
        skipped = [index for index, row in enumerate(payload) if not isinstance(row, dict)]
        if skipped:
            self._log_event(
                StayEventType.YAML_ROW_SKIPPED,
                {"file": path.name, "indexes": skipped, "reason": "row is not a mapping"},
            )
        return rows

    def _write_yaml_list(self, path: Path, rows: list[dict[str, Any]]) -> None:
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            temp_path.write_text(yaml.safe_dump(rows, allow_unicode=True, sort_keys=False), encoding="utf-8")
            temp_path.replace(path)
        except OSError as error:
            raise StayStorageError(f"Failed to write YAML file: {path}") from error
        finally:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)

    def _recover_corrupted_yaml(self, path: Path, error: Exception) -> None:
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        backup_path = path.with_name(f"{path.stem}.corrupt.{timestamp}{path.suffix}")
        try:
            if path.exists():
                shutil.copy2(path, backup_path)
        except OSError:
            pass

        path.write_text("[]\n", encoding="utf-8")
        if path != self.log_file:
            self._log_event(
                StayEventType.YAML_RECOVERED,
                {"file": path.name, "backup": backup_path.name, "reason": str(error)},
            )

    def _log_event(
        self,
        event_type: StayEventType,
        payload: dict[str, Any],
        event_time: datetime | None = None,
    ) -> None:
        timestamp = (event_time or datetime.now()).isoformat(timespec="seconds")
        events = self._read_yaml_list(self.log_file)
        events.append({"event_time": timestamp, "event_type": event_type.value, "payload": payload})
        self._write_yaml_list(self.log_file, events)

    def log_rejection(
        self,
        operation: str,
        candidate: Stay,
        result: RuleCheckResult,
        now: datetime | None = None,
    ) -> bool:
        """Record a rejected booking or extension.

        Returns False when the event log could not be written; the rejection
        itself still stands.
        """
        payload = {
            "operation": operation,
            "guest": candidate.guest,
            "unit": candidate.unit,
            "check_in": candidate.check_in.isoformat(),
            "nights": candidate.nights,
            "reason": result.reason.name if result.reason else None,
        }
        try:
            self._log_event(StayEventType.STAY_REJECTED, payload, now)
        except StayStorageError:
            return False
        return True

    def get_records(self) -> list[StayRecord]:
        records: list[StayRecord] = []
        for row in self._read_yaml_list(self.stays_file):
            records.append(self._decode_row(row))
        return records

    def _decode_row(self, row: dict[str, Any]) -> StayRecord:
        # A bad stored row is a store fault, never a caller input fault.
        try:
            record = StayRecord.from_dict(row)
            validate_stay_fields(record.guest, record.unit, record.check_in, record.nights)
        except (KeyError, TypeError, ValueError) as error:
            raise StayStorageError(f"Stored stay {row.get('stay_id')!r} is unreadable: {error}") from error
        return record

    def get_stays(self) -> list[Stay]:
        return [record.to_stay() for record in self.get_records()]

    def find_by_guest_and_unit(self, guest: str, unit: str) -> list[Stay]:
        return [stay for stay in self.get_stays() if stay.guest == guest and stay.unit == unit]

    def find_by_guest(self, guest: str) -> list[Stay]:
        return [stay for stay in self.get_stays() if stay.guest == guest]

    def find_by_unit_check_in_on_or_before(self, unit: str, day: date, exclude_id: str | None = None) -> list[Stay]:
        """Stays on ``unit`` whose check-in is on or before ``day``."""
        return [
            stay
            for stay in self.get_stays()
            if stay.unit == unit and stay.check_in <= day and stay.id != exclude_id
        ]

    def find_by_unit_check_in_in_range(
        self,
        unit: str,
        lo: date,
        hi: date,
        exclude_id: str | None = None,
    ) -> list[Stay]:
        """Stays on ``unit`` whose check-in lies in ``[lo, hi]``, both ends inclusive."""
        return [
            stay
            for stay in self.get_stays()
            if stay.unit == unit and lo <= stay.check_in <= hi and stay.id != exclude_id
        ]

    def find_one(self, guest: str, unit: str, check_in: date) -> Stay | None:
        for stay in self.get_stays():
            if stay.guest == guest and stay.unit == unit and stay.check_in == check_in:
                return stay
        return None

    def create(self, stay: Stay, now: datetime | None = None) -> Stay:
        effective_now = now or datetime.now()
        with self._lock:
            rows = self._read_yaml_list(self.stays_file)
            for row in rows:
                if str(row.get("guest")) == stay.guest and str(row.get("unit")) == stay.unit:
                    raise StayConflictError(f"A stay for guest {stay.guest!r} on unit {stay.unit!r} already exists.")

            record = StayRecord(
                stay_id=str(uuid4()),
                guest=stay.guest,
                unit=stay.unit,
                check_in=stay.check_in,
                nights=stay.nights,
                created_at=effective_now,
                updated_at=effective_now,
            )
            rows.append(record.to_dict())
            self._write_yaml_list(self.stays_file, rows)

            self._log_event(StayEventType.STAY_CREATED, record.event_payload(), effective_now)
        return record.to_stay()

    def update_nights(self, stay_id: str, nights: int, now: datetime | None = None) -> Stay:
        effective_now = now or datetime.now()
        with self._lock:
            rows = self._read_yaml_list(self.stays_file)
            found_index = -1
            for index, row in enumerate(rows):
                if str(row.get("stay_id")) == stay_id:
                    found_index = index
                    break

            if found_index < 0:
                raise StayNotFoundError(f"stay_id not found: {stay_id}")

            current = self._decode_row(rows[found_index])
            updated = StayRecord(
                stay_id=current.stay_id,
                guest=current.guest,
                unit=current.unit,
                check_in=current.check_in,
                nights=nights,
                created_at=current.created_at,
                updated_at=effective_now,
            )
            # Validates nights before anything is written.
            stay = updated.to_stay()
            rows[found_index] = updated.to_dict()
            self._write_yaml_list(self.stays_file, rows)

            self._log_event(
                StayEventType.STAY_EXTENDED,
                {
                    "stay_id": stay_id,
                    "previous_nights": current.nights,
                    "nights": nights,
                },
                effective_now,
            )
        return stay


def _normalize_identifier(value: object, field: str) -> str:
    if not isinstance(value, str):
        raise StayValidationError(f"{field} must be a string.")

    normalized = value.strip()
    if not normalized:
        raise StayValidationError(f"{field} must not be empty.")
    return normalized


def book_stay(
    repository: StayYamlRepository,
    guest: str,
    unit: str,
    check_in: object,
    nights: object,
    now: datetime | None = None,
) -> tuple[Stay | None, RuleCheckResult]:
    candidate = Stay(
        guest=_normalize_identifier(guest, "guest"),
        unit=_normalize_identifier(unit, "unit"),
        check_in=parse_check_in(check_in),
        nights=parse_nights(nights),
    )

    with repository.transaction():
        result = check_admission(candidate, repository)
        if not result.allowed:
            repository.log_rejection("create", candidate, result, now)
            return None, result
        return repository.create(candidate, now=now), result


def extend_stay(
    repository: StayYamlRepository,
    guest: str,
    unit: str,
    check_in: object,
    nights: object,
    now: datetime | None = None,
) -> tuple[Stay | None, RuleCheckResult]:
    requested = Stay(
        guest=_normalize_identifier(guest, "guest"),
        unit=_normalize_identifier(unit, "unit"),
        check_in=parse_check_in(check_in),
        nights=parse_nights(nights),
    )

    with repository.transaction():
        existing, result = check_extension(
            repository,
            requested.guest,
            requested.unit,
            requested.check_in,
            requested.nights,
        )
        if existing is None or not result.allowed:
            repository.log_rejection("extend", requested, result, now)
            return None, result
        return repository.update_nights(existing.id, requested.nights, now=now), result
