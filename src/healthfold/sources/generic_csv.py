"""Parse CSV files that are not Samsung Health exports.

The file is classified by its header names (medications, vitals or
activity) and each row is mapped to typed records. Rows without a
resolvable date are dropped.
"""

from __future__ import annotations

from typing import Any, Callable

import structlog

from healthfold.core.utils import first_present, normalize_date, normalize_duration, parse_int, parse_number
from healthfold.errors import UnresolvableDateError
from healthfold.models import VENDOR_EXPORT, ActivityEntry, HealthRecord, MedicationRecord, ParserOutput, VitalRecord
from healthfold.sources.base import decode_text
from healthfold.sources.samsung import read_csv_rows

logger = structlog.get_logger()

SOURCE = "csv"

MEDICATION_HEADERS = ("medication", "drug")
VITALS_HEADERS = ("weight", "bp")

DATE_COLUMNS = ("date", "day", "timestamp", "start_time", "start_date", "authored_on")


def classify_headers(headers: list[str]) -> str:
    """Return 'medications', 'vitals' or 'activity' from a CSV header row."""
    names = {h.strip().strip('"').lower() for h in headers}
    if any(k in names for k in MEDICATION_HEADERS):
        return "medications"
    if any(k in names for k in VITALS_HEADERS):
        return "vitals"
    return "activity"


def _row_date(row: dict[str, Any]) -> str:
    date = normalize_date(first_present(row, *DATE_COLUMNS))
    if not date:
        raise UnresolvableDateError("csv row")
    return date


def map_medication_row(row: dict[str, Any]) -> list[HealthRecord]:
    name = first_present(row, "medication", "drug", "name")
    if not name:
        return []
    return [
        MedicationRecord(
            date=_row_date(row),
            source_tag=VENDOR_EXPORT,
            medication_name=str(name),
            dosage=first_present(row, "dosage", "dose"),
            status=row.get("status") or "unknown",
            prescriber=row.get("prescriber", "") or "",
        )
    ]


def map_vitals_row(row: dict[str, Any]) -> list[HealthRecord]:
    """A row can carry several readings (weight, blood pressure, pulse)."""
    date = _row_date(row)
    records: list[HealthRecord] = []

    weight = parse_number(row.get("weight"))
    if weight is not None:
        records.append(VitalRecord(
            date=date,
            source_tag=VENDOR_EXPORT,
            type="weight",
            value=weight,
            unit=row.get("unit") or "kg",
            bmi=parse_number(row.get("bmi")),
        ))

    bp = row.get("bp") or row.get("blood_pressure") or ""
    if "/" in bp:
        systolic, diastolic = (parse_number(part) for part in bp.split("/", 1))
        if systolic is not None and diastolic is not None:
            records.append(VitalRecord(date=date, source_tag=VENDOR_EXPORT, type="systolic-bp", value=systolic, unit="mmHg"))
            records.append(VitalRecord(date=date, source_tag=VENDOR_EXPORT, type="diastolic-bp", value=diastolic, unit="mmHg"))

    heart_rate = parse_number(first_present(row, "heart_rate", "hr", "pulse"))
    if heart_rate is not None:
        records.append(VitalRecord(
            date=date, source_tag=VENDOR_EXPORT, type="heart-rate", value=heart_rate, unit="bpm",
        ))
    return records


def map_activity_row(row: dict[str, Any]) -> list[HealthRecord]:
    entry = ActivityEntry(
        date=_row_date(row),
        source_tag=VENDOR_EXPORT,
        steps=parse_int(first_present(row, "steps", "step_count")),
        distance=parse_number(row.get("distance")),
        calories=parse_number(first_present(row, "calories", "calorie")),
        active_minutes=parse_int(first_present(row, "active_minutes", "active_time")),
        floors=parse_int(first_present(row, "floors", "floor")),
        heart_rate=parse_number(first_present(row, "heart_rate", "hr")),
    )
    exercise_type = first_present(row, "exercise_type", "workout_type")
    if exercise_type:
        entry.type = "exercise"
        entry.exercise_type = str(exercise_type)
        entry.duration = normalize_duration(row.get("duration"))
    return [entry]


ROW_MAPPERS: dict[str, Callable[[dict[str, Any]], list[HealthRecord]]] = {
    "medications": map_medication_row,
    "vitals": map_vitals_row,
    "activity": map_activity_row,
}


def parse_csv(name: str, data: bytes | str) -> ParserOutput:
    """Parse a generic CSV file."""
    text = decode_text(data)
    rows = read_csv_rows(text, name)
    # Keys are normalized to lowercase so header casing does not matter.
    rows = [{k.lower(): v for k, v in row.items()} for row in rows]
    data_type = classify_headers(list(rows[0]) if rows else [])
    mapper = ROW_MAPPERS[data_type]

    records: list[HealthRecord] = []
    for row in rows:
        try:
            records.extend(mapper(row))
        except UnresolvableDateError as exc:
            logger.debug("row_skipped", file=name, data_type=data_type, reason=str(exc))

    logger.info("csv_parsed", file=name, data_type=data_type, records=len(records))
    return ParserOutput(type=data_type, records=records, source=SOURCE, metadata={"file_name": name})
