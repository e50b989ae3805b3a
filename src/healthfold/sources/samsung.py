"""Parse Samsung Health CSV exports (single CSV files or the full ZIP).

File type is decided by the file name: each per-metric CSV in an export is
named after its data type (com.samsung.shealth.sleep.*.csv,
com.samsung.health.weight.*.csv, ...). Rows are mapped to SleepSession,
ActivityEntry or VitalRecord.

Real exports start every CSV with a one-line preamble
("com.samsung.health.weight,6313,3") and qualify column names
("com.samsung.health.weight.start_time"); both are handled.
"""

from __future__ import annotations

import csv
import io
import re
from datetime import datetime
from typing import Any, Callable

import structlog

from healthfold.core.utils import (
    first_present,
    normalize_date,
    normalize_duration,
    normalize_timestamp,
    parse_int,
    parse_number,
)
from healthfold.errors import MalformedRowError, UnresolvableDateError, UnresolvableValueError
from healthfold.models import (
    VENDOR_EXPORT,
    ActivityEntry,
    HealthRecord,
    ParserOutput,
    SleepSession,
    VitalRecord,
)
from healthfold.sources.base import decode_text, read_zip_entries

logger = structlog.get_logger()

SOURCE = "samsung-health"
EXPORT_TYPE = "samsung-health-export"

# Ordered: the first substring found in the file name decides the type.
FILE_TYPE_TABLE: tuple[tuple[tuple[str, ...], str], ...] = (
    (("sleep",), "sleep"),
    (("step", "pedometer"), "activity"),
    (("heart_rate",), "vitals"),
    (("exercise",), "activity"),
    (("weight",), "vitals"),
    (("stress",), "vitals"),
    (("floors",), "activity"),
    (("calories",), "activity"),
    (("day_summary",), "activity"),
)
DEFAULT_DATA_TYPE = "activity"

_PREAMBLE_COUNT_RE = re.compile(r"^\d+$")


def identify_data_type(file_name: str) -> str:
    """Map a Samsung Health file name to 'sleep', 'activity' or 'vitals'."""
    name = file_name.lower()
    for keywords, data_type in FILE_TYPE_TABLE:
        if any(k in name for k in keywords):
            return data_type
    return DEFAULT_DATA_TYPE


def is_samsung_file(file_name: str, data: bytes | str = b"") -> bool:
    """True when a CSV comes from a Samsung Health export.

    Either the name says so ("samsung" / "com.samsung") or the file opens
    with the export preamble line ("com.samsung.health.weight,6313,3").
    Metric keywords alone ("weight", "steps") are not enough.
    """
    if "samsung" in file_name.lower():
        return True
    text = decode_text(data[:4096] if data else data)
    for line in text.splitlines():
        if line.strip():
            return _is_preamble(parse_csv_line(line))
    return False


def parse_csv_line(line: str) -> list[str]:
    """Split one CSV line, honouring double quotes. Fields are trimmed.

    'A,"B,C",D' -> ['A', 'B,C', 'D']
    """
    for row in csv.reader([line], skipinitialspace=True):
        return [v.strip() for v in row]
    return []


def _clean_header(name: str) -> str:
    name = name.strip().lstrip("\ufeff")
    if name.startswith("com.samsung"):
        return name.rsplit(".", 1)[-1]
    return name


def _is_preamble(row: list[str]) -> bool:
    return (
        len(row) >= 2
        and row[0].strip().startswith("com.samsung")
        and bool(_PREAMBLE_COUNT_RE.match(row[1].strip()))
    )


def _row_to_dict(headers: list[str], values: list[str], line_number: int) -> dict[str, str]:
    if len(values) != len(headers):
        raise MalformedRowError(line_number, len(headers), len(values))
    return dict(zip(headers, values))


def read_csv_rows(text: str, source_name: str = "") -> list[dict[str, str]]:
    """Parse CSV text into header-keyed dicts.

    Blank lines are ignored. Rows whose field count differs from the
    header's are skipped.
    """
    rows = [
        [v.strip() for v in row]
        for row in csv.reader(io.StringIO(decode_text(text)), skipinitialspace=True)
        if any(v.strip() for v in row)
    ]
    if rows and _is_preamble(rows[0]):
        rows = rows[1:]
    if len(rows) < 2:
        return []

    headers = [_clean_header(h) for h in rows[0]]
    result = []
    for line_number, values in enumerate(rows[1:], start=2):
        try:
            result.append(_row_to_dict(headers, values, line_number))
        except MalformedRowError as exc:
            logger.debug("csv_row_skipped", file=source_name, reason=str(exc))
    return result


def _minutes_between(start: str | None, end: str | None) -> int:
    if not start or not end:
        return 0
    delta = datetime.fromisoformat(end) - datetime.fromisoformat(start)
    return max(int(delta.total_seconds() // 60), 0)


def process_sleep_record(row: dict[str, Any]) -> SleepSession:
    start_time = normalize_timestamp(first_present(row, "start_time", "startTime"))
    if not start_time:
        raise UnresolvableDateError("sleep row without start time")
    end_time = normalize_timestamp(first_present(row, "end_time", "endTime"))

    duration = normalize_duration(row.get("duration"))
    if not duration:
        duration = _minutes_between(start_time, end_time)

    return SleepSession(
        date=start_time.split("T")[0],
        source_tag=VENDOR_EXPORT,
        start_time=start_time,
        end_time=end_time,
        duration=duration,
        efficiency=parse_number(row.get("efficiency")),
        sleep_score=parse_number(first_present(row, "sleep_score", "sleepScore")),
        deep_sleep=normalize_duration(first_present(row, "deep_sleep", "deepSleep")),
        light_sleep=normalize_duration(first_present(row, "light_sleep", "lightSleep")),
        rem_sleep=normalize_duration(first_present(row, "rem_sleep", "remSleep")),
        awake=normalize_duration(row.get("awake")),
    )


def process_activity_record(row: dict[str, Any]) -> ActivityEntry:
    date = normalize_date(first_present(row, "day", "date", "start_time", "day_time"))
    if not date:
        raise UnresolvableDateError("activity row")

    entry = ActivityEntry(
        date=date,
        source_tag=VENDOR_EXPORT,
        steps=parse_int(first_present(row, "step_count", "steps", "count")),
        distance=parse_number(row.get("distance")),
        calories=parse_number(first_present(row, "calorie", "calories")),
        active_minutes=parse_int(first_present(row, "active_time", "activeMinutes")),
        floors=parse_int(first_present(row, "floor", "floors_climbed")),
        heart_rate=parse_number(first_present(row, "heart_rate", "hr_avg")),
    )

    exercise_type = first_present(row, "exercise_type", "workout_type")
    if exercise_type:
        entry.type = "exercise"
        entry.exercise_type = str(exercise_type)
        entry.duration = normalize_duration(row.get("duration"))
        entry.start_time = normalize_timestamp(row.get("start_time"))
        entry.end_time = normalize_timestamp(row.get("end_time"))
    return entry


def process_vitals_record(row: dict[str, Any]) -> VitalRecord:
    """Build a weight, heart-rate or stress reading, checked in that order."""
    date = normalize_date(first_present(row, "day", "date", "create_time", "start_time"))
    if not date:
        raise UnresolvableDateError("vitals row")

    if row.get("weight") not in (None, ""):
        return VitalRecord(
            date=date,
            source_tag=VENDOR_EXPORT,
            type="weight",
            value=_required_number(row["weight"], "weight"),
            unit="kg",
            bmi=parse_number(row.get("bmi")),
            body_fat=parse_number(first_present(row, "body_fat_percentage", "body_fat")),
            muscle_mass=parse_number(row.get("muscle_mass")),
        )

    heart_rate = first_present(row, "heart_rate", "hr")
    if heart_rate is not None:
        return VitalRecord(
            date=date,
            source_tag=VENDOR_EXPORT,
            type="heart-rate",
            value=_required_number(heart_rate, "heart rate"),
            unit="bpm",
            timestamp=normalize_timestamp(first_present(row, "create_time", "timestamp", "start_time")),
            context=row.get("context") or "resting",
        )

    stress = first_present(row, "stress_level", "stress")
    if stress is not None:
        return VitalRecord(
            date=date,
            source_tag=VENDOR_EXPORT,
            type="stress",
            value=_required_number(stress, "stress"),
            unit="level",
            timestamp=normalize_timestamp(first_present(row, "create_time", "timestamp", "start_time")),
        )

    raise UnresolvableValueError("vitals row without weight, heart rate or stress")


def _required_number(raw: Any, what: str) -> float:
    value = parse_number(raw)
    if value is None:
        raise UnresolvableValueError(what)
    return value


_MAPPERS: dict[str, Callable[[dict[str, Any]], HealthRecord]] = {
    "sleep": process_sleep_record,
    "activity": process_activity_record,
    "vitals": process_vitals_record,
}


def process_record(row: dict[str, Any], data_type: str, source_name: str = "") -> HealthRecord | None:
    """Map one CSV row; returns None when the row yields no record."""
    mapper = _MAPPERS.get(data_type, process_activity_record)
    try:
        return mapper(row)
    except (UnresolvableDateError, UnresolvableValueError) as exc:
        logger.debug("row_skipped", file=source_name, data_type=data_type, reason=str(exc))
        return None
    except Exception as exc:  # one bad row never aborts the file
        logger.warning("row_dropped", file=source_name, data_type=data_type, error=repr(exc))
        return None


def parse_csv_text(text: str, data_type: str, source_name: str = "") -> list[HealthRecord]:
    """Parse CSV text of one Samsung Health file into records."""
    records = []
    for row in read_csv_rows(text, source_name):
        record = process_record(row, data_type, source_name)
        if record is not None:
            records.append(record)
    return records


def record_subtype(record: HealthRecord) -> str:
    """The fine-grained type of a record ('weight', 'exercise', 'sleep-session', ...)."""
    return getattr(record, "type", "") or record.kind


def records_by_type(records: list[HealthRecord]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for record in records:
        key = record_subtype(record)
        counts[key] = counts.get(key, 0) + 1
    return counts


def parse_csv(name: str, data: bytes | str) -> ParserOutput:
    """Parse a single Samsung Health CSV file."""
    data_type = identify_data_type(name)
    records = parse_csv_text(decode_text(data), data_type, name)
    logger.info("samsung_csv_parsed", file=name, data_type=data_type, records=len(records))
    return ParserOutput(
        type=data_type,
        records=records,
        source=SOURCE,
        metadata={"file_name": name, "records_by_type": records_by_type(records)},
    )


def parse_zip(name: str, data: bytes) -> ParserOutput:
    """Parse every CSV in a Samsung Health export archive."""
    records: list[HealthRecord] = []
    processed_files = []
    for entry in sorted(read_zip_entries(name, data, extension="csv"), key=lambda e: e.name):
        data_type = identify_data_type(entry.base_name)
        entry_records = parse_csv_text(entry.text(), data_type, entry.name)
        records.extend(entry_records)
        processed_files.append(entry.name)
        logger.debug("samsung_entry_parsed", archive=name, entry=entry.name, records=len(entry_records))

    logger.info("samsung_export_parsed", file=name, csv_files=len(processed_files), records=len(records))
    return ParserOutput(
        type=EXPORT_TYPE,
        records=records,
        source=SOURCE,
        metadata={
            "file_name": name,
            "processed_files": processed_files,
            "records_by_type": records_by_type(records),
        },
    )
