"""Import orchestration: uploads -> parsers -> record store.

Files are processed one at a time. Each gets a ProcessedFile that moves
from ``processing`` to ``completed`` / ``warning`` / ``error``; a failing
file never stops its siblings. import_all() then writes every completed
file's records to the store, grouped by category, and appends exactly one
entry per file to the import ledger.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Awaitable, Callable

import structlog

from healthfold.core.utils import normalize_date, utc_now_iso
from healthfold.db import IMPORTS_TABLE, RecordStore
from healthfold.errors import ImportWriteError
from healthfold.extractors.labs import parse_lab_document
from healthfold.models import DOCUMENT_EXTRACT, HealthRecord, LabResult, ParserOutput
from healthfold.sources import generic_csv, samsung
from healthfold.sources.base import CSV, FHIR_JSON, FHIR_ZIP, PDF, SAMSUNG_ZIP, ParserRegistry, detect_format
from healthfold.sources.fhir import parse_bundle_bytes, parse_bundle_zip

logger = structlog.get_logger()

# ProcessedFile statuses
PROCESSING = "processing"
COMPLETED = "completed"
WARNING = "warning"
ERROR = "error"
TERMINAL_STATUSES = frozenset({COMPLETED, WARNING, ERROR})


def parse_csv_file(name: str, data: bytes) -> ParserOutput:
    """Samsung Health CSVs (by name or preamble) go to the Samsung parser, anything else to the generic one."""
    if samsung.is_samsung_file(name, data):
        return samsung.parse_csv(name, data)
    return generic_csv.parse_csv(name, data)


def default_registry() -> ParserRegistry:
    """Registry covering every format detect_format() can return."""
    return ParserRegistry({
        SAMSUNG_ZIP: samsung.parse_zip,
        FHIR_ZIP: parse_bundle_zip,
        FHIR_JSON: parse_bundle_bytes,
        CSV: parse_csv_file,
        PDF: parse_lab_document,
    })


@dataclass
class Upload:
    """A file handed to the importer: in-memory bytes or an async reader."""

    name: str
    data: bytes | None = None
    reader: Callable[[], Awaitable[bytes]] | None = None
    size: int = 0

    def __post_init__(self):
        if self.data is not None and not self.size:
            self.size = len(self.data)

    @classmethod
    def from_path(cls, path: str | Path) -> Upload:
        path = Path(path)
        return cls(
            name=path.name,
            reader=lambda: asyncio.to_thread(path.read_bytes),
            size=path.stat().st_size,
        )

    async def read(self) -> bytes:
        if self.data is not None:
            return self.data
        if self.reader is None:
            raise ValueError(f"Upload '{self.name}' has neither data nor a reader")
        return await self.reader()


def make_file_id(name: str, size: int) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "_", f"{name}_{size}")


@dataclass
class ProcessedFile:
    """Per-upload state for the current import session."""

    file_id: str
    file_name: str
    size: int = 0
    format: str = ""
    record_count: int = 0
    status: str = PROCESSING
    message: str = "Processing file..."
    output: ParserOutput | None = None

    def finish(self, status: str, message: str) -> None:
        """Move out of ``processing``. A finished file keeps its status."""
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Not a final status: {status!r}")
        if self.status != PROCESSING:
            raise ValueError(f"'{self.file_name}' already finished with status {self.status!r}")
        self.status = status
        self.message = message


@dataclass
class ImportSummary:
    """Result of import_all()."""

    total_records: int = 0
    file_count: int = 0
    records_by_category: dict[str, int] = field(default_factory=dict)


def group_records_by_kind(records: list[HealthRecord]) -> dict[str, list[HealthRecord]]:
    """Group records by their storage category, keeping input order."""
    groups: dict[str, list[HealthRecord]] = {}
    for record in records:
        groups.setdefault(record.category, []).append(record)
    return groups


def preprocess_records(records: list[HealthRecord], data_type: str) -> list[dict]:
    """Convert records to store rows.

    Dates are normalized to YYYY-MM-DD; a missing or unparseable date
    becomes today. Every row is stamped with ``data_type`` and
    ``import_date``.
    """
    now = utc_now_iso()
    today = now.split("T")[0]
    rows = []
    for record in records:
        row = asdict(record)
        raw_date = row.get("date")
        row["date"] = (normalize_date(raw_date) if raw_date else None) or today
        row["data_type"] = data_type
        row["import_date"] = now
        rows.append(row)
    return rows


class Importer:
    """Runs uploads through detection and parsing, then writes them to a store."""

    def __init__(
        self,
        store: RecordStore,
        registry: ParserRegistry | None = None,
        min_confidence: float = 0.0,
    ):
        self.store = store
        self.registry = registry if registry is not None else default_registry()
        self.min_confidence = min_confidence
        self.files: dict[str, ProcessedFile] = {}

    async def process_file(self, upload: Upload) -> ProcessedFile:
        """Detect and parse one upload. Never raises for file-level problems."""
        processed = ProcessedFile(
            file_id=make_file_id(upload.name, upload.size),
            file_name=upload.name,
            size=upload.size,
        )
        self.files[processed.file_id] = processed
        log = logger.bind(file=upload.name)

        try:
            data = await upload.read()
            processed.size = len(data)
            processed.format = detect_format(upload.name)
            parser = self.registry.get(processed.format, upload.name)
            output = parser(upload.name, data)
        except Exception as exc:  # file-level failure is reported on the file
            processed.finish(ERROR, f"Error: {exc}")
            log.warning("file_failed", file_format=processed.format, error=str(exc))
            return processed

        processed.output = output
        processed.record_count = len(output.records)
        if output.records:
            processed.finish(COMPLETED, f"Found {processed.record_count} records")
            log.info("file_parsed", file_format=processed.format, records=processed.record_count)
        else:
            processed.finish(WARNING, "No records found in file")
            log.info("file_empty", file_format=processed.format)
        return processed

    async def process_files(self, uploads: list[Upload]) -> list[ProcessedFile]:
        """Process uploads in order, one at a time."""
        results = []
        for upload in uploads:
            results.append(await self.process_file(upload))
        return results

    def completed_files(self) -> list[ProcessedFile]:
        return [f for f in self.files.values() if f.status == COMPLETED]

    def _keep(self, record: HealthRecord) -> bool:
        if isinstance(record, LabResult) and record.source_tag == DOCUMENT_EXTRACT:
            return record.confidence >= self.min_confidence
        return True

    async def _import_file(self, processed: ProcessedFile, summary: ImportSummary) -> int:
        output = processed.output
        records = [r for r in output.records if self._keep(r)]
        groups = group_records_by_kind(records)
        written = 0
        for category, group in groups.items():
            data_type = category if len(groups) > 1 else output.type
            rows = preprocess_records(group, data_type)
            try:
                count = await self.store.add_records(category, rows)
            except Exception as exc:
                raise ImportWriteError(processed.file_name, category, exc) from exc
            written += count
            summary.records_by_category[category] = summary.records_by_category.get(category, 0) + count

        try:
            await self.store.record_import(processed.format, processed.file_name, written)
        except Exception as exc:
            raise ImportWriteError(processed.file_name, IMPORTS_TABLE, exc) from exc
        return written

    async def import_all(self) -> ImportSummary:
        """Write every completed file to the store and clear the session.

        A file leaves the session as soon as its ledger entry is written, so
        each file gets exactly one import batch. Raises ImportWriteError if
        the store rejects a write; files imported before the failure stay
        imported, and the failed file and those after it stay in the session
        for a retry.
        """
        summary = ImportSummary()
        for processed in self.completed_files():
            written = await self._import_file(processed, summary)
            del self.files[processed.file_id]
            summary.total_records += written
            summary.file_count += 1
            logger.info("file_imported", file=processed.file_name, file_format=processed.format, records=written)

        self.reset()
        logger.info("import_finished", files=summary.file_count, records=summary.total_records)
        return summary

    def reset(self) -> None:
        """Discard all processed files of the current session."""
        self.files.clear()
