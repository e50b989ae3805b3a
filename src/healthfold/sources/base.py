"""Format detection, the parser interface, and archive access."""

from __future__ import annotations

import io
import zipfile
import zlib
from dataclasses import dataclass, field
from typing import Protocol

from healthfold.errors import ExtractionFailureError, UnsupportedFormatError
from healthfold.models import ParserOutput

SAMSUNG_ZIP = "samsung-health-zip"
FHIR_ZIP = "fhir-zip"
FHIR_JSON = "fhir-json"
CSV = "csv"
PDF = "pdf"


@dataclass(frozen=True)
class DetectionRule:
    """One row of the detection table.

    Matches when the file extension equals ``extension`` and, if
    ``name_keywords`` is non-empty, the lowercased file name contains at
    least one of them.
    """

    file_format: str
    extension: str
    name_keywords: tuple[str, ...] = field(default_factory=tuple)

    def matches(self, file_name: str) -> bool:
        name = file_name.lower()
        if file_extension(name) != self.extension:
            return False
        if not self.name_keywords:
            return True
        return any(k in name for k in self.name_keywords)


# Evaluated top to bottom; the first matching rule wins.
DETECTION_RULES: tuple[DetectionRule, ...] = (
    DetectionRule(SAMSUNG_ZIP, "zip", ("samsung",)),
    DetectionRule(FHIR_ZIP, "zip", ("fhir", "allpatientdata", "patient")),
    DetectionRule(FHIR_JSON, "json"),
    DetectionRule(CSV, "csv"),
    DetectionRule(PDF, "pdf"),
)


def file_extension(file_name: str) -> str:
    """Lowercased text after the last dot ('' when there is no dot)."""
    name = file_name.lower()
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[-1]


def detect_format(file_name: str, rules: tuple[DetectionRule, ...] = DETECTION_RULES) -> str:
    """Return the detected format for a file name.

    Raises UnsupportedFormatError when no rule matches.
    """
    for rule in rules:
        if rule.matches(file_name):
            return rule.file_format
    raise UnsupportedFormatError(file_name)


class Parser(Protocol):
    """A parser turns one uploaded file into canonical records."""

    def __call__(self, name: str, data: bytes) -> ParserOutput:
        ...


class ParserRegistry:
    """Explicit mapping from detected format to parser."""

    def __init__(self, parsers: dict[str, Parser] | None = None):
        self._parsers: dict[str, Parser] = dict(parsers or {})

    def register(self, file_format: str, parser: Parser) -> None:
        self._parsers[file_format] = parser

    def get(self, file_format: str, file_name: str = "") -> Parser:
        try:
            return self._parsers[file_format]
        except KeyError:
            raise UnsupportedFormatError(file_name or file_format) from None

    def __contains__(self, file_format: str) -> bool:
        return file_format in self._parsers

    def formats(self) -> list[str]:
        return list(self._parsers)


@dataclass
class ArchiveEntry:
    """A named file inside an archive."""

    name: str  # path inside the archive
    data: bytes

    @property
    def base_name(self) -> str:
        return self.name.rsplit("/", 1)[-1]

    def text(self) -> str:
        return decode_text(self.data)


def decode_text(data: bytes | str) -> str:
    """Decode file bytes as UTF-8, dropping a BOM."""
    if isinstance(data, str):
        return data.lstrip("\ufeff")
    return data.decode("utf-8-sig", errors="replace")


def read_zip_entries(file_name: str, data: bytes, extension: str = "") -> list[ArchiveEntry]:
    """Return the file entries of a ZIP archive in archive order.

    Args:
        file_name: Archive name, used for error messages.
        data: Archive bytes.
        extension: If given, only entries with this extension are returned.

    Raises ExtractionFailureError if the archive cannot be read.
    """
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            entries = []
            for info in zf.infolist():
                if info.is_dir():
                    continue
                if extension and file_extension(info.filename) != extension:
                    continue
                entries.append(ArchiveEntry(name=info.filename, data=zf.read(info)))
            return entries
    except (zipfile.BadZipFile, zipfile.LargeZipFile, zlib.error, OSError, EOFError, RuntimeError) as exc:
        raise ExtractionFailureError("ZIP archive", file_name, exc) from exc
