"""Exception hierarchy for the import pipeline.

Row- and entry-level errors (MalformedRowError, UnresolvableDateError,
UnresolvableValueError) are raised and caught inside the parsers; the
record is dropped and parsing continues. File-level errors propagate to the
Importer, which records them against the file's status.
"""

from __future__ import annotations


class HealthImportError(Exception):
    """Base class for every error raised by healthfold."""

    def __init__(self, detail: str, file_name: str = ""):
        self.detail = detail
        self.file_name = file_name
        super().__init__(detail)


class UnsupportedFormatError(HealthImportError):
    def __init__(self, file_name: str):
        super().__init__(
            f"Unsupported file type: '{file_name}'. "
            "Expected .csv, .json, .pdf, or a Samsung Health / FHIR .zip export",
            file_name=file_name,
        )


class MalformedRowError(HealthImportError):
    def __init__(self, line_number: int, expected: int, found: int):
        self.line_number = line_number
        self.expected = expected
        self.found = found
        super().__init__(
            f"Row {line_number} has {found} fields, header has {expected}"
        )


class UnresolvableDateError(HealthImportError):
    def __init__(self, what: str):
        super().__init__(f"No usable date for {what}")


class UnresolvableValueError(HealthImportError):
    def __init__(self, what: str):
        super().__init__(f"No usable value for {what}")


class BundleNotFoundError(HealthImportError):
    def __init__(self, file_name: str):
        super().__init__(
            f"No valid FHIR bundle found in ZIP file '{file_name}'",
            file_name=file_name,
        )


class ExtractionFailureError(HealthImportError):
    """The archive/PDF/JSON decoding step failed.

    Always raised with ``raise ... from cause`` so the original exception
    stays available as ``__cause__``.
    """

    def __init__(self, what: str, file_name: str, cause: BaseException | None = None):
        self.cause = cause
        reason = f": {cause}" if cause is not None else ""
        super().__init__(f"Failed to extract {what} from '{file_name}'{reason}", file_name=file_name)


class ImportWriteError(HealthImportError):
    """A store write failed while importing a file's records."""

    def __init__(self, file_name: str, category: str, cause: BaseException):
        self.category = category
        self.cause = cause
        super().__init__(
            f"Import failed while writing '{category}' records from '{file_name}': {cause}",
            file_name=file_name,
        )
