"""Lab value extraction from free-text documents (PDF page text).

Each lab type has one or more labeled patterns. Every match becomes a
LabResult scored by how much the matched text looks like a real result
line (label present, unit present, "label: value" form).
"""

from __future__ import annotations

import re

import structlog

from healthfold.core.utils import deduplicate_by_key, month_number, safe_date, today_iso
from healthfold.models import DOCUMENT_EXTRACT, LabResult, ParserOutput
from healthfold.sources.pdf import extract_pdf_pages

logger = structlog.get_logger()

SOURCE = "pdf"
DOCUMENT_TYPE = "pdf-lab-results"
PREVIEW_CHARS = 1000

_FLAGS = re.IGNORECASE

# Ordered: matcher order decides which duplicate survives.
LAB_PATTERNS: dict[str, list[re.Pattern]] = {
    "hemoglobin-a1c": [
        re.compile(r"(?:A1C|HbA1c|Hemoglobin A1c)[\s:]*([0-9]+\.?[0-9]*)\s*%?", _FLAGS),
        re.compile(r"A1C[\s\S]*?([0-9]+\.[0-9]+)%", _FLAGS),
    ],
    "total-cholesterol": [
        re.compile(r"(?:Total Cholesterol|CHOL)[\s:]*([0-9]+)\s*mg/dL", _FLAGS),
        re.compile(r"Cholesterol[\s\S]*?([0-9]+)\s*mg/dL", _FLAGS),
    ],
    "ldl-cholesterol": [
        re.compile(r"(?:LDL|Low Density Lipoprotein)[\s:]*([0-9]+)\s*mg/dL", _FLAGS),
        re.compile(r"LDL[\s\S]*?([0-9]+)\s*mg/dL", _FLAGS),
    ],
    "hdl-cholesterol": [
        re.compile(r"(?:HDL|High Density Lipoprotein)[\s:]*([0-9]+)\s*mg/dL", _FLAGS),
        re.compile(r"HDL[\s\S]*?([0-9]+)\s*mg/dL", _FLAGS),
    ],
    "triglycerides": [
        re.compile(r"(?:Triglycerides|TRIG)[\s:]*([0-9]+)\s*mg/dL", _FLAGS),
        re.compile(r"Triglycerides[\s\S]*?([0-9]+)\s*mg/dL", _FLAGS),
    ],
    "glucose": [
        re.compile(r"(?:Glucose|GLU)[\s:]*([0-9]+)\s*mg/dL", _FLAGS),
        re.compile(r"Glucose[\s\S]*?([0-9]+)\s*mg/dL", _FLAGS),
    ],
    "creatinine": [
        re.compile(r"(?:Creatinine|CREAT)[\s:]*([0-9]+\.?[0-9]*)\s*mg/dL", _FLAGS),
    ],
    "bun": [
        re.compile(r"(?:BUN|Blood Urea Nitrogen)[\s:]*([0-9]+)\s*mg/dL", _FLAGS),
    ],
    "weight": [
        re.compile(r"(?:Weight|Wt)[\s:]*([0-9]+\.?[0-9]*)\s*(?:lbs?|kg)", _FLAGS),
        re.compile(r"Weight[\s\S]*?([0-9]+\.?[0-9]*)\s*(?:lbs?|kg)", _FLAGS),
    ],
    "blood-pressure": [
        re.compile(r"(?:BP|Blood Pressure)[\s:]*([0-9]+)/([0-9]+)", _FLAGS),
        re.compile(r"([0-9]+)/([0-9]+)\s*(?:mmHg|mm Hg)", _FLAGS),
    ],
    "heart-rate": [
        re.compile(r"(?:HR|Heart Rate|Pulse)[\s:]*([0-9]+)\s*(?:bpm)?", _FLAGS),
    ],
}

UNITS = {
    "hemoglobin-a1c": "%",
    "total-cholesterol": "mg/dL",
    "ldl-cholesterol": "mg/dL",
    "hdl-cholesterol": "mg/dL",
    "triglycerides": "mg/dL",
    "glucose": "mg/dL",
    "creatinine": "mg/dL",
    "bun": "mg/dL",
    "heart-rate": "bpm",
    "systolic-bp": "mmHg",
    "diastolic-bp": "mmHg",
}

DISPLAY_NAMES = {
    "hemoglobin-a1c": "Hemoglobin A1C",
    "total-cholesterol": "Total Cholesterol",
    "ldl-cholesterol": "LDL Cholesterol",
    "hdl-cholesterol": "HDL Cholesterol",
    "triglycerides": "Triglycerides",
    "glucose": "Glucose",
    "creatinine": "Creatinine",
    "bun": "Blood Urea Nitrogen",
    "weight": "Weight",
    "heart-rate": "Heart Rate",
    "systolic-bp": "Blood Pressure (Systolic)",
    "diastolic-bp": "Blood Pressure (Diastolic)",
}

EXPECTED_UNITS = ("mg/dL", "%", "bpm", "mmHg", "kg", "lbs")

BASE_CONFIDENCE = 0.5
LABEL_BONUS = 0.3
UNIT_BONUS = 0.2
STRUCTURE_BONUS = 0.1

# (pattern, field order of the three groups)
_TEXT_DATE_PATTERNS = (
    (re.compile(r"([0-9]{1,2})/([0-9]{1,2})/([0-9]{4})"), "mdy"),
    (re.compile(r"([0-9]{4})-([0-9]{1,2})-([0-9]{1,2})"), "ymd"),
    (re.compile(r"([A-Za-z]{3,9})\s+([0-9]{1,2}),?\s+([0-9]{4})"), "month-name"),
)
_FILENAME_DATE_PATTERNS = (
    (re.compile(r"([0-9]{4})[-_]([0-9]{1,2})[-_]([0-9]{1,2})"), "ymd"),
    (re.compile(r"([0-9]{1,2})[-_]([0-9]{1,2})[-_]([0-9]{4})"), "mdy"),
    (re.compile(r"([0-9]{4})([0-9]{2})([0-9]{2})"), "ymd"),
)


def _date_from_match(m: re.Match, order: str) -> str:
    a, b, c = m.group(1), m.group(2), m.group(3)
    if order == "ymd":
        return safe_date(a, b, c)
    if order == "mdy":
        return safe_date(c, a, b)
    month = month_number(a)
    return safe_date(c, month, b) if month else ""


def extract_date_from_file_name(file_name: str) -> str:
    """Date embedded in a file name (lab_2024-03-15.pdf, 03_15_2024.pdf, 20240315.pdf)."""
    for pattern, order in _FILENAME_DATE_PATTERNS:
        m = pattern.search(file_name)
        if m:
            resolved = _date_from_match(m, order)
            if resolved:
                return resolved
    return ""


def extract_date(text: str, file_name: str = "") -> str:
    """Resolve a document date: from the text, then the file name, then today.

    Only the first match of each text pattern is looked at; one that is not
    a real calendar date moves on to the next pattern.
    """
    for pattern, order in _TEXT_DATE_PATTERNS:
        m = pattern.search(text)
        resolved = _date_from_match(m, order) if m else None
        if resolved:
            return resolved
    return extract_date_from_file_name(file_name) or today_iso()


def calculate_confidence(matched_text: str, test_type: str) -> float:
    """Score a match in [0.5, 1.0]."""
    confidence = BASE_CONFIDENCE
    if test_type.replace("-", " ") in matched_text.lower():
        confidence += LABEL_BONUS
    if any(unit in matched_text for unit in EXPECTED_UNITS):
        confidence += UNIT_BONUS
    if ":" in matched_text:
        confidence += STRUCTURE_BONUS
    return round(min(confidence, 1.0), 2)


def unit_for(test_type: str, matched_text: str) -> str:
    if test_type == "weight":
        return "kg" if "kg" in matched_text.lower() else "lbs"
    return UNITS.get(test_type, "")


def _lab_result(test_type: str, value: float, date: str, matched_text: str, confidence: float, file_name: str) -> LabResult:
    return LabResult(
        date=date,
        source_tag=DOCUMENT_EXTRACT,
        type=test_type,
        test_type=DISPLAY_NAMES.get(test_type, test_type),
        value=value,
        unit=unit_for(test_type, matched_text),
        confidence=confidence,
        matched_text=matched_text,
        file_name=file_name,
    )


def extract_lab_values(text: str, file_name: str = "") -> list[LabResult]:
    """Extract lab values from document text.

    All values share one document date. Duplicates on (type, value, date)
    keep the first match; the result is sorted by confidence, highest first.
    """
    date = extract_date(text, file_name)
    records: list[LabResult] = []

    for test_type, patterns in LAB_PATTERNS.items():
        for pattern in patterns:
            for m in pattern.finditer(text):
                matched = m.group(0)
                confidence = calculate_confidence(matched, test_type)
                if test_type == "blood-pressure":
                    systolic, diastolic = float(m.group(1)), float(m.group(2))
                    records.append(_lab_result("systolic-bp", systolic, date, matched, confidence, file_name))
                    records.append(_lab_result("diastolic-bp", diastolic, date, matched, confidence, file_name))
                else:
                    records.append(_lab_result(test_type, float(m.group(1)), date, matched, confidence, file_name))

    return deduplicate_by_key(
        records,
        key_func=lambda r: (r.type, r.value, r.date),
        sort_key=lambda r: r.confidence,
        reverse=True,
    )


def parse_lab_text(name: str, pages: list[str]) -> ParserOutput:
    """Extract lab values from already-extracted page text."""
    full_text = " ".join(pages)
    records = extract_lab_values(full_text, name)
    logger.info("lab_document_parsed", file=name, pages=len(pages), records=len(records))
    return ParserOutput(
        type=DOCUMENT_TYPE,
        records=records,
        source=SOURCE,
        metadata={
            "file_name": name,
            "page_count": len(pages),
            "extracted_text": full_text[:PREVIEW_CHARS],
        },
    )


def parse_lab_document(name: str, data: bytes) -> ParserOutput:
    """Parse a lab-result PDF."""
    return parse_lab_text(name, extract_pdf_pages(data, name))
