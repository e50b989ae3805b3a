"""Tests for lab value extraction from document text."""

import io

import pytest
from pypdf import PdfWriter

from healthfold.core.utils import today_iso
from healthfold.errors import ExtractionFailureError
from healthfold.extractors.labs import (
    calculate_confidence,
    extract_date,
    extract_date_from_file_name,
    extract_lab_values,
    parse_lab_document,
    parse_lab_text,
    unit_for,
)
from healthfold.models import DOCUMENT_EXTRACT, LabResult
from healthfold.sources.pdf import extract_pdf_pages


class TestExtractDate:
    def test_slash_date(self):
        assert extract_date("Collected 03/15/2024 at clinic") == "2024-03-15"

    def test_iso_date(self):
        assert extract_date("Collected 2024-03-15") == "2024-03-15"

    def test_month_name(self):
        assert extract_date("Reported March 5, 2024") == "2024-03-05"

    def test_only_first_match_of_a_pattern_counts(self):
        assert extract_date("Ref 13/45/2024, drawn 04/01/2024", "lab_2024-03-15.pdf") == "2024-03-15"

    def test_invalid_first_match_falls_to_next_pattern(self):
        assert extract_date("Ref 13/45/2024, reported 2024-04-01") == "2024-04-01"

    def test_falls_back_to_file_name(self):
        assert extract_date("no date here", "lab_2024-03-15.pdf") == "2024-03-15"

    def test_falls_back_to_today(self):
        assert extract_date("no date here", "labs.pdf") == today_iso()


class TestExtractDateFromFileName:
    @pytest.mark.parametrize("name,expected", [
        ("lab_2024-03-15.pdf", "2024-03-15"),
        ("results_2024_3_5.pdf", "2024-03-05"),
        ("03_15_2024.pdf", "2024-03-15"),
        ("scan20240315.pdf", "2024-03-15"),
        ("labs.pdf", ""),
    ])
    def test_patterns(self, name, expected):
        assert extract_date_from_file_name(name) == expected


class TestConfidence:
    def test_label_unit_and_structure_capped(self):
        assert calculate_confidence("Glucose: 95 mg/dL", "glucose") == 1.0

    def test_bare_value(self):
        assert calculate_confidence("95", "glucose") == 0.5

    def test_multiword_label(self):
        assert calculate_confidence("Total Cholesterol 180 mg/dL", "total-cholesterol") == 1.0

    def test_unit_and_colon_without_label(self):
        assert calculate_confidence("LDL: 130 mg/dL", "ldl-cholesterol") == 0.8


class TestUnits:
    def test_weight_kg(self):
        assert unit_for("weight", "Weight 82.5 KG") == "kg"

    def test_weight_defaults_to_lbs(self):
        assert unit_for("weight", "Weight: 180 lbs") == "lbs"

    def test_table_unit(self):
        assert unit_for("glucose", "") == "mg/dL"

    def test_unknown_type(self):
        assert unit_for("mystery", "") == ""


class TestExtractLabValues:
    def test_blood_pressure_yields_two_records(self):
        records = extract_lab_values("BP: 128/82 mmHg")
        assert [(r.type, r.value) for r in records] == [("systolic-bp", 128.0), ("diastolic-bp", 82.0)]
        # The first pattern's match survives deduplication.
        assert all(r.matched_text == "BP: 128/82" for r in records)
        assert all(r.confidence == 0.6 for r in records)
        assert records[0].unit == "mmHg"
        assert records[0].test_type == "Blood Pressure (Systolic)"

    def test_a1c(self):
        records = extract_lab_values("Hemoglobin A1c: 6.1%")
        assert len(records) == 1
        rec = records[0]
        assert isinstance(rec, LabResult)
        assert rec.type == "hemoglobin-a1c"
        assert rec.value == 6.1
        assert rec.unit == "%"
        assert rec.confidence == 1.0
        assert rec.source_tag == DOCUMENT_EXTRACT

    def test_sorted_by_confidence(self):
        records = extract_lab_values("LDL: 130 mg/dL. Glucose 95 mg/dL")
        assert [r.type for r in records] == ["glucose", "ldl-cholesterol"]
        assert [r.confidence for r in records] == [1.0, 0.8]

    def test_confidence_in_range(self):
        text = "Glucose 95 mg/dL Triglycerides: 150 mg/dL Weight: 180 lbs BUN 14 mg/dL"
        records = extract_lab_values(text)
        assert records
        assert all(0.5 <= r.confidence <= 1.0 for r in records)

    def test_weight_units(self):
        records = extract_lab_values("Weight: 180 lbs")
        assert [(r.type, r.value, r.unit) for r in records] == [("weight", 180.0, "lbs")]

    def test_shared_document_date(self):
        records = extract_lab_values("Drawn 2024-03-15 Glucose 95 mg/dL BUN 14 mg/dL")
        assert {r.date for r in records} == {"2024-03-15"}

    def test_file_name_recorded(self):
        records = extract_lab_values("Glucose 95 mg/dL", "lab_2024-01-02.pdf")
        assert records[0].file_name == "lab_2024-01-02.pdf"
        assert records[0].date == "2024-01-02"

    def test_nothing_found(self):
        assert extract_lab_values("Patient feels well.") == []


class TestParseLabText:
    def test_output(self):
        out = parse_lab_text("labs.pdf", ["Glucose 95 mg/dL", "Collected 2024-03-15"])
        assert out.type == "pdf-lab-results"
        assert out.source == "pdf"
        assert out.metadata["page_count"] == 2
        assert out.metadata["file_name"] == "labs.pdf"
        assert out.metadata["extracted_text"] == "Glucose 95 mg/dL Collected 2024-03-15"
        assert len(out.records) == 1
        assert out.records[0].date == "2024-03-15"

    def test_preview_truncated(self):
        out = parse_lab_text("labs.pdf", ["x" * 5000])
        assert len(out.metadata["extracted_text"]) == 1000


class TestParseLabDocument:
    def test_uses_page_text(self, monkeypatch):
        monkeypatch.setattr(
            "healthfold.extractors.labs.extract_pdf_pages",
            lambda data, name: ["BP: 128/82 mmHg", "03/15/2024"],
        )
        out = parse_lab_document("visit.pdf", b"%PDF-fake")
        assert out.counts() == {"lab_results": 2}
        assert out.records[0].date == "2024-03-15"

    def test_unreadable_pdf(self):
        with pytest.raises(ExtractionFailureError) as exc_info:
            parse_lab_document("broken.pdf", b"definitely not a pdf")
        assert exc_info.value.__cause__ is not None


class TestExtractPdfPages:
    def test_blank_page(self):
        writer = PdfWriter()
        writer.add_blank_page(width=200, height=200)
        buf = io.BytesIO()
        writer.write(buf)
        assert extract_pdf_pages(buf.getvalue(), "blank.pdf") == [""]

    def test_garbage(self):
        with pytest.raises(ExtractionFailureError):
            extract_pdf_pages(b"\x00\x01garbage", "garbage.pdf")
