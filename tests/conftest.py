"""Shared test fixtures for healthfold tests."""

import io
import json
import zipfile

import pytest
import structlog

from healthfold.db import HealthDB


@pytest.fixture(autouse=True)
def _reset_logging():
    """Undo configure_logging() so no test logs into another test's captured stream."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def tmp_db(tmp_path):
    """Create a temporary SQLite database with schema initialized."""
    db_path = str(tmp_path / "test.db")
    db = HealthDB(db_path)
    db.init_schema()
    yield db
    db.close()


@pytest.fixture
def make_zip():
    """Build an in-memory ZIP archive from {entry name: text or bytes}."""

    def _make(entries: dict) -> bytes:
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w") as zf:
            for name, content in entries.items():
                zf.writestr(name, content)
        return buf.getvalue()

    return _make


SLEEP_CSV = """\
com.samsung.shealth.sleep,6313,3
com.samsung.health.sleep.start_time,com.samsung.health.sleep.end_time,efficiency,sleep_score
2024-03-01 23:00:00,2024-03-02 06:30:00,91,82
2024-03-02 23:30:00,2024-03-03 07:00:00,88,79
2024-03-03 22:45:00,2024-03-04 06:15:00,93,85
"""

STEP_CSV = """\
com.samsung.shealth.step_daily_trend,6313,2
day_time,count,distance,calorie
2024-03-01,8500,6.2,320.5
2024-03-02,10234,7.4,401
"""


@pytest.fixture
def sleep_csv():
    return SLEEP_CSV


@pytest.fixture
def step_csv():
    return STEP_CSV


@pytest.fixture
def samsung_export(make_zip):
    """A Samsung Health export with 3 sleep rows and 2 step rows."""
    return make_zip({
        "samsunghealth_user_20240305/com.samsung.shealth.sleep.20240305.csv": SLEEP_CSV,
        "samsunghealth_user_20240305/com.samsung.shealth.step_daily_trend.20240305.csv": STEP_CSV,
    })


@pytest.fixture
def fhir_bundle():
    """A small FHIR R4 Bundle covering every handled resource type."""
    return {
        "resourceType": "Bundle",
        "type": "collection",
        "entry": [
            {"resource": {
                "resourceType": "Patient",
                "id": "pat-1",
                "name": [
                    {"use": "usual", "given": ["Johnny"], "family": "Doe"},
                    {"use": "official", "given": ["John", "Q"], "family": "Doe"},
                ],
                "birthDate": "1975-06-15",
                "gender": "male",
            }},
            {"resource": {
                "resourceType": "Practitioner",
                "id": "prac-1",
                "name": [{"given": ["Alice"], "family": "Smith"}],
                "qualification": [{"code": {"coding": [
                    {"system": "http://example.org/specialty", "display": "Cardiology"},
                ]}}],
            }},
            {"resource": {
                "resourceType": "Observation",
                "id": "obs-weight",
                "status": "final",
                "category": [{"coding": [{"code": "vital-signs"}]}],
                "code": {"coding": [{"system": "http://loinc.org", "code": "29463-7", "display": "Body weight"}]},
                "effectiveDateTime": "2024-02-10T09:15:00Z",
                "valueQuantity": {"value": 81.2, "unit": "kg"},
            }},
            {"resource": {
                "resourceType": "Observation",
                "id": "obs-a1c",
                "status": "final",
                "code": {"coding": [{"system": "http://loinc.org", "code": "4548-4", "display": "Hemoglobin A1c"}]},
                "effectiveDateTime": "2024-02-10",
                "valueQuantity": {"value": 5.6, "unit": "%"},
                "referenceRange": [{"low": {"value": 4.0}, "high": {"value": 5.6}}],
            }},
            {"resource": {
                "resourceType": "Observation",
                "id": "obs-no-date",
                "code": {"coding": [{"code": "8867-4"}]},
                "valueQuantity": {"value": 70, "unit": "bpm"},
            }},
            {"resource": {
                "resourceType": "MedicationRequest",
                "id": "med-1",
                "status": "active",
                "intent": "order",
                "medicationCodeableConcept": {"coding": [{"display": "Metformin 500 MG"}]},
                "authoredOn": "2023-11-01",
                "dosageInstruction": [{"text": "Take 1 tablet twice daily"}],
                "requester": {"reference": "Practitioner/prac-1"},
            }},
            {"resource": {
                "resourceType": "Encounter",
                "id": "enc-1",
                "status": "finished",
                "class": {"code": "AMB"},
                "type": [{"coding": [{"display": "Office visit"}]}],
                "period": {"start": "2024-02-10T09:00:00Z", "end": "2024-02-10T09:30:00Z"},
                "participant": [{"individual": {"reference": "Practitioner/prac-1"}}],
            }},
            {"resource": {
                "resourceType": "DiagnosticReport",
                "id": "rep-1",
                "status": "final",
                "code": {"coding": [{"code": "24331-1", "display": "Lipid panel"}]},
                "effectiveDateTime": "2024-02-10",
                "result": [{"reference": "Observation/obs-a1c"}],
                "conclusion": "Within normal limits",
            }},
            {"resource": {
                "resourceType": "Condition",
                "id": "cond-1",
                "code": {"coding": [{"display": "Type 2 diabetes mellitus"}]},
                "clinicalStatus": {"coding": [{"code": "active"}]},
                "onsetDateTime": "2019-05-01",
            }},
            {"resource": {
                "resourceType": "Procedure",
                "id": "proc-1",
                "status": "completed",
                "code": {"coding": [{"display": "Colonoscopy"}]},
                "performedPeriod": {"start": "2022-08-15T08:00:00Z"},
                "performer": [{"actor": {"reference": "Practitioner/prac-1"}}],
            }},
            {"resource": {"resourceType": "AllergyIntolerance", "id": "alg-1"}},
            {"resource": {"resourceType": "Immunization", "id": "imm-1"}},
        ],
    }


@pytest.fixture
def fhir_bundle_bytes(fhir_bundle):
    return json.dumps(fhir_bundle).encode()
