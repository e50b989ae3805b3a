"""Parse FHIR R4 JSON: a Bundle, a single resource, or a Bundle inside a ZIP.

Each resource type has its own handler returning a canonical record (or
None to drop it). Observations become vitals or lab results depending on
their category and LOINC code.
"""

from __future__ import annotations

import json
from typing import Any, Callable

import structlog

from healthfold.core.fhir import (
    extract_dosage,
    extract_medication_name,
    extract_practitioner_specialty,
    extract_reference_range,
    extract_value,
    fhir_date,
    first_category_code,
    first_category_display,
    first_coding,
    first_date,
    reference_of,
)
from healthfold.core.utils import extract_human_name, today_iso
from healthfold.errors import BundleNotFoundError, ExtractionFailureError
from healthfold.models import (
    CLINICAL_BUNDLE,
    ConditionRecord,
    EncounterRecord,
    HealthRecord,
    LabResult,
    MedicationRecord,
    ParserOutput,
    PatientRecord,
    ProcedureRecord,
    ProviderRecord,
    VitalRecord,
)
from healthfold.sources.base import decode_text, read_zip_entries

logger = structlog.get_logger()

SOURCE = "fhir"
BUNDLE_TYPE = "fhir-bundle"

# LOINC code -> internal type
OBSERVATION_CODES = {
    # Weight/BMI
    "29463-7": "weight",
    "39156-5": "bmi",
    # Blood pressure
    "85354-9": "blood-pressure",
    "8480-6": "systolic-bp",
    "8462-4": "diastolic-bp",
    "8867-4": "heart-rate",
    # Lab values
    "4548-4": "hemoglobin-a1c",
    "2093-3": "total-cholesterol",
    "18262-6": "ldl-cholesterol",
    "2085-9": "hdl-cholesterol",
    "2571-8": "triglycerides",
    # Vital signs
    "8310-5": "body-temperature",
    "9279-1": "respiratory-rate",
    "2710-2": "oxygen-saturation",
}
GENERIC_OBSERVATION = "observation"

LAB_CATEGORIES = frozenset({"laboratory", "diagnostic"})
LAB_CODES = frozenset({"4548-4", "2093-3", "18262-6", "2085-9", "2571-8"})

COUNT_ONLY_TYPES = frozenset({"AllergyIntolerance"})


def map_observation_code(code: str) -> str:
    return OBSERVATION_CODES.get(code, GENERIC_OBSERVATION)


def is_lab_observation(category_code: str, code: str) -> bool:
    """An Observation is a lab result if its category or its code says so."""
    return category_code in LAB_CATEGORIES or code in LAB_CODES


# ---------------------------------------------------------------------------
# Resource handlers
# ---------------------------------------------------------------------------


def parse_patient(resource: dict) -> PatientRecord:
    return PatientRecord(
        fhir_id=resource.get("id", ""),
        name=extract_human_name(resource.get("name")),
        birth_date=resource.get("birthDate", "") or "",
        gender=resource.get("gender", "") or "",
        identifiers=list(resource.get("identifier") or []),
    )


def parse_practitioner(resource: dict) -> ProviderRecord:
    return ProviderRecord(
        date=today_iso(),
        source_tag=CLINICAL_BUNDLE,
        name=extract_human_name(resource.get("name")),
        specialty=extract_practitioner_specialty(resource),
        active=resource.get("active") is not False,
        telecom=list(resource.get("telecom") or []),
        address=list(resource.get("address") or []),
        fhir_id=resource.get("id", ""),
    )


def parse_observation(resource: dict) -> VitalRecord | LabResult | None:
    """Map an Observation; drops it without a date, a value, or a code."""
    date = first_date(resource, "effectiveDateTime", "effectivePeriod")
    if not date:
        return None
    coding = first_coding(resource.get("code"))
    value = extract_value(resource)
    if not coding or value is None:
        return None

    code = coding.get("code", "") or ""
    category_code = first_category_code(resource)
    common = dict(
        date=date,
        source_tag=CLINICAL_BUNDLE,
        type=map_observation_code(code),
        value=value["value"],
        unit=value["unit"],
        code=code,
        reference_range=extract_reference_range(resource.get("referenceRange")),
        status=resource.get("status", "") or "",
        category_code=category_code,
        fhir_id=resource.get("id", ""),
    )
    if is_lab_observation(category_code, code):
        return LabResult(test_type=coding.get("display", "") or "", confidence=1.0, **common)
    return VitalRecord(display=coding.get("display", "") or "", system=coding.get("system", "") or "", **common)


def parse_medication(resource: dict) -> MedicationRecord | None:
    name = extract_medication_name(resource)
    if not name:
        return None
    date = first_date(resource, "authoredOn", "effectiveDateTime", "effectivePeriod")
    return MedicationRecord(
        date=date or today_iso(),
        source_tag=CLINICAL_BUNDLE,
        medication_name=name,
        dosage=extract_dosage(resource.get("dosageInstruction")),
        status=resource.get("status") or "unknown",
        intent=resource.get("intent", "") or "",
        category_code=first_category_code(resource),
        prescriber=reference_of(resource.get("requester")),
        fhir_id=resource.get("id", ""),
    )


def parse_encounter(resource: dict) -> EncounterRecord | None:
    period = resource.get("period") or {}
    date = fhir_date(period.get("start")) or fhir_date(period.get("end"))
    if not date:
        return None
    types = resource.get("type") or []
    encounter_type = first_coding(types[0]).get("display") if types else None
    reasons = resource.get("reasonCode") or []
    return EncounterRecord(
        date=date,
        source_tag=CLINICAL_BUNDLE,
        type=encounter_type or "Visit",
        status=resource.get("status", "") or "",
        encounter_class=(resource.get("class") or {}).get("code", "") or "",
        service_provider=reference_of(resource.get("serviceProvider")),
        participants=[reference_of(p.get("individual")) for p in resource.get("participant") or []],
        reason=(first_coding(reasons[0]).get("display", "") if reasons else "") or "",
        period_start=period.get("start", "") or "",
        period_end=period.get("end", "") or "",
        fhir_id=resource.get("id", ""),
    )


def parse_diagnostic_report(resource: dict) -> LabResult | None:
    date = first_date(resource, "effectiveDateTime", "effectivePeriod")
    if not date:
        return None
    coding = first_coding(resource.get("code"))
    return LabResult(
        date=date,
        source_tag=CLINICAL_BUNDLE,
        type="lab-report",
        test_type=coding.get("display") or "Lab Report",
        value=None,
        confidence=1.0,
        code=coding.get("code", "") or "",
        status=resource.get("status", "") or "",
        category_code=first_category_display(resource),
        conclusion=resource.get("conclusion", "") or "",
        results=[reference_of(r) for r in resource.get("result") or []],
        fhir_id=resource.get("id", ""),
    )


def parse_condition(resource: dict) -> ConditionRecord:
    date = first_date(resource, "onsetDateTime", "recordedDate")
    return ConditionRecord(
        date=date or today_iso(),
        source_tag=CLINICAL_BUNDLE,
        condition=first_coding(resource.get("code")).get("display", "") or "",
        status=first_coding(resource.get("clinicalStatus")).get("code", "") or "",
        category_code=first_category_display(resource),
        severity=first_coding(resource.get("severity")).get("display", "") or "",
        fhir_id=resource.get("id", ""),
    )


def parse_procedure(resource: dict) -> ProcedureRecord | None:
    date = first_date(resource, "performedDateTime", "performedPeriod")
    if not date:
        return None
    return ProcedureRecord(
        date=date,
        source_tag=CLINICAL_BUNDLE,
        procedure=first_coding(resource.get("code")).get("display", "") or "",
        status=resource.get("status", "") or "",
        category_code=first_category_display(resource),
        performers=[reference_of(p.get("actor")) for p in resource.get("performer") or []],
        fhir_id=resource.get("id", ""),
    )


RESOURCE_HANDLERS: dict[str, Callable[[dict], Any]] = {
    "Patient": parse_patient,
    "Practitioner": parse_practitioner,
    "Observation": parse_observation,
    "MedicationRequest": parse_medication,
    "MedicationStatement": parse_medication,
    "Encounter": parse_encounter,
    "DiagnosticReport": parse_diagnostic_report,
    "Condition": parse_condition,
    "Procedure": parse_procedure,
}


# ---------------------------------------------------------------------------
# Bundle traversal
# ---------------------------------------------------------------------------


def iter_resources(doc: dict) -> list[dict]:
    """Resources of a Bundle's entries, or the document itself if it is a resource."""
    if doc.get("resourceType") == "Bundle" and isinstance(doc.get("entry"), list):
        return [e["resource"] for e in doc["entry"] if isinstance(e, dict) and isinstance(e.get("resource"), dict)]
    if doc.get("resourceType"):
        return [doc]
    return []


def parse_bundle(doc: Any, source_name: str = "") -> ParserOutput:
    """Parse a decoded FHIR document into canonical records.

    Unrecognized resource types are counted under ``unhandled_types``. A
    handler that raises drops that one resource.
    """
    records: list[HealthRecord] = []
    patient: PatientRecord | None = None
    resource_counts: dict[str, int] = {}
    unhandled: dict[str, int] = {}

    for resource in iter_resources(doc if isinstance(doc, dict) else {}):
        resource_type = resource.get("resourceType", "")
        resource_counts[resource_type] = resource_counts.get(resource_type, 0) + 1

        if resource_type in COUNT_ONLY_TYPES:
            continue
        handler = RESOURCE_HANDLERS.get(resource_type)
        if handler is None:
            unhandled[resource_type] = unhandled.get(resource_type, 0) + 1
            logger.debug("fhir_resource_unhandled", file=source_name, resource_type=resource_type)
            continue

        try:
            result = handler(resource)
        except Exception as exc:  # one bad resource never aborts the bundle
            logger.warning(
                "fhir_resource_failed",
                file=source_name,
                resource_type=resource_type,
                resource_id=resource.get("id", ""),
                error=repr(exc),
            )
            continue

        if result is None:
            logger.debug("fhir_resource_dropped", file=source_name, resource_type=resource_type)
        elif isinstance(result, PatientRecord):
            patient = result
        else:
            records.append(result)

    by_type: dict[str, int] = {}
    for record in records:
        by_type[record.category] = by_type.get(record.category, 0) + 1

    logger.info("fhir_bundle_parsed", file=source_name, resources=sum(resource_counts.values()), records=len(records))
    return ParserOutput(
        type=BUNDLE_TYPE,
        records=records,
        source=SOURCE,
        metadata={
            "patient": patient,
            "records_by_type": by_type,
            "resource_counts": resource_counts,
            "unhandled_types": unhandled,
        },
    )


def load_json(name: str, data: bytes | str) -> Any:
    try:
        return json.loads(decode_text(data))
    except json.JSONDecodeError as exc:
        raise ExtractionFailureError("JSON", name, exc) from exc


def parse_bundle_bytes(name: str, data: bytes | str) -> ParserOutput:
    """Parse a loose .json FHIR file."""
    output = parse_bundle(load_json(name, data), source_name=name)
    output.metadata["file_name"] = name
    return output


def _looks_like_bundle(doc: Any) -> bool:
    return isinstance(doc, dict) and (doc.get("resourceType") == "Bundle" or isinstance(doc.get("entry"), list))


def find_bundle_in_zip(name: str, data: bytes) -> tuple[str, dict, int]:
    """Locate the first FHIR Bundle among the archive's .json entries.

    Returns (entry name, decoded bundle, number of .json files in the
    archive). Raises BundleNotFoundError if no entry is a bundle.
    """
    entries = read_zip_entries(name, data, extension="json")
    for entry in entries:
        try:
            doc = json.loads(entry.text())
        except json.JSONDecodeError as exc:
            logger.debug("zip_entry_not_json", file=name, entry=entry.name, error=str(exc))
            continue
        if _looks_like_bundle(doc):
            return entry.name, doc, len(entries)
    raise BundleNotFoundError(name)


def parse_bundle_zip(name: str, data: bytes) -> ParserOutput:
    """Parse the FHIR Bundle packaged inside a ZIP archive."""
    entry_name, doc, total = find_bundle_in_zip(name, data)
    output = parse_bundle(doc, source_name=f"{name}:{entry_name}")
    output.metadata.update({
        "original_zip": name,
        "total_files_in_zip": total,
        "bundle_entry_name": entry_name,
    })
    return output
