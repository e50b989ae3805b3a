"""FHIR R4 resource helpers: dates, codings, values, names, dosages."""

from __future__ import annotations

import re
from typing import Any

from healthfold.core.utils import normalize_date

_PARTIAL_DATE_RE = re.compile(r"^(\d{4})(?:-(\d{2}))?$")


def fhir_date(value: Any) -> str | None:
    """Resolve a FHIR date, dateTime or Period to YYYY-MM-DD.

    Partial dates ("2021", "2021-06") resolve to the first day of the
    year/month. A Period resolves through its ``start``.
    """
    if not value:
        return None
    if isinstance(value, dict):
        value = value.get("start")
        if not value:
            return None
    if not isinstance(value, str):
        return None
    m = _PARTIAL_DATE_RE.match(value.strip())
    if m:
        return normalize_date(f"{m.group(1)}-{m.group(2) or '01'}-01")
    return normalize_date(value)


def first_date(resource: dict, *keys: str) -> str | None:
    """Return the first resolvable date among ``keys`` of a resource."""
    for key in keys:
        resolved = fhir_date(resource.get(key))
        if resolved:
            return resolved
    return None


def first_coding(concept: Any) -> dict:
    """First Coding of a CodeableConcept, or {}."""
    if not isinstance(concept, dict):
        return {}
    codings = concept.get("coding") or []
    return codings[0] if codings and isinstance(codings[0], dict) else {}


def first_category_code(resource: dict) -> str:
    """Code of the first coding of the first category (list or single concept)."""
    category = resource.get("category")
    if isinstance(category, list):
        category = category[0] if category else {}
    return first_coding(category).get("code", "") or ""


def first_category_display(resource: dict) -> str:
    category = resource.get("category")
    if isinstance(category, list):
        category = category[0] if category else {}
    return first_coding(category).get("display", "") or ""


def extract_value(obs: dict) -> dict | None:
    """Decode an Observation value to {"value", "unit"}.

    Tries valueQuantity, valueCodeableConcept (first coding display, else
    text), then valueString / valueInteger / valueBoolean. Returns None when
    nothing is decodable.
    """
    quantity = obs.get("valueQuantity")
    if isinstance(quantity, dict) and quantity.get("value") is not None:
        return {"value": quantity["value"], "unit": quantity.get("unit") or quantity.get("code") or ""}

    concept = obs.get("valueCodeableConcept")
    if isinstance(concept, dict):
        display = first_coding(concept).get("display") or concept.get("text")
        if display:
            return {"value": display, "unit": ""}

    for key in ("valueString", "valueInteger", "valueBoolean"):
        raw = obs.get(key)
        if raw is not None and raw != "":
            return {"value": raw, "unit": ""}
    return None


def extract_reference_range(ranges: Any) -> dict | None:
    if not ranges or not isinstance(ranges, list):
        return None
    rng = ranges[0]
    return {
        "low": (rng.get("low") or {}).get("value"),
        "high": (rng.get("high") or {}).get("value"),
        "text": rng.get("text"),
    }


def extract_medication_name(med: dict) -> str | None:
    """Human-readable drug name from a MedicationRequest/Statement.

    Tries medicationCodeableConcept, then medicationReference (placeholder
    name, the reference is not resolved), then a plain ``code``.
    """
    concept = med.get("medicationCodeableConcept")
    if concept:
        return first_coding(concept).get("display") or concept.get("text") or None

    reference = med.get("medicationReference")
    if reference:
        ref = reference.get("reference") or reference.get("display") or ""
        return f"Medication Reference: {ref}"

    code = med.get("code")
    if code:
        return first_coding(code).get("display") or code.get("text") or None
    return None


def extract_dosage(instructions: Any) -> str | None:
    """Render the first dosageInstruction as text."""
    if not instructions or not isinstance(instructions, list):
        return None
    dosage = instructions[0]
    if dosage.get("text"):
        return dosage["text"]

    parts = []
    dose_and_rate = dosage.get("doseAndRate") or []
    if dose_and_rate:
        dose = dose_and_rate[0].get("doseQuantity")
        if dose:
            parts.append(f"{dose.get('value')} {dose.get('unit', '')}".strip())
    frequency = ((dosage.get("timing") or {}).get("repeat") or {}).get("frequency")
    if frequency:
        parts.append(f"{frequency}x daily")
    return " ".join(parts) or None


def extract_practitioner_specialty(practitioner: dict) -> str:
    """Specialty from a qualification coded in a specialty system."""
    for qualification in practitioner.get("qualification") or []:
        codings = (qualification.get("code") or {}).get("coding") or []
        if any("specialty" in (c.get("system") or "") for c in codings):
            return codings[0].get("display", "") or "General Practice"
    return "General Practice"


def reference_of(value: Any) -> str:
    """The ``reference`` string of a Reference, or ''."""
    if isinstance(value, dict):
        return value.get("reference", "") or ""
    return ""
