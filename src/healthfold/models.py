"""Canonical health record model shared by every parser.

Each dataclass is one variant of the canonical record. ``kind`` is the
explicit discriminator and ``category`` is the store table the variant is
written to. Every record carries an ISO ``date`` (YYYY-MM-DD) and a
``source_tag``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

# Source tags
VENDOR_EXPORT = "vendor-export"
CLINICAL_BUNDLE = "clinical-bundle"
DOCUMENT_EXTRACT = "document-extract"
SOURCE_TAGS = frozenset({VENDOR_EXPORT, CLINICAL_BUNDLE, DOCUMENT_EXTRACT})

# Closed type vocabularies used by range queries
VITAL_TYPES = frozenset({
    "weight",
    "bmi",
    "blood-pressure",
    "systolic-bp",
    "diastolic-bp",
    "heart-rate",
    "stress",
    "body-temperature",
    "respiratory-rate",
    "oxygen-saturation",
    "observation",  # generic bucket for unmapped clinical codes
})
ACTIVITY_TYPES = frozenset({"daily-activity", "exercise"})
LAB_TYPES = frozenset({
    "hemoglobin-a1c",
    "total-cholesterol",
    "ldl-cholesterol",
    "hdl-cholesterol",
    "triglycerides",
    "glucose",
    "creatinine",
    "bun",
    "lab-report",
}) | VITAL_TYPES


@dataclass
class VitalRecord:
    """A single vital sign reading (weight, heart rate, BP component, ...)."""

    kind: ClassVar[str] = "vital"
    category: ClassVar[str] = "vitals"

    date: str  # ISO YYYY-MM-DD
    source_tag: str
    type: str = ""  # one of VITAL_TYPES
    value: float | str | None = None
    unit: str = ""
    timestamp: str | None = None  # ISO 8601 instant when known
    context: str = ""  # resting, active, ...
    bmi: float | None = None
    body_fat: float | None = None
    muscle_mass: float | None = None
    code: str = ""
    display: str = ""
    system: str = ""
    status: str = ""
    category_code: str = ""  # FHIR observation category
    reference_range: dict[str, Any] | None = None
    fhir_id: str = ""


@dataclass
class SleepSession:
    """One sleep session. Durations are in minutes."""

    kind: ClassVar[str] = "sleep-session"
    category: ClassVar[str] = "sleep"

    date: str
    source_tag: str
    start_time: str | None = None
    end_time: str | None = None
    duration: float = 0
    efficiency: float | None = None
    sleep_score: float | None = None
    deep_sleep: float = 0
    light_sleep: float = 0
    rem_sleep: float = 0
    awake: float = 0


@dataclass
class ActivityEntry:
    """Daily activity totals, or one exercise session when type == 'exercise'."""

    kind: ClassVar[str] = "activity-entry"
    category: ClassVar[str] = "activity"

    date: str
    source_tag: str
    type: str = "daily-activity"  # one of ACTIVITY_TYPES
    steps: int | None = None
    distance: float | None = None
    calories: float | None = None
    active_minutes: int | None = None
    floors: int | None = None
    heart_rate: float | None = None
    exercise_type: str = ""
    duration: float | None = None  # minutes
    start_time: str | None = None
    end_time: str | None = None


@dataclass
class MedicationRecord:
    """A medication order or statement."""

    kind: ClassVar[str] = "medication"
    category: ClassVar[str] = "medications"

    date: str
    source_tag: str
    medication_name: str = ""
    dosage: str | None = None
    status: str = "unknown"
    intent: str = ""
    category_code: str = ""
    prescriber: str = ""
    fhir_id: str = ""


@dataclass
class LabResult:
    """A lab value from a clinical bundle or extracted from a document.

    ``confidence`` is 1.0 for structured sources and a heuristic score in
    [0.5, 1.0] for document extraction.
    """

    kind: ClassVar[str] = "lab-result"
    category: ClassVar[str] = "lab_results"

    date: str
    source_tag: str
    type: str = ""
    test_type: str = ""  # display name
    value: float | str | None = None
    unit: str = ""
    confidence: float = 1.0
    matched_text: str = ""
    file_name: str = ""
    code: str = ""
    reference_range: dict[str, Any] | None = None
    status: str = ""
    category_code: str = ""
    conclusion: str = ""
    results: list[str] = field(default_factory=list)  # referenced Observation ids
    fhir_id: str = ""


@dataclass
class ProviderRecord:
    """A healthcare practitioner."""

    kind: ClassVar[str] = "provider"
    category: ClassVar[str] = "providers"

    date: str  # import day; practitioners carry no clinical date
    source_tag: str
    name: str = ""
    specialty: str = "General Practice"
    active: bool = True
    telecom: list[dict[str, Any]] = field(default_factory=list)
    address: list[dict[str, Any]] = field(default_factory=list)
    fhir_id: str = ""


@dataclass
class EncounterRecord:
    """A clinical encounter (visit, admission, etc.)."""

    kind: ClassVar[str] = "encounter"
    category: ClassVar[str] = "encounters"

    date: str
    source_tag: str
    type: str = "Visit"
    status: str = ""
    encounter_class: str = ""
    service_provider: str = ""
    participants: list[str] = field(default_factory=list)
    reason: str = ""
    period_start: str = ""
    period_end: str = ""
    fhir_id: str = ""


@dataclass
class ConditionRecord:
    """A clinical condition / diagnosis."""

    kind: ClassVar[str] = "condition"
    category: ClassVar[str] = "conditions"

    date: str
    source_tag: str
    condition: str = ""
    status: str = ""
    category_code: str = ""
    severity: str = ""
    fhir_id: str = ""


@dataclass
class ProcedureRecord:
    """A clinical procedure."""

    kind: ClassVar[str] = "procedure"
    category: ClassVar[str] = "procedures"

    date: str
    source_tag: str
    procedure: str = ""
    status: str = ""
    category_code: str = ""
    performers: list[str] = field(default_factory=list)
    fhir_id: str = ""


@dataclass
class PatientRecord:
    """Patient demographics. Reported in parser metadata, never stored."""

    fhir_id: str = ""
    name: str = ""
    birth_date: str = ""
    gender: str = ""
    identifiers: list[dict[str, Any]] = field(default_factory=list)


HealthRecord = Union[
    VitalRecord,
    SleepSession,
    ActivityEntry,
    MedicationRecord,
    LabResult,
    ProviderRecord,
    EncounterRecord,
    ConditionRecord,
    ProcedureRecord,
]

RECORD_TYPES: tuple[type, ...] = (
    VitalRecord,
    SleepSession,
    ActivityEntry,
    MedicationRecord,
    LabResult,
    ProviderRecord,
    EncounterRecord,
    ConditionRecord,
    ProcedureRecord,
)

CATEGORY_BY_KIND: dict[str, str] = {cls.kind: cls.category for cls in RECORD_TYPES}
RECORD_TYPE_BY_CATEGORY: dict[str, type] = {cls.category: cls for cls in RECORD_TYPES}
CATEGORIES: tuple[str, ...] = tuple(cls.category for cls in RECORD_TYPES)


@dataclass
class ParserOutput:
    """Uniform return value of every parser.

    ``type`` names what the parser produced (e.g. "sleep",
    "samsung-health-export", "fhir-bundle", "pdf-lab-results").
    """

    type: str
    records: list[HealthRecord] = field(default_factory=list)
    source: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def counts(self) -> dict[str, int]:
        """Return record counts per storage category."""
        result: dict[str, int] = {}
        for record in self.records:
            result[record.category] = result.get(record.category, 0) + 1
        return result

    @property
    def is_multi_category(self) -> bool:
        return len(self.counts()) > 1
