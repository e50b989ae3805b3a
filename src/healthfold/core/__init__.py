"""Core field normalizers and FHIR resource helpers."""

from healthfold.core.fhir import extract_value, fhir_date, first_coding
from healthfold.core.utils import (
    deduplicate_by_key,
    extract_human_name,
    normalize_date,
    normalize_duration,
    normalize_timestamp,
    parse_int,
    parse_number,
)
