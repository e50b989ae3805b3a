"""healthfold — Normalize personal health exports into one record schema.

Supports Samsung Health CSV/ZIP exports, FHIR R4 bundles (JSON or ZIP),
and lab-result PDFs.
"""

__version__ = "0.3.0"
