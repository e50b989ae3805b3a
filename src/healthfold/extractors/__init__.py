"""Value extraction from unstructured document text."""
