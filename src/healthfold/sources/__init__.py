"""Per-format parsers and format detection."""
