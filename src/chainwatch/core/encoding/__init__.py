"""Text encodings: exposition parsing, CSV export and NDJSON logs."""
