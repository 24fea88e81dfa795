"""User event ingestion, reconciliation, and mirror query services."""
