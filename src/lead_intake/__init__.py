"""Gmail push ingestion and lead triage for a sales CRM."""

__version__ = "0.1.0"
