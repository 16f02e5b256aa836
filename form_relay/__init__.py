"""form-relay: idempotent form-submission webhook receiver with a best-effort Airtable mirror."""

__version__ = "0.1.0"
