"""Security — audit trail persistence and queries."""
