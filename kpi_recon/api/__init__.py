"""HTTP API layer for the KPI reconciliation service."""
