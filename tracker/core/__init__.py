"""Aggregation, derivation and data access for the tracker dashboards."""
