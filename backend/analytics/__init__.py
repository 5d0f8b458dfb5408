"""Event ingestion and aggregation service for the analytics dashboard."""
