"""HTTP API for the extraction service."""
