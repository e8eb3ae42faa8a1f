"""Monitoring helpers."""

from .metrics import (
    EXTRACTION_ATTEMPTS_TOTAL,
    INGEST_BATCHES_FAILED,
    RECORDS_INGESTED_TOTAL,
    RECORDS_REJECTED_TOTAL,
    RECORDS_VALIDATED_TOTAL,
    SESSIONS_FINISHED_TOTAL,
    TASK_LATENCY,
    TASKS_IN_PROGRESS,
    metrics_router,
)

__all__ = [
    "EXTRACTION_ATTEMPTS_TOTAL",
    "INGEST_BATCHES_FAILED",
    "RECORDS_INGESTED_TOTAL",
    "RECORDS_REJECTED_TOTAL",
    "RECORDS_VALIDATED_TOTAL",
    "SESSIONS_FINISHED_TOTAL",
    "TASK_LATENCY",
    "TASKS_IN_PROGRESS",
    "metrics_router",
]
