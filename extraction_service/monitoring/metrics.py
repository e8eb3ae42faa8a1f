"""Prometheus metrics and monitoring utilities."""

from __future__ import annotations

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

EXTRACTION_ATTEMPTS_TOTAL = Counter(
    "hotel_extraction_attempts_total", "Adapter and sink call attempts", ["site", "outcome"]
)
RECORDS_VALIDATED_TOTAL = Counter(
    "hotel_extraction_records_validated_total", "Records that passed validation", ["site", "kind"]
)
RECORDS_REJECTED_TOTAL = Counter(
    "hotel_extraction_records_rejected_total", "Records dropped by the pipeline", ["site", "reason"]
)
RECORDS_INGESTED_TOTAL = Counter("hotel_extraction_records_ingested_total", "Records acknowledged by the sink")
INGEST_BATCHES_FAILED = Counter("hotel_extraction_ingest_batches_failed_total", "Ingest batches that gave up")
SESSIONS_FINISHED_TOTAL = Counter(
    "hotel_extraction_sessions_finished_total", "Sessions reaching a terminal status", ["site", "status"]
)
TASKS_IN_PROGRESS = Gauge("hotel_extraction_tasks_in_progress", "Tasks currently holding a site slot", ["site"])
TASK_LATENCY = Histogram("hotel_extraction_task_latency_seconds", "Wall time of one task including retries", ["kind"])

metrics_router = APIRouter()


@metrics_router.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "EXTRACTION_ATTEMPTS_TOTAL",
    "RECORDS_VALIDATED_TOTAL",
    "RECORDS_REJECTED_TOTAL",
    "RECORDS_INGESTED_TOTAL",
    "INGEST_BATCHES_FAILED",
    "SESSIONS_FINISHED_TOTAL",
    "TASKS_IN_PROGRESS",
    "TASK_LATENCY",
    "metrics_router",
]
