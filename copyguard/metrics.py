"""Prometheus metrics for the CopyGuard pipeline."""

import time

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("copyguard", "CopyGuard application info")
app_info.info({"version": "0.1.0", "name": "copyguard"})

# Fetch metrics
page_fetches_total = Counter(
    "page_fetches_total",
    "Total number of page fetch attempts",
    ["status"],
)

page_fetch_duration_seconds = Histogram(
    "page_fetch_duration_seconds",
    "Time spent fetching pages",
    buckets=[0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)

robots_denials_total = Counter(
    "robots_denials_total",
    "Total number of URLs skipped because robots.txt disallows crawling",
)

# Detection metrics
detections_created_total = Counter(
    "detections_created_total",
    "Total number of detections created",
    ["confidence"],
)

classifications_total = Counter(
    "classifications_total",
    "Total number of classified pages",
    ["outcome"],
)

# Takedown metrics
takedown_dispatches_total = Counter(
    "takedown_dispatches_total",
    "Total number of takedown dispatch attempts",
    ["delivery", "outcome"],
)

# Scheduler metrics
scheduler_runs_total = Counter(
    "scheduler_runs_total",
    "Total number of scheduler runs",
    ["status"],
)

scheduler_last_run_timestamp = Gauge(
    "scheduler_last_run_timestamp",
    "Timestamp of last scheduler run",
)

crawl_messages_enqueued_total = Counter(
    "crawl_messages_enqueued_total",
    "Total number of crawl messages emitted by the scheduler",
)

# Queue metrics
queue_jobs_total = Counter(
    "queue_jobs_total",
    "Total number of queue jobs handled",
    ["queue", "outcome"],
)


def record_fetch(status: str, duration: float):
    """Record a page fetch outcome."""
    page_fetches_total.labels(status=status).inc()
    page_fetch_duration_seconds.observe(duration)


def record_robots_denial():
    """Record a URL skipped by robots.txt policy."""
    robots_denials_total.inc()


def record_classification(created: bool, confidence: str):
    """Record a classification and whether it produced a detection."""
    classifications_total.labels(outcome="detection" if created else "below_threshold").inc()
    if created:
        detections_created_total.labels(confidence=confidence).inc()


def record_takedown_dispatch(delivery: str, success: bool):
    """Record a takedown dispatch attempt."""
    outcome = "success" if success else "error"
    takedown_dispatches_total.labels(delivery=delivery, outcome=outcome).inc()


def record_scheduler_run(success: bool, enqueued: int = 0):
    """Record a scheduler cycle."""
    status = "success" if success else "error"
    scheduler_runs_total.labels(status=status).inc()
    scheduler_last_run_timestamp.set(time.time())
    if enqueued:
        crawl_messages_enqueued_total.inc(enqueued)


def record_queue_job(queue: str, outcome: str):
    """Record a queue job outcome (ack, retry, dead)."""
    queue_jobs_total.labels(queue=queue, outcome=outcome).inc()
