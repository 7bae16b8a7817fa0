from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

# Keep metrics module-level singletons
status_writes_total = Counter("status_writes_total", "Status record writes (one notification each)")
status_deletes_total = Counter("status_deletes_total", "Status records removed")
unschedule_requests_total = Counter(
    "unschedule_requests_total", "Cancellation requests for scheduled jobs", ["result"]
)
schedule_scan_batches_total = Counter("schedule_scan_batches_total", "Schedule pages fetched while cancelling")
schedule_scan_seconds = Histogram("schedule_scan_seconds", "Time spent scanning the schedule for one job")
jobs_scheduled_total = Counter("jobs_scheduled_total", "Jobs placed on the schedule")
error_count = Counter("error_count", "Total store errors surfaced by the HTTP layer")
request_latency_seconds = Histogram("request_latency_seconds", "HTTP request latency seconds")

# Demo runtime metrics
jobs_executed_total = Counter("jobs_executed_total", "Total jobs executed by workers")
execution_latency_seconds = Histogram("execution_latency_seconds", "Job execution latency seconds")


def metrics_response():
    # Return prometheus metrics as a Response
    payload = generate_latest()
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)
