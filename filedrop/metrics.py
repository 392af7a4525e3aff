from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response

sessions_created_total = Counter("sessions_created_total", "Total upload sessions created")
sessions_resumed_total = Counter("sessions_resumed_total", "Total init calls that resumed an existing session")
chunks_uploaded_total = Counter("chunks_uploaded_total", "Total chunks accepted")
bytes_uploaded_total = Counter("bytes_uploaded_total", "Total chunk bytes accepted")
chunk_upload_failures_total = Counter("chunk_upload_failures_total", "Total failed chunk uploads")
merges_total = Counter("merges_total", "Total successful merges")
merge_failures_total = Counter("merge_failures_total", "Total failed merges")
downloads_total = Counter("downloads_total", "Total download responses started", ["partial"])

chunk_write_latency_seconds = Histogram("chunk_write_latency_seconds", "Staging write latency in seconds")
merge_latency_seconds = Histogram("merge_latency_seconds", "Merge duration in seconds")
store_update_latency_seconds = Histogram("store_update_latency_seconds", "Session store update latency in seconds")
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "route", "status_code"],
)


def metrics_response() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
