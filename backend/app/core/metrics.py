"""Prometheus metrics: request count/latency, upload validation, duplicate scans, deletions."""
import re

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total requests",
    ["method", "path", "status_class"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "Request latency",
    ["method", "path"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)
UPLOAD_VALIDATION_TOTAL = Counter(
    "upload_validation_total",
    "Upload validation outcomes",
    ["bucket", "result"],  # accepted | rejected
)
DUPLICATE_SCAN_TOTAL = Counter(
    "duplicate_scan_total",
    "Duplicate scan runs",
    ["result"],  # completed | failed | cancelled | timeout
)
DUPLICATE_SCAN_DURATION = Histogram(
    "duplicate_scan_duration_seconds",
    "Duplicate scan wall time",
    buckets=(1.0, 5.0, 15.0, 60.0, 300.0, 900.0),
)
DUPLICATE_SCAN_SKIPPED_TOTAL = Counter(
    "duplicate_scan_skipped_total",
    "Buckets or objects skipped during a scan",
    ["kind"],  # bucket | object
)
DUPLICATE_DELETE_TOTAL = Counter(
    "duplicate_delete_total",
    "Duplicate deletion outcomes per object",
    ["result"],  # deleted | failed | refused
)

_SCAN_ID_RE = re.compile(r"^(/api/admin/storage/duplicates/(?:scans|files))/\d+")


def _status_class(status: int) -> str:
    if status < 200:
        return "1xx"
    if status < 300:
        return "2xx"
    if status < 400:
        return "3xx"
    if status < 500:
        return "4xx"
    return "5xx"


def record_request(method: str, path: str, status_code: int, latency_seconds: float) -> None:
    path = path or "/"
    # Normalize path to avoid high cardinality (e.g. /scans/12/cancel -> /scans/{id}/cancel)
    path = _SCAN_ID_RE.sub(r"\1/{id}", path)
    sc = _status_class(status_code)
    REQUEST_COUNT.labels(method=method, path=path, status_class=sc).inc()
    REQUEST_LATENCY.labels(method=method, path=path).observe(latency_seconds)


def record_upload_validation(bucket: str, accepted: bool) -> None:
    UPLOAD_VALIDATION_TOTAL.labels(bucket=bucket, result="accepted" if accepted else "rejected").inc()


def record_scan(result: str, duration_seconds: float | None = None) -> None:
    DUPLICATE_SCAN_TOTAL.labels(result=result).inc()
    if duration_seconds is not None:
        DUPLICATE_SCAN_DURATION.observe(duration_seconds)


def record_scan_skipped(kind: str) -> None:
    DUPLICATE_SCAN_SKIPPED_TOTAL.labels(kind=kind).inc()


def record_deletion(result: str, count: int = 1) -> None:
    if count:
        DUPLICATE_DELETE_TOTAL.labels(result=result).inc(count)


def get_metrics() -> tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST
