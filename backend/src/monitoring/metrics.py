"""In-memory request and domain counters for the /metrics endpoint."""
import time
from collections.abc import MutableMapping
from threading import Lock

_start_time = time.monotonic()
_counts: MutableMapping[str, int] = {}
_events: MutableMapping[str, int] = {}
_lock = Lock()


def _status_bucket(status_code: int) -> str:
    if 200 <= status_code < 300:
        return "2xx"
    if 400 <= status_code < 500:
        return "4xx"
    if status_code >= 500:
        return "5xx"
    return "other"


def record_request(status_code: int) -> None:
    bucket = _status_bucket(status_code)
    with _lock:
        _counts[bucket] = _counts.get(bucket, 0) + 1


def record_event(name: str) -> None:
    """Count a domain event, e.g. posts_created or scans_recorded."""
    with _lock:
        _events[name] = _events.get(name, 0) + 1


def get_metrics() -> dict:
    with _lock:
        counts = dict(_counts)
        events = dict(_events)
    uptime_seconds = time.monotonic() - _start_time
    return {
        "requests_total": sum(counts.values()),
        "requests_2xx": counts.get("2xx", 0),
        "requests_4xx": counts.get("4xx", 0),
        "requests_5xx": counts.get("5xx", 0),
        "posts_created": events.get("posts_created", 0),
        "scans_recorded": events.get("scans_recorded", 0),
        "uptime_seconds": round(uptime_seconds, 1),
    }
