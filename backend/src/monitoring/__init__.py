from src.monitoring.metrics import get_metrics, record_event, record_request

__all__ = ["get_metrics", "record_event", "record_request"]
