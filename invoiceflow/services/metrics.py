"""
In-process counters behind GET /metrics.

Counts HTTP traffic, error types and routing/decision outcomes
(auto_approved, auto_approved_by_rule, pending_approval, approved,
rejected). Values reset on restart; nothing here is persisted.
"""
import threading
from collections import Counter, deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict

LATENCY_WINDOW = 1000


class WorkflowMetrics:
    def __init__(self):
        self._lock = threading.Lock()
        self.started_at = datetime.now(timezone.utc)
        self.endpoints: Counter = Counter()
        self.statuses: Counter = Counter()
        self.errors: Counter = Counter()
        self.decisions: Counter = Counter()
        self.latencies: Deque[float] = deque(maxlen=LATENCY_WINDOW)

    def request(self, method: str, path: str, status_code: int, duration_ms: float) -> None:
        with self._lock:
            self.endpoints[f"{method} {path}"] += 1
            self.statuses[f"{status_code // 100}xx"] += 1
            self.latencies.append(duration_ms)

    def error(self, error_type: str) -> None:
        with self._lock:
            self.errors[error_type] += 1

    def decision(self, outcome: str) -> None:
        with self._lock:
            self.decisions[outcome] += 1

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            latencies = sorted(self.latencies)
            endpoints = dict(self.endpoints)
            statuses = dict(self.statuses)
            errors = dict(self.errors)
            decisions = dict(self.decisions)

        p95 = latencies[int(len(latencies) * 0.95)] if len(latencies) >= 20 else 0
        average = sum(latencies) / len(latencies) if latencies else 0
        return {
            "uptime_seconds": int((datetime.now(timezone.utc) - self.started_at).total_seconds()),
            "requests": {
                "total": sum(endpoints.values()),
                "by_endpoint": endpoints,
                "by_status": statuses,
            },
            "errors": {"total": sum(errors.values()), "by_type": errors},
            "decisions": decisions,
            "performance": {
                "avg_response_time_ms": round(average, 2),
                "p95_response_time_ms": round(p95, 2),
            },
        }


_metrics = WorkflowMetrics()


def record_request(method: str, path: str, status_code: int, duration_ms: float):
    _metrics.request(method, path, status_code, duration_ms)


def record_error(error_type: str):
    _metrics.error(error_type)


def record_decision(outcome: str):
    _metrics.decision(outcome)


def get_metrics() -> Dict[str, Any]:
    return _metrics.snapshot()


def reset_metrics():
    """Start counting from zero (used by tests)."""
    global _metrics
    _metrics = WorkflowMetrics()
