"""In-process counters rendered in Prometheus text format."""

from __future__ import annotations

from collections import defaultdict
from threading import Lock
import time
from typing import Dict, Iterable, Tuple


_lock = Lock()
_started_at = time.time()

_http_requests_total: Dict[Tuple[str, str, str], int] = defaultdict(int)
_http_request_duration_sum: Dict[Tuple[str, str], float] = defaultdict(float)
_http_request_duration_count: Dict[Tuple[str, str], int] = defaultdict(int)
_rate_limit_block_total: Dict[str, int] = defaultdict(int)
_approval_transitions_total: Dict[str, int] = defaultdict(int)
_publish_outcomes_total: Dict[str, int] = defaultdict(int)
_stripe_events_total: Dict[Tuple[str, str], int] = defaultdict(int)


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _normalize_label(value: str, *, fallback: str = "unknown") -> str:
    normalized = (value or "").strip()
    return normalized or fallback


def record_http_request(*, method: str, path: str, status_code: int, duration_seconds: float) -> None:
    key = (method.upper(), path or "unknown", str(status_code))
    with _lock:
        _http_requests_total[key] += 1
        _http_request_duration_sum[key[:2]] += max(duration_seconds, 0.0)
        _http_request_duration_count[key[:2]] += 1


def record_rate_limit_block(*, action: str) -> None:
    with _lock:
        _rate_limit_block_total[_normalize_label(action)] += 1


def record_approval_transition(*, action: str) -> None:
    with _lock:
        _approval_transitions_total[_normalize_label(action)] += 1


def record_publish_outcome(*, status: str) -> None:
    with _lock:
        _publish_outcomes_total[_normalize_label(status)] += 1


def record_stripe_event(*, event_type: str, status: str) -> None:
    with _lock:
        _stripe_events_total[(_normalize_label(event_type), _normalize_label(status))] += 1


def _counter_block(
    name: str,
    help_text: str,
    label_names: Tuple[str, ...],
    values: Dict,
    *,
    metric_type: str = "counter",
) -> Iterable[str]:
    yield f"# HELP {name} {help_text}"
    yield f"# TYPE {name} {metric_type}"
    for key, value in sorted(values.items()):
        labels = key if isinstance(key, tuple) else (key,)
        rendered = ",".join(
            f'{label}="{_escape_label(str(item))}"' for label, item in zip(label_names, labels)
        )
        if isinstance(value, float):
            yield f"{name}{{{rendered}}} {value:.6f}"
        else:
            yield f"{name}{{{rendered}}} {value}"


def render_prometheus_metrics(*, app_name: str, app_version: str, env: str) -> str:
    uptime = max(time.time() - _started_at, 0.0)

    with _lock:
        http_total = dict(_http_requests_total)
        duration_sum = dict(_http_request_duration_sum)
        duration_count = dict(_http_request_duration_count)
        rate_limit_total = dict(_rate_limit_block_total)
        transitions_total = dict(_approval_transitions_total)
        publish_total = dict(_publish_outcomes_total)
        stripe_total = dict(_stripe_events_total)

    lines = [
        "# HELP woozy_build_info Build metadata.",
        "# TYPE woozy_build_info gauge",
        (
            f'woozy_build_info{{app_name="{_escape_label(app_name)}",'
            f'version="{_escape_label(app_version)}",env="{_escape_label(env)}"}} 1'
        ),
        "# HELP woozy_process_uptime_seconds Process uptime in seconds.",
        "# TYPE woozy_process_uptime_seconds gauge",
        f"woozy_process_uptime_seconds {uptime:.6f}",
    ]
    lines.extend(
        _counter_block(
            "woozy_http_requests_total",
            "Total HTTP requests.",
            ("method", "path", "status"),
            http_total,
        )
    )
    lines.extend(
        _counter_block(
            "woozy_http_request_duration_seconds_sum",
            "Request duration sum.",
            ("method", "path"),
            duration_sum,
            metric_type="gauge",
        )
    )
    lines.extend(
        _counter_block(
            "woozy_http_request_duration_seconds_count",
            "Request duration sample count.",
            ("method", "path"),
            duration_count,
        )
    )
    lines.extend(
        _counter_block(
            "woozy_rate_limit_block_total",
            "Requests blocked by rate limiting.",
            ("action",),
            rate_limit_total,
        )
    )
    lines.extend(
        _counter_block(
            "woozy_approval_transitions_total",
            "Applied approval workflow transitions.",
            ("action",),
            transitions_total,
        )
    )
    lines.extend(
        _counter_block(
            "woozy_publish_outcomes_total",
            "Publish attempts by resulting post status.",
            ("status",),
            publish_total,
        )
    )
    lines.extend(
        _counter_block(
            "woozy_stripe_events_total",
            "Stripe webhook events by type and ledger status.",
            ("event_type", "status"),
            stripe_total,
        )
    )
    lines.append("")
    return "\n".join(lines)


def reset_metrics_for_tests() -> None:
    global _started_at
    with _lock:
        _http_requests_total.clear()
        _http_request_duration_sum.clear()
        _http_request_duration_count.clear()
        _rate_limit_block_total.clear()
        _approval_transitions_total.clear()
        _publish_outcomes_total.clear()
        _stripe_events_total.clear()
    _started_at = time.time()
