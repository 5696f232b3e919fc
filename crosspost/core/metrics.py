"""In-process metrics collector with Prometheus text exposition."""

from __future__ import annotations

from collections import defaultdict
from threading import Lock
import time
from typing import Dict, Iterable, Tuple


_lock = Lock()
_started_at = time.time()

_http_requests_total: Dict[Tuple[str, str, str], int] = defaultdict(int)
_http_request_duration_sum: Dict[Tuple[str, str], float] = defaultdict(float)
_dispatch_total: Dict[Tuple[str, str], int] = defaultdict(int)
_posts_finalized_total: Dict[str, int] = defaultdict(int)
_credits_moved_total: Dict[str, int] = defaultdict(int)
_scheduler_runs_total: Dict[str, int] = defaultdict(int)


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _normalize_label(value: str, *, fallback: str = "unknown") -> str:
    normalized = (value or "").strip()
    return normalized or fallback


def record_http_request(*, method: str, path: str, status_code: int, duration_seconds: float) -> None:
    with _lock:
        _http_requests_total[(method.upper(), path or "unknown", str(status_code))] += 1
        _http_request_duration_sum[(method.upper(), path or "unknown")] += max(duration_seconds, 0.0)


def record_dispatch(*, platform: str, success: bool) -> None:
    outcome = "success" if success else "failed"
    with _lock:
        _dispatch_total[(_normalize_label(platform), outcome)] += 1


def record_post_finalized(*, status: str) -> None:
    with _lock:
        _posts_finalized_total[_normalize_label(status)] += 1


def record_credits(*, kind: str, amount: int) -> None:
    if amount <= 0:
        return
    with _lock:
        _credits_moved_total[_normalize_label(kind)] += int(amount)


def record_scheduler_run(*, outcome: str) -> None:
    with _lock:
        _scheduler_runs_total[_normalize_label(outcome)] += 1


def _counter_block(name: str, help_text: str, label_names: Iterable[str], values: dict) -> list[str]:
    lines = [f"# HELP {name} {help_text}", f"# TYPE {name} counter"]
    names = list(label_names)
    for key, value in sorted(values.items()):
        parts = key if isinstance(key, tuple) else (key,)
        labels = ",".join(f'{label}="{_escape_label(part)}"' for label, part in zip(names, parts))
        lines.append(f"{name}{{{labels}}} {value}")
    return lines


def render_prometheus_metrics(*, app_name: str, app_version: str, env: str) -> str:
    uptime = max(time.time() - _started_at, 0.0)

    with _lock:
        http_total = dict(_http_requests_total)
        duration_sum = dict(_http_request_duration_sum)
        dispatch_total = dict(_dispatch_total)
        posts_total = dict(_posts_finalized_total)
        credits_total = dict(_credits_moved_total)
        scheduler_total = dict(_scheduler_runs_total)

    lines = [
        "# HELP crosspost_build_info Build metadata.",
        "# TYPE crosspost_build_info gauge",
        (
            f'crosspost_build_info{{app_name="{_escape_label(app_name)}",'
            f'version="{_escape_label(app_version)}",env="{_escape_label(env)}"}} 1'
        ),
        "# HELP crosspost_process_uptime_seconds Process uptime in seconds.",
        "# TYPE crosspost_process_uptime_seconds gauge",
        f"crosspost_process_uptime_seconds {uptime:.6f}",
    ]
    lines.extend(
        _counter_block(
            "crosspost_http_requests_total", "Total HTTP requests.", ("method", "path", "status"), http_total
        )
    )
    lines.append("# HELP crosspost_http_request_duration_seconds_sum Cumulative request duration.")
    lines.append("# TYPE crosspost_http_request_duration_seconds_sum counter")
    for (method, path), value in sorted(duration_sum.items()):
        lines.append(
            f'crosspost_http_request_duration_seconds_sum{{method="{_escape_label(method)}",'
            f'path="{_escape_label(path)}"}} {value:.6f}'
        )
    lines.extend(
        _counter_block(
            "crosspost_dispatch_total", "Platform dispatch attempts.", ("platform", "outcome"), dispatch_total
        )
    )
    lines.extend(
        _counter_block("crosspost_posts_finalized_total", "Posts reaching a final status.", ("status",), posts_total)
    )
    lines.extend(
        _counter_block("crosspost_credits_moved_total", "Credits moved by ledger kind.", ("kind",), credits_total)
    )
    lines.extend(
        _counter_block("crosspost_scheduler_runs_total", "Scheduler runs by outcome.", ("outcome",), scheduler_total)
    )
    lines.append("")
    return "\n".join(lines)


def reset_metrics_for_tests() -> None:
    global _started_at
    with _lock:
        _http_requests_total.clear()
        _http_request_duration_sum.clear()
        _dispatch_total.clear()
        _posts_finalized_total.clear()
        _credits_moved_total.clear()
        _scheduler_runs_total.clear()
    _started_at = time.time()
