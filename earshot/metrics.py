"""Prometheus metrics helpers."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

FLUSH_COUNTER = Counter(
    "earshot_flushes_total",
    "Buffers flushed for transcription",
    labelnames=("reason",),
)

BUFFER_OVERFLOW_COUNTER = Counter(
    "earshot_buffer_overflow_total",
    "Times the buffer was trimmed while a transcription was pending",
)

DISPATCH_ATTEMPT_COUNTER = Counter(
    "earshot_dispatch_attempts_total",
    "STT requests issued per format label",
    labelnames=("format", "status"),
)

DISPATCH_RESULT_COUNTER = Counter(
    "earshot_dispatch_results_total",
    "Dispatch outcomes after format fallback",
    labelnames=("status",),
)

DISPATCH_DURATION = Histogram(
    "earshot_dispatch_seconds",
    "Wall time spent dispatching one clip",
)
