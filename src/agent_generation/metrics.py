from __future__ import annotations

from prometheus_client import Counter, Histogram

text_generation_requests_total = Counter(
    "text_generation_requests_total",
    "Total single-shot text generation calls",
    labelnames=["provider", "status"],
)

text_generation_latency_seconds = Histogram(
    "text_generation_latency_seconds",
    "Single-shot text generation latency (seconds)",
    buckets=[0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60, 120],
    labelnames=["provider"],
)

generation_attempts_total = Counter(
    "generation_attempts_total",
    "Attempts made by retrying generators",
    labelnames=["generator", "outcome"],
)

image_generation_requests_total = Counter(
    "image_generation_requests_total",
    "Total image generation calls",
    labelnames=["provider", "status"],
)
