"""Prometheus metrics shared by the quiz services.

Counters use the `_total` suffix and latency histograms are in seconds.
"""

from prometheus_client import Counter, Histogram

__all__ = [
    "submissions",
    "tx_retries",
    "side_effects",
    "side_effects_dropped",
    "cache_hits",
    "cache_misses",
    "record_latency",
]

submissions = Counter(
    "quiz_submissions_total",
    "Quiz submissions by quiz type and outcome",
    ["quiz_type", "outcome"],
)

tx_retries = Counter(
    "quiz_tx_retries_total",
    "Retried attempt transactions",
    ["reason"],
)

side_effects = Counter(
    "quiz_side_effects_total",
    "Completed side effects by name and outcome",
    ["effect", "outcome"],
)

side_effects_dropped = Counter(
    "quiz_side_effects_dropped_total",
    "Side effects dropped because the dispatch queue was full or stopped",
    ["effect"],
)

cache_hits = Counter("quiz_cache_hits_total", "TTL cache hits", ["cache"])

cache_misses = Counter("quiz_cache_misses_total", "TTL cache misses", ["cache"])

record_latency = Histogram(
    "quiz_record_attempt_seconds",
    "Latency of the attempt recording transaction (including retries)",
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 20),
)
