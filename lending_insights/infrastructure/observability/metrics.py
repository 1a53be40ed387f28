"""Prometheus metrics for query volume, latency and result sizes"""

from prometheus_client import Counter, Histogram

# Query metrics
query_execution_counter = Counter(
    "lending_query_executions_total",
    "Total analytical query executions",
    ["query", "outcome"],  # success | parameter_error | execution_error
)

query_duration_histogram = Histogram(
    "lending_query_duration_seconds",
    "Query execution time, store round-trip included",
    ["query"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

query_rows_histogram = Histogram(
    "lending_query_rows",
    "Rows returned per execution",
    ["query"],
    buckets=[0, 1, 10, 100, 1_000, 10_000, 100_000],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_query_execution(query_name: str, outcome: str, duration_seconds: float, row_count: int = 0) -> None:
    """Record execution metrics; sizes and latency only for successful runs"""
    query_execution_counter.labels(query=query_name, outcome=outcome).inc()

    if outcome == "success":
        query_duration_histogram.labels(query=query_name).observe(duration_seconds)
        query_rows_histogram.labels(query=query_name).observe(row_count)
