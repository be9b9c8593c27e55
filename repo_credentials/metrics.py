"""Prometheus metrics for repo-credentials."""

from prometheus_client.core import Counter

credential_lookups = Counter(
    name="repo_credentials_lookups_total",
    documentation="Number of credential lookups by outcome",
    labelnames=["credential_type", "result"],
)

token_cache = Counter(
    name="repo_credentials_token_cache_total",
    documentation="Token cache lookups by provider and result (hit/miss)",
    labelnames=["provider", "result"],
)

token_exchanges = Counter(
    name="repo_credentials_token_exchanges_total",
    documentation="Number of upstream identity exchanges performed by providers",
    labelnames=["provider"],
)
