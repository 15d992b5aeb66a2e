"""Prometheus metrics."""

from prometheus_client import Counter, Histogram

# Purchase metrics
purchase_attempts = Counter(
    "datamarket_purchase_attempts_total",
    "Total purchase attempts",
    ["outcome"],
)

# Ledger metrics
ledger_submit_duration = Histogram(
    "datamarket_ledger_submit_duration_seconds",
    "Time from ledger submission to confirmed receipt",
    ["method"],
)

ledger_errors = Counter(
    "datamarket_ledger_errors_total",
    "Ledger query and submission failures",
    ["error_code"],
)

# Retrieval metrics
retrievals = Counter(
    "datamarket_retrievals_total",
    "Measurement retrievals",
    ["variant", "outcome"],
)

# Storage service metrics
storage_auth_decisions = Counter(
    "datamarket_storage_auth_decisions_total",
    "Signed storage request decisions",
    ["decision", "reason"],
)
