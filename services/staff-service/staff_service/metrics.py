"""Prometheus instruments for the staff provisioning pipeline."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

PROVISIONING_REQUESTS = Counter(
    "staff_provisioning_requests_total",
    "Staff provisioning requests by outcome.",
    ["outcome"],
)

UPSTREAM_LATENCY = Histogram(
    "staff_provisioning_upstream_seconds",
    "Latency of calls to the identity provider and tenant datastore.",
    ["operation"],
)
