# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/secretsync/runtime/metrics.py

from __future__ import annotations

from typing import Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

RESULT_SUCCESS = "success"
RESULT_REQUEUE = "requeue"
RESULT_RESTART = "restart"
RESULT_ERROR = "error"
RESULT_PERMANENT_ERROR = "permanent_error"


class ControllerMetrics:
    """
    Prometheus series of the certcontroller. Bound to one registry so tests
    can use a private CollectorRegistry.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else REGISTRY

        self.reconcile_total = Counter(
            "secretsync_reconcile_total",
            "Reconciles by controller and outcome",
            ["controller", "result"],
            registry=self.registry,
        )
        self.reconcile_duration = Histogram(
            "secretsync_reconcile_duration_seconds",
            "Time spent in one reconcile",
            ["controller"],
            registry=self.registry,
        )
        self.resource_updates = Counter(
            "secretsync_resource_updates_total",
            "Trust consumers rewritten with the current CA",
            ["controller", "kind"],
            registry=self.registry,
        )
        self.warnings = Counter(
            "secretsync_warning_events_total",
            "Warning events by reason",
            ["controller", "reason"],
            registry=self.registry,
        )
        self.rotations = Counter(
            "secretsync_certificate_rotations_total",
            "Certificates regenerated, by kind (ca or serving)",
            ["kind"],
            registry=self.registry,
        )
        self.ca_expiry = Gauge(
            "secretsync_ca_expiry_timestamp_seconds",
            "notAfter of the CA in the credential Secret, as a unix timestamp",
            ["secret"],
            registry=self.registry,
        )

    def observe_reconcile(self, controller: str, result: str, seconds: float) -> None:
        self.reconcile_total.labels(controller=controller, result=result).inc()
        self.reconcile_duration.labels(controller=controller).observe(seconds)
