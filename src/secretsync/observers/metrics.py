# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/secretsync/observers/metrics.py

from __future__ import annotations

from datetime import datetime

from secretsync.runtime.metrics import ControllerMetrics
from .events import (
    BaseEvent,
    CertificatesRotated,
    CredentialsCurrent,
    ResourceUpdated,
    WarningEvent,
)


class MetricsObserver:
    """Turns reconcile events into Prometheus series."""

    def __init__(self, metrics: ControllerMetrics):
        self.metrics = metrics

    def notify(self, event: BaseEvent) -> None:
        m = self.metrics
        if isinstance(event, CertificatesRotated):
            # a new CA always comes with a new serving cert
            if event.refresh_ca:
                m.rotations.labels(kind="ca").inc()
            m.rotations.labels(kind="serving").inc()
        elif isinstance(event, CredentialsCurrent):
            expires = datetime.fromisoformat(event.ca_not_after)
            m.ca_expiry.labels(secret=event.secret).set(expires.timestamp())
        elif isinstance(event, ResourceUpdated):
            m.resource_updates.labels(controller=event.controller, kind=event.kind).inc()
        elif isinstance(event, WarningEvent):
            m.warnings.labels(controller=event.controller, reason=event.reason).inc()
