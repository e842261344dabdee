from datetime import datetime, timezone

import pytest
from prometheus_client import CollectorRegistry

from secretsync.k8s.resources import ObjectRef
from secretsync.observers.dispatcher import EventBus
from secretsync.observers.events import (
    CANotReady,
    CertificatesRotated,
    CredentialsCurrent,
    ResourceUpdated,
    new_ctx,
)
from secretsync.observers.metrics import MetricsObserver
from secretsync.runtime.metrics import ControllerMetrics

REF = ObjectRef(kind="ValidatingWebhookConfiguration", name="vwc", api_version="admissionregistration.k8s.io/v1")


@pytest.fixture
def registry():
    return CollectorRegistry()


@pytest.fixture
def metrics_bus(registry):
    return EventBus([MetricsObserver(ControllerMetrics(registry))])


def test_rotations_are_counted_by_kind(registry, metrics_bus):
    metrics_bus.emit(CertificatesRotated(**new_ctx("crds"), secret="default/s", refresh_ca=True, refresh_leaf=False))
    metrics_bus.emit(CertificatesRotated(**new_ctx("crds"), secret="default/s", refresh_ca=False, refresh_leaf=True))

    assert registry.get_sample_value("secretsync_certificate_rotations_total", {"kind": "ca"}) == 1.0
    assert registry.get_sample_value("secretsync_certificate_rotations_total", {"kind": "serving"}) == 2.0


def test_ca_expiry_gauge(registry, metrics_bus):
    metrics_bus.emit(
        CredentialsCurrent(**new_ctx("crds"), secret="default/s", ca_not_after="2036-05-29T12:00:00+00:00")
    )
    expected = datetime(2036, 5, 29, 12, tzinfo=timezone.utc).timestamp()
    assert registry.get_sample_value("secretsync_ca_expiry_timestamp_seconds", {"secret": "default/s"}) == expected


def test_updates_and_warnings(registry, metrics_bus):
    metrics_bus.emit(ResourceUpdated(**new_ctx("crds"), kind="CustomResourceDefinition", name="x"))
    metrics_bus.emit(CANotReady(**new_ctx("webhookconfig"), ref=REF, reason="CACertNotReady", message="m"))

    assert registry.get_sample_value(
        "secretsync_resource_updates_total", {"controller": "crds", "kind": "CustomResourceDefinition"}
    ) == 1.0
    assert registry.get_sample_value(
        "secretsync_warning_events_total", {"controller": "webhookconfig", "reason": "CACertNotReady"}
    ) == 1.0
