import base64
import copy
from datetime import timedelta

import pytest

from secretsync.controllers.crds import CRDReconciler
from secretsync.controllers.models import ReconcileResult, Request
from secretsync.errors import ConflictError, NotFoundError, NotReadyError, ShapeError
from secretsync.observers.events import (
    CertificatesRotated,
    CredentialsCurrent,
    ReconcileFailed,
    ResourceSkipped,
    ResourceUpdated,
    RestartRequested,
)
from secretsync.pki.engine import validate_chain
from secretsync.pki.models import CredentialRecord

from conftest import NOW, FakeStore

CRD = "externalsecrets.secretsync.io"


def _crd(name=CRD, with_client_config=True):
    webhook = {"conversionReviewVersions": ["v1"]}
    if with_client_config:
        webhook["clientConfig"] = {"service": {"name": "old", "namespace": "old", "path": "/convert"}}
    return {
        "apiVersion": "apiextensions.k8s.io/v1",
        "kind": "CustomResourceDefinition",
        "metadata": {"name": name, "resourceVersion": "10"},
        "spec": {"group": "secretsync.io", "conversion": {"strategy": "Webhook", "webhook": webhook}},
    }


class FakeCRDs:
    def __init__(self, *crds):
        self.crds = {c["metadata"]["name"]: c for c in crds}
        self.updates = []

    def get(self, name):
        if name not in self.crds:
            raise NotFoundError(f"CustomResourceDefinition {name} not found")
        return copy.deepcopy(self.crds[name])

    def update(self, crd):
        self.updates.append(copy.deepcopy(crd))
        self.crds[crd["metadata"]["name"]] = copy.deepcopy(crd)
        return crd


def _reconciler(crds, store, leader, bus, config):
    return CRDReconciler(crds=crds, store=store, leader=leader, bus=bus, config=config, clock=lambda: NOW)


def _client_config(crd):
    return crd["spec"]["conversion"]["webhook"]["clientConfig"]


def test_injects_service_and_ca_bundle(store, leader, bus, capture, config, current_record):
    crds = FakeCRDs(_crd())
    result = _reconciler(crds, store, leader, bus, config).reconcile(Request(CRD))

    assert result == ReconcileResult()
    assert len(crds.updates) == 1
    cc = _client_config(crds.updates[0])
    assert cc["service"] == {"name": config.service_name, "namespace": config.service_namespace, "path": "/convert"}
    assert base64.b64decode(cc["caBundle"]) == current_record.ca_cert
    assert store.puts == []
    assert len(capture.of(ResourceUpdated)) == 1


def test_second_pass_writes_nothing(store, leader, bus, config):
    crds = FakeCRDs(_crd())
    r = _reconciler(crds, store, leader, bus, config)
    r.reconcile(Request(CRD))
    r.reconcile(Request(CRD))
    assert len(crds.updates) == 1
    assert store.puts == []


def test_unmanaged_crd_is_ignored(store, leader, bus, config):
    crds = FakeCRDs(_crd("widgets.example.com"))
    result = _reconciler(crds, store, leader, bus, config).reconcile(Request("widgets.example.com"))
    assert result == ReconcileResult()
    assert crds.updates == []


def test_missing_secret_is_skipped(leader, bus, capture, config):
    crds = FakeCRDs(_crd())
    result = _reconciler(crds, FakeStore(), leader, bus, config).reconcile(Request(CRD))
    assert result == ReconcileResult()
    assert crds.updates == []
    assert capture.of(ResourceSkipped)[0].name == CRD


def test_missing_crd_is_noop(store, leader, bus, config):
    result = _reconciler(FakeCRDs(), store, leader, bus, config).reconcile(Request(CRD))
    assert result == ReconcileResult()


def test_crd_without_client_config_is_shape_error(store, leader, bus, capture, config):
    crds = FakeCRDs(_crd(with_client_config=False))
    with pytest.raises(ShapeError):
        _reconciler(crds, store, leader, bus, config).reconcile(Request(CRD))
    assert crds.updates == []
    failed = capture.of(ReconcileFailed)
    assert failed and failed[0].ref.name == CRD
    assert failed[0].reason == "UpdateFailed"


def test_empty_secret_is_populated_then_injected(leader, bus, capture, config):
    store = FakeStore(CredentialRecord(name=config.secret_name, namespace=config.secret_namespace, resource_version="4"))
    crds = FakeCRDs(_crd())
    _reconciler(crds, store, leader, bus, config).reconcile(Request(CRD))

    assert len(store.puts) == 1
    written = store.puts[0]
    assert written.resource_version == "4"
    assert validate_chain(written.ca_cert, written.tls_cert, written.tls_key, config.dns_name, NOW)
    assert base64.b64decode(_client_config(crds.updates[0])["caBundle"]) == written.ca_cert
    rotated = capture.of(CertificatesRotated)[0]
    assert rotated.refresh_ca


def test_restart_on_refresh_returns_signal(leader, bus, capture, config):
    cfg = config.model_copy(update={"restart_on_refresh": True})
    store = FakeStore(CredentialRecord(name=cfg.secret_name, namespace=cfg.secret_namespace, resource_version="4"))
    crds = FakeCRDs(_crd())
    result = _reconciler(crds, store, leader, bus, cfg).reconcile(Request(CRD))

    assert result.restart_requested
    assert len(store.puts) == 1
    assert crds.updates == []
    assert capture.of(RestartRequested)


def test_conflict_on_secret_write_propagates(leader, bus, capture, config):
    store = FakeStore(
        CredentialRecord(name=config.secret_name, namespace=config.secret_namespace, resource_version="4"),
        put_error=ConflictError("secret was modified concurrently"),
    )
    crds = FakeCRDs(_crd())
    with pytest.raises(ConflictError):
        _reconciler(crds, store, leader, bus, config).reconcile(Request(CRD))
    assert crds.updates == []
    assert capture.of(ReconcileFailed)


def test_readiness_follows_leadership_and_first_success(store, leader, bus, config):
    r = _reconciler(FakeCRDs(_crd()), store, leader, bus, config)
    r.ready_check()

    leader.elect()
    with pytest.raises(NotReadyError):
        r.ready_check()

    r.reconcile(Request(CRD))
    r.ready_check()


def test_current_ca_expiry_is_published(store, leader, bus, capture, config, current_record):
    _reconciler(FakeCRDs(_crd()), store, leader, bus, config).reconcile(Request(CRD))
    current = capture.of(CredentialsCurrent)
    assert len(current) == 1
    assert current[0].secret == f"{config.secret_namespace}/{config.secret_name}"
    assert current[0].ca_not_after == (NOW + timedelta(days=3650)).isoformat()
