import copy
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from secretsync.config.models import CertControllerConfig
from secretsync.controllers.leader import LeaderSignal
from secretsync.errors import NotFoundError
from secretsync.observers.dispatcher import EventBus
from secretsync.pki.engine import create_ca_cert, create_leaf_cert
from secretsync.pki.models import CredentialRecord

NOW = datetime(2026, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class Capture:
    def __init__(self): self.events = []
    def notify(self, ev): self.events.append(ev)

    def of(self, cls):
        return [e for e in self.events if isinstance(e, cls)]


class FakeStore:
    """In-memory CertificateStore; put() bumps the resource version."""

    def __init__(self, record=None, put_error=None):
        self.record = record
        self.put_error = put_error
        self.puts = []

    def get(self, name, namespace, *, timeout=None):
        if self.record is None:
            raise NotFoundError(f"secret {namespace}/{name} not found")
        return copy.deepcopy(self.record)

    def put(self, record, *, timeout=None):
        if self.put_error:
            raise self.put_error
        self.puts.append(record)
        self.record = replace(record, resource_version=str(int(record.resource_version or 0) + 1))
        return self.record


@pytest.fixture
def config():
    return CertControllerConfig()


@pytest.fixture
def capture():
    return Capture()


@pytest.fixture
def bus(capture):
    return EventBus([capture])


@pytest.fixture
def leader():
    return LeaderSignal()


@pytest.fixture(scope="session")
def current_record():
    """Credential record valid for ten years for the default config."""
    cfg = CertControllerConfig()
    ca = create_ca_cert(NOW - timedelta(hours=1), NOW + timedelta(days=3650), ca_name=cfg.ca_name)
    leaf = create_leaf_cert(ca, NOW - timedelta(hours=1), NOW + timedelta(days=3650), dns_name=cfg.dns_name)
    record = CredentialRecord(name=cfg.secret_name, namespace=cfg.secret_namespace, resource_version="1")
    return record.with_material(ca, leaf)


@pytest.fixture
def store(current_record):
    return FakeStore(copy.deepcopy(current_record))
