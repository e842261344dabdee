import threading

import kopf
import pytest
from prometheus_client import CollectorRegistry

from secretsync.controllers.leader import LeaderSignal
from secretsync.controllers.models import ReconcileResult, Request
from secretsync.errors import CANotReadyError, ShapeError, TransientError
from secretsync.k8s.registry import CUSTOM_RESOURCE_DEFINITION
from secretsync.runtime.manager import (
    BACKOFF_MAX,
    EXIT_FAILURE,
    EXIT_OK,
    Binding,
    Manager,
    retry_delay,
)
from secretsync.runtime.metrics import ControllerMetrics
from secretsync.runtime.probes import ProbeServer

CRD = "externalsecrets.secretsync.io"


class FakeReconciler:
    controller = "crds"

    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or [])
        self.requests = []

    def reconcile(self, request):
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if self.outcomes else ReconcileResult()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def ready_check(self):
        pass


def _manager(reconciler, **kw):
    return Manager(
        bindings=[Binding(reconciler, CUSTOM_RESOURCE_DEFINITION, interval=300)],
        leader=LeaderSignal(),
        **kw,
    )


def _count(registry, result):
    return registry.get_sample_value("secretsync_reconcile_total", {"controller": "crds", "result": result})


def test_retry_delay_doubles_up_to_cap():
    assert retry_delay(0) == 0.005
    assert retry_delay(1) == 0.01
    assert retry_delay(3) == 0.04
    assert retry_delay(40) == BACKOFF_MAX
    assert retry_delay(10_000) == BACKOFF_MAX


def test_success_is_counted():
    registry = CollectorRegistry()
    r = FakeReconciler()
    m = _manager(r, metrics=ControllerMetrics(registry))

    assert m.handle("crds", CRD) == ReconcileResult()
    assert r.requests == [Request(CRD)]
    assert _count(registry, "success") == 1.0


def test_permanent_error_stops_retries():
    registry = CollectorRegistry()
    r = FakeReconciler([ShapeError("`spec.conversion` field not found")])
    m = _manager(r, metrics=ControllerMetrics(registry))
    with pytest.raises(kopf.PermanentError):
        m.handle("crds", CRD)
    assert _count(registry, "permanent_error") == 1.0


def test_retryable_error_backs_off_per_attempt():
    m = _manager(FakeReconciler([TransientError("boom"), TransientError("boom")]))
    with pytest.raises(kopf.TemporaryError) as first:
        m.handle("crds", CRD, retry=0)
    with pytest.raises(kopf.TemporaryError) as third:
        m.handle("crds", CRD, retry=2)
    assert first.value.delay == 0.005
    assert third.value.delay == 0.02


def test_ca_not_ready_is_retried():
    m = _manager(FakeReconciler([CANotReadyError("ca cert not yet ready")]))
    with pytest.raises(kopf.TemporaryError):
        m.handle("crds", CRD)


def test_unexpected_error_is_retried_not_raised():
    m = _manager(FakeReconciler([KeyError("object")]))
    with pytest.raises(kopf.TemporaryError) as err:
        m.handle("crds", CRD, retry=1)
    assert err.value.delay == 0.01
    assert not m.stopped


def test_requested_requeue_becomes_delayed_retry():
    registry = CollectorRegistry()
    m = _manager(FakeReconciler([ReconcileResult(requeue_after=60)]), metrics=ControllerMetrics(registry))
    with pytest.raises(kopf.TemporaryError) as err:
        m.handle("crds", CRD)
    assert err.value.delay == 60
    assert _count(registry, "requeue") == 1.0


def test_restart_request_stops_manager():
    m = _manager(FakeReconciler([ReconcileResult(restart_requested=True)]))
    m.handle("crds", CRD)
    assert m.restart_requested
    assert m.stopped


def test_same_object_shares_one_lock():
    m = _manager(FakeReconciler())
    assert m._object_lock("crds", CRD) is m._object_lock("crds", CRD)
    assert m._object_lock("crds", CRD) is not m._object_lock("crds", "other")


def test_controller_bound_twice_is_rejected():
    r = FakeReconciler()
    with pytest.raises(ValueError):
        Manager(
            bindings=[
                Binding(r, CUSTOM_RESOURCE_DEFINITION, interval=300),
                Binding(r, CUSTOM_RESOURCE_DEFINITION, interval=60),
            ],
            leader=LeaderSignal(),
        )


def test_handlers_land_in_own_registry():
    m = _manager(FakeReconciler())
    assert isinstance(m.registry, kopf.OperatorRegistry)


def test_readiness_checks_are_registered():
    probes = ProbeServer({}, host="127.0.0.1", port=0)
    r = FakeReconciler()
    _manager(r, probes=probes)
    assert probes.checks == {"crds": r.ready_check}


def test_lost_leadership_exits_nonzero():
    m = _manager(FakeReconciler())
    m._on_stopped_leading()
    assert m.stopped
    assert m.exit_code == EXIT_FAILURE


def test_run_reconciles_and_exits_on_restart():
    operator_stopped = threading.Event()

    def runner(stop_flag):
        m.handle("crds", CRD)
        stop_flag.wait(5)
        operator_stopped.set()

    reconciler = FakeReconciler([ReconcileResult(restart_requested=True)])
    m = _manager(reconciler, runner=runner)
    code = m.run()

    assert code == EXIT_OK
    assert m.leader.is_elected()
    assert m.restart_requested
    assert operator_stopped.is_set()
    assert reconciler.requests == [Request(CRD)]


def test_operator_crash_exits_nonzero():
    def runner(stop_flag):
        raise RuntimeError("login failed")

    m = _manager(FakeReconciler(), runner=runner)
    assert m.run() == EXIT_FAILURE
    assert m.stopped


def test_operator_returning_early_exits_nonzero():
    m = _manager(FakeReconciler(), runner=lambda stop_flag: None)
    assert m.run() == EXIT_FAILURE
