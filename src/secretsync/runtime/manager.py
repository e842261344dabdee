# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/secretsync/runtime/manager.py

from __future__ import annotations

import asyncio
import logging
import socket
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, Sequence, Tuple

import kopf
from kubernetes import client
from kubernetes.leaderelection import electionconfig, leaderelection
from kubernetes.leaderelection.resourcelock.configmaplock import ConfigMapLock

from secretsync.controllers.leader import LeaderSignal
from secretsync.controllers.models import ReconcileResult, Request
from secretsync.errors import CertControllerError, PermanentError
from secretsync.k8s.registry import ResourceKind
from secretsync.runtime.metrics import (
    RESULT_ERROR,
    RESULT_PERMANENT_ERROR,
    RESULT_REQUEUE,
    RESULT_RESTART,
    RESULT_SUCCESS,
    ControllerMetrics,
)
from secretsync.runtime.probes import ProbeServer

log = logging.getLogger("secretsync")

EXIT_OK = 0
EXIT_FAILURE = 1

# lease timings as used by controller-runtime
LEASE_DURATION = 15
RENEW_DEADLINE = 10
RETRY_PERIOD = 2

# per-object backoff after a failed reconcile: 5ms * 2^retry, capped
BACKOFF_BASE = 0.005
BACKOFF_MAX = 1000.0

ANNOTATION_PREFIX = "secretsync.io"

Elector = Callable[[Callable[[], None], Callable[[], None]], None]
Runner = Callable[[threading.Event], None]


class Reconciler(Protocol):
    controller: str

    def reconcile(self, request: Request) -> ReconcileResult:
        ...

    def ready_check(self) -> None:
        ...


@dataclass(frozen=True)
class Binding:
    """
    reconciler: handles every object of ``kind``
    interval: seconds between periodic reconciles of each object
    labels: only objects carrying these labels are handled (partial cache)
    """
    reconciler: Reconciler
    kind: ResourceKind
    interval: float
    labels: Optional[Dict[str, str]] = None


@dataclass(frozen=True)
class Poll:
    """Side task run every ``interval`` seconds for each object of ``kind``."""
    name: str
    kind: ResourceKind
    interval: float
    fn: Callable[[], Any]
    labels: Optional[Dict[str, str]] = None


def retry_delay(retry: int, base: float = BACKOFF_BASE, cap: float = BACKOFF_MAX) -> float:
    # 2**32 * base is far past any sensible cap
    return min(base * 2 ** min(retry, 32), cap)


def kube_leader_election(
    api_client: client.ApiClient,
    *,
    lock_name: str,
    namespace: str,
    identity: Optional[str] = None,
) -> Elector:
    """ConfigMap-lock leader election; the returned callable blocks while campaigning and leading."""
    identity = identity or f"{socket.gethostname()}_{uuid.uuid4().hex[:8]}"

    def run(on_started: Callable[[], None], on_stopped: Callable[[], None]) -> None:
        # the lock builds its own CoreV1Api from the default configuration
        client.Configuration.set_default(api_client.configuration)
        lock = ConfigMapLock(lock_name, namespace, identity)
        cfg = electionconfig.Config(
            lock,
            LEASE_DURATION,
            RENEW_DEADLINE,
            RETRY_PERIOD,
            on_started,
            on_stopped,
        )
        log.info("campaigning for leadership of %s/%s as %s", namespace, lock_name, identity)
        leaderelection.LeaderElection(cfg).run()

    return run


class Manager:
    """
    Runs the reconcilers as kopf handlers.

    Every bound kind gets resume/create/update handlers plus a timer for the
    periodic reconcile. kopf owns watching, per-object scheduling and
    retries; handle() translates reconcile outcomes into kopf's errors.
    The operator starts only once this process is leader.
    """

    def __init__(
        self,
        *,
        bindings: Sequence[Binding],
        leader: LeaderSignal,
        polls: Sequence[Poll] = (),
        workers: int = 1,
        probes: Optional[ProbeServer] = None,
        elector: Optional[Elector] = None,
        metrics: Optional[ControllerMetrics] = None,
        login: Optional[Callable[[], kopf.ConnectionInfo]] = None,
        runner: Optional[Runner] = None,
    ):
        self.bindings: Dict[str, Binding] = {}
        for b in bindings:
            if b.reconciler.controller in self.bindings:
                raise ValueError(f"controller {b.reconciler.controller} bound twice")
            self.bindings[b.reconciler.controller] = b
        self.polls = list(polls)
        self.leader = leader
        self.workers = workers
        self.probes = probes
        self.elector = elector
        self.metrics = metrics
        self.login = login
        self.runner: Runner = runner or self._run_kopf

        self.registry = kopf.OperatorRegistry()
        self._register()

        self._stop = threading.Event()
        self._operator_stop = threading.Event()
        self._operator: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._object_locks: Dict[Tuple[str, str], threading.Lock] = {}
        self.restart_requested = False
        self.exit_code = EXIT_OK

        if self.probes is not None:
            for b in bindings:
                self.probes.add_check(b.reconciler.controller, b.reconciler.ready_check)

    # ------------------------------------------------------------------
    # kopf handlers
    # ------------------------------------------------------------------
    def _register(self) -> None:
        @kopf.on.startup(registry=self.registry)
        def configure(settings: kopf.OperatorSettings, **_: Any) -> None:
            settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix=ANNOTATION_PREFIX)
            settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(
                prefix=ANNOTATION_PREFIX,
                key="last-handled-configuration",
            )
            # warnings are recorded as Kubernetes Events by the reconcilers
            settings.posting.level = logging.ERROR
            settings.execution.max_workers = self.workers

        if self.login is not None:
            login = self.login

            @kopf.on.login(registry=self.registry)
            def authenticate(**_: Any) -> kopf.ConnectionInfo:
                return login()

        for b in self.bindings.values():
            self._register_binding(b)
        for poll in self.polls:
            self._register_poll(poll)

    def _register_binding(self, b: Binding) -> None:
        kind, controller = b.kind, b.reconciler.controller
        resource = (kind.group, kind.version, kind.plural)

        @kopf.on.resume(*resource, id=controller, labels=b.labels, registry=self.registry)
        @kopf.on.create(*resource, id=controller, labels=b.labels, registry=self.registry)
        @kopf.on.update(*resource, id=controller, labels=b.labels, registry=self.registry)
        def reconcile_on_change(name: str, retry: int, **_: Any) -> None:
            self.handle(controller, name, retry)

        @kopf.timer(
            *resource,
            id=f"{controller}-periodic",
            interval=b.interval,
            labels=b.labels,
            registry=self.registry,
        )
        def reconcile_periodically(name: str, retry: int, **_: Any) -> None:
            self.handle(controller, name, retry)

    def _register_poll(self, poll: Poll) -> None:
        kind = poll.kind

        @kopf.timer(
            kind.group,
            kind.version,
            kind.plural,
            id=poll.name,
            interval=poll.interval,
            labels=poll.labels,
            registry=self.registry,
        )
        def run_poll(**_: Any) -> None:
            poll.fn()

    def _object_lock(self, controller: str, name: str) -> threading.Lock:
        with self._lock:
            return self._object_locks.setdefault((controller, name), threading.Lock())

    def _observe(self, controller: str, result: str, started: float) -> None:
        if self.metrics is not None:
            self.metrics.observe_reconcile(controller, result, time.monotonic() - started)

    def handle(self, controller: str, name: str, retry: int = 0) -> ReconcileResult:
        """
        Reconcile one object. Change handlers and timers of the same object
        never run it concurrently. PermanentError stops kopf's retries, any
        other failure and an early requeue become kopf.TemporaryError.
        """
        reconciler = self.bindings[controller].reconciler
        started = time.monotonic()
        with self._object_lock(controller, name):
            try:
                result = reconciler.reconcile(Request(name=name))
            except PermanentError as exc:
                self._observe(controller, RESULT_PERMANENT_ERROR, started)
                log.error("[%s] %s: not retrying: %s", controller, name, exc)
                raise kopf.PermanentError(str(exc)) from exc
            except CertControllerError as exc:
                delay = retry_delay(retry)
                self._observe(controller, RESULT_ERROR, started)
                log.warning("[%s] %s: %s, retrying in %.3fs", controller, name, exc, delay)
                raise kopf.TemporaryError(str(exc), delay=delay) from exc
            except Exception as exc:
                delay = retry_delay(retry)
                self._observe(controller, RESULT_ERROR, started)
                log.exception("[%s] %s: unexpected error, retrying in %.3fs", controller, name, delay)
                raise kopf.TemporaryError(f"unexpected error: {exc}", delay=delay) from exc

        if result.restart_requested:
            self._observe(controller, RESULT_RESTART, started)
            log.info("[%s] %s: credentials rotated, restarting", controller, name)
            self.request_restart()
            return result
        if result.requeue_after:
            self._observe(controller, RESULT_REQUEUE, started)
            raise kopf.TemporaryError(
                f"requeue in {result.requeue_after:.0f}s requested", delay=result.requeue_after
            )
        self._observe(controller, RESULT_SUCCESS, started)
        return result

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    def _run_kopf(self, stop_flag: threading.Event) -> None:
        # cluster-scoped kinds only; leadership is settled before this runs
        asyncio.run(
            kopf.operator(
                registry=self.registry,
                clusterwide=True,
                standalone=True,
                stop_flag=stop_flag,
            )
        )

    def _operate(self) -> None:
        try:
            self.runner(self._operator_stop)
        except Exception:
            log.exception("operator failed")
            self.exit_code = EXIT_FAILURE
        else:
            if not self._stop.is_set():
                log.error("operator exited unexpectedly")
                self.exit_code = EXIT_FAILURE
        finally:
            self.stop()

    def start_controllers(self) -> None:
        with self._lock:
            if self._operator is not None or self._stop.is_set():
                return
            self._operator = threading.Thread(target=self._operate, name="operator", daemon=True)
        self._operator.start()
        log.info("started operator for %s", ", ".join(self.bindings))

    def _on_started_leading(self) -> None:
        log.info("elected leader")
        self.leader.elect()
        self.start_controllers()

    def _on_stopped_leading(self) -> None:
        if self._stop.is_set():
            return
        log.error("leader election lost")
        self.exit_code = EXIT_FAILURE
        self.stop()

    def start(self) -> None:
        if self.probes is not None:
            self.probes.start()
        if self.elector is None:
            self._on_started_leading()
            return
        t = threading.Thread(
            target=self.elector,
            args=(self._on_started_leading, self._on_stopped_leading),
            name="leader-election",
            daemon=True,
        )
        t.start()

    def request_restart(self) -> None:
        self.restart_requested = True
        self.stop()

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def shutdown(self, timeout: float = 10.0) -> None:
        self._operator_stop.set()
        if self._operator is not None and self._operator is not threading.current_thread():
            self._operator.join(timeout)
        if self.probes is not None:
            self.probes.stop()

    def run(self) -> int:
        """Start everything and block until stopped; returns the process exit code."""
        self.start()
        while not self._stop.wait(1.0):
            pass
        self.shutdown()
        log.info("manager stopped (restart_requested=%s)", self.restart_requested)
        return self.exit_code
