# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/secretsync/controllers/crds.py

from __future__ import annotations

import base64
import copy
import logging
from datetime import datetime
from typing import Callable, Optional

from secretsync.config.models import CertControllerConfig
from secretsync.controllers.leader import LeaderSignal
from secretsync.controllers.models import ReconcileResult, Request
from secretsync.controllers.readiness import ReadinessGate
from secretsync.errors import NotFoundError
from secretsync.k8s.registry import CUSTOM_RESOURCE_DEFINITION
from secretsync.k8s.resources import CRDClient, ObjectRef
from secretsync.k8s.unstructured import get_nested, set_nested
from secretsync.observers.dispatcher import EventBus
from secretsync.observers.events import (
    REASON_UPDATE_FAILED,
    CertificatesRotated,
    CredentialsCurrent,
    ReconcileFailed,
    ResourceSkipped,
    ResourceUpdated,
    RestartRequested,
    new_ctx,
)
from secretsync.pki.engine import certificate_not_after, needs_refresh, refresh_credentials
from secretsync.store.certificates import CertificateStore

log = logging.getLogger("secretsync")

CLIENT_CONFIG_PATH = ("spec", "conversion", "webhook", "clientConfig")


def inject_service(crd: dict, name: str, namespace: str) -> None:
    """Point the conversion webhook at ``namespace/name``; raises ShapeError without a clientConfig."""
    get_nested(crd, *CLIENT_CONFIG_PATH)
    set_nested(crd, name, *CLIENT_CONFIG_PATH, "service", "name")
    set_nested(crd, namespace, *CLIENT_CONFIG_PATH, "service", "namespace")


def inject_ca_bundle(crd: dict, ca_pem: bytes) -> None:
    get_nested(crd, *CLIENT_CONFIG_PATH)
    set_nested(crd, base64.b64encode(ca_pem).decode("ascii"), *CLIENT_CONFIG_PATH, "caBundle")


class CRDReconciler:
    """
    Keeps the conversion webhook of the configured CRDs pointed at the
    webhook service and trusting the current CA, rotating the credential
    Secret first when it is about to expire.
    """

    controller = "crds"

    def __init__(
        self,
        *,
        crds: CRDClient,
        store: CertificateStore,
        leader: LeaderSignal,
        bus: EventBus,
        config: CertControllerConfig,
        run_id: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.crds = crds
        self.store = store
        self.bus = bus
        self.config = config
        self.run_id = run_id
        self._clock = clock
        self.gate = ReadinessGate(leader, what="CRD conversion webhook injection")

    def _ctx(self) -> dict:
        return new_ctx(self.controller, self.run_id)

    def _ref(self, name: str) -> ObjectRef:
        return ObjectRef(
            kind=CUSTOM_RESOURCE_DEFINITION.kind,
            name=name,
            api_version=CUSTOM_RESOURCE_DEFINITION.api_version,
        )

    def ready_check(self) -> None:
        self.gate.check()

    def reconcile(self, request: Request) -> ReconcileResult:
        if request.name not in self.config.crd_names:
            log.debug("[crds] ignoring CRD %s, not in the managed list", request.name)
            return ReconcileResult()

        try:
            return self._update_crd(request.name)
        except Exception as exc:
            log.error("[crds] failed to inject conversion webhook into %s: %s", request.name, exc)
            self.bus.emit(
                ReconcileFailed(
                    **self._ctx(),
                    ref=self._ref(request.name),
                    reason=REASON_UPDATE_FAILED,
                    message=str(exc),
                )
            )
            raise

    def _update_crd(self, name: str) -> ReconcileResult:
        cfg = self.config
        try:
            record = self.store.get(cfg.secret_name, cfg.secret_namespace)
        except NotFoundError:
            log.info(
                "[crds] secret %s/%s does not exist yet, skipping %s",
                cfg.secret_namespace, cfg.secret_name, name,
            )
            self.bus.emit(
                ResourceSkipped(
                    **self._ctx(),
                    kind=CUSTOM_RESOURCE_DEFINITION.kind,
                    name=name,
                    reason="credential secret not found",
                )
            )
            return ReconcileResult()

        try:
            original = self.crds.get(name)
        except NotFoundError:
            log.debug("[crds] CRD %s is gone", name)
            return ReconcileResult()

        crd = copy.deepcopy(original)
        inject_service(crd, cfg.service_name, cfg.service_namespace)

        now = self._clock() if self._clock else None
        plan = needs_refresh(
            record,
            cfg.lookahead_interval,
            ca_name=cfg.ca_name,
            dns_name=cfg.dns_name,
            now=now,
        )
        if plan.needed:
            record = refresh_credentials(
                record,
                plan,
                ca_name=cfg.ca_name,
                organization=cfg.ca_organization,
                dns_name=cfg.dns_name,
                validity=cfg.cert_validity,
                now=now,
            )
            record = self.store.put(record)
            self.bus.emit(
                CertificatesRotated(
                    **self._ctx(),
                    secret=f"{record.namespace}/{record.name}",
                    refresh_ca=plan.refresh_ca,
                    refresh_leaf=plan.refresh_leaf,
                )
            )
        self.bus.emit(
            CredentialsCurrent(
                **self._ctx(),
                secret=f"{record.namespace}/{record.name}",
                ca_not_after=certificate_not_after(record.ca_cert).isoformat(),
            )
        )
        if plan.needed and cfg.restart_on_refresh:
            self.bus.emit(RestartRequested(**self._ctx(), secret=f"{record.namespace}/{record.name}"))
            return ReconcileResult(restart_requested=True)

        inject_ca_bundle(crd, record.ca_cert)

        if crd != original:
            self.crds.update(crd)
            self.bus.emit(ResourceUpdated(**self._ctx(), kind=CUSTOM_RESOURCE_DEFINITION.kind, name=name))
        else:
            log.debug("[crds] CRD %s unchanged", name)

        self.gate.mark_ready()
        return ReconcileResult()
