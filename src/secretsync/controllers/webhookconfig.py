# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/secretsync/controllers/webhookconfig.py

from __future__ import annotations

import base64
import copy
import logging
import threading
from typing import Optional

from kubernetes import client

from secretsync.config.models import CertControllerConfig
from secretsync.controllers.leader import LeaderSignal
from secretsync.controllers.models import ReconcileResult, Request
from secretsync.controllers.readiness import ReadinessGate
from secretsync.errors import CANotReadyError, CertControllerError, NotFoundError, NotReadyError
from secretsync.k8s.registry import VALIDATING_WEBHOOK_CONFIGURATION
from secretsync.k8s.resources import EndpointsChecker, WebhookConfigClient
from secretsync.observers.dispatcher import EventBus
from secretsync.observers.events import (
    REASON_CA_NOT_READY,
    REASON_UPDATE_FAILED,
    CANotReady,
    ReconcileFailed,
    ResourceSkipped,
    ResourceUpdated,
    new_ctx,
)
from secretsync.store.certificates import CertificateStore

log = logging.getLogger("secretsync")

ERR_WEBHOOK_NOT_READY = "webhook not ready"
ERR_CA_CERT_NOT_READY = "ca cert not yet ready"

# fixed delay, the Secret is expected to be populated shortly
CA_NOT_READY_RETRY = 60.0


def inject(
    cfg: client.V1ValidatingWebhookConfiguration,
    svc_name: str,
    svc_namespace: str,
    ca_pem: bytes,
    domain_suffix: str,
) -> None:
    """Overwrite service reference and CA bundle of our own webhook entries."""
    ca_bundle = base64.b64encode(ca_pem).decode("ascii")
    for webhook in cfg.webhooks or []:
        if not webhook.name.endswith(domain_suffix):
            log.debug("[webhookconfig] skipping webhook %s in %s", webhook.name, cfg.metadata.name)
            continue
        if webhook.client_config is None:
            webhook.client_config = client.AdmissionregistrationV1WebhookClientConfig()
        cc = webhook.client_config
        if cc.service is None:
            cc.service = client.AdmissionregistrationV1ServiceReference(name=svc_name, namespace=svc_namespace)
        else:
            cc.service.name = svc_name
            cc.service.namespace = svc_namespace
        cc.ca_bundle = ca_bundle


class WebhookConfigReconciler:
    """
    Keeps the labelled ValidatingWebhookConfiguration trusting the current CA.

    Reconciled again every ``requeue_interval`` so a rotated CA reaches the
    configuration without any change to the object itself.
    """

    controller = "webhookconfig"

    def __init__(
        self,
        *,
        configs: WebhookConfigClient,
        store: CertificateStore,
        endpoints: EndpointsChecker,
        leader: LeaderSignal,
        bus: EventBus,
        config: CertControllerConfig,
        run_id: Optional[str] = None,
    ):
        self.configs = configs
        self.store = store
        self.endpoints = endpoints
        self.bus = bus
        self.config = config
        self.run_id = run_id
        self.gate = ReadinessGate(leader, what=ERR_WEBHOOK_NOT_READY)
        self._endpoints_lock = threading.Lock()
        self._endpoints_ready = False

    def _ctx(self) -> dict:
        return new_ctx(self.controller, self.run_id)

    def ready_check(self) -> None:
        """
        Also requires a ready endpoint behind the webhook service once we
        lead. Reads the state cached by refresh_endpoints, never the API.
        """
        self.gate.check()
        if not self.gate.leader_elected():
            return
        with self._endpoints_lock:
            endpoints_ready = self._endpoints_ready
        if not endpoints_ready:
            raise NotReadyError(
                f"service {self.config.service_namespace}/{self.config.service_name} has no ready endpoints"
            )

    def refresh_endpoints(self) -> bool:
        """Re-read the webhook service's Endpoints into the readiness cache."""
        svc, ns = self.config.service_name, self.config.service_namespace
        try:
            ready = self.endpoints.ready(svc, ns)
        except CertControllerError as exc:
            log.warning("[webhookconfig] could not read endpoints of %s/%s: %s", ns, svc, exc)
            ready = False
        with self._endpoints_lock:
            changed = ready != self._endpoints_ready
            self._endpoints_ready = ready
        if changed:
            log.info("[webhookconfig] endpoints of %s/%s ready: %s", ns, svc, ready)
        return ready

    def reconcile(self, request: Request) -> ReconcileResult:
        wanted = self.config.webhook_config_name
        if wanted and request.name != wanted:
            log.debug("[webhookconfig] ignoring %s, only %s is managed", request.name, wanted)
            return ReconcileResult()

        try:
            cfg = self.configs.get(request.name)
        except NotFoundError:
            return ReconcileResult()

        labels = cfg.metadata.labels or {}
        if labels.get(self.config.label_key) != self.config.label_value_webhook:
            log.info(
                "[webhookconfig] ignoring %s due to missing label %s=%s",
                request.name, self.config.label_key, self.config.label_value_webhook,
            )
            self.bus.emit(
                ResourceSkipped(
                    **self._ctx(),
                    kind=VALIDATING_WEBHOOK_CONFIGURATION.kind,
                    name=request.name,
                    reason="missing ownership label",
                )
            )
            return ReconcileResult()

        log.info("[webhookconfig] updating webhook config %s", request.name)
        try:
            self._update_config(cfg)
        except CANotReadyError as exc:
            log.warning("[webhookconfig] %s: %s, retrying in %ds", request.name, exc, CA_NOT_READY_RETRY)
            self.bus.emit(
                CANotReady(
                    **self._ctx(),
                    ref=self.configs.ref(cfg),
                    reason=REASON_CA_NOT_READY,
                    message=str(exc),
                )
            )
            return ReconcileResult(requeue_after=CA_NOT_READY_RETRY)
        except Exception as exc:
            log.error("[webhookconfig] could not update webhook config %s: %s", request.name, exc)
            self.bus.emit(
                ReconcileFailed(
                    **self._ctx(),
                    ref=self.configs.ref(cfg),
                    reason=REASON_UPDATE_FAILED,
                    message=str(exc),
                )
            )
            raise

        # only a single webhook config is managed
        self.gate.mark_ready()
        self.refresh_endpoints()
        return ReconcileResult()

    def _update_config(self, cfg: client.V1ValidatingWebhookConfiguration) -> None:
        before = copy.deepcopy(cfg)
        try:
            record = self.store.get(self.config.secret_name, self.config.secret_namespace)
        except NotFoundError as exc:
            raise CANotReadyError(ERR_CA_CERT_NOT_READY) from exc
        if not record.ca_cert:
            raise CANotReadyError(ERR_CA_CERT_NOT_READY)

        inject(
            cfg,
            self.config.service_name,
            self.config.service_namespace,
            record.ca_cert,
            self.config.domain_suffix,
        )

        if before != cfg:
            self.configs.update(cfg)
            self.bus.emit(
                ResourceUpdated(**self._ctx(), kind=VALIDATING_WEBHOOK_CONFIGURATION.kind, name=cfg.metadata.name)
            )
            return
        log.debug("[webhookconfig] webhook config %s unchanged", cfg.metadata.name)
