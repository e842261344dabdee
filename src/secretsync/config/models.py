# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/secretsync/config/models.py

from __future__ import annotations

from datetime import timedelta
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from secretsync.logging.log import parse_level

DEFAULT_CRD_NAMES = [
    "externalsecrets.secretsync.io",
    "clustersecretstores.secretsync.io",
    "secretstores.secretsync.io",
]


class CertControllerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # webhook service the certificates are issued for
    service_name: str = "secretsync-webhook"
    service_namespace: str = "default"

    # Secret holding ca.crt / ca.key / tls.crt / tls.key
    secret_name: str = "secretsync-webhook"
    secret_namespace: str = "default"

    crd_names: List[str] = Field(default_factory=lambda: list(DEFAULT_CRD_NAMES))
    # None manages every labelled configuration
    webhook_config_name: Optional[str] = "secretsync-webhook"

    crd_requeue_interval: timedelta = timedelta(minutes=5)
    requeue_interval: timedelta = timedelta(minutes=5)
    endpoints_check_interval: timedelta = timedelta(seconds=10)
    lookahead_interval: timedelta = timedelta(days=90)
    cert_validity: timedelta = timedelta(days=10 * 365)
    restart_on_refresh: bool = False

    ca_name: str = "secretsync"
    ca_organization: str = "secretsync"

    domain_suffix: str = "secretsync.io"
    label_key: str = "secretsync.io/component"
    label_value_webhook: str = "webhook"
    label_value_controller: str = "controller"

    concurrent: int = Field(default=1, ge=1)
    healthz_host: str = "0.0.0.0"
    healthz_port: int = Field(default=8081, ge=1, le=65535)

    enable_leader_election: bool = False
    leader_election_id: str = "crd-certs-controller"
    leader_election_namespace: str = "default"
    enable_partial_cache: bool = False

    kubeconfig: Optional[str] = None
    kube_context: Optional[str] = None
    log_level: str = "info"

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, v: str) -> str:
        parse_level(v)
        return v.lower()

    @field_validator(
        "lookahead_interval", "cert_validity", "crd_requeue_interval", "requeue_interval", "endpoints_check_interval"
    )
    @classmethod
    def _positive(cls, v: timedelta) -> timedelta:
        if v <= timedelta(0):
            raise ValueError("must be positive")
        return v

    @property
    def dns_name(self) -> str:
        return f"{self.service_name}.{self.service_namespace}.svc"

    @property
    def webhook_labels(self) -> Dict[str, str]:
        return {self.label_key: self.label_value_webhook}

    @property
    def crd_labels(self) -> Dict[str, str]:
        return {self.label_key: self.label_value_controller}
