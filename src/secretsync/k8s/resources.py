# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/secretsync/k8s/resources.py

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from kubernetes import client

from secretsync.errors import NotFoundError
from secretsync.k8s.client import api_errors, request_kwargs
from secretsync.k8s.registry import ResourceRegistry

log = logging.getLogger("secretsync")

DEFAULT_EVENT_NAMESPACE = "default"


@dataclass(frozen=True)
class ObjectRef:
    """Pointer to the object an event is recorded against."""
    kind: str
    name: str
    api_version: str
    namespace: Optional[str] = None
    uid: Optional[str] = None
    resource_version: Optional[str] = None


class CRDClient:
    """
    CustomResourceDefinitions as plain dicts.

    The conversion-webhook section is edited by path, so the object is read
    and written through the generic custom-objects endpoint rather than the
    typed apiextensions models.
    """

    def __init__(self, api_client: client.ApiClient, registry: ResourceRegistry, *, timeout: Optional[float] = None):
        self._api = client.CustomObjectsApi(api_client)
        self._kind = registry.get("CustomResourceDefinition")
        self.timeout = timeout

    def get(self, name: str) -> dict:
        with api_errors(f"CustomResourceDefinition {name}"):
            return self._api.get_cluster_custom_object(
                self._kind.group,
                self._kind.version,
                self._kind.plural,
                name,
                **request_kwargs(self.timeout),
            )

    def update(self, crd: dict) -> dict:
        """Replace ``crd``; metadata.resourceVersion makes the write version-checked."""
        name = crd["metadata"]["name"]
        with api_errors(f"CustomResourceDefinition {name}"):
            return self._api.replace_cluster_custom_object(
                self._kind.group,
                self._kind.version,
                self._kind.plural,
                name,
                crd,
                **request_kwargs(self.timeout),
            )

    def ref(self, crd: dict) -> ObjectRef:
        meta = crd.get("metadata") or {}
        return ObjectRef(
            kind=self._kind.kind,
            name=meta.get("name", ""),
            api_version=self._kind.api_version,
            uid=meta.get("uid"),
            resource_version=meta.get("resourceVersion"),
        )


class WebhookConfigClient:
    """ValidatingWebhookConfigurations as typed kubernetes models."""

    def __init__(self, api_client: client.ApiClient, registry: ResourceRegistry, *, timeout: Optional[float] = None):
        self._api = client.AdmissionregistrationV1Api(api_client)
        self._kind = registry.get("ValidatingWebhookConfiguration")
        self.timeout = timeout

    def get(self, name: str) -> client.V1ValidatingWebhookConfiguration:
        with api_errors(f"ValidatingWebhookConfiguration {name}"):
            return self._api.read_validating_webhook_configuration(name, **request_kwargs(self.timeout))

    def update(self, cfg: client.V1ValidatingWebhookConfiguration) -> client.V1ValidatingWebhookConfiguration:
        name = cfg.metadata.name
        with api_errors(f"ValidatingWebhookConfiguration {name}"):
            return self._api.replace_validating_webhook_configuration(
                name, cfg, **request_kwargs(self.timeout)
            )

    def ref(self, cfg: client.V1ValidatingWebhookConfiguration) -> ObjectRef:
        return ObjectRef(
            kind=self._kind.kind,
            name=cfg.metadata.name,
            api_version=self._kind.api_version,
            uid=cfg.metadata.uid,
            resource_version=cfg.metadata.resource_version,
        )


class EndpointsChecker:
    def __init__(self, api_client: client.ApiClient, *, timeout: Optional[float] = None):
        self._api = client.CoreV1Api(api_client)
        self.timeout = timeout

    def ready(self, name: str, namespace: str) -> bool:
        """True when at least one subset of the service's Endpoints has a ready address."""
        try:
            with api_errors(f"Endpoints {namespace}/{name}"):
                eps = self._api.read_namespaced_endpoints(name, namespace, **request_kwargs(self.timeout))
        except NotFoundError:
            return False
        return any(subset.addresses for subset in (eps.subsets or []))


class KubeEventRecorder:
    """Creates core/v1 Events against the object a reconcile acted on."""

    def __init__(self, api_client: client.ApiClient, *, component: str, timeout: Optional[float] = None):
        self._api = client.CoreV1Api(api_client)
        self.component = component
        self.timeout = timeout

    def record(self, ref: ObjectRef, event_type: str, reason: str, message: str) -> None:
        namespace = ref.namespace or DEFAULT_EVENT_NAMESPACE
        now = datetime.now(timezone.utc)
        body = client.CoreV1Event(
            metadata=client.V1ObjectMeta(
                name=f"{ref.name}.{uuid.uuid4().hex[:16]}",
                namespace=namespace,
            ),
            involved_object=client.V1ObjectReference(
                api_version=ref.api_version,
                kind=ref.kind,
                name=ref.name,
                namespace=ref.namespace,
                uid=ref.uid,
                resource_version=ref.resource_version,
            ),
            reason=reason,
            message=message,
            type=event_type,
            source=client.V1EventSource(component=self.component),
            first_timestamp=now,
            last_timestamp=now,
            count=1,
        )
        with api_errors(f"Event for {ref.kind} {ref.name}"):
            self._api.create_namespaced_event(namespace, body, **request_kwargs(self.timeout))
