# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/secretsync/store/certificates.py

from __future__ import annotations

import base64
import logging
from dataclasses import replace
from typing import Dict, Optional

from kubernetes import client

from secretsync.k8s.client import api_errors, request_kwargs
from secretsync.pki.models import CredentialRecord

log = logging.getLogger("secretsync")


def _decode(data: Optional[Dict[str, str]]) -> Dict[str, bytes]:
    return {k: base64.b64decode(v) for k, v in (data or {}).items() if v is not None}


def _encode(data: Dict[str, bytes]) -> Dict[str, str]:
    return {k: base64.b64encode(v).decode("ascii") for k, v in data.items()}


class CertificateStore:
    """
    Reads and writes the webhook credential Secret.

    There is deliberately no cache: every get() is a live API read so a
    reconcile never propagates material that another writer already rotated.
    Writes carry the resourceVersion they were read at and fail with
    ConflictError when the Secret changed underneath.
    """

    def __init__(self, core_api: client.CoreV1Api, *, timeout: Optional[float] = None):
        self._api = core_api
        self.timeout = timeout

    def _timeout(self, timeout: Optional[float]) -> Optional[float]:
        return timeout if timeout is not None else self.timeout

    def get(self, name: str, namespace: str, *, timeout: Optional[float] = None) -> CredentialRecord:
        """Raises NotFoundError when the Secret does not exist, TransientError on API failure."""
        with api_errors(f"secret {namespace}/{name}"):
            secret = self._api.read_namespaced_secret(
                name, namespace, **request_kwargs(self._timeout(timeout))
            )
        meta = secret.metadata
        return CredentialRecord.from_data(
            name,
            namespace,
            _decode(secret.data),
            resource_version=meta.resource_version if meta else None,
            labels=(meta.labels if meta else None),
        )

    def put(self, record: CredentialRecord, *, timeout: Optional[float] = None) -> CredentialRecord:
        """
        Patch the four credential keys of an existing Secret, with the
        resourceVersion it was read at as precondition. Keys and metadata
        written by others are left alone. The Secret itself is provisioned
        with the deployment, so a record that was never read is rejected.
        """
        what = f"secret {record.namespace}/{record.name}"
        if record.resource_version is None:
            raise ValueError(f"{what} has no resourceVersion, read it before writing")

        patch = {
            "metadata": {"resourceVersion": record.resource_version},
            "data": _encode(record.to_data()),
        }
        with api_errors(what):
            updated = self._api.patch_namespaced_secret(
                record.name, record.namespace, patch, **request_kwargs(self._timeout(timeout))
            )
        log.info("updated %s", what)
        return self._with_version(record, updated)

    @staticmethod
    def _with_version(record: CredentialRecord, secret: client.V1Secret) -> CredentialRecord:
        version = secret.metadata.resource_version if secret is not None and secret.metadata else None
        return replace(record, resource_version=version)
