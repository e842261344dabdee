# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/secretsync/pki/models.py

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, Optional

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import rsa

# Secret data keys
CA_CERT_KEY = "ca.crt"
CA_KEY_KEY = "ca.key"
TLS_CERT_KEY = "tls.crt"
TLS_KEY_KEY = "tls.key"


@dataclass(frozen=True)
class CertificateAuthority:
    cert: x509.Certificate
    key: rsa.RSAPrivateKey
    cert_pem: bytes
    key_pem: bytes


@dataclass(frozen=True)
class LeafCertificate:
    cert_pem: bytes
    key_pem: bytes


@dataclass(frozen=True)
class RefreshPlan:
    refresh_ca: bool = False
    refresh_leaf: bool = False

    @property
    def needed(self) -> bool:
        return self.refresh_ca or self.refresh_leaf


@dataclass
class CredentialRecord:
    """
    CA and leaf PEM material as persisted in the webhook Secret.

    ``resource_version`` is the optimistic-concurrency token of the Secret the
    record was read from; None means the Secret does not exist yet.
    """
    name: str
    namespace: str
    ca_cert: Optional[bytes] = None
    ca_key: Optional[bytes] = None
    tls_cert: Optional[bytes] = None
    tls_key: Optional[bytes] = None
    resource_version: Optional[str] = None
    labels: Dict[str, str] = field(default_factory=dict)

    def with_material(self, ca: CertificateAuthority, leaf: LeafCertificate) -> "CredentialRecord":
        return replace(
            self,
            ca_cert=ca.cert_pem,
            ca_key=ca.key_pem,
            tls_cert=leaf.cert_pem,
            tls_key=leaf.key_pem,
        )

    def to_data(self) -> Dict[str, bytes]:
        data = {
            CA_CERT_KEY: self.ca_cert,
            CA_KEY_KEY: self.ca_key,
            TLS_CERT_KEY: self.tls_cert,
            TLS_KEY_KEY: self.tls_key,
        }
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_data(
        cls,
        name: str,
        namespace: str,
        data: Dict[str, bytes],
        *,
        resource_version: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> "CredentialRecord":
        return cls(
            name=name,
            namespace=namespace,
            ca_cert=data.get(CA_CERT_KEY),
            ca_key=data.get(CA_KEY_KEY),
            tls_cert=data.get(TLS_CERT_KEY),
            tls_key=data.get(TLS_KEY_KEY),
            resource_version=resource_version,
            labels=dict(labels or {}),
        )
