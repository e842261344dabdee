# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/secretsync/k8s/registry.py

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Iterator


@dataclass(frozen=True)
class ResourceKind:
    group: str
    version: str
    plural: str
    kind: str
    namespaced: bool

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version


class ResourceRegistry:
    """
    Read-only lookup of the resource kinds the certcontroller talks to.
    Built once at startup and handed to every gateway that needs it.
    """

    def __init__(self, kinds: Iterable[ResourceKind]):
        self._kinds = MappingProxyType({k.kind: k for k in kinds})

    def get(self, kind: str) -> ResourceKind:
        """Raises KeyError for kinds that were never registered."""
        return self._kinds[kind]

    def __contains__(self, kind: object) -> bool:
        return kind in self._kinds

    def __iter__(self) -> Iterator[ResourceKind]:
        return iter(self._kinds.values())

    def __len__(self) -> int:
        return len(self._kinds)


CUSTOM_RESOURCE_DEFINITION = ResourceKind(
    group="apiextensions.k8s.io",
    version="v1",
    plural="customresourcedefinitions",
    kind="CustomResourceDefinition",
    namespaced=False,
)
VALIDATING_WEBHOOK_CONFIGURATION = ResourceKind(
    group="admissionregistration.k8s.io",
    version="v1",
    plural="validatingwebhookconfigurations",
    kind="ValidatingWebhookConfiguration",
    namespaced=False,
)


def build_registry() -> ResourceRegistry:
    return ResourceRegistry(
        [
            CUSTOM_RESOURCE_DEFINITION,
            VALIDATING_WEBHOOK_CONFIGURATION,
        ]
    )
