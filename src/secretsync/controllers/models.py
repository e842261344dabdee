# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/secretsync/controllers/models.py

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Request:
    """Names the object a reconcile runs for."""
    name: str
    namespace: Optional[str] = None

    def key(self) -> str:
        return f"{self.namespace}/{self.name}" if self.namespace else self.name


@dataclass(frozen=True)
class ReconcileResult:
    """
    requeue_after: seconds until the object should be reconciled again,
                   ahead of its periodic timer
    restart_requested: credentials were rotated and the process should exit
                       so a fresh instance starts with the new material
    """
    requeue_after: Optional[float] = None
    restart_requested: bool = False
