# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/secretsync/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import ClassVar, Dict, Any, Optional
from datetime import datetime, timezone
import logging
import uuid

from secretsync.k8s.resources import ObjectRef

# Kubernetes event reasons
REASON_UPDATE_FAILED = "UpdateFailed"
REASON_CA_NOT_READY = "CACertNotReady"


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events of one controller process
    controller: str   # "crds" | "webhookconfig"

    log_level: ClassVar[int] = logging.INFO

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_ctx(controller: str, run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        "run_id": run_id or str(uuid.uuid4()),
        "controller": controller,
    }


# ---------------------------------------------------------------------
# Credential lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class CertificatesRotated(BaseEvent):
    secret: str
    refresh_ca: bool
    refresh_leaf: bool

@dataclass(frozen=True)
class RestartRequested(BaseEvent):
    secret: str

@dataclass(frozen=True)
class CredentialsCurrent(BaseEvent):
    secret: str
    ca_not_after: str  # ISO timestamp

    log_level: ClassVar[int] = logging.DEBUG


# ---------------------------------------------------------------------
# Trust consumers
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class ResourceUpdated(BaseEvent):
    kind: str
    name: str

@dataclass(frozen=True)
class ResourceSkipped(BaseEvent):
    kind: str
    name: str
    reason: str


# ---------------------------------------------------------------------
# Warnings (also recorded as Kubernetes Events)
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class WarningEvent(BaseEvent):
    ref: ObjectRef
    reason: str
    message: str

    log_level: ClassVar[int] = logging.WARNING

@dataclass(frozen=True)
class ReconcileFailed(WarningEvent):
    pass

@dataclass(frozen=True)
class CANotReady(WarningEvent):
    pass
