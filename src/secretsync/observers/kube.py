# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/secretsync/observers/kube.py

from __future__ import annotations

from secretsync.k8s.resources import KubeEventRecorder
from .events import BaseEvent, WarningEvent

EVENT_TYPE_WARNING = "Warning"


class KubeEventObserver:
    """Publishes warning events on the affected object's event stream."""

    def __init__(self, recorder: KubeEventRecorder):
        self.recorder = recorder

    def notify(self, event: BaseEvent) -> None:
        if not isinstance(event, WarningEvent):
            return
        self.recorder.record(event.ref, EVENT_TYPE_WARNING, event.reason, event.message)
