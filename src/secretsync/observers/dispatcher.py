# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/secretsync/observers/dispatcher.py
from __future__ import annotations
import logging
from typing import List, Optional, Protocol

from .events import BaseEvent

log = logging.getLogger("secretsync")


class Observer(Protocol):
    def notify(self, event: BaseEvent) -> None: ...


class EventBus:
    """Fans reconcile events out to observers (log lines, Kubernetes Events)."""

    def __init__(self, observers: Optional[List[Observer]] = None):
        self._observers = list(observers or [])

    def subscribe(self, observer: Observer) -> None:
        self._observers.append(observer)

    def emit(self, event: BaseEvent) -> None:
        for ob in self._observers:
            try:
                ob.notify(event)
            except Exception:
                # observers must not break reconciliation
                log.exception("observer %s failed on %s", type(ob).__name__, type(event).__name__)
