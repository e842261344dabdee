# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/secretsync/controllers/readiness.py

from __future__ import annotations

import threading

from secretsync.controllers.leader import LeaderSignal
from secretsync.errors import NotReadyError


class ReadinessGate:
    """
    Readiness state of one reconciler.

    Until this process is leader the gate always passes: a standby replica
    reconciles nothing and must not be pulled out of rotation for it. Once
    leadership is observed it is cached, and the gate passes only after the
    first successful reconcile.
    """

    def __init__(self, leader: LeaderSignal, *, what: str):
        self._leader = leader
        self._what = what
        self._leader_elected = False
        self._lock = threading.Lock()
        self._ready = False

    def mark_ready(self) -> None:
        with self._lock:
            self._ready = True

    @property
    def ready(self) -> bool:
        with self._lock:
            return self._ready

    def leader_elected(self) -> bool:
        if not self._leader_elected and self._leader.is_elected():
            self._leader_elected = True
        return self._leader_elected

    def check(self) -> None:
        if not self.leader_elected():
            return
        if not self.ready:
            raise NotReadyError(f"{self._what} not ready")
