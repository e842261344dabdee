# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/secretsync/controllers/leader.py

from __future__ import annotations

import threading


class LeaderSignal:
    """One-shot flag set when this process becomes the active leader."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def elect(self) -> None:
        self._event.set()

    def is_elected(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)
