# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/secretsync/k8s/unstructured.py

from __future__ import annotations

from typing import Any, Sequence

from secretsync.errors import ShapeError


class PathMissingError(ShapeError):
    def __init__(self, path: Sequence[str]):
        self.path = tuple(path)
        super().__init__(f"`{'.'.join(self.path)}` field not found")


def get_nested(obj: dict, *path: str) -> Any:
    """Return the value at ``path``; raises PathMissingError when absent."""
    cur: Any = obj
    for idx, key in enumerate(path):
        if not isinstance(cur, dict) or key not in cur or cur[key] is None:
            raise PathMissingError(path[: idx + 1])
        cur = cur[key]
    return cur


def has_nested(obj: dict, *path: str) -> bool:
    try:
        get_nested(obj, *path)
    except PathMissingError:
        return False
    return True


def set_nested(obj: dict, value: Any, *path: str) -> None:
    """
    Set ``value`` at ``path``, creating intermediate maps.
    A non-map value in the way raises ShapeError.
    """
    if not path:
        raise ValueError("empty path")
    cur = obj
    for idx, key in enumerate(path[:-1]):
        nxt = cur.get(key)
        if nxt is None:
            nxt = {}
            cur[key] = nxt
        elif not isinstance(nxt, dict):
            raise ShapeError(f"`{'.'.join(path[: idx + 1])}` is not a map")
        cur = nxt
    cur[path[-1]] = value
