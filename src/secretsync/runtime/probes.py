# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/secretsync/runtime/probes.py

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Optional

import uvicorn
from fastapi import FastAPI, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, CollectorRegistry, generate_latest

log = logging.getLogger("secretsync")

Check = Callable[[], None]


def build_probe_app(checks: Dict[str, Check], registry: Optional[CollectorRegistry] = None) -> FastAPI:
    """
    /healthz answers as long as the process serves HTTP.
    /readyz runs every named check; a check fails by raising.
    /metrics exposes ``registry`` (the process default when None).
    """
    registry = registry if registry is not None else REGISTRY
    app = FastAPI(title="secretsync certcontroller probes", docs_url=None, redoc_url=None)

    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}

    @app.get("/readyz")
    def readyz():
        failures: Dict[str, str] = {}
        for name, check in checks.items():
            try:
                check()
            except Exception as exc:
                failures[name] = str(exc)
        if failures:
            log.debug("readiness failed: %s", failures)
            return JSONResponse(status_code=500, content={"status": "not ready", "checks": failures})
        return {"status": "ok", "checks": sorted(checks)}

    @app.get("/metrics")
    def metrics():
        return Response(generate_latest(registry), media_type=CONTENT_TYPE_LATEST)

    return app


class ProbeServer:
    """Serves the probe app with uvicorn on a background thread."""

    def __init__(
        self,
        checks: Dict[str, Check],
        *,
        host: str,
        port: int,
        registry: Optional[CollectorRegistry] = None,
    ):
        self.checks = dict(checks)
        self.registry = registry
        self.host = host
        self.port = port
        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None

    def add_check(self, name: str, check: Check) -> None:
        if self._server is not None:
            raise RuntimeError("probe server already started")
        self.checks[name] = check

    def start(self) -> None:
        app = build_probe_app(self.checks, self.registry)
        config = uvicorn.Config(app, host=self.host, port=self.port, log_level="warning", access_log=False)
        self._server = uvicorn.Server(config)
        self._thread = threading.Thread(target=self._server.run, name="probes", daemon=True)
        self._thread.start()
        log.info("serving /healthz, /readyz and /metrics on %s:%d", self.host, self.port)

    def stop(self, timeout: float = 5.0) -> None:
        if self._server is None:
            return
        self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout)
