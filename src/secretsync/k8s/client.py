# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/secretsync/k8s/client.py

from __future__ import annotations

import contextlib
import logging
from typing import Iterator, Optional

import kopf
from kubernetes import client, config
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import HTTPError

from secretsync.errors import ConflictError, NotFoundError, TransientError

log = logging.getLogger("secretsync")


def load_api_client(
    kubeconfig: Optional[str] = None,
    kube_context: Optional[str] = None,
) -> client.ApiClient:
    """
    In-cluster config first (the normal deployment), kubeconfig otherwise.
    An explicit kubeconfig or context skips the in-cluster attempt.
    """
    if kubeconfig is None and kube_context is None:
        cfg = client.Configuration()
        try:
            config.load_incluster_config(client_configuration=cfg)
            log.debug("using in-cluster kubernetes config")
            return client.ApiClient(cfg)
        except config.ConfigException:
            log.debug("not running in-cluster, falling back to kubeconfig")

    return config.new_client_from_config(config_file=kubeconfig, context=kube_context)


def connection_info(api_client: client.ApiClient) -> kopf.ConnectionInfo:
    """Credentials of ``api_client`` in the form the operator framework logs in with."""
    cfg = api_client.configuration
    scheme = token = None
    header = cfg.get_api_key_with_prefix("authorization")
    if header:
        scheme, _, token = header.partition(" ")
        if not token:
            scheme, token = None, scheme
    return kopf.ConnectionInfo(
        server=cfg.host,
        ca_path=cfg.ssl_ca_cert,
        insecure=not cfg.verify_ssl,
        username=cfg.username or None,
        password=cfg.password or None,
        scheme=scheme,
        token=token,
        certificate_path=cfg.cert_file,
        private_key_path=cfg.key_file,
    )


def translate_api_error(exc: Exception, what: str) -> Exception:
    if isinstance(exc, ApiException):
        if exc.status == 404:
            return NotFoundError(f"{what} not found")
        if exc.status == 409:
            return ConflictError(f"{what} was modified concurrently: {exc.reason}")
        return TransientError(f"{what}: API error {exc.status} {exc.reason}")
    return TransientError(f"{what}: {exc}")


@contextlib.contextmanager
def api_errors(what: str) -> Iterator[None]:
    """Re-raise client failures as NotFoundError / ConflictError / TransientError."""
    try:
        yield
    except (ApiException, HTTPError) as exc:
        raise translate_api_error(exc, what) from exc


def request_kwargs(timeout: Optional[float]) -> dict:
    return {"_request_timeout": timeout} if timeout is not None else {}
