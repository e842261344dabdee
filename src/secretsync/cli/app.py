# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/secretsync/cli/app.py
from __future__ import annotations

import signal
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import typer
from kubernetes import client as kube_client

from secretsync.config.loader import load_config
from secretsync.config.models import CertControllerConfig
from secretsync.controllers.crds import CRDReconciler
from secretsync.controllers.leader import LeaderSignal
from secretsync.controllers.webhookconfig import WebhookConfigReconciler
from secretsync.errors import CertControllerError
from secretsync.k8s.client import connection_info, load_api_client
from secretsync.k8s.registry import build_registry
from secretsync.k8s.resources import CRDClient, EndpointsChecker, KubeEventRecorder, WebhookConfigClient
from secretsync.logging.log import init_logging
from secretsync.observers.dispatcher import EventBus
from secretsync.observers.kube import KubeEventObserver
from secretsync.observers.logger import LoggerObserver
from secretsync.observers.metrics import MetricsObserver
from secretsync.pki.certinfo import CertInfo, check_certs, wait_for_certs
from secretsync.runtime.manager import Binding, Manager, Poll, kube_leader_election
from secretsync.runtime.metrics import ControllerMetrics
from secretsync.runtime.probes import ProbeServer
from secretsync.store.certificates import CertificateStore
from secretsync.utils.retry import RetryError


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="secretsync webhook certificate controller")

COMPONENT = "secretsync-certcontroller"
API_TIMEOUT = 30.0


# ------------------------------------------------------------------------------
# Wiring
# ------------------------------------------------------------------------------

def build_manager(cfg: CertControllerConfig, *, logger, run_id: str) -> Manager:
    """
    Assemble API gateways, event bus, reconcilers, metrics, probes and
    leader election into a Manager. Raises on unusable kubernetes
    configuration.
    """
    api_client = load_api_client(cfg.kubeconfig, cfg.kube_context)
    registry = build_registry()
    metrics = ControllerMetrics()

    store = CertificateStore(kube_client.CoreV1Api(api_client), timeout=API_TIMEOUT)
    crds = CRDClient(api_client, registry, timeout=API_TIMEOUT)
    configs = WebhookConfigClient(api_client, registry, timeout=API_TIMEOUT)
    endpoints = EndpointsChecker(api_client, timeout=API_TIMEOUT)

    bus = EventBus(
        observers=[
            LoggerObserver(logger),
            MetricsObserver(metrics),
            KubeEventObserver(KubeEventRecorder(api_client, component=COMPONENT, timeout=API_TIMEOUT)),
        ]
    )

    leader = LeaderSignal()
    crd_reconciler = CRDReconciler(
        crds=crds, store=store, leader=leader, bus=bus, config=cfg, run_id=run_id,
    )
    webhook_reconciler = WebhookConfigReconciler(
        configs=configs, store=store, endpoints=endpoints, leader=leader, bus=bus, config=cfg, run_id=run_id,
    )

    # partial cache: only labelled objects are handled at all
    crd_labels = cfg.crd_labels if cfg.enable_partial_cache else None
    webhook_labels = cfg.webhook_labels if cfg.enable_partial_cache else None
    webhook_kind = registry.get("ValidatingWebhookConfiguration")

    elector = None
    if cfg.enable_leader_election:
        elector = kube_leader_election(
            api_client,
            lock_name=cfg.leader_election_id,
            namespace=cfg.leader_election_namespace,
        )

    return Manager(
        bindings=[
            Binding(
                crd_reconciler,
                registry.get("CustomResourceDefinition"),
                interval=cfg.crd_requeue_interval.total_seconds(),
                labels=crd_labels,
            ),
            Binding(
                webhook_reconciler,
                webhook_kind,
                interval=cfg.requeue_interval.total_seconds(),
                labels=webhook_labels,
            ),
        ],
        polls=[
            Poll(
                "webhookconfig-endpoints",
                webhook_kind,
                interval=cfg.endpoints_check_interval.total_seconds(),
                fn=webhook_reconciler.refresh_endpoints,
                labels=webhook_labels,
            ),
        ],
        leader=leader,
        workers=cfg.concurrent,
        probes=ProbeServer({}, host=cfg.healthz_host, port=cfg.healthz_port, registry=metrics.registry),
        elector=elector,
        metrics=metrics,
        login=lambda: connection_info(api_client),
    )


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def certcontroller(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Controller config YAML"),
    service_name: Optional[str] = typer.Option(None, "--service-name"),
    service_namespace: Optional[str] = typer.Option(None, "--service-namespace"),
    secret_name: Optional[str] = typer.Option(None, "--secret-name"),
    secret_namespace: Optional[str] = typer.Option(None, "--secret-namespace"),
    crd_names: Optional[str] = typer.Option(None, "--crd-names", help="Comma separated CRD names"),
    webhook_config_name: Optional[str] = typer.Option(None, "--webhook-config-name"),
    crd_requeue_interval: Optional[float] = typer.Option(None, "--crd-requeue-interval", help="Seconds"),
    requeue_interval: Optional[float] = typer.Option(None, "--requeue-interval", help="Seconds"),
    lookahead_interval: Optional[float] = typer.Option(None, "--lookahead-interval", help="Seconds"),
    restart_on_refresh: Optional[bool] = typer.Option(None, "--restart-on-refresh/--no-restart-on-refresh"),
    concurrent: Optional[int] = typer.Option(None, "--concurrent"),
    healthz_port: Optional[int] = typer.Option(None, "--healthz-port"),
    enable_leader_election: Optional[bool] = typer.Option(
        None, "--enable-leader-election/--disable-leader-election"
    ),
    enable_partial_cache: Optional[bool] = typer.Option(
        None, "--enable-partial-cache/--disable-partial-cache"
    ),
    kubeconfig: Optional[str] = typer.Option(None, "--kubeconfig"),
    context: Optional[str] = typer.Option(None, "--context"),
    log_level: Optional[str] = typer.Option(None, "--log-level"),
    log_dir: Optional[Path] = typer.Option(None, "--log-dir"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Run the certificate controller until stopped."""
    overrides = {
        "service_name": service_name,
        "service_namespace": service_namespace,
        "secret_name": secret_name,
        "secret_namespace": secret_namespace,
        "crd_names": [n.strip() for n in crd_names.split(",") if n.strip()] if crd_names else None,
        "webhook_config_name": webhook_config_name,
        "crd_requeue_interval": crd_requeue_interval,
        "requeue_interval": requeue_interval,
        "lookahead_interval": lookahead_interval,
        "restart_on_refresh": restart_on_refresh,
        "concurrent": concurrent,
        "healthz_port": healthz_port,
        "enable_leader_election": enable_leader_election,
        "enable_partial_cache": enable_partial_cache,
        "kubeconfig": kubeconfig,
        "kube_context": context,
        "log_level": log_level,
    }

    try:
        cfg = load_config(config, overrides)
    except (FileNotFoundError, ValueError) as exc:
        typer.secho(f"invalid configuration: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    logger, run_id, _ = init_logging(log_dir=log_dir, level=cfg.log_level, verbose=debug)
    logger.info(
        "managing secret %s/%s for %s, CRDs: %s",
        cfg.secret_namespace, cfg.secret_name, cfg.dns_name, ", ".join(cfg.crd_names),
    )

    try:
        manager = build_manager(cfg, logger=logger, run_id=run_id)
    except Exception as exc:
        logger.error("unable to start certcontroller: %s", exc)
        raise typer.Exit(code=1)

    def _stop(signum, _frame):
        logger.info("received %s, shutting down", signal.Signals(signum).name)
        manager.stop()

    signal.signal(signal.SIGTERM, _stop)
    signal.signal(signal.SIGINT, _stop)

    raise typer.Exit(code=manager.run())


@app.command("check-certs")
def check_certs_cmd(
    cert_dir: Path = typer.Option(..., "--cert-dir", help="Directory holding ca.crt, tls.crt and tls.key"),
    dns_name: str = typer.Option(..., "--dns-name", help="Name the serving certificate must cover"),
    lookahead: float = typer.Option(0.0, "--lookahead", help="Seconds the chain must stay valid for"),
    wait: bool = typer.Option(False, "--wait", help="Retry until the certs are valid"),
    retries: int = typer.Option(12, "--retries"),
    delay: float = typer.Option(10.0, "--delay", help="Seconds between retries"),
):
    """Validate certificate files written from the credential Secret."""
    init_logging(level="info")
    info = CertInfo(cert_dir)

    try:
        if wait:
            wait_for_certs(info, dns_name, retries=retries, delay=delay)
        else:
            check_certs(info, dns_name, datetime.now(timezone.utc) + timedelta(seconds=lookahead))
    except (CertControllerError, RetryError) as exc:
        typer.secho(f"certificates in {cert_dir} are not valid: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    typer.secho(f"certificates in {cert_dir} are valid for {dns_name}", fg=typer.colors.GREEN)


if __name__ == "__main__":
    app()
