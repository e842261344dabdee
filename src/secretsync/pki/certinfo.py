# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/secretsync/pki/certinfo.py

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

from secretsync.errors import FormatError
from secretsync.pki.engine import CertificateVerificationError, verify_chain
from secretsync.pki.models import CA_CERT_KEY, TLS_CERT_KEY, TLS_KEY_KEY
from secretsync.utils.retry import retry

log = logging.getLogger("secretsync")


@dataclass(frozen=True)
class CertInfo:
    """Location of the serving certificate files mounted from the Secret."""
    cert_dir: Path
    cert_name: str = TLS_CERT_KEY
    key_name: str = TLS_KEY_KEY
    ca_name: str = CA_CERT_KEY

    @property
    def cert_path(self) -> Path:
        return Path(self.cert_dir) / self.cert_name

    @property
    def key_path(self) -> Path:
        return Path(self.cert_dir) / self.key_name

    @property
    def ca_path(self) -> Path:
        return Path(self.cert_dir) / self.ca_name


def _read(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        raise FormatError(f"unable to read {path}: {exc}") from exc


def check_certs(info: CertInfo, dns_name: str, at: datetime) -> None:
    """Raise unless the files in ``info`` hold a chain valid for ``dns_name`` at ``at``."""
    verify_chain(
        _read(info.ca_path),
        _read(info.cert_path),
        _read(info.key_path),
        dns_name,
        at,
    )


def wait_for_certs(
    info: CertInfo,
    dns_name: str,
    *,
    retries: int = 12,
    delay: float = 10,
    clock: Callable[[], datetime] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """
    Block until the certcontroller has written valid certificates.

    Certificates must stay valid for at least another hour. Raises RetryError
    when they never become valid.
    """
    def _on_retry(attempt: int, exc: Exception) -> None:
        log.warning("invalid certs (attempt %d/%d), retrying: %s", attempt, retries, exc)

    @retry(
        retries=retries,
        delay=delay,
        retry_on=(FormatError, CertificateVerificationError),
        on_retry=_on_retry,
        sleep=sleep,
    )
    def _check() -> None:
        log.info("validating certs in %s", info.cert_dir)
        now = clock() if clock else datetime.now(timezone.utc)
        check_certs(info, dns_name, now + timedelta(hours=1))

    _check()
    log.info("certs are valid")
