from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from typer.testing import CliRunner

from secretsync.cli.app import app
from secretsync.pki.engine import create_ca_cert, create_leaf_cert

DNS = "secretsync-webhook.default.svc"
runner = CliRunner()


@pytest.fixture(scope="module")
def material():
    now = datetime.now(timezone.utc)
    ca = create_ca_cert(now - timedelta(hours=1), now + timedelta(days=30), ca_name="secretsync")
    leaf = create_leaf_cert(ca, now - timedelta(hours=1), now + timedelta(days=30), dns_name=DNS)
    return ca, leaf


def _write(d: Path, ca, leaf) -> Path:
    (d / "ca.crt").write_bytes(ca.cert_pem)
    (d / "tls.crt").write_bytes(leaf.cert_pem)
    (d / "tls.key").write_bytes(leaf.key_pem)
    return d


def test_valid_certs_exit_zero(tmp_path: Path, material):
    d = _write(tmp_path, *material)
    result = runner.invoke(app, ["check-certs", "--cert-dir", str(d), "--dns-name", DNS])
    assert result.exit_code == 0, result.output
    assert "valid" in result.output


def test_lookahead_past_expiry_exits_one(tmp_path: Path, material):
    d = _write(tmp_path, *material)
    result = runner.invoke(
        app, ["check-certs", "--cert-dir", str(d), "--dns-name", DNS, "--lookahead", str(60 * 86400)]
    )
    assert result.exit_code == 1


def test_wrong_name_exits_one(tmp_path: Path, material):
    d = _write(tmp_path, *material)
    result = runner.invoke(app, ["check-certs", "--cert-dir", str(d), "--dns-name", "other.svc"])
    assert result.exit_code == 1


def test_missing_files_exit_one(tmp_path: Path):
    result = runner.invoke(app, ["check-certs", "--cert-dir", str(tmp_path), "--dns-name", DNS])
    assert result.exit_code == 1


def test_certcontroller_rejects_bad_config(tmp_path: Path):
    result = runner.invoke(app, ["certcontroller", "--config", str(tmp_path / "missing.yaml")])
    assert result.exit_code == 1
