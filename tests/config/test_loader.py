from datetime import timedelta
from pathlib import Path
import textwrap

import pytest
from pydantic import ValidationError

from secretsync.config.loader import CONFIG_ENV, load_config


def test_defaults_without_file(monkeypatch):
    monkeypatch.delenv(CONFIG_ENV, raising=False)
    cfg = load_config()
    assert cfg.service_name == "secretsync-webhook"
    assert cfg.dns_name == "secretsync-webhook.default.svc"
    assert cfg.lookahead_interval == timedelta(days=90)
    assert cfg.crd_requeue_interval == timedelta(minutes=5)
    assert "externalsecrets.secretsync.io" in cfg.crd_names
    assert cfg.webhook_labels == {"secretsync.io/component": "webhook"}
    assert cfg.crd_labels == {"secretsync.io/component": "controller"}


def test_load_config_from_yaml_with_env(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("WEBHOOK_NS", "secretsync-system")
    f = tmp_path / "certcontroller.yaml"
    f.write_text(textwrap.dedent("""
        service_namespace: ${WEBHOOK_NS}
        secret_namespace: ${WEBHOOK_NS}
        crd_names:
          - externalsecrets.secretsync.io
        requeue_interval: 60
        lookahead_interval: P30D
        log_level: DEBUG
    """))
    cfg = load_config(f)
    assert cfg.service_namespace == "secretsync-system"
    assert cfg.dns_name == "secretsync-webhook.secretsync-system.svc"
    assert cfg.crd_names == ["externalsecrets.secretsync.io"]
    assert cfg.requeue_interval == timedelta(seconds=60)
    assert cfg.lookahead_interval == timedelta(days=30)
    assert cfg.log_level == "debug"


def test_env_var_locates_file(tmp_path: Path, monkeypatch):
    f = tmp_path / "c.yaml"
    f.write_text("service_name: from-env\n")
    monkeypatch.setenv(CONFIG_ENV, str(f))
    assert load_config().service_name == "from-env"


def test_overrides_win_but_empty_values_do_not(tmp_path: Path):
    f = tmp_path / "c.yaml"
    f.write_text("service_name: from-file\nsecret_name: file-secret\n")
    cfg = load_config(f, {"service_name": "from-flag", "secret_name": None, "crd_names": []})
    assert cfg.service_name == "from-flag"
    assert cfg.secret_name == "file-secret"
    assert len(cfg.crd_names) == 3


def test_missing_explicit_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")


def test_non_mapping_yaml(tmp_path: Path):
    f = tmp_path / "c.yaml"
    f.write_text("- a\n- b\n")
    with pytest.raises(ValueError):
        load_config(f)


@pytest.mark.parametrize(
    "overrides",
    [
        {"log_level": "chatty"},
        {"lookahead_interval": -1},
        {"requeue_interval": 0},
        {"concurrent": 0},
        {"unknown_flag": True},
    ],
)
def test_invalid_values_rejected(overrides, monkeypatch):
    monkeypatch.delenv(CONFIG_ENV, raising=False)
    with pytest.raises(ValidationError):
        load_config(overrides=overrides)
