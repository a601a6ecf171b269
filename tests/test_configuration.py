"""Tests for the wallet-aware configuration loader."""

from __future__ import annotations

from pathlib import Path

import pytest

from harbor import configuration


def _prepare_repo_defaults(tmp_path: Path, content: str = "runtime:\n  name: Test\n") -> Path:
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "10-defaults.yml").write_text(content, encoding="utf-8")
    return config_dir


def _wallet_with_override(tmp_path: Path, content: str, name: str = "20-overrides.yml") -> Path:
    wallet_dir = tmp_path / "wallet"
    overrides_dir = wallet_dir / "config"
    overrides_dir.mkdir(parents=True)
    (overrides_dir / name).write_text(content, encoding="utf-8")
    return wallet_dir


def test_resolve_wallet_dir_uses_env_expansion(tmp_path: Path):
    env = {"HARBOR_WALLET_DIR": str(tmp_path / "wallet")}
    path = configuration.resolve_wallet_dir(env=env)
    assert path == tmp_path / "wallet"


def test_resolve_wallet_dir_defaults_to_home():
    assert configuration.resolve_wallet_dir(env={}) == Path("~/.harbor").expanduser()


def test_load_runtime_configuration_merges_repo_and_wallet(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    repo_dir = _prepare_repo_defaults(
        tmp_path, content="sync:\n  server_url: https://repo.example\n  interval_minutes: 5\n"
    )
    wallet_dir = _wallet_with_override(tmp_path, "sync:\n  interval_minutes: 1\n")
    monkeypatch.setattr(configuration, "DEFAULT_CONFIG_DIR", repo_dir)

    bundle = configuration.load_runtime_configuration(wallet_dir)

    assert bundle.status == "ready"
    assert bundle.merged["sync"]["server_url"] == "https://repo.example"
    assert bundle.merged["sync"]["interval_minutes"] == 1
    assert bundle.merged["sync"]["conflict_strategy"] == "local_wins"
    assert bundle.merged["realtime"]["reconnect_delay"] == 5.0
    assert len(bundle.files_loaded) == 2


def test_repository_defaults_validate_cleanly(tmp_path: Path):
    wallet_dir = tmp_path / "wallet"
    wallet_dir.mkdir()

    bundle = configuration.load_runtime_configuration(wallet_dir)

    assert bundle.status == "ready"
    assert not [diag for diag in bundle.diagnostics if diag.level != "info"]
    assert bundle.merged["storage"]["directory"] == "state"


def test_load_runtime_configuration_reports_missing_wallet(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    repo_dir = _prepare_repo_defaults(tmp_path)
    monkeypatch.setattr(configuration, "DEFAULT_CONFIG_DIR", repo_dir)

    bundle = configuration.load_runtime_configuration(tmp_path / "missing")

    assert bundle.status == "missing"
    assert any(diag.level == "error" for diag in bundle.diagnostics)


def test_load_runtime_configuration_handles_bad_yaml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    repo_dir = _prepare_repo_defaults(tmp_path)
    wallet_dir = _wallet_with_override(tmp_path, "sync: [\n", name="broken.yml")
    monkeypatch.setattr(configuration, "DEFAULT_CONFIG_DIR", repo_dir)

    bundle = configuration.load_runtime_configuration(wallet_dir)

    assert bundle.status == "invalid"
    assert any("Failed to parse" in diag.message for diag in bundle.diagnostics)


def test_invalid_values_fall_back_to_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    repo_dir = _prepare_repo_defaults(tmp_path)
    wallet_dir = _wallet_with_override(
        tmp_path,
        "sync:\n  conflict_strategy: newest_wins\n  auto_sync: sometimes\n"
        "network:\n  connectivity_checks: [example.com:443, 7]\n"
        "mystery: true\n",
    )
    monkeypatch.setattr(configuration, "DEFAULT_CONFIG_DIR", repo_dir)

    bundle = configuration.load_runtime_configuration(wallet_dir)
    messages = [diag.message for diag in bundle.diagnostics]

    assert bundle.status == "invalid"
    assert bundle.merged["sync"]["conflict_strategy"] == "local_wins"
    assert bundle.merged["sync"]["auto_sync"] is True
    assert bundle.merged["network"]["connectivity_checks"] == ["example.com:443"]
    assert any("conflict_strategy" in message and "newest_wins" in message for message in messages)
    assert "Unknown configuration key 'config.mystery'." in messages
