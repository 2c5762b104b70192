"""Tests for the telecloud command line."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from telecloud import __version__
from telecloud.cli import _mask, app
from telecloud.models import FileRecord
from telecloud.upload.state import MetadataStore

runner = CliRunner()


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch) -> Path:
    """Run from an empty directory so no config file is picked up."""
    monkeypatch.chdir(tmp_path)
    for name in ("TELEGRAM_BOT_TOKENS", "STORAGE_CHANNEL_IDS", "CHAT_IDS", "TELECLOUD_SNAPSHOT"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert f"telecloud {__version__}" in result.output


def test_status_without_snapshot(workdir: Path):
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0
    assert "No snapshot" in result.output


def test_status_counts_records(workdir: Path):
    store = MetadataStore(workdir / "uploadedFiles.json.gz")
    store.add(FileRecord("a.jpg", "X1", "Path: a.jpg", -100))
    store.add(FileRecord("a.jpg", "X2", "Path: a.jpg", -200))
    store.save()

    result = runner.invoke(app, ["status"])

    assert result.exit_code == 0
    assert "Records: 2" in result.output
    assert "Distinct files: 1" in result.output


def test_upload_requires_tokens(workdir: Path):
    with patch("telecloud.config.keyring") as mock_keyring:
        mock_keyring.get_password.return_value = None
        result = runner.invoke(app, ["upload", str(workdir)])
    assert result.exit_code == 1
    assert "no bot tokens" in result.output


def test_upload_dry_run_lists_pending(workdir: Path, tmp_drive: Path):
    result = runner.invoke(
        app,
        ["upload", str(tmp_drive), "--dry-run"],
        env={"TELEGRAM_BOT_TOKENS": "1:a"},
    )
    assert result.exit_code == 0
    assert "3 of 3 files pending" in result.output


def test_config_show_masks_tokens(workdir: Path):
    result = runner.invoke(
        app,
        ["config", "show"],
        env={"TELEGRAM_BOT_TOKENS": "123:ABCDEFGH", "CHAT_IDS": "5"},
    )
    assert result.exit_code == 0
    assert "ABCDEFGH" not in result.output
    assert "123:ABCD" in result.output


def test_get_tokens_when_keyring_empty(workdir: Path):
    with patch("telecloud.config.keyring") as mock_keyring:
        mock_keyring.get_password.return_value = None
        result = runner.invoke(app, ["config", "get-tokens"])
    assert result.exit_code == 1
    assert "No tokens found" in result.output


def test_mask():
    assert _mask("123456:SECRETVALUE") == "123456:SECR*******"
    assert _mask("plain") == "pl***"
