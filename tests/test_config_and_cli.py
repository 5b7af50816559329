import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from threadbridge import __version__
from threadbridge.cli.commands import app
from threadbridge.config.loader import camel_to_snake, load_config, save_config, snake_to_camel
from threadbridge.config.schema import Config

runner = CliRunner()


@pytest.fixture(autouse=True)
def clean_env(tmp_path, monkeypatch) -> Path:
    monkeypatch.chdir(tmp_path)
    for key in ("THREADBRIDGE_DISCORD__TOKEN", "THREADBRIDGE_OPENAI__ASSISTANT_ID", "THREADBRIDGE_BRIDGE__LOCALE"):
        monkeypatch.delenv(key, raising=False)
    return tmp_path


def _write(path: Path, data: dict) -> Path:
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_load_config_reads_camel_case_json(tmp_path) -> None:
    path = _write(
        tmp_path / "config.json",
        {
            "discord": {"token": "tok"},
            "openai": {"assistantId": "asst_1", "vectorStoreId": "vs_1"},
            "bridge": {"replayWindow": 12, "locale": "JA"},
            "reaper": {"withArchival": True},
        },
    )

    config = load_config(path)

    assert config.discord.token == "tok"
    assert config.openai.assistant_id == "asst_1"
    assert config.openai.vector_store_id == "vs_1"
    assert config.bridge.replay_window == 12
    assert config.bridge.locale == "ja"
    assert config.reaper.with_archival is True
    assert config.missing_required() == []


def test_defaults_and_missing_required(tmp_path) -> None:
    config = load_config(tmp_path / "absent.json")

    assert config.bridge.replay_window == 30
    assert config.bridge.locale == "en"
    assert config.reaper.with_archival is False
    assert config.missing_required() == ["discord.token", "openai.assistant_id"]


def test_environment_supplies_settings(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("THREADBRIDGE_DISCORD__TOKEN", "env-token")
    monkeypatch.setenv("THREADBRIDGE_OPENAI__ASSISTANT_ID", "asst_env")

    config = load_config(tmp_path / "absent.json")

    assert config.discord.token == "env-token"
    assert config.openai.assistant_id == "asst_env"


def test_invalid_file_falls_back_to_environment(tmp_path) -> None:
    bad = tmp_path / "config.json"
    bad.write_text("{not json", encoding="utf-8")
    out_of_range = _write(tmp_path / "range.json", {"bridge": {"replayWindow": 500}})

    assert load_config(bad).bridge.replay_window == 30
    assert load_config(out_of_range).bridge.replay_window == 30


def test_save_config_writes_camel_case(tmp_path) -> None:
    path = tmp_path / "nested" / "config.json"
    config = Config()
    config.openai.assistant_id = "asst_saved"

    save_config(config, path)

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["openai"]["assistantId"] == "asst_saved"
    assert load_config(path).openai.assistant_id == "asst_saved"


def test_key_case_helpers() -> None:
    assert camel_to_snake("replayWindow") == "replay_window"
    assert snake_to_camel("with_archival") == "withArchival"


def test_status_masks_secrets(tmp_path) -> None:
    path = _write(
        tmp_path / "config.json",
        {"discord": {"token": "abcd1234efgh5678"}, "openai": {"assistantId": "asst_1"}},
    )

    result = runner.invoke(app, ["status", "--config", str(path)])

    assert result.exit_code == 0
    assert "abcd...5678" in result.output
    assert "abcd1234efgh5678" not in result.output
    assert "Missing required settings" not in result.output


def test_status_reports_missing_settings(tmp_path) -> None:
    result = runner.invoke(app, ["status", "--config", str(tmp_path / "absent.json")])

    assert result.exit_code == 0
    assert "Missing required settings" in result.output


def test_run_refuses_to_start_without_required_settings(tmp_path) -> None:
    result = runner.invoke(app, ["run", "--config", str(tmp_path / "absent.json")])

    assert result.exit_code == 1
    assert "Missing required settings" in result.output


def test_init_writes_default_config_once(tmp_path) -> None:
    path = tmp_path / "home" / "config.json"

    result = runner.invoke(app, ["init", "--config", str(path)])

    assert result.exit_code == 0
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["bridge"]["replayWindow"] == 30
    assert data["reaper"]["withArchival"] is False

    path.write_text(json.dumps({"bridge": {"replayWindow": 5}}), encoding="utf-8")
    again = runner.invoke(app, ["init", "--config", str(path)])

    assert again.exit_code == 0
    assert "already exists" in again.output
    assert load_config(path).bridge.replay_window == 5


def test_version_flag() -> None:
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output
