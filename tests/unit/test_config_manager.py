from __future__ import annotations

import json

from codebattle.utils.config_manager import ConfigManager


def test_defaults_without_file(tmp_path) -> None:
    config = ConfigManager(str(tmp_path / "missing.json"), load_env=False)

    assert config.get("server.port") == 3000
    assert config.get("storage.backend") == "json"
    assert config.get("contest.auto_finish_on_expiry") is False
    assert config.get("judge.oj.time_limit_ms") == 2000
    assert config.get("no.such.key", "fallback") == "fallback"


def test_file_is_deep_merged(tmp_path) -> None:
    path = tmp_path / "server_config.json"
    path.write_text(json.dumps({"judge": {"llm": {"model_id": "other"}}, "server": {"port": 8080}}))

    config = ConfigManager(str(path), load_env=False)

    assert config.get("judge.llm.model_id") == "other"
    assert config.get("judge.llm.api_base_url") == "https://api.openai.com"
    assert config.get("server.port") == 8080
    assert config.get("server.host") == "0.0.0.0"


def test_environment_overrides(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("CODEBATTLE_PORT", "4000")
    monkeypatch.setenv("CODEBATTLE_AUTO_FINISH", "yes")
    monkeypatch.setenv("CODEBATTLE_SYNC_INTERVAL", "2.5")
    monkeypatch.setenv("CODEBATTLE_STORAGE_BACKEND", "duckdb")

    config = ConfigManager(str(tmp_path / "missing.json"))

    assert config.get("server.port") == 4000
    assert config.get("contest.auto_finish_on_expiry") is True
    assert config.get("sync.interval") == 2.5
    assert config.get("storage.backend") == "duckdb"


def test_set_and_save_round_trip(tmp_path) -> None:
    path = tmp_path / "conf" / "out.json"
    config = ConfigManager(str(tmp_path / "missing.json"), load_env=False)
    config.set("admin.password", "hunter2")
    config.set("extra.nested.value", 1)
    config.save(str(path))

    reloaded = ConfigManager(str(path), load_env=False)
    assert reloaded.get("admin.password") == "hunter2"
    assert reloaded.get_section("extra") == {"nested": {"value": 1}}
    assert reloaded.to_dict() is not reloaded.to_dict()
