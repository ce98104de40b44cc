"""Tests for bittersweet/config.py — config.yaml loading and defaults."""

from zoneinfo import ZoneInfo

from bittersweet.config import StoreConfig, config_path, load_config, save_config, storage_dir, workspace_root


def test_workspace_root_from_env(tmp_path, monkeypatch):
    monkeypatch.setenv("BITTERSWEET_ROOT", str(tmp_path))
    assert workspace_root() == tmp_path.resolve()
    assert config_path() == tmp_path.resolve() / "config.yaml"
    assert storage_dir() == tmp_path.resolve() / "storage"


def test_missing_config_uses_defaults(tmp_path):
    config = load_config(tmp_path)
    assert config == StoreConfig()
    assert config.write_batch_window_ms == 100


def test_load_config(tmp_path):
    (tmp_path / "config.yaml").write_text(
        "user_id: alice\n"
        "timezone: Europe/Berlin\n"
        "tick_interval_seconds: 0.5\n"
        "unknown_key: ignored\n",
        encoding="utf-8",
    )
    config = load_config(tmp_path)
    assert config.user_id == "alice"
    assert config.tick_interval_seconds == 0.5
    assert config.tzinfo == ZoneInfo("Europe/Berlin")
    assert not hasattr(config, "unknown_key")


def test_bad_values_fall_back(tmp_path, caplog):
    (tmp_path / "config.yaml").write_text(
        "max_target_duration: lots\ntimezone: Mars/Olympus\n", encoding="utf-8"
    )
    config = load_config(tmp_path)
    assert config.max_target_duration == 180
    assert config.timezone == "UTC"
    assert "Ignoring invalid config value" in caplog.text


def test_non_mapping_config_is_ignored(tmp_path):
    (tmp_path / "config.yaml").write_text("- just\n- a list\n", encoding="utf-8")
    assert load_config(tmp_path) == StoreConfig()


def test_save_and_reload(tmp_path):
    save_config(StoreConfig(user_id="bob", event_history_size=20), tmp_path)
    config = load_config(tmp_path)
    assert config.user_id == "bob"
    assert config.event_history_size == 20
