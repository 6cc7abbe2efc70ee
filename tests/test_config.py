import pytest

from dwnclient.config import ConfigError, ConfigManager, DwnConfig


def test_defaults():
    cfg = DwnConfig()
    assert cfg.data.max_inline_size.get() == 10000
    assert cfg.data.default_text_format.get() == "text/plain"
    assert cfg.data.default_json_format.get() == "application/json"
    assert cfg.rpc.timeout_seconds.get() == 30.0
    assert cfg.logging.json.get() is False


def test_environment_overrides_runtime_value(monkeypatch):
    manager = ConfigManager(DwnConfig())
    manager.set("data.max_inline_size", 64)
    assert manager.get("data.max_inline_size") == 64

    monkeypatch.setenv("DWN_MAX_INLINE_DATA_SIZE", "128")
    assert manager.get("data.max_inline_size") == 128

    monkeypatch.setenv("DWN_LOG_JSON", "yes")
    assert manager.get("logging.json") is True


def test_unparseable_environment_value_raises(monkeypatch):
    monkeypatch.setenv("DWN_RPC_TIMEOUT", "soon")
    with pytest.raises(ConfigError):
        DwnConfig().rpc.timeout_seconds.get()


def test_validator_rejects_bad_values():
    manager = ConfigManager(DwnConfig())
    with pytest.raises(ConfigError):
        manager.set("data.max_inline_size", -1)
    with pytest.raises(ConfigError):
        manager.set("logging.level", "LOUD")


def test_invalid_path():
    manager = ConfigManager(DwnConfig())
    with pytest.raises(ConfigError):
        manager.get("data.nope")
    with pytest.raises(ConfigError):
        manager.set("data", 1)


def test_validate_reports_without_raising(monkeypatch):
    manager = ConfigManager(DwnConfig())
    assert manager.validate() == []
    monkeypatch.setenv("DWN_MAX_INLINE_DATA_SIZE", "-5")
    errors = manager.validate()
    assert len(errors) == 1
    assert errors[0].startswith("data.max_inline_size")


class TestYamlFiles:
    def test_load_and_reload(self, tmp_path):
        path = tmp_path / "dwn.yaml"
        path.write_text("data:\n  max_inline_size: 256\nrpc:\n  timeout_seconds: 5\n", encoding="utf-8")

        manager = ConfigManager(DwnConfig())
        manager.load_from_file(path)
        assert manager.get("data.max_inline_size") == 256
        assert manager.get("rpc.timeout_seconds") == 5

        path.write_text("data:\n  max_inline_size: 512\n", encoding="utf-8")
        manager.reload()
        assert manager.get("data.max_inline_size") == 512

    def test_unknown_key_is_an_error(self, tmp_path):
        path = tmp_path / "dwn.yaml"
        path.write_text("data:\n  inline: 1\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="data.inline"):
            ConfigManager(DwnConfig()).load_from_file(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            ConfigManager(DwnConfig()).load_from_file(tmp_path / "absent.yaml")

    def test_to_yaml_round_trips_through_a_file(self, tmp_path):
        cfg = DwnConfig()
        cfg.data.max_inline_size.set(42)
        path = tmp_path / "out.yaml"
        path.write_text(cfg.to_yaml(), encoding="utf-8")

        manager = ConfigManager(DwnConfig())
        manager.load_from_file(path)
        assert manager.get("data.max_inline_size") == 42


def test_config_error_is_a_client_error():
    from dwnclient.errors import DwnError

    assert issubclass(ConfigError, DwnError)


def test_to_dict_groups_by_section():
    values = DwnConfig().to_dict()
    assert set(values) == {"data", "rpc", "logging"}
    assert values["rpc"]["connect_timeout_seconds"] == 10.0
