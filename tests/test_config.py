import os
from pathlib import Path

import pytest
import yaml

from chainorch.config import ChainorchConfig, get_chainorch_home, load_config
from chainorch.errors import ConfigError


def _write(home: Path, data: dict) -> Path:
    home.mkdir(parents=True, exist_ok=True)
    path = home / "config.yaml"
    path.write_text(yaml.dump(data))
    return path


def test_get_chainorch_home_default(monkeypatch):
    monkeypatch.delenv("CHAINORCH_HOME", raising=False)
    assert get_chainorch_home() == Path("~/.config/chainorch").expanduser()


def test_get_chainorch_home_env_var(monkeypatch, tmp_path):
    custom_home = tmp_path / "custom_home"
    monkeypatch.setenv("CHAINORCH_HOME", str(custom_home))
    assert get_chainorch_home() == custom_home


def test_load_config_missing_file(monkeypatch, tmp_path):
    monkeypatch.setenv("CHAINORCH_HOME", str(tmp_path))
    with pytest.raises(ConfigError, match="chainorch config.yaml not found"):
        load_config()


def test_load_config_valid(monkeypatch, tmp_path):
    monkeypatch.setenv("CHAINORCH_HOME", str(tmp_path))
    _write(tmp_path, {
        "deployments_root": "/tmp/deployments",
        "network": "kovan",
        "account": "0x" + "1" * 40,
        "cost_profile": "constrained",
        "non_upgradeable": ["ProxyERC20", "TokenState"],
    })

    cfg = load_config()
    assert isinstance(cfg, ChainorchConfig)
    assert cfg.network == "kovan"
    assert cfg.cost_profile == "constrained"
    assert cfg.non_upgradeable == ["ProxyERC20", "TokenState"]
    assert cfg.environment_dir() == Path("/tmp/deployments/kovan")
    assert cfg.environment_dir("mainnet") == Path("/tmp/deployments/mainnet")


def test_load_config_defaults(monkeypatch, tmp_path):
    monkeypatch.setenv("CHAINORCH_HOME", str(tmp_path))
    _write(tmp_path, {"network": "local"})

    cfg = load_config()
    assert cfg.concurrency == 10
    assert cfg.max_snapshot_deviation == 0.01
    assert cfg.registry_name == "AddressResolver"
    assert cfg.get_log_level() == "INFO"
    assert cfg.get_log_file_path() is None


def test_load_config_with_env_file(monkeypatch, tmp_path):
    monkeypatch.setenv("CHAINORCH_HOME", str(tmp_path))
    env_file = tmp_path / ".env.test"
    env_file.write_text("CHAINORCH_TEST_VAR=loaded_from_env\n")
    _write(tmp_path, {"network": "local", "env_file": str(env_file)})

    monkeypatch.delenv("CHAINORCH_TEST_VAR", raising=False)

    load_config()
    assert os.environ.get("CHAINORCH_TEST_VAR") == "loaded_from_env"
    monkeypatch.delenv("CHAINORCH_TEST_VAR", raising=False)


def test_environment_overrides_account(monkeypatch, tmp_path):
    monkeypatch.setenv("CHAINORCH_HOME", str(tmp_path))
    _write(tmp_path, {"network": "local", "account": "0x" + "1" * 40})
    monkeypatch.setenv("CHAINORCH_ACCOUNT", "0x" + "2" * 40)
    monkeypatch.setenv("CHAINORCH_PROVIDER_URL", "http://localhost:8545")

    cfg = load_config()
    assert cfg.account == "0x" + "2" * 40
    assert cfg.provider_url == "http://localhost:8545"


def test_unknown_keys_rejected(monkeypatch, tmp_path):
    monkeypatch.setenv("CHAINORCH_HOME", str(tmp_path))
    _write(tmp_path, {"network": "local", "netwrok": "typo"})
    with pytest.raises(ConfigError, match="netwrok"):
        load_config()


def test_invalid_yaml(monkeypatch, tmp_path):
    monkeypatch.setenv("CHAINORCH_HOME", str(tmp_path))
    (tmp_path / "config.yaml").write_text("network: [unclosed\n")
    with pytest.raises(ConfigError, match="Invalid YAML"):
        load_config()


class TestValidate:

    def test_bad_cost_profile(self):
        with pytest.raises(ConfigError, match="cost_profile"):
            ChainorchConfig(cost_profile="cheap").validate()

    def test_bad_concurrency(self):
        with pytest.raises(ConfigError, match="concurrency"):
            ChainorchConfig(concurrency=0).validate()

    def test_bad_deviation(self):
        with pytest.raises(ConfigError, match="max_snapshot_deviation"):
            ChainorchConfig(max_snapshot_deviation=1.5).validate()

    def test_bad_factory_path(self):
        with pytest.raises(ConfigError, match="backend_factory"):
            ChainorchConfig(backend_factory="chainorch.backends.memory").validate()

    def test_log_file_date_interpolation(self):
        cfg = ChainorchConfig(logging={"file": "/tmp/logs/run-{date}.log"})
        path = cfg.get_log_file_path()
        assert path.parent == Path("/tmp/logs")
        assert "{date}" not in path.name
