"""
Configuration management for chainorch.

Loads ``config.yaml`` from the chainorch home directory
(``$CHAINORCH_HOME``, default ``~/.config/chainorch``) and an optional
``.env`` file alongside it.

Usage:
    from chainorch.config import load_config

    config = load_config()
    env_dir = config.environment_dir("mainnet")
"""

import os
from dataclasses import dataclass, field, fields
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from chainorch.errors import ConfigError


COST_PROFILES = ("standard", "constrained")
LOG_FORMATS = ("structured", "pretty")


def get_chainorch_home() -> Path:
    """Return the chainorch home directory."""
    env_home = os.environ.get("CHAINORCH_HOME")
    if env_home:
        return Path(env_home).expanduser()
    return Path("~/.config/chainorch").expanduser()


@dataclass
class ChainorchConfig:
    """Run configuration shared by every command."""

    deployments_root: str = "deployments"
    build_path: str = "build"
    network: str = "local"
    account: Optional[str] = None
    provider_url: Optional[str] = None
    backend_factory: str = "chainorch.backends.memory:create_backend"

    gas_price: Optional[int] = None
    method_call_gas_limit: int = 250_000
    contract_deployment_gas_limit: int = 6_900_000

    concurrency: int = 10
    cost_profile: str = "standard"
    manage_nonces: bool = False
    explorer_url: Optional[str] = None

    registry_name: str = "AddressResolver"
    registry_proxy_name: str = "ReadProxyAddressResolver"
    snapshot_name: str = "DebtCache"
    max_snapshot_deviation: float = 0.01
    non_upgradeable: List[str] = field(default_factory=list)

    env_file: Optional[str] = None
    logging: Dict[str, Any] = field(default_factory=dict)

    def environment_dir(self, network: Optional[str] = None) -> Path:
        """Directory holding the per-environment documents for a network."""
        return Path(self.deployments_root).expanduser() / (network or self.network)

    def get_log_level(self) -> str:
        """Get logging level."""
        return str(self.logging.get("level", "INFO")).upper()

    def get_log_format(self) -> str:
        """Get log format (structured or pretty)."""
        return self.logging.get("format", "pretty")

    def should_log_to_console(self) -> bool:
        """Check if console logging is enabled."""
        return self.logging.get("console", True)

    def get_log_file_path(self) -> Optional[Path]:
        """Get log file path with date interpolation, or None when file logging is off."""
        log_output = self.logging.get("file")
        if not log_output:
            return None
        log_output = log_output.replace("{date}", datetime.now().strftime("%Y-%m-%d"))
        return Path(log_output).expanduser()

    def validate(self) -> None:
        """Validate configuration values."""
        if not self.network:
            raise ConfigError("network is required")
        if self.cost_profile not in COST_PROFILES:
            raise ConfigError(
                f"cost_profile must be one of {', '.join(COST_PROFILES)}, got {self.cost_profile!r}"
            )
        if self.concurrency < 1:
            raise ConfigError(f"concurrency must be >= 1, got {self.concurrency}")
        if not 0 < self.max_snapshot_deviation < 1:
            raise ConfigError(
                f"max_snapshot_deviation must be between 0 and 1, got {self.max_snapshot_deviation}"
            )
        if ":" not in self.backend_factory:
            raise ConfigError(
                f"backend_factory must be 'module:function', got {self.backend_factory!r}"
            )
        if self.get_log_format() not in LOG_FORMATS:
            raise ConfigError(f"logging.format must be one of {', '.join(LOG_FORMATS)}")


def load_config(config_path: Optional[Path] = None) -> ChainorchConfig:
    """
    Load chainorch configuration from YAML file.

    Args:
        config_path: Path to config file. Defaults to $CHAINORCH_HOME/config.yaml

    Returns:
        ChainorchConfig instance

    Raises:
        ConfigError: If config is missing, unparsable or invalid
    """
    if config_path is None:
        config_path = get_chainorch_home() / "config.yaml"

    if not config_path.exists():
        raise ConfigError(
            f"chainorch config.yaml not found at {config_path}. Run 'chainorch init'."
        )

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"{config_path}: top level must be a mapping")

    known = {f.name for f in fields(ChainorchConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")

    config = ChainorchConfig(**data)

    if config.env_file:
        env_path = Path(config.env_file).expanduser()
        if env_path.exists():
            load_dotenv(env_path)

    # Environment overrides the YAML for secrets-adjacent values
    if os.environ.get("CHAINORCH_ACCOUNT"):
        config.account = os.environ["CHAINORCH_ACCOUNT"]
    if os.environ.get("CHAINORCH_PROVIDER_URL"):
        config.provider_url = os.environ["CHAINORCH_PROVIDER_URL"]

    config.validate()
    return config
