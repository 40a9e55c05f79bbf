"""kbb8 configuration management.

Configuration is read from ./kbb8.yaml (or an explicit --config path).
Environment variables override the file, and CLI flags override both.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigurationError
from .kubeconfig import DEFAULT_KEY_PREFIX
from .provider import ProviderSpec

# Default values
DEFAULT_CONFIG_FILE = Path("kbb8.yaml")
DEFAULT_WORK_DIR = ".tmp"
DEFAULT_KUBERNETES_PACKAGE = "./test/packages/bootstrap-kubernetes"
DEFAULT_CLUSTER_NAME = "bootstrap"
DEFAULT_READY_TIMEOUT = 120.0
DEFAULT_STARTUP_TIMEOUT = 600.0
DEFAULT_POLL_INTERVAL = 0.1

DEFAULT_PROVIDERS: list[dict[str, Any]] = [
    {
        "package": "./test/packages/bootstrap-capi",
        "args": ["--feature-gates=MachinePool=true,ClusterResourceSet=true,ClusterTopology=true"],
    },
    {
        "package": "./test/packages/bootstrap-cabpk",
        "args": ["--feature-gates=MachinePool=true"],
    },
    {
        "package": "./test/packages/bootstrap-kcp",
        "args": ["--feature-gates=ClusterTopology=true"],
    },
    {
        "package": "./test/packages/bootstrap-capd",
        "args": [
            "--feature-gates=MachinePool=true,ClusterTopology=true",
            "--loadbalancer-use-host-port",
        ],
    },
]

# Environment variable mappings
ENV_VARS = {
    "work_dir": "KBB8_WORK_DIR",
    "kubernetes_package": "KBB8_KUBERNETES_PACKAGE",
    "cluster_name": "KBB8_CLUSTER_NAME",
    "key_prefix": "KBB8_KEY_PREFIX",
    "kubeconfig": "KBB8_KUBECONFIG",
    "ready_timeout": "KBB8_READY_TIMEOUT",
    "startup_timeout": "KBB8_STARTUP_TIMEOUT",
    "poll_interval": "KBB8_POLL_INTERVAL",
}

_FLOAT_KEYS = {"ready_timeout", "startup_timeout", "poll_interval"}
_PATH_KEYS = {"work_dir", "kubernetes_package", "kubeconfig"}


def _default_providers() -> list[ProviderSpec]:
    return [ProviderSpec(Path(p["package"]), list(p["args"])) for p in DEFAULT_PROVIDERS]


@dataclass
class Kbb8Config:
    """kbb8 configuration."""

    work_dir: Path = Path(DEFAULT_WORK_DIR)
    kubernetes_package: Path = Path(DEFAULT_KUBERNETES_PACKAGE)
    cluster_name: str = DEFAULT_CLUSTER_NAME
    key_prefix: str = DEFAULT_KEY_PREFIX
    kubeconfig: Path | None = None
    ready_timeout: float = DEFAULT_READY_TIMEOUT
    startup_timeout: float = DEFAULT_STARTUP_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    providers: list[ProviderSpec] = field(default_factory=_default_providers)

    # Track where each value came from
    _sources: dict[str, str] = field(default_factory=dict)

    def get_source(self, key: str) -> str:
        """Get the source of a config value."""
        return self._sources.get(key, "default")

    def to_dict(self) -> dict[str, Any]:
        """Plain representation (for `kbb8 config show`)."""
        return {
            "work_dir": str(self.work_dir),
            "kubernetes_package": str(self.kubernetes_package),
            "cluster_name": self.cluster_name,
            "key_prefix": self.key_prefix,
            "kubeconfig": str(self.kubeconfig) if self.kubeconfig else None,
            "ready_timeout": self.ready_timeout,
            "startup_timeout": self.startup_timeout,
            "poll_interval": self.poll_interval,
            "providers": [
                {"package": str(p.package_path), "args": list(p.args)} for p in self.providers
            ],
        }


def _convert(key: str, value: Any) -> Any:
    try:
        if key in _FLOAT_KEYS:
            converted = float(value)
            if converted <= 0:
                raise ValueError("must be positive")
            return converted
        if key in _PATH_KEYS:
            return Path(str(value)).expanduser()
        text = str(value)
        if not text:
            raise ValueError("must not be empty")
        return text
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"invalid value for {key}: {value!r} ({e})") from e


def _parse_providers(value: Any) -> list[ProviderSpec]:
    if not isinstance(value, list):
        raise ConfigurationError("providers must be a list")
    providers = []
    for item in value:
        if not isinstance(item, dict) or not item.get("package"):
            raise ConfigurationError(f"invalid provider entry: {item!r}")
        args = item.get("args") or []
        if not isinstance(args, list):
            raise ConfigurationError(f"args of provider {item['package']} must be a list")
        providers.append(ProviderSpec(Path(str(item["package"])), [str(a) for a in args]))

    names = [p.name for p in providers]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ConfigurationError(f"duplicate provider names: {', '.join(duplicates)}")
    return providers


def load_config(path: str | Path | None = None) -> Kbb8Config:
    """Load kbb8 configuration.

    Precedence (highest to lowest):
    1. Environment variables
    2. Config file (--config, or ./kbb8.yaml if present)
    3. Defaults

    Raises:
        ConfigurationError: If the file is invalid or a value cannot be parsed.
    """
    config = Kbb8Config()
    sources: dict[str, str] = {key: "default" for key in [*ENV_VARS, "providers"]}

    config_path = Path(path) if path else DEFAULT_CONFIG_FILE
    if path and not config_path.exists():
        raise ConfigurationError(f"config file {config_path} does not exist")

    if config_path.exists():
        try:
            with open(config_path) as f:
                file_config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"unable to read config file {config_path}: {e}") from e
        if not isinstance(file_config, dict):
            raise ConfigurationError(f"config file {config_path} must be a mapping")

        for key in ENV_VARS:
            if key in file_config and file_config[key] is not None:
                setattr(config, key, _convert(key, file_config[key]))
                sources[key] = "config file"
        if "providers" in file_config:
            config.providers = _parse_providers(file_config["providers"])
            sources["providers"] = "config file"

    for key, env_var in ENV_VARS.items():
        if os.environ.get(env_var):
            setattr(config, key, _convert(key, os.environ[env_var]))
            sources[key] = "environment"

    config._sources = sources
    return config
