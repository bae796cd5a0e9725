"""Run configuration management.

Configuration is resolved from several sources, lowest precedence first:
1. Built-in defaults
2. Settings file: $ATOMIC_APPLY_CONFIG or ~/.config/atomic-apply/config.yaml
3. Environment: ATOMIC_APPLY_TIMEOUT, ATOMIC_APPLY_NAMESPACE,
   ATOMIC_APPLY_POLL_INTERVAL, KUBECONFIG
4. Explicit overrides (CLI flags)

The resolved ApplyConfig is passed explicitly into the engine; nothing
below the CLI reads process state on its own.
"""

import logging
import os
import re
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from errors import ConfigError

logger = logging.getLogger(__name__)

# Fallback namespace when neither the manifest nor the caller names one
DEFAULT_NAMESPACE = 'default'

# Actor identity for server-side apply
FIELD_MANAGER = 'atomic-apply'

DEFAULT_TIMEOUT = 30.0
DEFAULT_POLL_INTERVAL = 2.0

_DURATION_PART = re.compile(r'(\d+(?:\.\d+)?)(ms|h|m|s)')
_DURATION_UNITS = {'h': 3600.0, 'm': 60.0, 's': 1.0, 'ms': 0.001}


@dataclass
class ApplyConfig:
    """Configuration for a single atomic apply run.

    Attributes:
        default_namespace: Namespace for namespaced manifests that name none
        timeout: Seconds to wait for convergence before rolling back
        poll_interval: Seconds between status polls while waiting
        field_manager: Actor identity used for server-side apply
        kubeconfig: Path to kubeconfig (None = client default discovery)
        context: kubeconfig context name (None = current context)
    """
    default_namespace: str = DEFAULT_NAMESPACE
    timeout: float = DEFAULT_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    field_manager: str = FIELD_MANAGER
    kubeconfig: Optional[str] = None
    context: Optional[str] = None

    def __post_init__(self):
        if self.timeout <= 0:
            raise ConfigError(f"timeout must be positive, got {self.timeout}")
        if self.poll_interval <= 0:
            raise ConfigError(f"poll interval must be positive, got {self.poll_interval}")
        if not self.default_namespace:
            self.default_namespace = DEFAULT_NAMESPACE

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def parse_duration(value: Union[str, int, float]) -> float:
    """Parse a duration into seconds.

    Accepts bare numbers (seconds) and Go-style strings such as
    '30s', '1m30s', '2h', '500ms'.

    Raises:
        ConfigError: If the value is not a valid duration
    """
    if isinstance(value, bool):
        raise ConfigError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip()
    try:
        return float(text)
    except ValueError:
        pass

    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(text):
        raise ConfigError(f"Invalid duration: {value!r} (expected e.g. 30s, 1m30s, 2h)")
    return total


def get_settings_path() -> Path:
    """Locate the optional settings file.

    Resolution order:
    1. $ATOMIC_APPLY_CONFIG environment variable
    2. $XDG_CONFIG_HOME/atomic-apply/config.yaml
    3. ~/.config/atomic-apply/config.yaml
    """
    if env_path := os.environ.get('ATOMIC_APPLY_CONFIG'):
        return Path(env_path)
    if xdg := os.environ.get('XDG_CONFIG_HOME'):
        return Path(xdg) / 'atomic-apply' / 'config.yaml'
    return Path.home() / '.config' / 'atomic-apply' / 'config.yaml'


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    try:
        with open(path, encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in settings file {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"Settings file {path} must be a YAML object (dict)")
    return data


def _settings_from_file(path: Path, required: bool = False) -> dict[str, Any]:
    """Read recognised keys from the settings file (missing file = no settings)."""
    if not path.exists():
        if required:
            raise ConfigError(f"Settings file {path} does not exist")
        return {}

    data = _parse_yaml(path)
    settings: dict[str, Any] = {}
    if 'namespace' in data:
        settings['default_namespace'] = str(data['namespace'])
    if 'timeout' in data:
        settings['timeout'] = parse_duration(data['timeout'])
    if 'poll_interval' in data:
        settings['poll_interval'] = parse_duration(data['poll_interval'])
    if 'field_manager' in data:
        settings['field_manager'] = str(data['field_manager'])
    if 'kubeconfig' in data:
        settings['kubeconfig'] = str(Path(data['kubeconfig']).expanduser())
    if 'context' in data:
        settings['context'] = str(data['context'])

    unknown = set(data) - {'namespace', 'timeout', 'poll_interval',
                           'field_manager', 'kubeconfig', 'context'}
    if unknown:
        logger.warning(f"Ignoring unknown settings in {path}: {', '.join(sorted(unknown))}")
    logger.debug(f"Loaded settings from {path}")
    return settings


def _settings_from_env() -> dict[str, Any]:
    settings: dict[str, Any] = {}
    if timeout := os.environ.get('ATOMIC_APPLY_TIMEOUT'):
        settings['timeout'] = parse_duration(timeout)
    if interval := os.environ.get('ATOMIC_APPLY_POLL_INTERVAL'):
        settings['poll_interval'] = parse_duration(interval)
    if namespace := os.environ.get('ATOMIC_APPLY_NAMESPACE'):
        settings['default_namespace'] = namespace
    if kubeconfig := os.environ.get('KUBECONFIG'):
        settings['kubeconfig'] = kubeconfig
    return settings


def load_config(settings_path: Optional[Path] = None, **overrides) -> ApplyConfig:
    """Resolve the run configuration.

    Args:
        settings_path: Settings file override (default: get_settings_path())
        **overrides: Explicit ApplyConfig values (e.g. from CLI flags);
            None values are ignored

    Returns:
        ApplyConfig instance

    Raises:
        ConfigError: On invalid settings or unknown override keys
    """
    known = {f.name for f in fields(ApplyConfig)}
    unknown = set(overrides) - known
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")

    merged: dict[str, Any] = {}
    required = settings_path is not None or bool(os.environ.get('ATOMIC_APPLY_CONFIG'))
    merged.update(_settings_from_file(settings_path or get_settings_path(), required=required))
    merged.update(_settings_from_env())
    merged.update({k: v for k, v in overrides.items() if v is not None})
    return ApplyConfig(**merged)
