"""
Configuration file support for the pbsummary CLI.

Supports YAML and JSON config files with CLI argument override. Example::

    thresholds: [0.01, 0.05, 0.1]
    pvalue_threshold: 0.05     # null disables the raw p-value tier
    significance: 0.05
    workers: 4
    filtering:
      min_count: 10
      min_group_size: 3
      min_cells: 10
"""

import json
from argparse import Namespace
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from pbsummary.stats.normalize import P_VALUE_FLOOR
from pbsummary.stats.thresholds import DEFAULT_THRESHOLDS


@dataclass
class FilterConfig:
    """Expression filter and sample inclusion settings."""
    min_count: float = 10
    min_group_size: int = 3
    min_cells: int = 10


@dataclass
class RunConfig:
    """
    Settings shared by the ``deg`` and ``abundance`` commands.

    Mirrors the CLI argument structure for consistency.
    """
    thresholds: List[float] = field(default_factory=lambda: list(DEFAULT_THRESHOLDS))
    pvalue_threshold: Optional[float] = 0.05
    floor: float = P_VALUE_FLOOR
    significance: float = 0.05
    workers: int = 1
    filtering: FilterConfig = field(default_factory=FilterConfig)

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "RunConfig":
        """Build a validated RunConfig; missing keys keep their defaults."""
        validate_config(config)
        values = {k: v for k, v in config.items() if k != 'filtering'}
        if 'thresholds' in values:
            values['thresholds'] = [float(t) for t in values['thresholds']]
        filtering = FilterConfig(**config.get('filtering', {}))
        return cls(filtering=filtering, **values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


_TOP_LEVEL_KEYS = {'thresholds', 'pvalue_threshold', 'floor', 'significance', 'workers', 'filtering'}
_FILTER_KEYS = {'min_count', 'min_group_size', 'min_cells'}

# config key -> argparse destination
_ARG_NAMES = {
    'thresholds': 'thresholds',
    'pvalue_threshold': 'pvalue_threshold',
    'floor': 'floor',
    'significance': 'significance',
    'workers': 'workers',
    'min_count': 'min_count',
    'min_group_size': 'min_group_size',
    'min_cells': 'min_cells',
}

# flags whose destination differs from their name
_SHORT_OPTIONS = {'-j': 'workers'}
_FLAG_DESTS = {'no_pvalue_tier': 'pvalue_threshold'}


def load_config(config_path: Path) -> Dict[str, Any]:
    """
    Load configuration from YAML or JSON file.

    Parameters:
        config_path: Path to config file (.yaml, .yml, or .json)

    Returns:
        Dictionary with configuration values

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If file format is unsupported or invalid
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()

    try:
        with open(config_path, 'r') as f:
            if suffix in ('.yaml', '.yml'):
                config = yaml.safe_load(f)
            elif suffix == '.json':
                config = json.load(f)
            else:
                raise ValueError(
                    f"Unsupported config format: {suffix}. "
                    f"Use .yaml, .yml, or .json"
                )
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in config file: {e}")
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in config file: {e}")

    if config is None:
        return {}

    if not isinstance(config, dict):
        raise ValueError("Config file must contain a dictionary/mapping at top level")

    return config


def _is_probability(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and 0 < value < 1


def validate_config(config: Dict[str, Any]) -> None:
    """
    Validate configuration structure and values.

    Raises:
        ValueError: If configuration is invalid
    """
    unknown = set(config) - _TOP_LEVEL_KEYS
    if unknown:
        raise ValueError(f"Unknown config keys: {sorted(unknown)}")

    filtering = config.get('filtering', {})
    if not isinstance(filtering, dict):
        raise ValueError("'filtering' must be a mapping")
    unknown = set(filtering) - _FILTER_KEYS
    if unknown:
        raise ValueError(f"Unknown filtering keys: {sorted(unknown)}")

    if 'thresholds' in config:
        thresholds = config['thresholds']
        if not isinstance(thresholds, list) or not thresholds:
            raise ValueError(f"thresholds must be a non-empty list, got: {thresholds}")
        bad = [t for t in thresholds if not _is_probability(t)]
        if bad:
            raise ValueError(f"thresholds must lie in (0, 1), got: {bad}")

    # pvalue_threshold: null turns the raw p-value tier off
    value = config.get('pvalue_threshold')
    if value is not None and not _is_probability(value):
        raise ValueError(f"pvalue_threshold must lie in (0, 1) or be null, got: {value}")
    for key in ('floor', 'significance'):
        if key in config and not _is_probability(config[key]):
            raise ValueError(f"{key} must lie in (0, 1), got: {config[key]}")

    if 'workers' in config:
        workers = config['workers']
        if not isinstance(workers, int) or workers <= 0:
            raise ValueError(f"workers must be a positive integer, got: {workers}")

    for key in ('min_group_size', 'min_cells'):
        if key not in filtering:
            continue
        value = filtering[key]
        if not isinstance(value, int) or isinstance(value, bool) or value < 1:
            raise ValueError(f"filtering.{key} must be a positive integer, got: {value}")
    if 'min_count' in filtering:
        value = filtering['min_count']
        if not isinstance(value, (int, float)) or value < 0:
            raise ValueError(f"filtering.min_count must be >= 0, got: {value}")


def _merge_value(cli_value: Any, config_value: Any, was_explicitly_set: bool) -> Any:
    """
    Merge a single config value with CLI argument.

    Rules:
    - CLI args ALWAYS override config if explicitly set
    - If CLI arg not set, use config value
    - If neither set, keep CLI default
    """
    if was_explicitly_set:
        return cli_value
    if config_value is not None:
        return config_value
    return cli_value


def explicit_arg_names(cli_args: Optional[List[str]]) -> set:
    """argparse destinations of the options present in ``cli_args``."""
    explicit = set()
    for arg in cli_args or []:
        if arg.startswith('--'):
            name = arg[2:].split('=', 1)[0].replace('-', '_')
            explicit.add(_FLAG_DESTS.get(name, name))
        elif arg[:2] in _SHORT_OPTIONS:
            explicit.add(_SHORT_OPTIONS[arg[:2]])
    return explicit


def merge_config_with_args(
    config: Dict[str, Any],
    args: Namespace,
    cli_args: Optional[List[str]] = None,
) -> Namespace:
    """
    Merge config file values with CLI arguments.

    Priority (highest to lowest):
    1. Explicitly provided CLI arguments
    2. Config file values
    3. CLI argument defaults

    Parameters:
        config: Configuration dictionary from load_config()
        args: Parsed CLI arguments (argparse.Namespace)
        cli_args: Raw CLI arguments list (for detecting explicit values).
                  If None, assumes all args are defaults

    Returns:
        Updated Namespace with merged values
    """
    explicit = explicit_arg_names(cli_args)
    merged = Namespace(**vars(args))

    flat = {k: v for k, v in config.items() if k != 'filtering'}
    flat.update(config.get('filtering', {}))

    for config_key, value in flat.items():
        arg_name = _ARG_NAMES[config_key]
        if not hasattr(merged, arg_name):
            continue
        if config_key == 'pvalue_threshold' and value is None and arg_name not in explicit:
            merged.pvalue_threshold = None
            continue
        setattr(merged, arg_name, _merge_value(
            getattr(merged, arg_name),
            value,
            arg_name in explicit,
        ))

    return merged
