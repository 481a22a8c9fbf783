"""
YAML configuration loader.
"""

import yaml
from pathlib import Path
from typing import Dict, Any, Union, get_args
from dataclasses import fields, is_dataclass

from .schema import (
    SimulationConfig, TimeConfig, ImmersedBoundaryConfig,
    GridConfig, MasterConfig, LoggingConfig,
)

_SECTIONS = {
    'time': TimeConfig,
    'immersed_boundary': ImmersedBoundaryConfig,
    'grid': GridConfig,
    'master': MasterConfig,
    'logging': LoggingConfig,
}


def _merge_dict(base: dict, override: dict) -> dict:
    """Recursively merge override into base dict."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _merge_dict(result[key], value)
        else:
            result[key] = value
    return result


def _coerce_type(value, field_type):
    """Coerce value to the expected field type."""
    # Optional[float] -> float
    args = [a for a in get_args(field_type) if a is not type(None)]
    if len(args) == 1:
        field_type = args[0]
    
    if not isinstance(value, str):
        if field_type == float and isinstance(value, int) and not isinstance(value, bool):
            return float(value)
        return value
    
    # Handle string representations of numbers (e.g., "1e9") and switches
    if field_type == float:
        try:
            return float(value)
        except ValueError:
            return value
    if field_type == int:
        try:
            return int(value)
        except ValueError:
            return value
    if field_type == bool:
        lowered = value.strip().lower()
        if lowered in ('true', '1', 'yes', 'on'):
            return True
        if lowered in ('false', '0', 'no', 'off'):
            return False
    return value


def _dict_to_dataclass(cls, data: dict):
    """Convert a nested dictionary to a dataclass instance."""
    if not is_dataclass(cls):
        return data
    
    field_types = {f.name: f.type for f in fields(cls)}
    kwargs = {}
    
    for key, value in data.items():
        if key not in field_types:
            continue  # Skip unknown fields
        
        field_type = field_types[key]
        
        if is_dataclass(field_type) and isinstance(value, dict):
            kwargs[key] = _dict_to_dataclass(field_type, value)
        else:
            kwargs[key] = _coerce_type(value, field_type)
    
    return cls(**kwargs)


def load_yaml(path: Union[str, Path]) -> SimulationConfig:
    """
    Load simulation configuration from a YAML file.
    
    Args:
        path: Path to YAML configuration file
        
    Returns:
        SimulationConfig instance
        
    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")
    
    with open(path) as f:
        data = yaml.safe_load(f)
    
    if data is None:
        data = {}
    
    return from_dict(data)


def from_dict(data: Dict[str, Any]) -> SimulationConfig:
    """
    Create SimulationConfig from a dictionary.
    
    Missing sections and values fall back to the schema defaults.
    """
    config_dict = {}
    for section, cls in _SECTIONS.items():
        if section in data and data[section] is not None:
            config_dict[section] = _dict_to_dataclass(cls, data[section])
    
    return SimulationConfig(**config_dict)


def apply_cli_overrides(config: SimulationConfig, args) -> SimulationConfig:
    """
    Apply command-line argument overrides to a configuration.
    
    Only overrides values that were explicitly set (not None).
    
    Args:
        config: Base configuration
        args: argparse.Namespace with CLI arguments
        
    Returns:
        Updated SimulationConfig
    """
    config_dict = config.to_dict()
    
    cli_mapping = {
        'mode': ('master', 'mode'),
        'starttime': ('time', 'starttime'),
        'endtime': ('time', 'endtime'),
        'savetime': ('time', 'savetime'),
        'dt': ('time', 'dt'),
        'rkorder': ('time', 'rkorder'),
        'sw_ib': ('immersed_boundary', 'sw_ib'),
        'log_level': ('logging', 'level'),
    }
    
    overrides = {}
    for cli_name, config_path in cli_mapping.items():
        value = getattr(args, cli_name, None)
        if value is not None:
            target = overrides
            for key in config_path[:-1]:
                target = target.setdefault(key, {})
            target[config_path[-1]] = value
    
    return from_dict(_merge_dict(config_dict, overrides))


def save_yaml(config: SimulationConfig, path: Union[str, Path]) -> None:
    """Save configuration to a YAML file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    
    with open(path, 'w') as f:
        yaml.dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)
