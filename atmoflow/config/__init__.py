"""
Configuration module for the atmoflow core.

Provides YAML-based configuration with dataclass schema.
"""

from .schema import (
    SimulationConfig,
    TimeConfig,
    ImmersedBoundaryConfig,
    GridConfig,
    MasterConfig,
    LoggingConfig,
)

from .loader import (
    load_yaml,
    from_dict,
    apply_cli_overrides,
    save_yaml,
)

__all__ = [
    # Schema classes
    'SimulationConfig',
    'TimeConfig',
    'ImmersedBoundaryConfig',
    'GridConfig',
    'MasterConfig',
    'LoggingConfig',
    # Loader functions
    'load_yaml',
    'from_dict',
    'apply_cli_overrides',
    'save_yaml',
]
