"""
Time integration for the atmoflow core.

This package provides:
    - Low-storage RK3/RK4 kernels (NumPy in place, JAX functional)
    - The integer-time clock with adaptive step limiting and restart files
    - The outer model loop calling the immersed boundary every sub-step
"""

from .time_stepping import (
    InterpolationFactors,
    get_interpolation_factors,
    rk_coefficients,
    rk_sub_time_step,
    rk_update,
    rk_update_jax,
    rk3,
    rk4,
)

from .timeloop import (
    TimeLoop,
    checkpoint_filename,
)

from .model import Model

__all__ = [
    # Kernels
    'InterpolationFactors',
    'get_interpolation_factors',
    'rk_coefficients',
    'rk_sub_time_step',
    'rk_update',
    'rk_update_jax',
    'rk3',
    'rk4',
    # Clock
    'TimeLoop',
    'checkpoint_filename',
    'Model',
]
