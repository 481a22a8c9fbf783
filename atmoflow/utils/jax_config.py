"""JAX configuration for the atmoflow kernels: 64-bit precision."""

import jax
import jax.numpy as jnp

# Integer time and RK coefficients need double precision on every device
jax.config.update("jax_enable_x64", True)


def get_device_info() -> str:
    """Get available JAX devices as string."""
    devices = jax.devices()
    device_strs = [f"{d.platform}:{d.id}" for d in devices]
    return f"JAX devices: {device_strs}"


__all__ = ['jax', 'jnp', 'get_device_info']
