"""
Low-storage Runge-Kutta kernels.

Williamson-type 2N-storage update for one sub-stage s of field a with
tendency at:

    a  <- a + cB[s] * dt * at
    at <- cA[(s+1) % n] * at

cA[0] == 0, so the tendency is reset after the last stage of a step.

Both NumPy (in place) and JAX (functional) implementations provided.
"""

from typing import NamedTuple, Sequence, Tuple

import numpy as np
import numpy.typing as npt

from ..constants import RK_TABLEAUX
from ..errors import ConfigurationError
from ..utils.jax_config import jax, jnp

NDArrayFloat = npt.NDArray[np.floating]


def rk_coefficients(rkorder: int) -> Tuple[Tuple[float, ...], Tuple[float, ...]]:
    """Return (cA, cB) of the low-storage scheme of the given order."""
    if rkorder not in RK_TABLEAUX:
        raise ConfigurationError(f"\"{rkorder}\" is an illegal value for rkorder")
    return RK_TABLEAUX[rkorder]


def rk_sub_time_step(dt: float, substep: int, rkorder: int) -> float:
    """Time advanced by the given sub-stage."""
    _, cB = rk_coefficients(rkorder)
    return cB[substep] * dt


def rk_update(a: NDArrayFloat, at: NDArrayFloat, dt: float,
              substep: int, rkorder: int, region=Ellipsis) -> None:
    """
    Apply one sub-stage update in place.

    Parameters
    ----------
    a, at : ndarray
        Field and tendency, same shape.
    dt : float
        Full time step.
    substep : int
        Active sub-stage.
    rkorder : int
        3 or 4.
    region : index, optional
        Part of the arrays to update (the interior of the grid); everything
        else is left untouched.
    """
    cA, cB = rk_coefficients(rkorder)
    substepn = (substep + 1) % len(cA)

    a[region] += cB[substep] * dt * at[region]

    # substep 0 resets the tendencies, because cA[0] == 0
    at[region] *= cA[substepn]


def rk3(a: NDArrayFloat, at: NDArrayFloat, dt: float, substep: int, region=Ellipsis) -> None:
    """Third-order, three-stage low-storage update."""
    rk_update(a, at, dt, substep, 3, region)


def rk4(a: NDArrayFloat, at: NDArrayFloat, dt: float, substep: int, region=Ellipsis) -> None:
    """Fourth-order, five-stage low-storage update."""
    rk_update(a, at, dt, substep, 4, region)


class InterpolationFactors(NamedTuple):
    """Bracketing indices and linear weights for time interpolation."""
    index0: int
    index1: int
    fac0: float
    fac1: float


def get_interpolation_factors(time: float, timevec: Sequence[float]) -> InterpolationFactors:
    """
    Locate `time` in an ascending sequence of reference times.

    value(time) = fac0 * values[index0] + fac1 * values[index1]

    Before the first reference time both indices are 0 with (fac0, fac1) = (0, 1);
    after the last both are the last index with (1, 0).

    Raises
    ------
    ValueError
        If `timevec` is empty or not strictly ascending.
    """
    timevec = np.asarray(timevec, dtype=float)
    if timevec.size == 0:
        raise ValueError("Interpolation needs at least one reference time")
    if np.any(np.diff(timevec) <= 0.):
        raise ValueError("Reference times must be strictly ascending")

    # Number of reference times not later than `time`
    index1 = 0
    for t in timevec:
        if time < t:
            break
        index1 += 1

    if index1 == 0:
        return InterpolationFactors(0, 0, 0., 1.)

    if index1 == timevec.size:
        last = index1 - 1
        return InterpolationFactors(last, last, 1., 0.)

    index0 = index1 - 1
    span = timevec[index1] - timevec[index0]
    fac0 = (timevec[index1] - time) / span
    fac1 = (time - timevec[index0]) / span
    return InterpolationFactors(index0, index1, float(fac0), float(fac1))


# =============================================================================
# JAX Implementations
# =============================================================================

@jax.jit
def _rk_update_jax_kernel(a, at, cb_dt, ca_next):
    """JIT-compiled sub-stage update."""
    a_new = a + cb_dt * at
    at_new = ca_next * at
    return a_new, at_new


def rk_update_jax(a, at, dt: float, substep: int, rkorder: int):
    """
    JAX: one sub-stage update.

    Parameters
    ----------
    a, at : jnp.ndarray
        Field and tendency.
    dt : float
        Full time step.
    substep : int
        Active sub-stage.
    rkorder : int
        3 or 4.

    Returns
    -------
    a_new, at_new : jnp.ndarray
        Updated field and scaled tendency.
    """
    cA, cB = rk_coefficients(rkorder)
    substepn = (substep + 1) % len(cA)
    return _rk_update_jax_kernel(jnp.asarray(a), jnp.asarray(at),
                                 cB[substep] * dt, cA[substepn])
