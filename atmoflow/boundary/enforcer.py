"""
Per-step application of the ghost-cell catalogs.

Every ghost value is replaced by the reconstruction

    phi_g = w_0 * phi_b + sum_n w_n * phi[i_n, j_n, k_n]

with the weights precomputed by the catalog. Only ghost indices are written.
Stencils never contain ghost cells, so the update order is irrelevant.
"""

from dataclasses import dataclass

import numpy as np
from numba import njit

from ..errors import ConfigurationError
from .ghost_cells import GhostCellCatalog, BC_KINDS


@dataclass(frozen=True)
class BoundaryCondition:
    """Boundary condition imposed at the boundary points of a catalog."""

    kind: str = "dirichlet"   # dirichlet: value, neumann: normal gradient
    value: float = 0.0

    def __post_init__(self) -> None:
        if self.kind not in BC_KINDS:
            raise ConfigurationError(f"\"{self.kind}\" is an illegal boundary condition")


# No-slip for all velocity components; includes no-penetration of the normal one
NO_SLIP = BoundaryCondition("dirichlet", 0.0)


@njit(cache=True)
def _set_ghost_cells(a: np.ndarray, ghost_ijk: np.ndarray, neighbour_ijk: np.ndarray,
                     weights: np.ndarray, boundary_value: float) -> None:
    """Overwrite a[ghost] with the weighted stencil sum (in place)."""
    n_ghost = ghost_ijk.shape[0]
    n_nb = neighbour_ijk.shape[1]

    for g in range(n_ghost):
        val = weights[g, 0] * boundary_value
        for n in range(n_nb):
            val += weights[g, n + 1] * a[neighbour_ijk[g, n, 0],
                                         neighbour_ijk[g, n, 1],
                                         neighbour_ijk[g, n, 2]]
        a[ghost_ijk[g, 0], ghost_ijk[g, 1], ghost_ijk[g, 2]] = val


class BoundaryEnforcer:
    """Applies ghost-cell catalogs to value and tendency arrays."""

    @staticmethod
    def _check(a: np.ndarray, catalog: GhostCellCatalog, bc: BoundaryCondition) -> None:
        if bc.kind != catalog.bc_kind:
            raise ConfigurationError(
                f"Catalog {catalog.name!r} was built for {catalog.bc_kind} "
                f"but a {bc.kind} condition was requested")
        if a.ndim != 3:
            raise ValueError(f"Expected a 3-D field array, got shape {a.shape}")

    @classmethod
    def apply(cls, a: np.ndarray, catalog: GhostCellCatalog,
              bc: BoundaryCondition = NO_SLIP) -> np.ndarray:
        """
        Set ghost values consistent with the boundary condition.

        Parameters
        ----------
        a : ndarray, shape (icells, jcells, kcells)
            Field values, modified in place at ghost indices only.
        catalog : GhostCellCatalog
            Catalog of the field's grid location.
        bc : BoundaryCondition
            Condition at the boundary points.

        Returns
        -------
        a : ndarray
            The same array, for chaining.
        """
        cls._check(a, catalog, bc)
        if not catalog.is_empty:
            _set_ghost_cells(a, catalog.ghost_ijk, catalog.neighbour_ijk,
                             catalog.weights, float(bc.value))
        return a

    @classmethod
    def apply_tendency(cls, at: np.ndarray, catalog: GhostCellCatalog,
                       bc: BoundaryCondition = NO_SLIP) -> np.ndarray:
        """
        Set ghost tendencies.

        Boundary conditions are constant in time, so the tendency at the
        boundary point is zero for both Dirichlet and Neumann conditions.
        """
        cls._check(at, catalog, bc)
        if not catalog.is_empty:
            _set_ghost_cells(at, catalog.ghost_ijk, catalog.neighbour_ijk,
                             catalog.weights, 0.0)
        return at
