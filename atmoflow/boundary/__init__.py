"""
Ghost-cell immersed boundary method.

This package provides:
    - Boundary surface shapes (none, sine, gaussian, block, user)
    - Ghost-cell classification and stencil/weight construction
    - Per-step enforcement of Dirichlet and Neumann conditions
"""

from .geometry import (
    IBType,
    BoundaryGeometry,
    UserBoundary,
)

from .ghost_cells import (
    StencilSettings,
    Neighbour,
    GhostCell,
    GhostCellCatalog,
    classify_points,
    find_nearest_location_wall,
    polynomial_basis,
)

from .enforcer import (
    BoundaryCondition,
    BoundaryEnforcer,
    NO_SLIP,
)

from .immersed_boundary import ImmersedBoundary

__all__ = [
    # Geometry
    'IBType',
    'BoundaryGeometry',
    'UserBoundary',
    # Catalog
    'StencilSettings',
    'Neighbour',
    'GhostCell',
    'GhostCellCatalog',
    'classify_points',
    'find_nearest_location_wall',
    'polynomial_basis',
    # Enforcement
    'BoundaryCondition',
    'BoundaryEnforcer',
    'NO_SLIP',
    'ImmersedBoundary',
]
