"""
Immersed boundary: builds the ghost-cell catalogs once and applies them every sub-step.

Call order inside a sub-step (see solvers.model.Model):

    tendencies computed by the dynamics
    ImmersedBoundary.exec_tend()     ghost tendencies
    TimeLoop.exec()                  RK update
    ImmersedBoundary.exec()          ghost values for the next tendency evaluation
"""

from typing import Dict, Optional, Tuple

import numpy as np
from loguru import logger

from ..errors import ConfigurationError
from ..fields.store import FieldStore
from ..grid.staggered import StaggeredGrid
from .enforcer import BoundaryCondition, BoundaryEnforcer, NO_SLIP
from .geometry import BoundaryGeometry
from .ghost_cells import GhostCellCatalog, StencilSettings

MOMENTUM_LOCATIONS = ("u", "v", "w")


class ImmersedBoundary:
    """
    Ghost-cell immersed boundary for all prognostic fields.

    One catalog exists per velocity location (u, v, w) and one per boundary
    condition kind in use by the scalars (normally just Dirichlet, giving four
    catalogs in total).
    """

    def __init__(self, grid: StaggeredGrid, fields: FieldStore, config, timeloop=None):
        """
        Parameters
        ----------
        grid : StaggeredGrid
            Local grid (not owned).
        fields : FieldStore
            Prognostic fields (not owned).
        config : ImmersedBoundaryConfig
            Immersed boundary section of the configuration.
        timeloop : TimeLoop, optional
            Consulted to gate diagnostics to full steps.
        """
        self.grid = grid
        self.fields = fields
        self.timeloop = timeloop
        self.enabled = config.enabled

        self.geometry: Optional[BoundaryGeometry] = None
        self.settings = StencilSettings.from_config(config)
        self.catalogs: Dict[Tuple[str, str], GhostCellCatalog] = {}

        default_bc = BoundaryCondition(config.sbc, config.sbot)
        self.scalar_bcs: Dict[str, BoundaryCondition] = {}
        for name in fields.scalar_names:
            override = config.scalar_bcs.get(name, {})
            self.scalar_bcs[name] = BoundaryCondition(
                override.get("sbc", default_bc.kind),
                float(override.get("sbot", default_bc.value)))
        unknown = set(config.scalar_bcs) - set(self.scalar_bcs)
        if unknown:
            raise ConfigurationError(f"Boundary conditions given for unknown scalars: {sorted(unknown)}")

        if self.enabled:
            self.geometry = BoundaryGeometry.from_config(config)
            self.settings.check_well_posed(not grid.is_2d)

    def bc_for(self, name: str) -> BoundaryCondition:
        if self.fields.loc[name] in MOMENTUM_LOCATIONS:
            return NO_SLIP
        return self.scalar_bcs[name]

    def catalog_for(self, name: str) -> GhostCellCatalog:
        loc = self.fields.loc[name]
        return self.catalogs[(loc, self.bc_for(name).kind)]

    def create(self) -> None:
        """Build all catalogs. Geometry is static, so this runs once per run."""
        if not self.enabled:
            return

        logger.info(f"Building immersed boundary ghost cells ({self.geometry.ib_type.value})")
        needed = set()
        for name in self.fields.ap:
            needed.add((self.fields.loc[name], self.bc_for(name).kind))

        for loc, kind in sorted(needed):
            catalog = GhostCellCatalog.build(
                f"ghost_cells_{loc}", loc, self.grid, self.geometry, self.settings, kind)
            self.catalogs[(loc, kind)] = catalog
            logger.info(f"  {loc} ({kind}): {len(catalog)} ghost cells")

    def exec(self) -> None:
        """Set ghost values of all prognostic fields."""
        if not self.enabled:
            return
        for name, a in self.fields.ap.items():
            bc = self.bc_for(name)
            BoundaryEnforcer.apply(a, self.catalog_for(name), bc)

    def exec_tend(self) -> None:
        """Set ghost tendencies of all prognostic fields."""
        if not self.enabled:
            return
        for name, at in self.fields.at.items():
            BoundaryEnforcer.apply_tendency(at, self.catalog_for(name), self.bc_for(name))

    def exec_stats(self) -> Optional[Dict[str, Dict[str, float]]]:
        """
        Ghost-cell diagnostics per field, only at full (statistics) steps.

        Returns
        -------
        dict or None
            {field: {"n_ghost": ..., "mean": ..., "max_abs": ...}} or None when
            disabled or mid-step.
        """
        if not self.enabled:
            return None
        if self.timeloop is not None and not self.timeloop.is_stats_step():
            return None

        stats = {}
        for name, a in self.fields.ap.items():
            catalog = self.catalog_for(name)
            if catalog.is_empty:
                stats[name] = {"n_ghost": 0, "mean": 0.0, "max_abs": 0.0}
                continue
            ijk = catalog.ghost_ijk
            values = a[ijk[:, 0], ijk[:, 1], ijk[:, 2]]
            stats[name] = {
                "n_ghost": len(catalog),
                "mean": float(np.mean(values)),
                "max_abs": float(np.max(np.abs(values))),
            }
            logger.debug(f"IB stats {name}: n={len(catalog)}, mean={stats[name]['mean']:.6e}")
        return stats
