"""
Prognostic field storage.

Each prognostic variable owns a value array (`ap`) and a tendency array
(`at`) of the grid shape, plus the staggered location it lives on.
"""

import numpy as np
from typing import Dict, List

from ..grid.staggered import StaggeredGrid, LOCATIONS


class FieldStore:
    """Named mapping from field identifier to value and tendency arrays."""
    
    def __init__(self, grid: StaggeredGrid):
        self.grid = grid
        self.ap: Dict[str, np.ndarray] = {}
        self.at: Dict[str, np.ndarray] = {}
        self.loc: Dict[str, str] = {}
    
    @classmethod
    def with_momentum(cls, grid: StaggeredGrid, scalars=()) -> 'FieldStore':
        """Create a store holding u, v, w and the given scalars."""
        store = cls(grid)
        for name in ("u", "v", "w"):
            store.add_prognostic(name, name)
        for name in scalars:
            store.add_prognostic(name, "s")
        return store
    
    def add_prognostic(self, name: str, loc: str) -> None:
        if loc not in LOCATIONS:
            raise ValueError(f"Unknown grid location {loc!r} for field {name!r}")
        if name in self.ap:
            raise ValueError(f"Field {name!r} already exists")
        self.ap[name] = self.grid.zeros()
        self.at[name] = self.grid.zeros()
        self.loc[name] = loc
    
    @property
    def momentum_names(self) -> List[str]:
        return [name for name, loc in self.loc.items() if loc != "s"]
    
    @property
    def scalar_names(self) -> List[str]:
        return [name for name, loc in self.loc.items() if loc == "s"]
    
    def reset_tendencies(self) -> None:
        for at in self.at.values():
            at.fill(0.)
