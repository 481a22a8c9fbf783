"""
Uniform staggered (Arakawa C) grid for one process's sub-domain.

Array convention: every field has shape (icells, jcells, kcells) and is
indexed [i, j, k]. Interior points are [istart:iend, jstart:jend, kstart:kend];
the remaining points are halo cells owned by the decomposition layer.

Staggering:
    u : (xh, y,  z )
    v : (x,  yh, z )
    w : (x,  y,  zh)
    s : (x,  y,  z )
"""

import numpy as np
import numpy.typing as npt
from dataclasses import dataclass, field
from typing import Tuple

from ..constants import NGHOST
from ..errors import ConfigurationError

NDArrayFloat = npt.NDArray[np.floating]

LOCATIONS = ("u", "v", "w", "s")


@dataclass
class StaggeredGrid:
    """Coordinates and index ranges of a uniform staggered grid."""
    
    itot: int
    jtot: int
    ktot: int
    xsize: float
    ysize: float
    zsize: float
    igc: int = NGHOST
    jgc: int = NGHOST
    kgc: int = NGHOST
    
    # Offsets of this sub-domain in the global grid
    ioffset: int = 0
    joffset: int = 0
    
    x: NDArrayFloat = field(init=False, repr=False)
    xh: NDArrayFloat = field(init=False, repr=False)
    y: NDArrayFloat = field(init=False, repr=False)
    yh: NDArrayFloat = field(init=False, repr=False)
    z: NDArrayFloat = field(init=False, repr=False)
    zh: NDArrayFloat = field(init=False, repr=False)
    
    def __post_init__(self) -> None:
        if min(self.itot, self.jtot, self.ktot) < 1:
            raise ConfigurationError("Grid dimensions must be positive")
        if min(self.xsize, self.ysize, self.zsize) <= 0.:
            raise ConfigurationError("Grid sizes must be positive")
        
        self.dx = self.xsize / self.itot
        self.dy = self.ysize / self.jtot
        self.dz = self.zsize / self.ktot
        
        # Cell centres at (n+0.5)*d, faces at n*d, including halo cells
        ii = np.arange(self.icells) - self.igc + self.ioffset
        jj = np.arange(self.jcells) - self.jgc + self.joffset
        kk = np.arange(self.kcells) - self.kgc
        
        self.x = (ii + 0.5) * self.dx
        self.xh = ii * self.dx
        self.y = (jj + 0.5) * self.dy
        self.yh = jj * self.dy
        self.z = (kk + 0.5) * self.dz
        self.zh = kk * self.dz
    
    @classmethod
    def from_config(cls, config) -> 'StaggeredGrid':
        """Create a single-process grid from a GridConfig."""
        return cls(itot=config.itot, jtot=config.jtot, ktot=config.ktot,
                   xsize=config.xsize, ysize=config.ysize, zsize=config.zsize)
    
    @property
    def icells(self) -> int:
        return self.itot + 2 * self.igc
    
    @property
    def jcells(self) -> int:
        return self.jtot + 2 * self.jgc
    
    @property
    def kcells(self) -> int:
        return self.ktot + 2 * self.kgc
    
    @property
    def shape(self) -> Tuple[int, int, int]:
        return (self.icells, self.jcells, self.kcells)
    
    @property
    def istart(self) -> int:
        return self.igc
    
    @property
    def iend(self) -> int:
        return self.igc + self.itot
    
    @property
    def jstart(self) -> int:
        return self.jgc
    
    @property
    def jend(self) -> int:
        return self.jgc + self.jtot
    
    @property
    def kstart(self) -> int:
        return self.kgc
    
    @property
    def kend(self) -> int:
        return self.kgc + self.ktot
    
    @property
    def is_2d(self) -> bool:
        """True for x-z simulations with a single point in y."""
        return self.jtot == 1
    
    @property
    def interior(self) -> Tuple[slice, slice, slice]:
        return (slice(self.istart, self.iend),
                slice(self.jstart, self.jend),
                slice(self.kstart, self.kend))
    
    @property
    def spacing(self) -> float:
        """Smallest grid spacing of the resolved directions."""
        if self.is_2d:
            return min(self.dx, self.dz)
        return min(self.dx, self.dy, self.dz)
    
    def locations(self, loc: str) -> Tuple[NDArrayFloat, NDArrayFloat, NDArrayFloat]:
        """
        Coordinate vectors of a field's grid points.
        
        Parameters
        ----------
        loc : str
            One of "u", "v", "w", "s".
            
        Returns
        -------
        x, y, z : ndarray
            1-D coordinate vectors of length icells, jcells, kcells.
        """
        if loc == "u":
            return self.xh, self.y, self.z
        if loc == "v":
            return self.x, self.yh, self.z
        if loc == "w":
            return self.x, self.y, self.zh
        if loc == "s":
            return self.x, self.y, self.z
        raise ValueError(f"Unknown grid location: {loc!r}. Use one of {LOCATIONS}")
    
    def zeros(self) -> NDArrayFloat:
        return np.zeros(self.shape)
