"""
Immersed boundary surface description.

The surface is a height function z = h(x[, y]) chosen from a closed family of
parametric shapes:

    none     : h = z_offset
    sine     : h = z_offset + A sin(2 pi x / lx) [sin(2 pi y / ly)]
    gaussian : h = z_offset + A exp(-((x-x0)^2 / (2 sx^2) + (y-y0)^2 / (2 sy^2)))
    block    : h = z_offset + A inside the footprint, z_offset outside
    user     : h from an external table

With xy_dims == 1 the surface varies in x only and y is ignored.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Union

import numpy as np
import numpy.typing as npt
from scipy.interpolate import interp1d, RegularGridInterpolator

from ..errors import ConfigurationError

NDArrayFloat = npt.NDArray[np.floating]


class IBType(Enum):
    """Supported boundary shapes."""
    NONE = "none"
    SINE = "sine"
    GAUSSIAN = "gaussian"
    BLOCK = "block"
    USER = "user"
    
    @classmethod
    def from_string(cls, name: str) -> 'IBType':
        key = name.strip().lower()
        if key == "gaus":
            key = "gaussian"
        for member in cls:
            if member.value == key:
                return member
        raise ConfigurationError(
            f"\"{name}\" is an illegal value for sw_ib "
            f"(use none, sine, gaussian, block or user)")


class UserBoundary:
    """
    Surface height looked up from tabulated data.
    
    One-dimensional tables are (x, z) pairs; two-dimensional tables hold a
    full regular (x, y) grid. Queries outside the table clamp to its edge.
    """
    
    def __init__(self, x: NDArrayFloat, z: NDArrayFloat,
                 y: Optional[NDArrayFloat] = None):
        x = np.asarray(x, dtype=float)
        z = np.asarray(z, dtype=float)
        
        if y is None:
            order = np.argsort(x)
            self.xy_dims = 1
            self._xrange = (x[order][0], x[order][-1])
            self._yrange = None
            self._interp = interp1d(x[order], z[order], kind="linear",
                                    bounds_error=False,
                                    fill_value=(z[order][0], z[order][-1]))
        else:
            y = np.asarray(y, dtype=float)
            if z.shape != (x.size, y.size):
                raise ConfigurationError(
                    f"User boundary table has shape {z.shape}, "
                    f"expected ({x.size}, {y.size})")
            self.xy_dims = 2
            self._xrange = (x.min(), x.max())
            self._yrange = (y.min(), y.max())
            self._interp = RegularGridInterpolator((x, y), z, method="linear")
    
    @classmethod
    def from_file(cls, path: Union[str, Path]) -> 'UserBoundary':
        """
        Read a whitespace separated table with columns `x z` or `x y z`.
        
        Raises
        ------
        FileNotFoundError
            If the table does not exist.
        ConfigurationError
            If the table has the wrong number of columns or is not a regular grid.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"User boundary file not found: {path}")
        data = np.loadtxt(path, ndmin=2)
        
        if data.shape[1] == 2:
            return cls(data[:, 0], data[:, 1])
        if data.shape[1] == 3:
            xs = np.unique(data[:, 0])
            ys = np.unique(data[:, 1])
            if xs.size * ys.size != data.shape[0]:
                raise ConfigurationError(f"{path} is not a regular x-y table")
            zz = np.empty((xs.size, ys.size))
            ix = np.searchsorted(xs, data[:, 0])
            iy = np.searchsorted(ys, data[:, 1])
            zz[ix, iy] = data[:, 2]
            return cls(xs, zz, y=ys)
        raise ConfigurationError(f"{path} must have 2 (x z) or 3 (x y z) columns")
    
    def __call__(self, x, y=None):
        x = np.clip(np.asarray(x, dtype=float), *self._xrange)
        if self.xy_dims == 1:
            return self._interp(x)
        y = np.clip(np.asarray(y, dtype=float), *self._yrange)
        xb, yb = np.broadcast_arrays(x, y)
        points = np.stack([xb.ravel(), yb.ravel()], axis=-1)
        return self._interp(points).reshape(xb.shape)


@dataclass(frozen=True)
class BoundaryGeometry:
    """Immutable description of the immersed surface."""
    
    ib_type: IBType = IBType.NONE
    amplitude: float = 0.0
    z_offset: float = 0.0
    xy_dims: int = 1
    
    wavelength_x: float = 1.0
    wavelength_y: float = 1.0
    
    x0_hill: float = 0.0
    y0_hill: float = 0.0
    sigma_x_hill: float = 1.0
    sigma_y_hill: float = 1.0
    
    block_x0: float = 0.0
    block_x1: float = 0.0
    block_y0: float = 0.0
    block_y1: float = 0.0
    
    user: Optional[UserBoundary] = field(default=None, compare=False, repr=False)
    
    def __post_init__(self) -> None:
        if self.xy_dims not in (1, 2):
            raise ConfigurationError(f"\"{self.xy_dims}\" is an illegal value for xy_dims")
        if self.ib_type == IBType.SINE:
            if self.wavelength_x <= 0. or (self.xy_dims == 2 and self.wavelength_y <= 0.):
                raise ConfigurationError("Sine wavelengths must be positive")
        elif self.ib_type == IBType.GAUSSIAN:
            if self.sigma_x_hill <= 0. or (self.xy_dims == 2 and self.sigma_y_hill <= 0.):
                raise ConfigurationError("Gaussian hill spreads must be positive")
        elif self.ib_type == IBType.BLOCK:
            if self.block_x1 <= self.block_x0 or (
                    self.xy_dims == 2 and self.block_y1 <= self.block_y0):
                raise ConfigurationError("Block footprint must have positive extent")
        elif self.ib_type == IBType.USER:
            if self.user is None:
                raise ConfigurationError("A user boundary needs a height table")
            if self.user.xy_dims != self.xy_dims:
                raise ConfigurationError(
                    f"User boundary table is {self.user.xy_dims}-D but xy_dims = {self.xy_dims}")
    
    @classmethod
    def from_config(cls, config) -> 'BoundaryGeometry':
        """Build the geometry from an ImmersedBoundaryConfig."""
        ib_type = IBType.from_string(config.sw_ib)
        user = None
        if ib_type == IBType.USER:
            if config.user_file is None:
                raise ConfigurationError("sw_ib = user requires user_file")
            user = UserBoundary.from_file(config.user_file)
        
        return cls(
            ib_type=ib_type,
            amplitude=config.amplitude,
            z_offset=config.z_offset,
            xy_dims=config.xy_dims,
            wavelength_x=config.wavelength_x,
            wavelength_y=config.wavelength_y,
            x0_hill=config.x0_hill,
            y0_hill=config.y0_hill,
            sigma_x_hill=config.sigma_x_hill,
            sigma_y_hill=config.sigma_y_hill,
            block_x0=config.block_x0,
            block_x1=config.block_x1,
            block_y0=config.block_y0,
            block_y1=config.block_y1,
            user=user,
        )
    
    @property
    def is_smooth(self) -> bool:
        """Smooth shapes need an iterative nearest-point search."""
        return self.ib_type in (IBType.SINE, IBType.GAUSSIAN, IBType.USER)
    
    def height(self, x, y=0.0):
        """
        Elevation of the boundary at horizontal position (x, y).
        
        Works on scalars and broadcastable arrays. `y` is ignored when xy_dims == 1.
        """
        x = np.asarray(x, dtype=float)
        y = np.asarray(y, dtype=float)
        
        if self.ib_type == IBType.NONE:
            return self.z_offset + np.zeros(np.broadcast(x, y).shape)
        
        if self.ib_type == IBType.SINE:
            z = np.sin(2. * np.pi * x / self.wavelength_x)
            if self.xy_dims == 2:
                z = z * np.sin(2. * np.pi * y / self.wavelength_y)
            return self.z_offset + self.amplitude * z
        
        if self.ib_type == IBType.GAUSSIAN:
            arg = (x - self.x0_hill)**2 / (2. * self.sigma_x_hill**2)
            if self.xy_dims == 2:
                arg = arg + (y - self.y0_hill)**2 / (2. * self.sigma_y_hill**2)
            return self.z_offset + self.amplitude * np.exp(-arg)
        
        if self.ib_type == IBType.BLOCK:
            inside = (x >= self.block_x0) & (x <= self.block_x1)
            if self.xy_dims == 2:
                inside = inside & (y >= self.block_y0) & (y <= self.block_y1)
            return self.z_offset + np.where(inside, self.amplitude, 0.)
        
        # IBType.USER
        if self.xy_dims == 1:
            return np.asarray(self.user(x))
        return np.asarray(self.user(x, y))
    
    def is_solid(self, x, y, z):
        """Points strictly below the surface are inside the solid."""
        return np.asarray(z) < self.height(x, y)
