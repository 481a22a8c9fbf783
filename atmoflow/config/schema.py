"""
Configuration schema for the atmoflow core.

Dataclass-based configuration that can be loaded from YAML or constructed programmatically.
Only the handful of parameters consumed by the time loop and the immersed
boundary live here; everything else belongs to the collaborators.
"""

from dataclasses import dataclass, field, asdict
from typing import Optional, Dict, Any

from ..constants import DBIG


@dataclass
class TimeConfig:
    """Time loop settings ([time] section)."""
    
    # Obligatory (starttime only outside of "init" mode, postproctime only in "post" mode)
    starttime: Optional[float] = None
    endtime: Optional[float] = None
    savetime: Optional[float] = None
    postproctime: Optional[float] = None
    
    adaptivestep: bool = True
    dtmax: float = DBIG
    dt: Optional[float] = None      # Defaults to dtmax
    rkorder: int = 3                # 3 or 4
    outputiter: int = 20
    iotimeprec: int = 0             # Output times align on 10**iotimeprec seconds
    
    # Kernel used for the RK update: "numpy" (in place) or "jax"
    backend: str = "numpy"
    checkpoint_dir: str = "."


@dataclass
class ImmersedBoundaryConfig:
    """Immersed boundary settings ([immersed_boundary] section)."""
    
    enabled: bool = False
    sw_ib: str = "none"             # none, sine, gaussian, block, user
    
    amplitude: float = 0.0
    z_offset: float = 0.0
    xy_dims: int = 1                # 1 = varies in x only, 2 = varies in x and y
    
    # Sine
    wavelength_x: float = 1.0
    wavelength_y: float = 1.0
    
    # Gaussian hill
    x0_hill: float = 0.0
    y0_hill: float = 0.0
    sigma_x_hill: float = 1.0
    sigma_y_hill: float = 1.0
    
    # Block footprint
    block_x0: float = 0.0
    block_x1: float = 0.0
    block_y0: float = 0.0
    block_y1: float = 0.0
    
    # User-defined surface table (columns: x [y] z)
    user_file: Optional[str] = None
    
    # Stencil and reconstruction
    n_neighbours: int = 8
    interpolation_order: int = 1
    search_cells: int = 3           # Half-width of the candidate box in grid indices
    max_condition: float = 1.e8
    
    # Nearest-boundary-point search (tolerance relative to the grid spacing)
    search_radius: float = 4.0
    search_tol: float = 1.e-10
    search_maxiter: int = 500
    
    # Scalar boundary condition: default plus per-scalar overrides
    # scalar_bcs: {th: {sbc: neumann, sbot: 0.01}}
    sbc: str = "dirichlet"
    sbot: float = 0.0
    scalar_bcs: Dict[str, Dict[str, Any]] = field(default_factory=dict)


@dataclass
class GridConfig:
    """Uniform structured grid used when the model builds its own grid."""
    
    itot: int = 32
    jtot: int = 1
    ktot: int = 32
    xsize: float = 1.0
    ysize: float = 1.0
    zsize: float = 1.0


@dataclass
class MasterConfig:
    """Process coordination settings."""
    
    mode: str = "run"                    # init, run or post
    wallclocklimit: Optional[float] = None   # Hours; None = unlimited
    wall_clock_margin: float = 300.0     # Seconds kept in reserve for saving


@dataclass
class LoggingConfig:
    """Logging configuration."""
    
    level: str = "INFO"
    show_time: bool = True
    log_file: Optional[str] = None      # "{rank}" is replaced by the process rank


@dataclass
class SimulationConfig:
    """Complete configuration."""
    
    time: TimeConfig = field(default_factory=TimeConfig)
    immersed_boundary: ImmersedBoundaryConfig = field(default_factory=ImmersedBoundaryConfig)
    grid: GridConfig = field(default_factory=GridConfig)
    master: MasterConfig = field(default_factory=MasterConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    
    def to_dict(self) -> dict:
        """Convert to nested dictionary."""
        return asdict(self)
