"""
Shared pytest fixtures for the test suite.

Small staggered grids, configuration sections and a serial master are cheap to
build, so all fixtures are function-scoped.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from atmoflow.config.schema import ImmersedBoundaryConfig, TimeConfig, SimulationConfig
from atmoflow.fields.store import FieldStore
from atmoflow.grid.staggered import StaggeredGrid
from atmoflow.parallel.master import SerialMaster


# =============================================================================
# Grids and fields
# =============================================================================

@pytest.fixture
def grid_2d():
    """16 x 16 x-z grid on the unit square."""
    return StaggeredGrid(itot=16, jtot=1, ktot=16, xsize=1.0, ysize=1.0, zsize=1.0)


@pytest.fixture
def grid_3d():
    """8 x 8 x 8 grid on the unit cube."""
    return StaggeredGrid(itot=8, jtot=8, ktot=8, xsize=1.0, ysize=1.0, zsize=1.0)


@pytest.fixture
def fields_2d(grid_2d):
    """u, v, w and one scalar th."""
    return FieldStore.with_momentum(grid_2d, scalars=("th",))


# =============================================================================
# Configuration
# =============================================================================

@pytest.fixture
def serial_master():
    return SerialMaster(mode="run")


@pytest.fixture
def time_config(tmp_path):
    """Fixed one-second steps, saving every two seconds, restart files in tmp_path."""
    return TimeConfig(
        starttime=0.0,
        endtime=10.0,
        savetime=2.0,
        dt=1.0,
        adaptivestep=False,
        checkpoint_dir=str(tmp_path),
    )


@pytest.fixture
def flat_ib_config():
    """Flat surface at z = 0.3, not aligned with any grid level."""
    return ImmersedBoundaryConfig(enabled=True, sw_ib="none", z_offset=0.3)


@pytest.fixture
def hill_ib_config():
    """Two-dimensional (x-z) Gaussian hill."""
    return ImmersedBoundaryConfig(
        enabled=True,
        sw_ib="gaussian",
        amplitude=0.2,
        z_offset=0.25,
        x0_hill=0.5,
        sigma_x_hill=0.12,
    )


@pytest.fixture
def simulation_config(time_config, flat_ib_config):
    return SimulationConfig(time=time_config, immersed_boundary=flat_ib_config)


@pytest.fixture
def rng():
    return np.random.default_rng(42)
