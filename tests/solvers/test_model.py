"""
Tests for the outer simulation loop: init, run, restart and post-processing.
"""

from dataclasses import replace

import numpy as np
import pytest
from numpy.testing import assert_allclose

from atmoflow.config.schema import ImmersedBoundaryConfig, SimulationConfig, TimeConfig
from atmoflow.constants import IFACTOR
from atmoflow.errors import CheckpointError
from atmoflow.fields.store import FieldStore
from atmoflow.parallel.master import SerialMaster
from atmoflow.solvers.model import Model


@pytest.fixture
def config(tmp_path):
    return SimulationConfig(
        time=TimeConfig(starttime=0., endtime=2., savetime=1., dtmax=0.5,
                        checkpoint_dir=str(tmp_path)),
        immersed_boundary=ImmersedBoundaryConfig(enabled=True, sw_ib="none", z_offset=0.3),
    )


def heating(fields, timeloop):
    interior = fields.grid.interior
    fields.at["th"][interior] += 1.


def run(config, grid, mode, **kwargs):
    fields = FieldStore.with_momentum(grid, scalars=("th",))
    model = Model(config, grid, fields, SerialMaster(mode), **kwargs)
    model.run()
    return model


def test_init_writes_start_checkpoint(config, grid_2d, tmp_path):
    model = run(config, grid_2d, "init")
    assert (tmp_path / "time.0000000").exists()
    assert model.timeloop.itime == 0
    assert len(model.ib.catalogs) == 4


def test_run_to_endtime(config, grid_2d, tmp_path):
    run(config, grid_2d, "init")
    model = run(config, grid_2d, "run", tendency=heating)
    tl = model.timeloop

    assert tl.is_finished()
    assert tl.itime == 2 * IFACTOR
    assert tl.iteration == 4
    assert (tmp_path / "time.0000001").exists()
    assert (tmp_path / "time.0000002").exists()

    th = model.fields.ap["th"]
    top = (grid_2d.itot // 2 + grid_2d.igc, grid_2d.jstart, grid_2d.kend - 1)
    assert_allclose(th[top], 2.0, rtol=1e-12)
    assert set(model.ib_stats) == {"u", "v", "w", "th"}


def test_ghost_cells_hold_boundary_condition(config, grid_2d):
    run(config, grid_2d, "init")
    model = run(config, grid_2d, "run", tendency=heating)

    # Uniform heating above a Dirichlet 0 surface: ghosts lie between 0 and the interior
    # Away from the x halo, which nothing fills in a single-process run
    ijk = model.ib.catalog_for("th").ghost_ijk
    away = (ijk[:, 0] >= grid_2d.istart + 3) & (ijk[:, 0] < grid_2d.iend - 3)
    ijk = ijk[away]
    assert len(ijk) > 0
    ghost = model.fields.ap["th"][ijk[:, 0], ijk[:, 1], ijk[:, 2]]
    assert np.all(ghost > 0.)
    assert np.all(ghost < 2.)


def test_cfl_limit_shortens_steps(config, grid_2d):
    run(config, grid_2d, "init")
    model = run(config, grid_2d, "run", cfl_limit=lambda fields, tl: 0.25)
    assert model.timeloop.iteration == 8
    assert model.timeloop.itime == 2 * IFACTOR


def test_restart_requires_checkpoint(config, grid_2d):
    with pytest.raises(CheckpointError):
        run(config, grid_2d, "run")


def test_wall_clock_stop(config, grid_2d, tmp_path):
    run(config, grid_2d, "init")
    fields = FieldStore.with_momentum(grid_2d, scalars=("th",))
    master = SerialMaster("run", wallclocklimit=0., wall_clock_margin=1.)
    model = Model(config, grid_2d, fields, master)
    tl = model.run()

    assert tl.is_finished()
    assert tl.itime == IFACTOR
    assert (tmp_path / "time.0000001").exists()


def test_post_processing(config, grid_2d):
    run(config, grid_2d, "init")
    run(config, grid_2d, "run", tendency=heating)

    post_config = replace(config, time=replace(config.time, postproctime=1.))
    model = run(post_config, grid_2d, "post")
    assert model.timeloop.is_finished()
    assert model.timeloop.itime == 3 * IFACTOR
