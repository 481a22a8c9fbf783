"""
Tests for the integer-time clock, step limiting and the sub-stage driver.
"""

import numpy as np
import pytest
from dataclasses import replace
from numpy.testing import assert_allclose

from atmoflow.config.schema import TimeConfig
from atmoflow.constants import IFACTOR
from atmoflow.errors import ConfigurationError
from atmoflow.fields.store import FieldStore
from atmoflow.parallel.master import SerialMaster
from atmoflow.solvers.timeloop import TimeLoop


def full_step(tl):
    """One complete RK step followed by the clock update."""
    tl.set_time_step_limit()
    tl.set_time_step()
    for _ in range(3 if tl.rkorder == 3 else 5):
        tl.exec()
    tl.step_time()


class TestConstruction:

    def test_integer_state(self, serial_master, grid_2d, fields_2d, time_config):
        tl = TimeLoop(serial_master, grid_2d, fields_2d, time_config)
        assert tl.idt == IFACTOR
        assert tl.iendtime == 10 * IFACTOR
        assert tl.isavetime == 2 * IFACTOR
        assert tl.iiotimeprec == IFACTOR
        assert tl.idtlim == tl.idt
        assert (tl.itime, tl.iotime, tl.iteration, tl.substep) == (0, 0, 0, 0)
        assert not tl.is_finished()

    def test_dt_defaults_to_dtmax(self, serial_master, grid_2d, fields_2d):
        config = TimeConfig(starttime=0., endtime=1., savetime=1., dtmax=0.25)
        tl = TimeLoop(serial_master, grid_2d, fields_2d, config)
        assert tl.dt == 0.25
        assert tl.idt == tl.idtmax == IFACTOR // 4

    def test_iotime_from_starttime(self, grid_2d, fields_2d):
        config = TimeConfig(starttime=3.6, endtime=10., savetime=1.2, iotimeprec=-1)
        tl = TimeLoop(SerialMaster("run"), grid_2d, fields_2d, config)
        assert tl.iiotimeprec == IFACTOR // 10
        assert tl.iotime == 36

    def test_init_mode_ignores_starttime(self, grid_2d, fields_2d):
        config = TimeConfig(endtime=1., savetime=1.)
        tl = TimeLoop(SerialMaster("init"), grid_2d, fields_2d, config)
        assert tl.istarttime == 0

    @pytest.mark.parametrize("mode, changes, missing", [
        ("run", {"starttime": None}, "starttime"),
        ("run", {"endtime": None}, "endtime"),
        ("run", {"savetime": None}, "savetime"),
        ("post", {}, "postproctime"),
    ])
    def test_missing_obligatory(self, grid_2d, fields_2d, time_config, mode, changes, missing):
        config = replace(time_config, **changes)
        with pytest.raises(ConfigurationError, match=missing):
            TimeLoop(SerialMaster(mode), grid_2d, fields_2d, config)

    @pytest.mark.parametrize("changes, match", [
        ({"rkorder": 2}, "rkorder"),
        ({"starttime": 1.5}, "iotimeprec"),
        ({"savetime": 2.5}, "iotimeprec"),
        ({"dt": 1.e-10}, "precision"),
        ({"backend": "torch"}, "backend"),
        ({"outputiter": 0}, "outputiter"),
    ])
    def test_illegal_values(self, serial_master, grid_2d, fields_2d, time_config, changes, match):
        with pytest.raises(ConfigurationError, match=match):
            TimeLoop(serial_master, grid_2d, fields_2d, replace(time_config, **changes))

    def test_explicit_mode_overrides_master(self, serial_master, grid_2d, fields_2d, time_config):
        tl = TimeLoop(serial_master, grid_2d, fields_2d, replace(time_config, starttime=None),
                      mode="init")
        assert tl.mode == "init"


class TestClock:

    def test_itime_is_multiple_of_idt(self, serial_master, grid_2d, fields_2d, time_config):
        tl = TimeLoop(serial_master, grid_2d, fields_2d, time_config)
        for n in range(1, 6):
            full_step(tl)
            assert tl.itime == n * tl.idt
            assert tl.iotime == tl.itime // tl.iiotimeprec
            assert tl.iteration == n
        assert_allclose(tl.time, 5.)

    def test_fractional_precision(self, serial_master, grid_2d, fields_2d):
        config = TimeConfig(starttime=0., endtime=3., savetime=0.6, dt=0.3,
                            adaptivestep=False, iotimeprec=-1)
        tl = TimeLoop(serial_master, grid_2d, fields_2d, config)
        previous = -1
        for n in range(1, 8):
            full_step(tl)
            assert tl.itime == n * 300_000_000
            assert tl.iotime == 3 * n
            assert tl.itime > previous
            previous = tl.itime

    def test_no_clock_update_in_substep(self, serial_master, grid_2d, fields_2d, time_config):
        tl = TimeLoop(serial_master, grid_2d, fields_2d, time_config)
        tl.exec()
        assert tl.in_substep()
        tl.step_time()
        assert (tl.itime, tl.iteration) == (0, 0)

    def test_finishes_at_endtime(self, serial_master, grid_2d, fields_2d, time_config):
        tl = TimeLoop(serial_master, grid_2d, fields_2d, time_config)
        for _ in range(9):
            full_step(tl)
        assert not tl.is_finished()
        full_step(tl)
        assert tl.is_finished()
        assert tl.itime == tl.iendtime

    def test_post_processing_steps(self, grid_2d, fields_2d, time_config):
        config = replace(time_config, postproctime=2.)
        tl = TimeLoop(SerialMaster("post"), grid_2d, fields_2d, config)
        for _ in range(5):
            tl.step_post_proc_time()
        assert tl.itime == tl.iendtime
        assert not tl.is_finished()
        tl.step_post_proc_time()
        assert tl.is_finished()
        assert tl.iotime == 12

    def test_check_returns_elapsed(self, serial_master, grid_2d, fields_2d, time_config):
        tl = TimeLoop(serial_master, grid_2d, fields_2d, time_config)
        assert tl.check() >= 0.


class TestStepLimit:

    def adaptive(self, grid, fields, master=None, savetime=3.):
        config = TimeConfig(starttime=0., endtime=10., savetime=savetime, dtmax=10.)
        return TimeLoop(master or SerialMaster("run"), grid, fields, config)

    def test_limited_by_savetime(self, grid_2d, fields_2d):
        tl = self.adaptive(grid_2d, fields_2d)
        tl.set_time_step_limit()
        tl.set_time_step()
        assert tl.idt == 3 * IFACTOR
        assert tl.dt == 3.

    def test_collaborator_limit(self, grid_2d, fields_2d):
        tl = self.adaptive(grid_2d, fields_2d)
        tl.set_time_step_limit()
        tl.set_time_step_limit_seconds(0.4)
        tl.set_time_step_limit(IFACTOR)
        tl.set_time_step()
        assert tl.idt == 400_000_000
        assert_allclose(tl.dt, 0.4)

    def test_lands_on_save_time(self, grid_2d, fields_2d):
        config = TimeConfig(starttime=0., endtime=10., savetime=1., dtmax=0.7)
        tl = TimeLoop(SerialMaster("run"), grid_2d, fields_2d, config)
        full_step(tl)
        assert tl.itime == 700_000_000
        assert not tl.do_save()
        full_step(tl)
        assert tl.itime == IFACTOR
        assert tl.do_save()

    def test_infinite_limit_is_no_limit(self, grid_2d, fields_2d):
        tl = self.adaptive(grid_2d, fields_2d)
        tl.set_time_step_limit()
        tl.set_time_step_limit_seconds(float("inf"))
        tl.set_time_step_limit_seconds(float("nan"))
        tl.set_time_step()
        assert tl.idt == 3 * IFACTOR

    def test_fixed_step_tracks_limit(self, serial_master, grid_2d, fields_2d, time_config):
        tl = TimeLoop(serial_master, grid_2d, fields_2d, time_config)
        tl.set_time_step_limit()
        tl.set_time_step_limit_seconds(0.1)
        tl.set_time_step()
        assert tl.dt == 1.
        assert tl.idtlim == IFACTOR // 10

    def test_no_change_in_substep(self, grid_2d, fields_2d):
        tl = self.adaptive(grid_2d, fields_2d)
        tl.set_time_step_limit()
        tl.set_time_step()
        tl.exec()
        tl.set_time_step_limit_seconds(0.1)
        tl.set_time_step()
        assert tl.dt == 3.

    def test_zero_step(self, grid_2d, fields_2d):
        tl = self.adaptive(grid_2d, fields_2d)
        tl.set_time_step_limit(0)
        with pytest.raises(ConfigurationError, match="precision"):
            tl.set_time_step()

    def test_wall_clock_limit_stops_at_output_time(self, grid_2d, fields_2d):
        master = SerialMaster("run", wallclocklimit=0., wall_clock_margin=1.)
        tl = self.adaptive(grid_2d, fields_2d, master=master, savetime=4.)
        tl.set_time_step_limit()
        assert tl.idtlim == IFACTOR

        full_step(tl)
        assert tl.do_save()
        assert tl.is_finished()


class TestFlags:

    def test_do_check(self, serial_master, grid_2d, fields_2d, time_config):
        tl = TimeLoop(serial_master, grid_2d, fields_2d, replace(time_config, outputiter=2))
        assert tl.do_check()
        full_step(tl)
        assert not tl.do_check()
        full_step(tl)
        assert tl.do_check()
        tl.exec()
        assert not tl.do_check()

    def test_do_save(self, serial_master, grid_2d, fields_2d, time_config):
        tl = TimeLoop(serial_master, grid_2d, fields_2d, time_config)
        assert not tl.do_save()
        full_step(tl)
        assert not tl.do_save()
        full_step(tl)
        assert tl.do_save()

    def test_stats_step(self, serial_master, grid_2d, fields_2d, time_config):
        tl = TimeLoop(serial_master, grid_2d, fields_2d, time_config)
        assert tl.is_stats_step()
        tl.exec()
        assert not tl.is_stats_step()

    def test_sub_time_step(self, serial_master, grid_2d, fields_2d, time_config):
        tl = TimeLoop(serial_master, grid_2d, fields_2d, time_config)
        assert_allclose(tl.get_sub_time_step(), 1. / 3.)
        tl.exec()
        assert_allclose(tl.get_sub_time_step(), 15. / 16.)

    def test_interpolation_factors_use_current_time(self, serial_master, grid_2d, fields_2d,
                                                    time_config):
        tl = TimeLoop(serial_master, grid_2d, fields_2d, time_config)
        full_step(tl)
        full_step(tl)
        assert tl.get_interpolation_factors([1., 3.]) == (0, 1, 0.5, 0.5)


class TestExec:

    def test_substep_cycles(self, serial_master, grid_2d, fields_2d, time_config):
        tl = TimeLoop(serial_master, grid_2d, fields_2d, replace(time_config, rkorder=4))
        seen = []
        for _ in range(6):
            tl.exec()
            seen.append(tl.substep)
        assert seen == [1, 2, 3, 4, 0, 1]

    def test_constant_tendency_one_step(self, serial_master, grid_2d, fields_2d, time_config):
        tl = TimeLoop(serial_master, grid_2d, fields_2d, time_config)
        interior = grid_2d.interior
        for _ in range(3):
            for at in fields_2d.at.values():
                at[interior] += 2.
            tl.exec()

        for name, a in fields_2d.ap.items():
            assert_allclose(a[interior], 2. * tl.dt, rtol=1e-12)
            assert np.all(fields_2d.at[name] == 0.)
        # Halo cells belong to the decomposition layer
        assert np.all(fields_2d.ap["u"][0] == 0.)

    def test_jax_backend_matches_numpy(self, serial_master, grid_2d, time_config):
        stores = []
        for backend in ("numpy", "jax"):
            fields = FieldStore.with_momentum(grid_2d, scalars=("th",))
            tl = TimeLoop(serial_master, grid_2d, fields,
                          replace(time_config, backend=backend))
            local_rng = np.random.default_rng(7)
            for name in fields.ap:
                fields.ap[name][:] = local_rng.standard_normal(grid_2d.shape)
                fields.at[name][:] = local_rng.standard_normal(grid_2d.shape)
            tl.exec()
            tl.exec()
            stores.append(fields)

        for name in stores[0].ap:
            assert_allclose(stores[1].ap[name], stores[0].ap[name], rtol=1e-13)
            assert_allclose(stores[1].at[name], stores[0].at[name], rtol=1e-13)
