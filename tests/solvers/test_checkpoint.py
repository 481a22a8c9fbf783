"""
Tests for the time-loop restart files.
"""

import struct
from dataclasses import replace

import pytest
from numpy.testing import assert_allclose

from atmoflow.constants import IFACTOR
from atmoflow.errors import CheckpointError
from atmoflow.parallel.master import SerialMaster
from atmoflow.solvers.timeloop import CHECKPOINT_FORMAT, TimeLoop, checkpoint_filename


def advance(tl, nsteps):
    for _ in range(nsteps):
        tl.set_time_step_limit()
        tl.set_time_step()
        for _ in range(3):
            tl.exec()
        tl.step_time()


class RecordingMaster(SerialMaster):
    """Serial master that records every broadcast value."""

    def __init__(self, mode="run"):
        super().__init__(mode)
        self.broadcasts = []

    def broadcast(self, value, root=0):
        self.broadcasts.append(value)
        return value


class FollowerMaster(SerialMaster):
    """Non-coordinating process: every broadcast returns the root's next value."""

    def __init__(self, root_values, mode="run"):
        super().__init__(mode)
        self.mpiid = 1
        self.nprocs = 2
        self.root_values = list(root_values)
        self.sent = []

    def broadcast(self, value, root=0):
        self.sent.append(value)
        return self.root_values.pop(0)


def test_filename():
    assert checkpoint_filename(0) == "time.0000000"
    assert checkpoint_filename(3600) == "time.0003600"


def test_save_layout(serial_master, grid_2d, fields_2d, time_config, tmp_path):
    tl = TimeLoop(serial_master, grid_2d, fields_2d, time_config)
    advance(tl, 3)
    tl.save(tl.iotime)

    data = (tmp_path / "time.0000003").read_bytes()
    assert len(data) == 20
    assert struct.unpack(CHECKPOINT_FORMAT, data) == (3 * IFACTOR, IFACTOR, 3)


def test_round_trip(serial_master, grid_2d, fields_2d, time_config):
    tl = TimeLoop(serial_master, grid_2d, fields_2d, time_config)
    advance(tl, 4)
    tl.save(tl.iotime)

    restart = TimeLoop(serial_master, grid_2d, fields_2d, replace(time_config, starttime=4.))
    restart.load(4)

    assert (restart.itime, restart.idt, restart.iteration) == (tl.itime, tl.idt, tl.iteration)
    assert_allclose(restart.time, 4.)
    assert restart.dt == 1.
    assert restart.iotime == 4
    # Statistics of the restart time were written by the previous run
    assert not restart.is_stats_step()


def test_never_overwrites(serial_master, grid_2d, fields_2d, time_config, tmp_path):
    tl = TimeLoop(serial_master, grid_2d, fields_2d, time_config)
    tl.save(0)
    before = (tmp_path / "time.0000000").read_bytes()

    advance(tl, 1)
    with pytest.raises(CheckpointError):
        tl.save(0)
    assert (tmp_path / "time.0000000").read_bytes() == before


def test_save_into_missing_directory(serial_master, grid_2d, fields_2d, time_config, tmp_path):
    config = replace(time_config, checkpoint_dir=str(tmp_path / "missing"))
    tl = TimeLoop(serial_master, grid_2d, fields_2d, config)
    with pytest.raises(CheckpointError):
        tl.save(0)


def test_load_missing(serial_master, grid_2d, fields_2d, time_config):
    tl = TimeLoop(serial_master, grid_2d, fields_2d, time_config)
    with pytest.raises(CheckpointError):
        tl.load(0)


def test_load_truncated(serial_master, grid_2d, fields_2d, time_config, tmp_path):
    (tmp_path / "time.0000000").write_bytes(b"\x00" * 12)
    tl = TimeLoop(serial_master, grid_2d, fields_2d, time_config)
    with pytest.raises(CheckpointError):
        tl.load(0)


def test_error_count_is_broadcast(grid_2d, fields_2d, time_config):
    master = RecordingMaster()
    tl = TimeLoop(master, grid_2d, fields_2d, time_config)

    tl.save(0)
    assert master.broadcasts == [0]

    with pytest.raises(CheckpointError):
        tl.save(0)
    assert master.broadcasts == [0, 1]

    master.broadcasts.clear()
    tl.load(0)
    assert master.broadcasts == [0, 0, IFACTOR, 0]


def test_follower_adopts_root_state(grid_2d, fields_2d, time_config):
    master = FollowerMaster([0, 2 * IFACTOR, IFACTOR, 2])
    tl = TimeLoop(master, grid_2d, fields_2d, replace(time_config, starttime=2.))

    # Only the coordinator reads; no file is needed here
    tl.load(2)

    assert (tl.itime, tl.idt, tl.iteration) == (2 * IFACTOR, IFACTOR, 2)
    assert_allclose(tl.time, 2.)
    assert tl.dt == 1.
    assert tl.iotime == 2
    assert master.sent[0] == 0
    assert master.root_values == []


def test_follower_raises_with_root(grid_2d, fields_2d, time_config, tmp_path):
    master = FollowerMaster([1])
    tl = TimeLoop(master, grid_2d, fields_2d, time_config)

    with pytest.raises(CheckpointError):
        tl.save(2)
    assert master.sent == [0]
    assert not (tmp_path / "time.0000002").exists()


def test_follower_load_fails_with_root(grid_2d, fields_2d, time_config):
    master = FollowerMaster([1])
    tl = TimeLoop(master, grid_2d, fields_2d, time_config)

    with pytest.raises(CheckpointError):
        tl.load(0)
    assert tl.itime == 0
