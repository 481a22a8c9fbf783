"""
Time loop: integer-time bookkeeping, adaptive step limiting and the RK update.

All time arithmetic is done on integers (seconds * IFACTOR) so that save and
output times are hit exactly and restarts reproduce bit for bit. The floating
`time` and `dt` are derived from the integer values.

Checkpoint file `time.%07d` (native byte order, no padding):

    offset  0  uint64  itime
    offset  8  uint64  idt
    offset 16  int32   iteration
"""

import os
import struct
import time as wallclock
from typing import Optional, Sequence

import numpy as np
from loguru import logger

from ..constants import IFACTOR, CHECKPOINT_PREFIX, rk_stage_count, to_itime
from ..errors import ConfigurationError, CheckpointError
from ..fields.store import FieldStore
from ..grid.staggered import StaggeredGrid
from ..parallel.master import Master, MODES
from .time_stepping import (
    InterpolationFactors,
    get_interpolation_factors,
    rk_sub_time_step,
    rk_update,
    rk_update_jax,
)

CHECKPOINT_FORMAT = "=QQi"
BACKENDS = ("numpy", "jax")


def checkpoint_filename(starttime: int) -> str:
    return f"{CHECKPOINT_PREFIX}.{starttime:07d}"


class TimeLoop:
    """
    Simulation clock and low-storage Runge-Kutta integrator.

    One call of `exec()` advances every prognostic field by one sub-stage.
    A full step consists of 3 (RK3) or 5 (RK4) sub-stages; `step_time()`
    only moves the clock once the sub-stage counter wrapped back to 0.
    """

    def __init__(self, master: Master, grid: StaggeredGrid, fields: FieldStore,
                 config, mode: Optional[str] = None):
        """
        Parameters
        ----------
        master : Master
            Process coordinator (broadcasts, wall clock, messages).
        grid : StaggeredGrid
            Grid whose interior is integrated.
        fields : FieldStore
            Prognostic values and tendencies (not owned).
        config : TimeConfig
            Time section of the configuration.
        mode : str, optional
            "init", "run" or "post". Defaults to the master's mode.
        """
        self.master = master
        self.grid = grid
        self.fields = fields
        self.mode = master.mode if mode is None else mode

        if self.mode not in MODES:
            raise ConfigurationError(f"\"{self.mode}\" is an illegal value for mode")

        missing = []
        if self.mode == "init":
            starttime = 0.
        elif config.starttime is None:
            missing.append("starttime")
        else:
            starttime = config.starttime
        if config.endtime is None:
            missing.append("endtime")
        if config.savetime is None:
            missing.append("savetime")
        if self.mode == "post" and config.postproctime is None:
            missing.append("postproctime")
        if missing:
            raise ConfigurationError(f"Missing obligatory time parameters: {', '.join(missing)}")

        if config.rkorder not in (3, 4):
            raise ConfigurationError(f"\"{config.rkorder}\" is an illegal value for rkorder")
        if config.backend not in BACKENDS:
            raise ConfigurationError(f"\"{config.backend}\" is an illegal value for backend")
        if config.outputiter < 1:
            raise ConfigurationError(f"\"{config.outputiter}\" is an illegal value for outputiter")

        self.adaptivestep = config.adaptivestep
        self.rkorder = config.rkorder
        self.outputiter = config.outputiter
        self.backend = config.backend
        self.checkpoint_dir = config.checkpoint_dir

        self.substep = 0
        self.loop = True
        self.iteration = 0
        self.time = 0.
        self.dt = config.dtmax if config.dt is None else config.dt

        self.itime = 0
        self.istarttime = to_itime(starttime)
        self.iendtime = to_itime(config.endtime)
        self.idt = to_itime(self.dt)
        self.idtmax = to_itime(config.dtmax)
        self.isavetime = to_itime(config.savetime)
        self.ipostproctime = to_itime(config.postproctime) if self.mode == "post" else 0
        self.idtlim = self.idt

        # Precision of the output times: 10**iotimeprec seconds
        self.iiotimeprec = to_itime(10. ** config.iotimeprec)

        if self.idt == 0:
            raise ConfigurationError(
                f"Time step dt={self.dt} is less than the time precision {1. / IFACTOR:E}")
        if self.isavetime == 0:
            raise ConfigurationError("savetime must be positive")
        if self.istarttime % self.iiotimeprec or self.isavetime % self.iiotimeprec:
            raise ConfigurationError("starttime or savetime is not an exact multiple of iotimeprec")

        self.iotime = self.istarttime // self.iiotimeprec

        self._wall_start = wallclock.time()

    # ------------------------------------------------------------------
    # Step size
    # ------------------------------------------------------------------

    def set_time_step_limit(self, idtlimin: Optional[int] = None) -> None:
        """
        Update the step ceiling.

        Without argument the ceiling is reset to `idtmax` and clipped to the
        next save time, and to the next output-precision boundary once the
        wall-clock budget is nearly spent. With an argument (integer time
        units, e.g. a CFL limit) the ceiling becomes the minimum of both.
        """
        if idtlimin is not None:
            self.idtlim = min(self.idtlim, int(idtlimin))
            return

        self.idtlim = self.idtmax

        # Stop at an output time that can actually be written
        if self.master.at_wall_clock_limit():
            self.idtlim = min(self.idtlim, self.iiotimeprec - self.itime % self.iiotimeprec)

        self.idtlim = min(self.idtlim, self.isavetime - self.itime % self.isavetime)

    def set_time_step_limit_seconds(self, dtlim: float) -> None:
        # Non-finite limits (e.g. CFL of a field at rest) leave the ceiling as is
        if not np.isfinite(dtlim):
            return
        self.set_time_step_limit(to_itime(dtlim))

    def set_time_step(self) -> None:
        """Adopt the ceiling as the step size (adaptive mode, full steps only)."""
        if self.in_substep():
            return

        if self.adaptivestep:
            if self.idtlim == 0:
                raise ConfigurationError(
                    f"Required time step less than precision {1. / IFACTOR:E} of the time stepping")
            self.idt = self.idtlim
            self.dt = self.idt / IFACTOR

    # ------------------------------------------------------------------
    # Integration
    # ------------------------------------------------------------------

    def exec(self) -> None:
        """Advance all prognostic fields by one RK sub-stage."""
        interior = self.grid.interior

        for name, at in self.fields.at.items():
            a = self.fields.ap[name]
            if self.backend == "jax":
                a_new, at_new = rk_update_jax(a[interior], at[interior],
                                              self.dt, self.substep, self.rkorder)
                a[interior] = np.asarray(a_new)
                at[interior] = np.asarray(at_new)
            else:
                rk_update(a, at, self.dt, self.substep, self.rkorder, interior)

        self.substep = (self.substep + 1) % rk_stage_count(self.rkorder)

    def get_sub_time_step(self) -> float:
        return rk_sub_time_step(self.dt, self.substep, self.rkorder)

    def get_interpolation_factors(self, timevec: Sequence[float]) -> InterpolationFactors:
        """Interpolation indices and weights of the current time in `timevec`."""
        return get_interpolation_factors(self.time, timevec)

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------

    def step_time(self) -> None:
        # Only full steps move the clock
        if self.in_substep():
            return

        self.time += self.dt
        self.itime += self.idt
        self.iotime = self.itime // self.iiotimeprec
        self.iteration += 1

        if self.itime >= self.iendtime:
            self.loop = False

    def step_post_proc_time(self) -> None:
        self.itime += self.ipostproctime
        self.iotime = self.itime // self.iiotimeprec

        if self.itime > self.iendtime:
            self.loop = False

    def in_substep(self) -> bool:
        return self.substep > 0

    def is_finished(self) -> bool:
        return not self.loop

    def is_stats_step(self) -> bool:
        """
        True at full steps, except the first full step after a restart
        (statistics of that time were already written by the previous run).
        """
        restart_step = self.iteration > 0 and self.itime == self.istarttime
        return not self.in_substep() and not restart_step

    def do_check(self) -> bool:
        return self.iteration % self.outputiter == 0 and not self.in_substep()

    def do_save(self) -> bool:
        """
        Whether restart files are due now.

        Also ends the loop when the wall-clock budget is nearly spent, but only
        at a time that is a multiple of the output precision.
        """
        if (self.itime % self.iiotimeprec == 0 and not self.in_substep()
                and self.master.at_wall_clock_limit()):
            self.master.print_warning(
                "Simulation will be stopped after saving the restart files due to wall clock limit")
            self.loop = False
            return True

        # Not directly after the start of the simulation
        if self.itime % self.isavetime == 0 and self.iteration != 0 and not self.in_substep():
            return True

        return False

    def check(self) -> float:
        """Wall time in seconds since the previous call (or construction)."""
        now = wallclock.time()
        elapsed = now - self._wall_start
        self._wall_start = now
        return elapsed

    # ------------------------------------------------------------------
    # Restart files
    # ------------------------------------------------------------------

    def save(self, starttime: int) -> None:
        """
        Write the clock state to `time.<starttime>` (coordinator only).

        Existing files are never overwritten.

        Raises
        ------
        CheckpointError
            On every process if the coordinator failed to write the file.
        """
        nerror = 0

        if self.master.is_coordinator:
            filename = os.path.join(self.checkpoint_dir, checkpoint_filename(starttime))
            self.master.print_message(f"Saving \"{filename}\"")
            try:
                with open(filename, "xb") as f:
                    f.write(struct.pack(CHECKPOINT_FORMAT, self.itime, self.idt, self.iteration))
            except OSError as e:
                self.master.print_error(f"Saving \"{filename}\" FAILED: {e}")
                nerror += 1

        # Every process takes part, so nobody hangs in the next collective
        nerror = self.master.broadcast(nerror)
        if nerror:
            raise CheckpointError(f"Could not save {checkpoint_filename(starttime)}")

    def load(self, starttime: int) -> None:
        """
        Restore the clock state from `time.<starttime>`.

        Raises
        ------
        CheckpointError
            On every process if the file is missing or truncated.
        """
        nerror = 0
        state = (0, 0, 0)

        if self.master.is_coordinator:
            filename = os.path.join(self.checkpoint_dir, checkpoint_filename(starttime))
            self.master.print_message(f"Loading \"{filename}\"")
            try:
                with open(filename, "rb") as f:
                    data = f.read(struct.calcsize(CHECKPOINT_FORMAT))
                state = struct.unpack(CHECKPOINT_FORMAT, data)
            except FileNotFoundError:
                self.master.print_error(f"\"{filename}\" does not exist")
                nerror += 1
            except (OSError, struct.error) as e:
                self.master.print_error(f"Could not read \"{filename}\": {e}")
                nerror += 1

        nerror = self.master.broadcast(nerror)
        if nerror:
            raise CheckpointError(f"Could not load {checkpoint_filename(starttime)}")

        self.itime = int(self.master.broadcast(state[0]))
        self.idt = int(self.master.broadcast(state[1]))
        self.iteration = int(self.master.broadcast(state[2]))

        self.time = self.itime / IFACTOR
        self.dt = self.idt / IFACTOR
        self.iotime = self.itime // self.iiotimeprec

        logger.debug(f"Restart state: itime={self.itime}, idt={self.idt}, iteration={self.iteration}")
