"""
Outer simulation loop tying the time loop and the immersed boundary together.

Dynamics are supplied by the caller as a tendency callback, the advective
time-step limit as a CFL callback. Per sub-step:

    set_time_step_limit()          reset ceiling (save time, wall clock)
    set_time_step_limit(cfl)       optional collaborator ceiling
    set_time_step()
    tendency(fields, timeloop)     accumulate into fields.at
    ib.exec_tend()
    timeloop.exec()                RK sub-stage
    ib.exec()
    full steps only: check, step_time, save
"""

from typing import Callable, Dict, Optional

from loguru import logger

from ..boundary.immersed_boundary import ImmersedBoundary
from ..fields.store import FieldStore
from ..grid.staggered import StaggeredGrid
from ..parallel.master import Master
from .timeloop import TimeLoop

TendencyFn = Callable[[FieldStore, TimeLoop], None]
CFLFn = Callable[[FieldStore, TimeLoop], Optional[float]]


class Model:
    """Time integration driver for one process."""

    def __init__(self, config, grid: StaggeredGrid, fields: FieldStore, master: Master,
                 tendency: Optional[TendencyFn] = None,
                 cfl_limit: Optional[CFLFn] = None):
        """
        Parameters
        ----------
        config : SimulationConfig
            Full configuration.
        grid, fields, master
            Collaborators, not owned.
        tendency : callable, optional
            tendency(fields, timeloop) adds the dynamics tendencies to fields.at.
        cfl_limit : callable, optional
            cfl_limit(fields, timeloop) returns the largest stable step in
            seconds, or None for no limit.
        """
        self.config = config
        self.grid = grid
        self.fields = fields
        self.master = master
        self.tendency = tendency
        self.cfl_limit = cfl_limit

        self.timeloop = TimeLoop(master, grid, fields, config.time)
        self.ib = ImmersedBoundary(grid, fields, config.immersed_boundary, self.timeloop)
        self.ib_stats: Dict[str, Dict[str, float]] = {}

    def run(self) -> TimeLoop:
        """Run according to the master's mode and return the final clock."""
        mode = self.timeloop.mode
        self.ib.create()

        if mode == "init":
            self.ib.exec()
            self.timeloop.save(self.timeloop.iotime)
            return self.timeloop

        self.timeloop.load(self.timeloop.iotime)

        if mode == "post":
            self._post_process()
        else:
            self._integrate()
        return self.timeloop

    def _integrate(self) -> None:
        tl = self.timeloop
        self.ib.exec()

        logger.info(f"Starting time integration at t={tl.time:.6g} s (RK{tl.rkorder})")
        while not tl.is_finished():
            tl.set_time_step_limit()
            if self.cfl_limit is not None:
                dtlim = self.cfl_limit(self.fields, tl)
                if dtlim is not None:
                    tl.set_time_step_limit_seconds(dtlim)
            tl.set_time_step()

            if self.tendency is not None:
                self.tendency(self.fields, tl)
            self.ib.exec_tend()
            tl.exec()
            self.ib.exec()

            if tl.in_substep():
                continue

            tl.step_time()
            self._collect_stats()

            if tl.do_check():
                logger.info(f"{tl.iteration:>8d}  time={tl.time:>12.4f}  dt={tl.dt:>10.4e}  "
                            f"wall={tl.check():>8.3f} s")

            if tl.do_save():
                tl.save(tl.iotime)

        logger.info(f"Time integration finished at t={tl.time:.6g} s after {tl.iteration} steps")

    def _post_process(self) -> None:
        tl = self.timeloop
        while not tl.is_finished():
            self._collect_stats()
            tl.step_post_proc_time()
            if tl.is_finished():
                break
            tl.load(tl.iotime)

    def _collect_stats(self) -> None:
        stats = self.ib.exec_stats()
        if stats is not None:
            self.ib_stats = stats
