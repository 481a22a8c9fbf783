"""
Process coordination collaborator.

The real decomposition layer lives outside the core. The time loop and the
immersed boundary only need rank identity, a collective broadcast of scalars,
a wall-clock-limit predicate and message logging. All processes must call
`broadcast` and `at_wall_clock_limit` in the same order.
"""

import time
from abc import ABC, abstractmethod
from typing import Any, Optional

from loguru import logger

from ..errors import ConfigurationError

MODES = ("init", "run", "post")


class Master(ABC):
    """Interface of the distributed-process coordinator."""
    
    mpiid: int
    nprocs: int
    mode: str
    
    @abstractmethod
    def broadcast(self, value: Any, root: int = 0) -> Any:
        """Collective broadcast; every process returns the root's value."""
    
    @abstractmethod
    def at_wall_clock_limit(self) -> bool:
        """Collective query: True once the wall-clock budget is nearly spent."""
    
    @property
    def is_coordinator(self) -> bool:
        return self.mpiid == 0
    
    def print_message(self, message: str) -> None:
        if self.is_coordinator:
            logger.info(message)
    
    def print_warning(self, message: str) -> None:
        if self.is_coordinator:
            logger.warning(message)
    
    def print_error(self, message: str) -> None:
        logger.error(message)


class SerialMaster(Master):
    """Single-process coordinator with an optional wall-clock budget."""
    
    def __init__(self, mode: str = "run",
                 wallclocklimit: Optional[float] = None,
                 wall_clock_margin: float = 300.0):
        """
        Parameters
        ----------
        mode : str
            Run mode: "init", "run" or "post".
        wallclocklimit : float, optional
            Wall-clock budget in hours (None = unlimited).
        wall_clock_margin : float
            Seconds before the limit at which the run starts stopping.
        """
        if mode not in MODES:
            raise ConfigurationError(f"\"{mode}\" is an illegal value for mode")
        self.mpiid = 0
        self.nprocs = 1
        self.mode = mode
        self.wallclocklimit = wallclocklimit
        self.wall_clock_margin = wall_clock_margin
        self.wall_clock_start = time.time()
    
    @classmethod
    def from_config(cls, config) -> 'SerialMaster':
        return cls(mode=config.mode,
                   wallclocklimit=config.wallclocklimit,
                   wall_clock_margin=config.wall_clock_margin)
    
    def broadcast(self, value: Any, root: int = 0) -> Any:
        return value
    
    def at_wall_clock_limit(self) -> bool:
        if self.wallclocklimit is None:
            return False
        elapsed = time.time() - self.wall_clock_start
        return elapsed > 3600. * self.wallclocklimit - self.wall_clock_margin
