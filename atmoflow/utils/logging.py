"""
Loguru setup for simulation runs.

Every record carries the process rank in `extra["rank"]`. Only the
coordinator writes routine messages to the terminal; other processes report
warnings and errors only, so a multi-process run prints each message once.
An optional log file receives every record of the process at the chosen level.
"""

import sys
from loguru import logger

TERMINAL_FORMAT = (
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)
TIME_FORMAT = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | rank {extra[rank]} | {level: <8} | {name}:{function}:{line} - {message}"


def _terminal_filter(mpiid):
    if mpiid == 0:
        return None
    warning = logger.level("WARNING").no
    return lambda record: record["level"].no >= warning


def setup_logging(level="INFO", show_time=True, mpiid=0, log_file=None):
    """Configure loguru for a run.

    Parameters
    ----------
    level : str
        Logging level (DEBUG, INFO, SUCCESS, WARNING, ERROR, CRITICAL)
    show_time : bool
        Whether to show timestamps in the terminal output.
    mpiid : int
        Rank of this process; ranks other than 0 only print warnings and errors.
    log_file : str, optional
        Path of a per-run log file. `{rank}` in the path is replaced by `mpiid`.
    """
    logger.remove()
    logger.configure(extra={"rank": mpiid})

    log_format = TIME_FORMAT + TERMINAL_FORMAT if show_time else TERMINAL_FORMAT
    if mpiid != 0:
        log_format = f"[{mpiid}] " + log_format
    logger.add(sys.stderr, format=log_format, level=level, colorize=True,
               filter=_terminal_filter(mpiid))

    if log_file is not None:
        logger.add(str(log_file).format(rank=mpiid), format=FILE_FORMAT, level=level,
                   colorize=False, mode="a")

    return logger


def setup_from_config(config, mpiid=0):
    """Configure logging from a LoggingConfig section."""
    return setup_logging(level=config.level, show_time=config.show_time,
                         mpiid=mpiid, log_file=config.log_file)
