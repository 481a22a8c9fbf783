"""Exceptions raised by the atmoflow core."""


class AtmoflowError(Exception):
    """Base class for all fatal errors of the core."""


class ConfigurationError(AtmoflowError, ValueError):
    """Illegal or missing configuration value, detected at construction."""


class CheckpointError(AtmoflowError, OSError):
    """A restart file could not be created or read on the coordinating process."""


class GhostCellError(AtmoflowError, RuntimeError):
    """Unusable immersed-boundary stencil (empty or ill-conditioned)."""
