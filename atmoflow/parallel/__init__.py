"""Distributed-process coordination collaborator."""

from .master import Master, SerialMaster, MODES

__all__ = ['Master', 'SerialMaster', 'MODES']
