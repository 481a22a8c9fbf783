"""
Structured grid collaborator.

The decomposition and metrics of the real solver are external; this module
provides the uniform staggered grid the core needs for coordinates and index
ranges.
"""

from .staggered import StaggeredGrid, LOCATIONS

__all__ = [
    'StaggeredGrid',
    'LOCATIONS',
]
