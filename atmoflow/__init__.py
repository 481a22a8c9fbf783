"""
atmoflow: time integration and ghost-cell immersed boundary core of an
atmospheric flow solver on a staggered grid.
"""

__version__ = "0.1.0"
