"""
Global constants for the atmoflow core.

Integer time representation, Runge-Kutta tableaux and defaults that are
shared between the time loop and the immersed boundary.
"""

# Scale factor between floating seconds and integer time units
IFACTOR = 1_000_000_000

# "Very large" default for dtmax
DBIG = 1.e8

# Halo width of the staggered grid in each direction
NGHOST = 1

# Prefix of the time-loop restart files: time.0003600
CHECKPOINT_PREFIX = "time"

# Low-storage RK3 (Williamson 1980)
RK3_CA = (0., -5./9., -153./128.)
RK3_CB = (1./3., 15./16., 8./15.)

# Five-stage low-storage RK4 (Carpenter & Kennedy 1994)
RK4_CA = (
    0.,
    - 567301805773./1357537059087.,
    -2404267990393./2016746695238.,
    -3550918686646./2091501179385.,
    -1275806237668./ 842570457699.,
)
RK4_CB = (
    1432997174477./ 9575080441755.,
    5161836677717./13612068292357.,
    1720146321549./ 2090206949498.,
    3134564353537./ 4481467310338.,
    2277821191437./14882151754819.,
)

RK_TABLEAUX = {
    3: (RK3_CA, RK3_CB),
    4: (RK4_CA, RK4_CB),
}


def rk_stage_count(rkorder: int) -> int:
    """Number of sub-stages of the low-storage scheme of the given order."""
    return len(RK_TABLEAUX[rkorder][0])


def to_itime(seconds: float) -> int:
    """Convert floating seconds to integer time units (rounded to nearest)."""
    return int(IFACTOR * seconds + 0.5)
