"""
Ghost-cell classification and stencil construction for the immersed boundary.

For one staggered field location every grid point is classified as solid
(below the surface) or fluid. A fluid point with a solid direct neighbour is a
ghost cell. For each ghost cell we store:

    - the nearest point (xb, yb, zb) on the surface,
    - the n nearest fluid points that are not ghost cells themselves,
    - B, the constrained least-squares inverse of A, the polynomial design
      matrix of the boundary point (first row, Dirichlet or Neumann, satisfied
      exactly) and the fluid points (other rows, fitted in least squares), in
      coordinates relative to the boundary point scaled by the grid spacing.
      With exactly n_terms rows B is the plain inverse of A.

The reconstructed ghost value is phi_g = p(x_g) . B . [phi_b, phi_1, ..., phi_n],
which is exact for every polynomial inside the basis.

The catalog is built once per field location and never changes afterwards.
"""

from dataclasses import dataclass
from typing import Iterator, List, Sequence, Tuple

import numpy as np
import numpy.typing as npt
import scipy.optimize as optimize
from loguru import logger

from ..errors import ConfigurationError, GhostCellError
from ..grid.staggered import StaggeredGrid
from .geometry import BoundaryGeometry, IBType

NDArrayFloat = npt.NDArray[np.floating]

BC_KINDS = ("dirichlet", "neumann")


@dataclass(frozen=True)
class StencilSettings:
    """Stencil size, reconstruction order and nearest-point search bounds."""

    n_neighbours: int = 8
    interpolation_order: int = 1
    search_cells: int = 3
    max_condition: float = 1.e8
    search_radius: float = 4.0
    search_tol: float = 1.e-10
    search_maxiter: int = 500

    def __post_init__(self) -> None:
        if self.interpolation_order not in (1, 2):
            raise ConfigurationError(
                f"\"{self.interpolation_order}\" is an illegal value for interpolation_order")
        if self.n_neighbours < 1:
            raise ConfigurationError("n_neighbours must be at least 1")
        if self.search_cells < 1:
            raise ConfigurationError("search_cells must be at least 1")
        if self.search_radius <= 0.:
            raise ConfigurationError("search_radius must be positive")
        if self.search_tol <= 0. or self.search_maxiter < 1:
            raise ConfigurationError("search_tol and search_maxiter must be positive")

    @classmethod
    def from_config(cls, config) -> 'StencilSettings':
        return cls(
            n_neighbours=config.n_neighbours,
            interpolation_order=config.interpolation_order,
            search_cells=config.search_cells,
            max_condition=config.max_condition,
            search_radius=config.search_radius,
            search_tol=config.search_tol,
            search_maxiter=config.search_maxiter,
        )

    def n_terms(self, use_y: bool) -> int:
        ndim = 3 if use_y else 2
        if self.interpolation_order == 1:
            return ndim + 1
        return (ndim + 1) * (ndim + 2) // 2

    def check_well_posed(self, use_y: bool) -> None:
        """The fit needs at least as many rows (boundary + neighbours) as basis terms."""
        n_terms = self.n_terms(use_y)
        if self.n_neighbours + 1 < n_terms:
            raise ConfigurationError(
                f"n_neighbours = {self.n_neighbours} is too small for an order "
                f"{self.interpolation_order} fit with {n_terms} terms")


@dataclass(frozen=True)
class Neighbour:
    """Fluid point of a ghost-cell stencil."""
    i: int
    j: int
    k: int
    distance: float   # To the boundary point of the ghost cell


@dataclass(frozen=True, eq=False)
class GhostCell:
    """Boundary-affected grid point with its interpolation stencil."""

    i: int
    j: int
    k: int

    xb: float
    yb: float
    zb: float

    neighbours: Tuple[Neighbour, ...]
    B: NDArrayFloat                 # Flat reconstruction matrix, row-major
    B_shape: Tuple[int, int]        # (n_terms, 1 + n_neighbours)
    weights: NDArrayFloat           # Basis row at the ghost location times B
    normal: Tuple[float, float, float]

    @property
    def matrix(self) -> NDArrayFloat:
        return self.B.reshape(self.B_shape)

    def reconstruct(self, boundary_value: float, values: Sequence[float]) -> float:
        """
        Evaluate the fit at the ghost location.

        Parameters
        ----------
        boundary_value : float
            Value (Dirichlet) or normal gradient (Neumann) at (xb, yb, zb).
        values : sequence of float
            Field values at the stencil points, in stencil order.
        """
        return float(self.weights[0] * boundary_value
                     + np.dot(self.weights[1:], np.asarray(values, dtype=float)))


# =============================================================================
# Polynomial basis
# =============================================================================

def polynomial_basis(dx, dy, dz, order: int, use_y: bool) -> NDArrayFloat:
    """
    Basis terms evaluated at relative positions.

    Order 1: 1, x, [y,] z
    Order 2: adds x^2, [y^2,] z^2, [xy,] xz, [yz]

    Returns
    -------
    ndarray, shape (n_points, n_terms)
    """
    dx = np.atleast_1d(np.asarray(dx, dtype=float))
    dy = np.atleast_1d(np.asarray(dy, dtype=float))
    dz = np.atleast_1d(np.asarray(dz, dtype=float))

    if use_y:
        linear = [dx, dy, dz]
    else:
        linear = [dx, dz]
    terms = [np.ones_like(dx)] + linear

    if order == 2:
        terms += [c * c for c in linear]
        for a in range(len(linear)):
            for b in range(a + 1, len(linear)):
                terms.append(linear[a] * linear[b])

    return np.stack(terms, axis=-1)


def basis_normal_derivative(normal, order: int, use_y: bool) -> NDArrayFloat:
    """Derivative of the basis along `normal` at the origin."""
    nx, ny, nz = normal
    n_linear = 3 if use_y else 2
    n_terms = (1 + n_linear) if order == 1 else (n_linear + 1) * (n_linear + 2) // 2

    row = np.zeros(n_terms)
    if use_y:
        row[1:4] = (nx, ny, nz)
    else:
        row[1:3] = (nx, nz)
    # Quadratic terms have zero gradient at the origin
    return row


# =============================================================================
# Classification
# =============================================================================

def _direct_offsets(is_2d: bool) -> List[Tuple[int, int, int]]:
    offsets = [(-1, 0, 0), (1, 0, 0), (0, 0, -1), (0, 0, 1)]
    if not is_2d:
        offsets += [(0, -1, 0), (0, 1, 0)]
    return offsets


def classify_points(grid: StaggeredGrid, geometry: BoundaryGeometry,
                    loc: str) -> Tuple[np.ndarray, np.ndarray]:
    """
    Classify all points of a field location.

    Returns
    -------
    solid : ndarray of bool, grid shape
        True below the boundary surface.
    ghost : ndarray of bool, grid shape
        True for fluid points with a solid direct neighbour. Evaluated on the
        whole array (halo included) so halo ghost cells are excluded from
        stencils; edges of the array see their own solid state as neighbour.
    """
    x, y, z = grid.locations(loc)
    X, Y = np.meshgrid(x, y, indexing='ij')
    h = geometry.height(X, Y)
    solid = z[np.newaxis, np.newaxis, :] < h[:, :, np.newaxis]

    padded = np.pad(solid, 1, mode='edge')
    ni, nj, nk = solid.shape
    near_solid = np.zeros_like(solid)
    for di, dj, dk in _direct_offsets(grid.is_2d):
        near_solid |= padded[1 + di:1 + di + ni, 1 + dj:1 + dj + nj, 1 + dk:1 + dk + nk]

    ghost = ~solid & near_solid
    return solid, ghost


# =============================================================================
# Nearest boundary point
# =============================================================================

def _nearest_block(geometry: BoundaryGeometry, x: float, y: float, z: float):
    """Closest point of the block surface: top/bottom projection or a side wall."""
    z_lo = min(geometry.z_offset, geometry.z_offset + geometry.amplitude)
    z_hi = max(geometry.z_offset, geometry.z_offset + geometry.amplitude)
    zc = min(max(z, z_lo), z_hi)

    candidates = [(x, y, float(geometry.height(x, y)))]
    if geometry.xy_dims == 1:
        for xw in (geometry.block_x0, geometry.block_x1):
            candidates.append((xw, y, zc))
    else:
        yc = min(max(y, geometry.block_y0), geometry.block_y1)
        xc = min(max(x, geometry.block_x0), geometry.block_x1)
        for xw in (geometry.block_x0, geometry.block_x1):
            candidates.append((xw, yc, zc))
        for yw in (geometry.block_y0, geometry.block_y1):
            candidates.append((xc, yw, zc))

    dist2 = [(cx - x)**2 + (cy - y)**2 + (cz - z)**2 for cx, cy, cz in candidates]
    return candidates[int(np.argmin(dist2))]


def _nearest_smooth(geometry: BoundaryGeometry, x: float, y: float, z: float,
                    grid: StaggeredGrid, settings: StencilSettings):
    """Minimise the distance to the surface; falls back to the vertical projection."""
    vertical = (x, y, float(geometry.height(x, y)))
    d2_vertical = (vertical[2] - z)**2

    if geometry.xy_dims == 1:
        def dist2(s):
            return (s - x)**2 + (z - float(geometry.height(s, y)))**2

        radius = settings.search_radius * grid.dx
        res = optimize.minimize_scalar(
            dist2, bounds=(x - radius, x + radius), method='bounded',
            options={'xatol': settings.search_tol * grid.dx,
                     'maxiter': settings.search_maxiter})
        if not res.success:
            logger.warning(f"Nearest boundary point search did not converge at x={x:.6g}, z={z:.6g}")
        candidate = (float(res.x), y, float(geometry.height(res.x, y)))
        d2 = float(res.fun)
    else:
        def dist2(p):
            s, t = p
            return (s - x)**2 + (t - y)**2 + (z - float(geometry.height(s, t)))**2

        spacing = min(grid.dx, grid.dy)
        rx = settings.search_radius * grid.dx
        ry = settings.search_radius * grid.dy
        simplex = np.array([[x, y], [x + grid.dx, y], [x, y + grid.dy]])
        res = optimize.minimize(
            dist2, np.array([x, y]), method='Nelder-Mead',
            bounds=[(x - rx, x + rx), (y - ry, y + ry)],
            options={'initial_simplex': simplex,
                     'xatol': settings.search_tol * spacing,
                     'fatol': (settings.search_tol * spacing)**2,
                     'maxiter': settings.search_maxiter})
        if not res.success:
            logger.warning(f"Nearest boundary point search did not converge at "
                           f"x={x:.6g}, y={y:.6g}, z={z:.6g}")
        s, t = res.x
        candidate = (float(s), float(t), float(geometry.height(s, t)))
        d2 = float(res.fun)

    if d2 < d2_vertical:
        return candidate
    return vertical


def find_nearest_location_wall(geometry: BoundaryGeometry, x: float, y: float, z: float,
                               grid: StaggeredGrid, settings: StencilSettings):
    """
    Nearest point on the boundary surface to (x, y, z).

    Returns
    -------
    xb, yb, zb : float
    """
    if geometry.is_smooth:
        return _nearest_smooth(geometry, x, y, z, grid, settings)
    if geometry.ib_type == IBType.BLOCK:
        return _nearest_block(geometry, x, y, z)
    return x, y, geometry.z_offset


# =============================================================================
# Stencil and weights
# =============================================================================

def find_interpolation_points(i: int, j: int, k: int,
                              fluid: np.ndarray,
                              coords: Tuple[NDArrayFloat, NDArrayFloat, NDArrayFloat],
                              grid: StaggeredGrid,
                              settings: StencilSettings) -> List[Tuple[int, int, int]]:
    """
    Nearest fluid (non-ghost) points to ghost cell (i, j, k), ranked by distance.

    Raises
    ------
    GhostCellError
        If fewer than n_neighbours candidates exist in the search box.
    """
    x, y, z = coords
    n = settings.search_cells
    nj = 0 if grid.is_2d else n

    i0, i1 = max(i - n, 0), min(i + n + 1, grid.icells)
    j0, j1 = max(j - nj, 0), min(j + nj + 1, grid.jcells)
    k0, k1 = max(k - n, 0), min(k + n + 1, grid.kcells)

    ci, cj, ck = np.nonzero(fluid[i0:i1, j0:j1, k0:k1])
    ci += i0
    cj += j0
    ck += k0

    if ci.size < settings.n_neighbours:
        raise GhostCellError(
            f"Ghost cell ({i}, {j}, {k}) has {ci.size} usable fluid points, "
            f"{settings.n_neighbours} required")

    # Round to make the ranking of symmetric points independent of round-off
    dist = np.sqrt((x[ci] - x[i])**2 + (y[cj] - y[j])**2 + (z[ck] - z[k])**2)
    dist = np.round(dist / grid.spacing, 10)
    order = np.lexsort((ci, cj, ck, dist))[:settings.n_neighbours]

    return [(int(ci[m]), int(cj[m]), int(ck[m])) for m in order]


def define_distance_matrix(ghost_xyz, boundary_xyz, points: List[Tuple[int, int, int]],
                           coords, normal, grid: StaggeredGrid,
                           settings: StencilSettings, bc_kind: str,
                           ijk: Tuple[int, int, int]):
    """
    Build the design matrix of one ghost cell and its constrained inverse.

    Returns
    -------
    B : ndarray, shape (n_terms, 1 + n_neighbours)
    weights : ndarray, shape (1 + n_neighbours,)

    Raises
    ------
    GhostCellError
        If the matrix is rank deficient or its condition number exceeds
        settings.max_condition.
    """
    x, y, z = coords
    xb, yb, zb = boundary_xyz
    h = grid.spacing
    use_y = not grid.is_2d
    order = settings.interpolation_order

    pi = np.array([p[0] for p in points])
    pj = np.array([p[1] for p in points])
    pk = np.array([p[2] for p in points])

    rows = polynomial_basis((x[pi] - xb) / h, (y[pj] - yb) / h, (z[pk] - zb) / h,
                            order, use_y)
    if bc_kind == "dirichlet":
        bc_row = polynomial_basis(0., 0., 0., order, use_y)[0]
    else:
        bc_row = basis_normal_derivative(normal, order, use_y)

    A = np.vstack([bc_row, rows])
    n_terms = A.shape[1]
    n_points = rows.shape[0]

    if np.linalg.matrix_rank(A) < n_terms:
        raise GhostCellError(f"Degenerate stencil for ghost cell {ijk}: rank deficient design matrix")
    cond = np.linalg.cond(A)
    if not np.isfinite(cond) or cond > settings.max_condition:
        raise GhostCellError(
            f"Ill-conditioned stencil for ghost cell {ijk}: condition number {cond:.3e}")

    # Least squares through the fluid points with the boundary row as an exact
    # constraint (KKT system). Full column rank of A makes K non-singular.
    K = np.zeros((n_terms + 1, n_terms + 1))
    K[:n_terms, :n_terms] = rows.T @ rows
    K[:n_terms, n_terms] = bc_row
    K[n_terms, :n_terms] = bc_row

    M = np.zeros((n_terms + 1, n_points + 1))
    M[:n_terms, 1:] = rows.T
    M[n_terms, 0] = 1.

    try:
        B = np.linalg.solve(K, M)[:n_terms]
    except np.linalg.LinAlgError as e:
        raise GhostCellError(f"Singular stencil system for ghost cell {ijk}") from e

    xg, yg, zg = ghost_xyz
    ghost_row = polynomial_basis((xg - xb) / h, (yg - yb) / h, (zg - zb) / h, order, use_y)[0]
    weights = ghost_row @ B
    if bc_kind == "neumann":
        # Boundary row is the derivative in scaled coordinates
        weights[0] *= h

    return B, weights


def _boundary_normal(ghost_xyz, boundary_xyz) -> Tuple[float, float, float]:
    """Unit vector from the boundary point into the fluid."""
    d = np.subtract(ghost_xyz, boundary_xyz)
    norm = np.linalg.norm(d)
    if norm < 1.e-12:
        return (0., 0., 1.)
    return tuple(float(c) for c in d / norm)


# =============================================================================
# Catalog
# =============================================================================

class GhostCellCatalog:
    """
    Ordered, immutable collection of ghost cells of one field location.

    Besides the GhostCell records the catalog keeps packed arrays for the
    apply kernel:
        ghost_ijk     (n_ghost, 3)
        neighbour_ijk (n_ghost, n_neighbours, 3)
        weights       (n_ghost, 1 + n_neighbours)
    """

    def __init__(self, name: str, loc: str, bc_kind: str,
                 cells: Sequence[GhostCell], n_neighbours: int):
        if bc_kind not in BC_KINDS:
            raise ConfigurationError(f"\"{bc_kind}\" is an illegal boundary condition")
        self.name = name
        self.loc = loc
        self.bc_kind = bc_kind
        self.n_neighbours = n_neighbours
        self._cells = tuple(cells)

        n = len(self._cells)
        self.ghost_ijk = np.array(
            [(c.i, c.j, c.k) for c in self._cells], dtype=np.int64).reshape(n, 3)
        self.neighbour_ijk = np.array(
            [[(p.i, p.j, p.k) for p in c.neighbours] for c in self._cells],
            dtype=np.int64).reshape(n, n_neighbours, 3)
        self.weights = np.array(
            [c.weights for c in self._cells], dtype=np.float64).reshape(n, n_neighbours + 1)

        for c in self._cells:
            c.B.flags.writeable = False
            c.weights.flags.writeable = False
        for arr in (self.ghost_ijk, self.neighbour_ijk, self.weights):
            arr.flags.writeable = False

    def __len__(self) -> int:
        return len(self._cells)

    def __iter__(self) -> Iterator[GhostCell]:
        return iter(self._cells)

    def __getitem__(self, index: int) -> GhostCell:
        return self._cells[index]

    def __repr__(self) -> str:
        return (f"GhostCellCatalog(name={self.name!r}, loc={self.loc!r}, "
                f"bc={self.bc_kind!r}, n_ghost={len(self)})")

    @property
    def is_empty(self) -> bool:
        return len(self._cells) == 0

    @classmethod
    def build(cls, name: str, loc: str, grid: StaggeredGrid, geometry: BoundaryGeometry,
              settings: StencilSettings, bc_kind: str = "dirichlet") -> 'GhostCellCatalog':
        """
        Classify the field location and build every ghost cell of the local interior.

        Raises
        ------
        ConfigurationError
            If the stencil is too small for the reconstruction order.
        GhostCellError
            If any ghost cell has no usable stencil.
        """
        if bc_kind not in BC_KINDS:
            raise ConfigurationError(f"\"{bc_kind}\" is an illegal boundary condition")
        settings.check_well_posed(not grid.is_2d)

        coords = grid.locations(loc)
        x, y, z = coords
        solid, ghost = classify_points(grid, geometry, loc)
        fluid = ~solid & ~ghost

        interior = np.zeros_like(ghost)
        interior[grid.interior] = True
        gi, gj, gk = np.nonzero(ghost & interior)

        cells = []
        for i, j, k in zip(gi.tolist(), gj.tolist(), gk.tolist()):
            ghost_xyz = (float(x[i]), float(y[j]), float(z[k]))
            boundary_xyz = find_nearest_location_wall(geometry, *ghost_xyz, grid, settings)
            normal = _boundary_normal(ghost_xyz, boundary_xyz)

            points = find_interpolation_points(i, j, k, fluid, coords, grid, settings)
            B, weights = define_distance_matrix(
                ghost_xyz, boundary_xyz, points, coords, normal,
                grid, settings, bc_kind, (i, j, k))

            xb, yb, zb = boundary_xyz
            neighbours = tuple(
                Neighbour(pi, pj, pk,
                          float(np.sqrt((x[pi] - xb)**2 + (y[pj] - yb)**2 + (z[pk] - zb)**2)))
                for pi, pj, pk in points)

            cells.append(GhostCell(
                i=i, j=j, k=k,
                xb=float(xb), yb=float(yb), zb=float(zb),
                neighbours=neighbours,
                B=np.ascontiguousarray(B).ravel(),
                B_shape=B.shape,
                weights=weights,
                normal=normal,
            ))

        logger.debug(f"Ghost cells {name} ({loc}, {bc_kind}): {len(cells)}")
        return cls(name, loc, bc_kind, cells, settings.n_neighbours)
