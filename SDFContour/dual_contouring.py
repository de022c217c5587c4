"""
Dual Contouring
===============

Extracts a triangle mesh of the zero level-set of a scalar field sampled on
a uniform grid.

Pipeline::

    build_grid -> compute_cell_vertices -> emit_quads -> remove_degenerate_triangles

1. **Cell vertex pass** (:func:`compute_cell_vertices`): every cell with a
   sign change on one of its 12 edges gets exactly one vertex. The edge
   crossings (Hermite samples: point and gradient normal) of the cell are
   passed to the QEF solver, constrained to the cell.
2. **Quad emission** (:func:`emit_quads`): every interior lattice edge with
   a sign change is shared by four cells. Their vertices form a quad that is
   oriented against the field gradient (:func:`orient_quads`) and split into
   two triangles (:func:`split_quads`).
   The split is fixed, so a strongly non-planar quad may fold.
3. **Cleanup**: triangles with zero area are dropped.

Every stage works on all cells (or all edges of one axis) at once. Vertex
indices follow the flat cell order and quads are emitted axis by axis in
flat edge order, so the result equals a cell-by-cell sweep and is
deterministic.

Sign convention: a corner is inside if ``f < 0``; ``f == 0`` is outside.
"""

import logging

import torch

import SDFContour
from SDFContour.grid import (
    CELL_EDGES,
    CORNER_OFFSETS,
    NO_VERTEX,
    DCGrid,
    build_grid,
    flat_index,
    lattice_coordinates,
)
from SDFContour.mesh import (
    DEFAULT_AREA_THRESHOLD,
    remove_degenerate_triangles,
    torchSurfMesh,
)
from SDFContour.qef import DEFAULT_SVD_THRESHOLD, solve_qef_batched
from SDFContour.SDF import (
    DEFAULT_GRADIENT_STEP,
    estimate_normals,
    finite_difference_gradient,
)

logger = logging.getLogger(SDFContour.__name__)

#: Transverse axes (u, v) per edge axis, (u, v, axis) is right-handed
TRANSVERSE_AXES = ((1, 2), (2, 0), (0, 1))

#: Cells around an edge as (du, dv) offsets from the edge's lattice
#: coordinate, counterclockwise seen from +axis. For x edges at (i, j, k):
#: (i, j-1, k-1), (i, j, k-1), (i, j, k), (i, j-1, k).
QUAD_CELL_ROTATION = ((-1, -1), (0, -1), (0, 0), (-1, 0))

#: Triangles (0, 1, 2) and (0, 2, 3) of a quad
QUAD_SPLIT = torch.tensor([[0, 1, 2], [0, 2, 3]], dtype=torch.long)

#: Below this magnitude face normal or gradient do not decide the winding
ORIENTATION_EPS = 1e-8

_IDENTITY_ORDER = torch.tensor([0, 1, 2, 3], dtype=torch.long)
_FLIPPED_ORDER = torch.tensor([0, 3, 2, 1], dtype=torch.long)


def _edge_crossings(values0: torch.Tensor, values1: torch.Tensor) -> torch.Tensor:
    return (values0 < 0) != (values1 < 0)


def compute_cell_vertices(
    sdf,
    grid: DCGrid,
    gradient_step: float = DEFAULT_GRADIENT_STEP,
    svd_threshold: float = DEFAULT_SVD_THRESHOLD,
) -> tuple[torch.Tensor, torch.Tensor]:
    """
    Places at most one vertex in every cell of ``grid``.

    Parameters
    ----------
    sdf : callable
        The field the grid was sampled from, used for gradients.
    grid : DCGrid
        Sampled corner values.
    gradient_step : float
        Finite-difference step of the normal estimate.
    svd_threshold : float
        Relative singular value cutoff of the QEF solve.

    Returns
    -------
    vertices : torch.Tensor
        (V, 3) vertex positions, in flat cell order.
    cell_vertex : torch.Tensor
        (N^3,) long, vertex index per cell or ``NO_VERTEX``.
    """
    N = grid.resolution
    device = grid.device
    cells = lattice_coordinates(N, device=device)
    corners = cells.unsqueeze(1) + CORNER_OFFSETS.to(device).unsqueeze(0)
    corner_values = grid.corner_values(corners)

    edges = CELL_EDGES.to(device)
    f0 = corner_values[:, edges[:, 0]]
    f1 = corner_values[:, edges[:, 1]]
    crossing = _edge_crossings(f0, f1)

    active = torch.nonzero(crossing.any(dim=1)).squeeze(1)
    cell_vertex = grid.vertex_index.clone()
    if active.shape[0] == 0:
        logger.debug("No sign changes in grid")
        return torch.empty((0, 3), dtype=grid.dtype, device=device), cell_vertex

    crossing = crossing[active]
    f0, f1 = f0[active], f1[active]
    corners = corners[active]
    p0 = grid.positions(corners[:, edges[:, 0]])
    p1 = grid.positions(corners[:, edges[:, 1]])

    # denominator is non-zero on crossing edges
    denominator = torch.where(crossing, f1 - f0, torch.ones_like(f0))
    t = torch.where(crossing, -f0 / denominator, torch.zeros_like(f0))
    points = p0 + t.unsqueeze(-1) * (p1 - p0)

    normals = torch.zeros_like(points)
    with torch.no_grad():
        normals[crossing] = estimate_normals(sdf, points[crossing], step=gradient_step)

    cell_min, cell_max = grid.cell_bounds(cells[active])
    vertices = solve_qef_batched(
        points, normals, crossing, cell_min, cell_max, threshold=svd_threshold
    )

    cell_vertex[active] = torch.arange(active.shape[0], device=device)
    logger.debug(
        f"Cell vertex pass: {int(crossing.sum())} Hermite samples, "
        f"{vertices.shape[0]} vertices"
    )
    return vertices, cell_vertex


def orient_quads(
    positions: torch.Tensor,
    reference: torch.Tensor,
    eps: float = ORIENTATION_EPS,
) -> torch.Tensor:
    """
    Vertex order of each quad so that its normal agrees with ``reference``.

    The quad normal is estimated from its first three vertices. When it has
    a negative dot product with the reference direction, vertices 1 and 3
    are swapped, which reverses the cyclic order. If either vector is
    shorter than ``eps`` the order is kept.

    Args:
        positions (torch.Tensor): (Q, 4, 3) quad vertices in cyclic order.
        reference (torch.Tensor): (Q, 3) outward direction, e.g. the field
            gradient.

    Returns:
        torch.Tensor: (Q, 4) long permutation of 0..3 per quad.
    """
    a, b, c = positions[:, 0], positions[:, 1], positions[:, 2]
    face_normal = torch.linalg.cross(b - a, c - a, dim=1)
    decidable = (torch.linalg.norm(face_normal, dim=1) > eps) & (
        torch.linalg.norm(reference, dim=1) > eps
    )
    flip = decidable & ((face_normal * reference).sum(dim=1) < 0)
    device = positions.device
    return torch.where(
        flip.unsqueeze(1),
        _FLIPPED_ORDER.to(device),
        _IDENTITY_ORDER.to(device),
    )


def split_quads(quads: torch.Tensor) -> torch.Tensor:
    """(Q, 4) quads -> (2Q, 3) triangles; rows 2q and 2q+1 come from quad q."""
    return quads[:, QUAD_SPLIT.to(quads.device)].reshape(-1, 3)


def _quad_cell_offsets(axis: int, device) -> torch.Tensor:
    u, v = TRANSVERSE_AXES[axis]
    offsets = torch.zeros((4, 3), dtype=torch.long, device=device)
    for n, (du, dv) in enumerate(QUAD_CELL_ROTATION):
        offsets[n, u] = du
        offsets[n, v] = dv
    return offsets


def emit_quads(
    sdf,
    grid: DCGrid,
    vertices: torch.Tensor,
    cell_vertex: torch.Tensor,
    gradient_step: float = DEFAULT_GRADIENT_STEP,
) -> torch.Tensor:
    """
    Connects the cell vertices around every interior sign-changing edge.

    Edges on the lattice boundary have fewer than four neighboring cells and
    are skipped, as are edges where one of the four cells has no vertex.

    Returns
    -------
    torch.Tensor
        (2Q, 3) long triangles, two per emitted quad.
    """
    N = grid.resolution
    device = grid.device
    coords = lattice_coordinates(N + 1, device=device)
    triangles = []
    skipped = 0

    for axis in range(3):
        u, v = TRANSVERSE_AXES[axis]
        interior = (
            (coords[:, axis] < N)
            & (coords[:, u] >= 1)
            & (coords[:, u] <= N - 1)
            & (coords[:, v] >= 1)
            & (coords[:, v] <= N - 1)
        )
        start = coords[interior]
        step = torch.zeros(3, dtype=torch.long, device=device)
        step[axis] = 1
        crossing = _edge_crossings(
            grid.corner_values(start), grid.corner_values(start + step)
        )
        start = start[crossing]
        if start.shape[0] == 0:
            continue

        cells = start.unsqueeze(1) + _quad_cell_offsets(axis, device).unsqueeze(0)
        quads = cell_vertex[flat_index(cells, N)]
        complete = (quads != NO_VERTEX).all(dim=1)
        skipped += int((~complete).sum())
        quads, start = quads[complete], start[complete]
        if quads.shape[0] == 0:
            continue

        midpoints = grid.positions(start.to(grid.dtype) + 0.5 * step)
        with torch.no_grad():
            gradient = finite_difference_gradient(sdf, midpoints, step=gradient_step)
        order = orient_quads(vertices[quads], gradient)
        quads = torch.gather(quads, 1, order)
        triangles.append(split_quads(quads))

    if skipped > 0:
        logger.debug(f"Skipped {skipped} quads with a missing cell vertex")
    if not triangles:
        return torch.empty((0, 3), dtype=torch.long, device=device)
    return torch.cat(triangles, dim=0)


def dual_contour(
    sdf,
    grid: DCGrid,
    gradient_step: float = DEFAULT_GRADIENT_STEP,
    svd_threshold: float = DEFAULT_SVD_THRESHOLD,
    area_threshold: float = DEFAULT_AREA_THRESHOLD,
) -> torchSurfMesh:
    """Runs the cell vertex pass, quad emission and cleanup on a sampled grid."""
    vertices, cell_vertex = compute_cell_vertices(
        sdf, grid, gradient_step=gradient_step, svd_threshold=svd_threshold
    )
    triangles = emit_quads(
        sdf, grid, vertices, cell_vertex, gradient_step=gradient_step
    )
    triangles = remove_degenerate_triangles(
        vertices, triangles, threshold=area_threshold
    )
    return torchSurfMesh(vertices, triangles)


def create_3D_mesh(
    sdf,
    resolution: int,
    bounds=(-1.0, 1.0),
    gradient_step: float = DEFAULT_GRADIENT_STEP,
    svd_threshold: float = DEFAULT_SVD_THRESHOLD,
    area_threshold: float = DEFAULT_AREA_THRESHOLD,
    dtype=torch.float64,
    device="cpu",
) -> torchSurfMesh:
    """
    Extracts the zero level-set of ``sdf`` inside the cube ``bounds``.

    Parameters
    ----------
    sdf : callable
        Scalar field, (M, 3) points -> M values, negative inside.
    resolution : int
        Number of cells per axis.
    bounds : tuple[float, float]
        ``(min, max)`` of the sampled cube.
    gradient_step, svd_threshold, area_threshold : float
        Tunable numerics, see the module defaults.

    Returns
    -------
    torchSurfMesh
        A fresh mesh, possibly empty.

    Examples
    --------
    >>> from SDFContour.sdf_primitives import SphereSDF
    >>> mesh = create_3D_mesh(SphereSDF([0, 0, 0], 0.75), resolution=32)
    >>> mesh.volume()  # close to 4/3 pi 0.75^3
    """
    grid = build_grid(sdf, resolution, bounds=bounds, dtype=dtype, device=device)
    mesh = dual_contour(
        sdf,
        grid,
        gradient_step=gradient_step,
        svd_threshold=svd_threshold,
        area_threshold=area_threshold,
    )
    logger.info(
        f"Dual contouring at resolution {resolution}: "
        f"{mesh.vertices.shape[0]} vertices, {mesh.faces.shape[0]} triangles"
    )
    return mesh
