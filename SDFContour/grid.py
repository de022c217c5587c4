"""
Uniform Sampling Grid
=====================

The corner lattice shared by all dual contouring stages.

A grid of resolution ``N`` covers the cube ``[min, max]^3`` with ``N^3``
cells and ``(N+1)^3`` corners. Corner and cell coordinates are flattened
with a single formula, :func:`lattice_index`, with ``i`` varying fastest::

    offset = i + n * (j + n * k)

where ``n`` is ``N + 1`` for corners and ``N`` for cells. Every stage that
converts lattice coordinates to an offset goes through this function.

Cell corners are numbered 0..7 by bits: bit 0 selects +1 along x, bit 1
along y and bit 2 along z::

        6 ──────── 7
       /|         /|
      4 ──────── 5 |
      | 2 ───────|─ 3
      |/         |/
      0 ──────── 1

The 12 cell edges are listed as corner pairs, four per axis.
"""

import logging

import torch

import SDFContour

logger = logging.getLogger(SDFContour.__name__)

#: Sentinel in the cell to vertex map for cells without a vertex
NO_VERTEX = -1

#: (8, 3) lattice offset of each cell corner
CORNER_OFFSETS = torch.tensor(
    [[c & 1, (c >> 1) & 1, (c >> 2) & 1] for c in range(8)], dtype=torch.long
)

#: (12, 2) corner pairs of the cell edges: x edges, y edges, z edges
CELL_EDGES = torch.tensor(
    [
        [0, 1], [2, 3], [4, 5], [6, 7],
        [0, 2], [1, 3], [4, 6], [5, 7],
        [0, 4], [1, 5], [2, 6], [3, 7],
    ],
    dtype=torch.long,
)  # fmt: skip


def lattice_index(i, j, k, n):
    """Flat offset of lattice coordinate (i, j, k) in an n x n x n lattice.

    Works on python ints and on integer tensors alike.
    """
    return i + n * (j + n * k)


def lattice_coordinates(n: int, device="cpu") -> torch.Tensor:
    """(n^3, 3) coordinates of an n x n x n lattice in flat offset order."""
    offset = torch.arange(n**3, dtype=torch.long, device=device)
    return torch.stack([offset % n, (offset // n) % n, offset // (n * n)], dim=1)


def flat_index(coords: torch.Tensor, n: int) -> torch.Tensor:
    """:func:`lattice_index` for a (..., 3) tensor of coordinates."""
    return lattice_index(coords[..., 0], coords[..., 1], coords[..., 2], n)


class DCGrid:
    """Scalar samples on the corner lattice of a uniform grid.

    Attributes:
        resolution (int): number of cells per axis ``N``.
        bounds (tuple[float, float]): cube bounds ``(min, max)``.
        cell_size (float): ``(max - min) / N``.
        values (torch.Tensor): ((N+1)^3,) field value per corner.
        vertex_index (torch.Tensor): (N^3,) long, all ``NO_VERTEX``. The
            cell vertex pass returns a filled copy and leaves this untouched.
    """

    def __init__(self, resolution: int, bounds, values: torch.Tensor):
        self.resolution = resolution
        self.bounds = (float(bounds[0]), float(bounds[1]))
        self.cell_size = (self.bounds[1] - self.bounds[0]) / resolution
        self.values = values
        self.vertex_index = torch.full(
            (resolution**3,), NO_VERTEX, dtype=torch.long, device=values.device
        )

    @property
    def dtype(self):
        return self.values.dtype

    @property
    def device(self):
        return self.values.device

    def positions(self, coords: torch.Tensor) -> torch.Tensor:
        """World positions of (possibly fractional) lattice coordinates."""
        return self.bounds[0] + coords.to(self.dtype) * self.cell_size

    def corner_values(self, coords: torch.Tensor) -> torch.Tensor:
        return self.values[flat_index(coords, self.resolution + 1)]

    def cell_bounds(self, cells: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
        """Axis-aligned (min, max) corners of the given cells."""
        lower = self.positions(cells)
        return lower, self.positions(cells + 1)


def build_grid(
    sdf,
    resolution: int,
    bounds=(-1.0, 1.0),
    dtype=torch.float64,
    device="cpu",
) -> DCGrid:
    """
    Evaluates ``sdf`` on all (N+1)^3 corners of a uniform lattice.

    Parameters
    ----------
    sdf : callable
        Scalar field, (M, 3) points -> M values.
    resolution : int
        Number of cells per axis, at least 1.
    bounds : tuple[float, float]
        Cube bounds ``(min, max)`` with ``min < max``.

    Returns
    -------
    DCGrid
        Corner values populated, cell to vertex map set to ``NO_VERTEX``.
    """
    if int(resolution) != resolution or resolution < 1:
        raise ValueError(f"Resolution must be a positive integer, got {resolution}")
    resolution = int(resolution)
    if not bounds[0] < bounds[1]:
        raise ValueError(f"Bounds must satisfy min < max, got {tuple(bounds)}")

    coords = lattice_coordinates(resolution + 1, device=device)
    cell_size = (bounds[1] - bounds[0]) / resolution
    points = bounds[0] + coords.to(dtype) * cell_size

    with torch.no_grad():
        values = sdf(points)
    if values is None:
        raise RuntimeError("Invalid SDF output")
    values = torch.as_tensor(values, device=device).reshape(-1).to(dtype)

    logger.debug(
        f"Sampled {values.shape[0]} corners at resolution {resolution} "
        f"in [{bounds[0]}, {bounds[1]}]^3"
    )
    return DCGrid(resolution, bounds, values)
