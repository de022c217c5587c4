"""
Quadric Error Function Solver
=============================

Places the dual contouring vertex of a cell. Each Hermite sample defines a
plane through the sample point, oriented by the sample normal; the vertex is
the point with the least sum of squared distances to those planes.

The system is expressed relative to the mass point (mean of the sample
points) and solved with a truncated SVD. Singular values below
``threshold * max(1, s_max)`` are dropped, so directions the samples do not
constrain keep the coordinate of the mass point. A solution that is not
finite or leaves the cell is replaced by the mass point clamped to the cell.
"""

import logging

import torch

import SDFContour
from SDFContour.SDF import FALLBACK_AXIS, NORMAL_EPS

logger = logging.getLogger(SDFContour.__name__)

#: Relative singular value cutoff of the truncated SVD
DEFAULT_SVD_THRESHOLD = 1e-3


class HermiteSamples:
    """Intersection points of a cell's edges with the surface and the unit
    surface normals at those points.

    Attributes:
        points (torch.Tensor): (K, 3)
        normals (torch.Tensor): (K, 3)
    """

    points: torch.Tensor
    normals: torch.Tensor

    def __init__(self, points, normals, dtype=torch.float64):
        self.points = torch.as_tensor(points, dtype=dtype).reshape(-1, 3)
        self.normals = torch.as_tensor(normals, dtype=dtype).reshape(-1, 3)
        if self.points.shape != self.normals.shape:
            raise ValueError(
                f"Got {self.points.shape[0]} points but {self.normals.shape[0]} normals"
            )

    def __len__(self):
        return self.points.shape[0]

    def __add__(self, other):
        return HermiteSamples(
            points=torch.vstack((self.points, other.points)),
            normals=torch.vstack((self.normals, other.normals)),
        )

    @classmethod
    def empty(cls):
        return cls(torch.empty((0, 3)), torch.empty((0, 3)))


def _unit_normals(normals: torch.Tensor, eps: float = NORMAL_EPS) -> torch.Tensor:
    length = torch.linalg.norm(normals, dim=-1, keepdim=True)
    degenerate = ~torch.isfinite(length.squeeze(-1)) | (length.squeeze(-1) <= eps)
    normals = normals / torch.where(degenerate.unsqueeze(-1), 1.0, length)
    fallback = torch.tensor(FALLBACK_AXIS, dtype=normals.dtype, device=normals.device)
    return torch.where(degenerate.unsqueeze(-1), fallback, normals)


def solve_qef_batched(
    points: torch.Tensor,
    normals: torch.Tensor,
    mask: torch.Tensor,
    cell_min: torch.Tensor,
    cell_max: torch.Tensor,
    threshold: float = DEFAULT_SVD_THRESHOLD,
) -> torch.Tensor:
    """
    Solves the QEF of many cells at once.

    Cells hold a variable number of samples, so samples are padded to a
    common count ``S`` and ``mask`` marks the real ones. Padded rows enter
    the system as zero rows and do not change its solution.

    Args:
        points (torch.Tensor): (M, S, 3) sample points.
        normals (torch.Tensor): (M, S, 3) sample normals, re-normalized here.
        mask (torch.Tensor): (M, S) bool, True for real samples.
        cell_min (torch.Tensor): (M, 3) lower cell corners.
        cell_max (torch.Tensor): (M, 3) upper cell corners.
        threshold (float): relative singular value cutoff.

    Returns:
        torch.Tensor: (M, 3) vertex positions in the dtype of ``points``.
    """
    out_dtype = points.dtype
    points = points.to(torch.float64)
    normals = normals.to(torch.float64)
    cell_min = cell_min.to(torch.float64)
    cell_max = cell_max.to(torch.float64)
    weights = mask.to(torch.float64)
    points = torch.where(mask.unsqueeze(-1), points, 0.0)

    counts = weights.sum(dim=1)
    empty = counts == 0
    mass_point = (points * weights.unsqueeze(-1)).sum(dim=1) / counts.clamp(
        min=1
    ).unsqueeze(-1)
    mass_point[empty] = 0.5 * (cell_min[empty] + cell_max[empty])

    n = _unit_normals(normals) * weights.unsqueeze(-1)
    b = (n * (points - mass_point.unsqueeze(1))).sum(dim=-1)
    b = torch.where(torch.isfinite(b), b, 0.0)

    U, S, Vh = torch.linalg.svd(n, full_matrices=False)
    cutoff = threshold * S[:, :1].clamp(min=1.0)
    keep = S >= cutoff
    S_inv = torch.where(keep, 1.0 / torch.where(keep, S, 1.0), 0.0)
    coefficients = S_inv * (U.transpose(1, 2) @ b.unsqueeze(-1)).squeeze(-1)
    x = (Vh.transpose(1, 2) @ coefficients.unsqueeze(-1)).squeeze(-1) + mass_point

    non_finite = ~torch.isfinite(x).all(dim=1)
    x[non_finite] = mass_point[non_finite]

    outside = ((x < cell_min) | (x > cell_max)).any(dim=1)
    clamped = torch.minimum(torch.maximum(mass_point, cell_min), cell_max)
    x[outside] = clamped[outside]
    x[empty] = clamped[empty]

    solved = ~empty
    if solved.any():
        logger.debug(
            f"QEF: {int(solved.sum())} cells solved, "
            f"{int((outside & solved).sum())} fell back to the mass point, "
            f"{int(non_finite.sum())} non-finite"
        )
    return x.to(out_dtype)


def solve_qef(
    samples: HermiteSamples,
    cell_min,
    cell_max,
    threshold: float = DEFAULT_SVD_THRESHOLD,
) -> torch.Tensor:
    """Vertex position of a single cell.

    With no samples the cell midpoint is returned.

    Examples
    --------
    >>> samples = HermiteSamples(
    ...     points=[[0.4, 0.5, 0.6]] * 3,
    ...     normals=[[1, 0, 0], [0, 1, 0], [0, 0, 1]],
    ... )
    >>> solve_qef(samples, [0, 0, 0], [1, 1, 1])
    tensor([0.4000, 0.5000, 0.6000], dtype=torch.float64)
    """
    cell_min = torch.as_tensor(cell_min, dtype=torch.float64).reshape(1, 3)
    cell_max = torch.as_tensor(cell_max, dtype=torch.float64).reshape(1, 3)
    if len(samples) == 0:
        midpoint = 0.5 * (cell_min + cell_max)
        return torch.minimum(torch.maximum(midpoint, cell_min), cell_max).reshape(3)
    points = samples.points.to(torch.float64).unsqueeze(0)
    normals = samples.normals.to(torch.float64).unsqueeze(0)
    mask = torch.ones(points.shape[:2], dtype=torch.bool)
    return solve_qef_batched(
        points, normals, mask, cell_min, cell_max, threshold=threshold
    ).reshape(3)
