from SDFContour.SDF import SDFBase
import torch

_AXES = {"x": 0, "y": 1, "z": 2}


def _axis_index(axis):
    if axis not in _AXES:
        raise ValueError("Axis must be 'x', 'y', or 'z'")
    return _AXES[axis]


class SphereSDF(SDFBase):
    def __init__(self, center, radius):
        super().__init__()
        self.center = torch.tensor(center, dtype=torch.float32)
        self.r = radius

    def _compute(self, queries: torch.Tensor) -> torch.Tensor:
        center = self.center.to(device=queries.device, dtype=queries.dtype)
        return (torch.linalg.norm(queries - center, dim=1) - self.r).reshape(-1, 1)


class BoxSDF(SDFBase):
    """Exact distance to an axis-aligned box given by its half extents."""

    def __init__(self, half_extents, center=(0.0, 0.0, 0.0)):
        super().__init__()
        self.half_extents = torch.tensor(half_extents, dtype=torch.float32)
        self.center = torch.tensor(center, dtype=torch.float32)

    def _compute(self, queries: torch.Tensor) -> torch.Tensor:
        b = self.half_extents.to(device=queries.device, dtype=queries.dtype)
        center = self.center.to(device=queries.device, dtype=queries.dtype)
        q = torch.abs(queries - center) - b
        outside = torch.linalg.norm(torch.clamp(q, min=0), dim=1)
        inside = torch.clamp(q.max(dim=1).values, max=0)
        return (outside + inside).reshape(-1, 1)


class CylinderSDF(SDFBase):
    def __init__(self, point, axis, radius):
        super().__init__()
        self.point = torch.tensor(point, dtype=torch.float32)
        self.axis = _axis_index(axis)
        self.r = radius

    def _compute(self, queries: torch.Tensor) -> torch.Tensor:
        diff = queries - self.point.to(device=queries.device, dtype=queries.dtype)
        radial = [d for d in range(3) if d != self.axis]
        dist = torch.sqrt(diff[:, radial[0]] ** 2 + diff[:, radial[1]] ** 2)
        return (dist - self.r).reshape(-1, 1)


class TorusSDF(SDFBase):
    """Torus with major radius ``R`` and minor radius ``r`` revolving around ``axis``."""

    def __init__(self, center, R, r, axis="z"):
        super().__init__()
        self.center = torch.tensor(center, dtype=torch.float32)
        self.R = R
        self.r = r
        self.axis = _axis_index(axis)

    def _compute(self, queries: torch.Tensor) -> torch.Tensor:
        p = queries - self.center.to(device=queries.device, dtype=queries.dtype)
        radial = [d for d in range(3) if d != self.axis]
        q = torch.stack(
            [
                torch.sqrt(p[:, radial[0]] ** 2 + p[:, radial[1]] ** 2) - self.R,
                p[:, self.axis],
            ],
            dim=1,
        )
        dist = torch.linalg.norm(q, dim=1) - self.r
        return dist.reshape(-1, 1)


class PlaneSDF(SDFBase):
    def __init__(self, point, normal):
        super().__init__()
        self.point = torch.tensor(point, dtype=torch.float32)
        self.normal = torch.tensor(normal, dtype=torch.float32)
        self.normal = self.normal / torch.linalg.norm(self.normal)

    def _compute(self, queries: torch.Tensor) -> torch.Tensor:
        point = self.point.to(device=queries.device, dtype=queries.dtype)
        normal = self.normal.to(device=queries.device, dtype=queries.dtype)
        return torch.matmul(queries - point, normal).reshape(-1, 1)
