import torch
import pytest

from SDFContour.SDF import SDFBase, estimate_normals, finite_difference_gradient
from SDFContour.sdf_primitives import (
    BoxSDF,
    CylinderSDF,
    PlaneSDF,
    SphereSDF,
    TorusSDF,
)


@pytest.fixture
def queries():
    torch.manual_seed(42)
    return torch.rand(10, 3) * 2 - 1


def test_sdf_primitives(queries):
    sphere = SphereSDF(center=[0.0, 0.0, 0.0], radius=0.5)
    cylinder_x = CylinderSDF(point=[0.0, 0.0, 0.0], axis="x", radius=0.3)
    torus = TorusSDF(center=[0.0, 0.0, 0.0], R=0.5, r=0.2)
    plane = PlaneSDF(point=[0.0, 0.0, 0.0], normal=[0.0, 1.0, 0.0])
    box = BoxSDF(half_extents=[0.6, 0.45, 0.5])

    for sdf in [sphere, cylinder_x, torus, plane, box]:
        print(f"Testing {sdf.__class__.__name__}")
        values = sdf(queries)
        assert values.shape == (10, 1)
        assert torch.isfinite(values).all()


def test_box_distances():
    box = BoxSDF(half_extents=[0.6, 0.45, 0.5])
    points = torch.tensor(
        [
            [0.0, 0.0, 0.0],
            [1.0, 0.0, 0.0],
            [0.0, 0.0, -0.7],
            [0.9, 0.85, 0.5],
        ]
    )
    expected = torch.tensor([[-0.45], [0.4], [0.2], [0.5]])
    torch.testing.assert_close(box(points), expected, atol=1e-6, rtol=1e-6)


def test_torus_axis():
    torus_y = TorusSDF(center=[0, 0, 0], R=0.6, r=0.25, axis="y")
    torus_z = TorusSDF(center=[0, 0, 0], R=0.6, r=0.25, axis="z")
    # the tube passes through (0.6, 0, 0) for both, and through (0, 0, 0.6)
    # only when revolving around y
    on_tube = torch.tensor([[0.6, 0.0, 0.0], [0.0, 0.0, 0.6]])
    torch.testing.assert_close(
        torus_y(on_tube), torch.tensor([[-0.25], [-0.25]]), atol=1e-6, rtol=0
    )
    assert torus_z(on_tube)[1, 0] > 0


def test_invalid_axis():
    with pytest.raises(ValueError):
        CylinderSDF(point=[0, 0, 0], axis="w", radius=0.3)


def test_invalid_query_shape():
    sphere = SphereSDF(center=[0, 0, 0], radius=0.5)
    with pytest.raises(ValueError):
        sphere(torch.zeros(4, 2))


def test_sphere_gradient_is_radial():
    sphere = SphereSDF(center=[0, 0, 0], radius=0.75)
    points = torch.tensor(
        [[0.75, 0.0, 0.0], [0.0, -0.5, 0.5], [0.3, 0.2, -0.1]], dtype=torch.float64
    )
    grad = finite_difference_gradient(sphere, points)
    expected = points / torch.linalg.norm(points, dim=1, keepdim=True)
    torch.testing.assert_close(grad, expected, atol=1e-5, rtol=0)
    torch.testing.assert_close(sphere.gradient(points), grad)


def test_flat_field_uses_fallback_axis():
    constant = lambda p: torch.ones(p.shape[0], dtype=p.dtype)  # noqa: E731
    points = torch.rand(5, 3, dtype=torch.float64)
    normals = estimate_normals(constant, points)
    torch.testing.assert_close(
        normals, torch.tensor([[1.0, 0.0, 0.0]] * 5, dtype=torch.float64)
    )


def test_non_finite_field_uses_fallback_axis():
    nan_field = lambda p: torch.full((p.shape[0],), float("nan"), dtype=p.dtype)  # noqa: E731
    points = torch.rand(4, 3, dtype=torch.float64)
    normals = estimate_normals(nan_field, points)
    torch.testing.assert_close(
        normals, torch.tensor([[1.0, 0.0, 0.0]] * 4, dtype=torch.float64)
    )


def test_subclass_only_needs_compute():
    class HalfSpace(SDFBase):
        def _compute(self, queries):
            return queries[:, 2:3]

    values = HalfSpace()(torch.tensor([[0.0, 0.0, -0.5], [1.0, 2.0, 0.25]]))
    torch.testing.assert_close(values, torch.tensor([[-0.5], [0.25]]))


def test_normals_are_unit_length():
    plane = PlaneSDF(point=[0.0, 0.0, 0.0], normal=[1.0, 2.0, 2.0])
    points = torch.rand(20, 3, dtype=torch.float64)
    normals = estimate_normals(plane, points)
    torch.testing.assert_close(
        torch.linalg.norm(normals, dim=1), torch.ones(20, dtype=torch.float64)
    )


if __name__ == "__main__":
    torch.manual_seed(42)
    q = torch.rand(10, 3) * 2 - 1
    test_sdf_primitives(q)
    test_box_distances()
    test_torus_axis()
