import pytest
import torch

from SDFContour.grid import (
    CELL_EDGES,
    CORNER_OFFSETS,
    NO_VERTEX,
    build_grid,
    flat_index,
    lattice_coordinates,
    lattice_index,
)
from SDFContour.sdf_primitives import PlaneSDF, SphereSDF


def test_lattice_index_is_i_fastest():
    n = 4
    assert lattice_index(0, 0, 0, n) == 0
    assert lattice_index(1, 0, 0, n) == 1
    assert lattice_index(0, 1, 0, n) == n
    assert lattice_index(0, 0, 1, n) == n * n
    assert lattice_index(3, 3, 3, n) == n**3 - 1


def test_lattice_coordinates_roundtrip():
    n = 5
    coords = lattice_coordinates(n)
    assert coords.shape == (n**3, 3)
    torch.testing.assert_close(flat_index(coords, n), torch.arange(n**3))


def test_corner_and_edge_tables():
    # corner bits select +1 along x, y, z
    assert CORNER_OFFSETS[5].tolist() == [1, 0, 1]
    assert CORNER_OFFSETS[6].tolist() == [0, 1, 1]
    # every edge joins corners that differ along exactly one axis, 4 per axis
    delta = CORNER_OFFSETS[CELL_EDGES[:, 1]] - CORNER_OFFSETS[CELL_EDGES[:, 0]]
    assert (delta.abs().sum(dim=1) == 1).all()
    assert (delta >= 0).all()
    assert delta.sum(dim=0).tolist() == [4, 4, 4]
    assert (delta.argmax(dim=1) == torch.arange(12) // 4).all()


def test_build_grid_values():
    N = 4
    sdf = PlaneSDF(point=[0.0, 0.0, 0.0], normal=[1.0, 0.0, 0.0])
    grid = build_grid(sdf, N, bounds=(-1.0, 1.0))
    assert grid.values.shape == ((N + 1) ** 3,)
    assert grid.cell_size == pytest.approx(0.5)
    assert grid.values.dtype == torch.float64
    # corner (i, j, k) sits at x = -1 + i * 0.5
    for i, j, k in [(0, 0, 0), (4, 1, 2), (2, 3, 4)]:
        assert grid.values[lattice_index(i, j, k, N + 1)] == pytest.approx(
            -1.0 + 0.5 * i
        )


def test_build_grid_vertex_map_initialized():
    grid = build_grid(SphereSDF(center=[0, 0, 0], radius=0.5), 3)
    assert grid.vertex_index.shape == (27,)
    assert (grid.vertex_index == NO_VERTEX).all()


def test_cell_bounds():
    grid = build_grid(SphereSDF(center=[0, 0, 0], radius=0.5), 4, bounds=(0.0, 2.0))
    lo, hi = grid.cell_bounds(torch.tensor([[1, 2, 3]]))
    torch.testing.assert_close(lo, torch.tensor([[0.5, 1.0, 1.5]], dtype=lo.dtype))
    torch.testing.assert_close(hi, torch.tensor([[1.0, 1.5, 2.0]], dtype=hi.dtype))


def test_build_grid_accepts_plain_callable():
    grid = build_grid(lambda p: p[:, 2] - 0.1, 2)
    assert grid.values.shape == (27,)
    assert grid.values[lattice_index(0, 0, 2, 3)] == pytest.approx(0.9)


@pytest.mark.parametrize(
    "resolution, bounds", [(0, (-1.0, 1.0)), (-2, (-1.0, 1.0)), (4, (1.0, 1.0))]
)
def test_build_grid_rejects_invalid_input(resolution, bounds):
    with pytest.raises(ValueError):
        build_grid(SphereSDF(center=[0, 0, 0], radius=0.5), resolution, bounds=bounds)


if __name__ == "__main__":
    test_lattice_index_is_i_fastest()
    test_lattice_coordinates_roundtrip()
    test_corner_and_edge_tables()
    test_build_grid_values()
