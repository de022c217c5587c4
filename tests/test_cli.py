import logging

import pytest
import trimesh

from SDFContour.__main__ import get_shape, parse_args, run
from SDFContour.SDF import SDFfromMesh
from SDFContour.sdf_primitives import BoxSDF, SphereSDF, TorusSDF


def test_presets():
    assert isinstance(get_shape("sphere"), SphereSDF)
    assert isinstance(get_shape("box"), BoxSDF)
    torus = get_shape("torus")
    assert isinstance(torus, TorusSDF)
    assert torus.axis == 1


def test_parse_args_defaults():
    args = parse_args([])
    assert args.shape == "sphere"
    assert args.resolution == 32
    assert tuple(args.bounds) == (-1.0, 1.0)
    assert args.output is None


def test_run_sphere(tmp_path):
    output = tmp_path / "sphere.stl"
    assert run(["--shape", "sphere", "--resolution", "8", "--output", str(output)]) == 0
    assert output.exists()
    assert len(trimesh.load(output, force="mesh").faces) > 0


def test_run_mesh_file(tmp_path):
    mesh_file = tmp_path / "ico.obj"
    trimesh.creation.icosphere(subdivisions=2).export(mesh_file)
    output = tmp_path / "ico_dc.obj"
    argv = ["-s", "mesh", "-m", str(mesh_file), "-n", "10", "-o", str(output)]
    assert run(argv) == 0
    assert output.exists()


def test_run_mesh_without_file(caplog):
    with caplog.at_level(logging.ERROR, logger="SDFContour"):
        assert run(["--shape", "mesh"]) == 1
    assert "requires --mesh-file" in caplog.text


def test_run_missing_mesh_file(tmp_path):
    assert run(["--shape", "mesh", "--mesh-file", str(tmp_path / "nope.obj")]) == 1


@pytest.mark.parametrize(
    "argv",
    [
        ["--resolution", "0"],
        ["--resolution", "-3"],
        ["--bounds", "1", "-1"],
        ["--bounds", "0.5", "0.5"],
    ],
)
def test_run_invalid_grid(argv, caplog):
    with caplog.at_level(logging.ERROR, logger="SDFContour"):
        assert run(argv) == 1
    assert "Could not build mesh" in caplog.text


def test_mesh_released_when_build_fails(tmp_path, monkeypatch):
    released = []
    release = SDFfromMesh.release

    def tracking_release(self):
        if getattr(self, "mesh", None) is not None:
            released.append(self)
        release(self)

    monkeypatch.setattr(SDFfromMesh, "release", tracking_release)
    mesh_file = tmp_path / "box.stl"
    trimesh.creation.box().export(mesh_file)
    argv = ["--shape", "mesh", "--mesh-file", str(mesh_file), "--resolution", "0"]
    assert run(argv) == 1
    assert len(released) == 1


def test_mesh_shape_is_loaded(tmp_path):
    mesh_file = tmp_path / "box.stl"
    trimesh.creation.box().export(mesh_file)
    sdf = get_shape("mesh", mesh_file)
    assert isinstance(sdf, SDFfromMesh)
    assert sdf.is_loaded


if __name__ == "__main__":
    test_presets()
    test_parse_args_defaults()
