"""
Command line host for the dual contouring pipeline.

Builds the mesh of a preset shape or of a polygon file and optionally
writes it to disk::

    python -m SDFContour --shape torus --resolution 64 --output torus.stl
    python -m SDFContour --shape mesh --mesh-file teapot.obj -o teapot.obj
"""

import argparse
import logging
import time

import SDFContour
from SDFContour.dual_contouring import create_3D_mesh
from SDFContour.mesh import DEFAULT_AREA_THRESHOLD, export_surface_mesh
from SDFContour.qef import DEFAULT_SVD_THRESHOLD
from SDFContour.SDF import DEFAULT_GRADIENT_STEP, SDFfromMesh
from SDFContour.sdf_primitives import BoxSDF, SphereSDF, TorusSDF
from SDFContour.utils import configure_logging

logger = logging.getLogger(SDFContour.__name__)

SHAPES = ("sphere", "box", "torus", "mesh")


def get_shape(name, mesh_file=None):
    if name == "sphere":
        return SphereSDF(center=[0.0, 0.0, 0.0], radius=0.75)
    elif name == "box":
        return BoxSDF(half_extents=[0.6, 0.45, 0.5])
    elif name == "torus":
        return TorusSDF(center=[0.0, 0.0, 0.0], R=0.6, r=0.25, axis="y")
    elif name == "mesh":
        if mesh_file is None:
            raise ValueError("Shape 'mesh' requires --mesh-file")
        return SDFfromMesh().load(mesh_file)
    raise ValueError(f"Unknown shape {name}. Must be one of {SHAPES}")


def main(
    shape="sphere",
    resolution=32,
    bounds=(-1.0, 1.0),
    mesh_file=None,
    output=None,
    gradient_step=DEFAULT_GRADIENT_STEP,
    svd_threshold=DEFAULT_SVD_THRESHOLD,
    area_threshold=DEFAULT_AREA_THRESHOLD,
):
    try:
        sdf = get_shape(shape, mesh_file)
    except (OSError, ValueError) as err:
        logger.error(f"Could not set up shape {shape}: {err}")
        return 1

    start = time.time()
    try:
        mesh = create_3D_mesh(
            sdf,
            resolution,
            bounds=bounds,
            gradient_step=gradient_step,
            svd_threshold=svd_threshold,
            area_threshold=area_threshold,
        )
    except ValueError as err:
        logger.error(f"Could not build mesh of {shape}: {err}")
        return 1
    finally:
        if isinstance(sdf, SDFfromMesh):
            sdf.release()
    logger.info(
        f"{shape}: {mesh.vertices.shape[0]} vertices, "
        f"{mesh.faces.shape[0]} triangles in {time.time() - start:.2f}s"
    )

    if output is not None:
        if mesh.is_empty():
            logger.warning(f"Mesh is empty, not writing {output}")
        else:
            export_surface_mesh(output, mesh)
            logger.info(f"Mesh saved to {output}")
    return 0


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="SDFContour", description="Dual contouring of signed distance fields"
    )
    parser.add_argument("--shape", "-s", choices=SHAPES, default="sphere")
    parser.add_argument("--resolution", "-n", type=int, default=32)
    parser.add_argument(
        "--bounds", nargs=2, type=float, default=(-1.0, 1.0), metavar=("MIN", "MAX")
    )
    parser.add_argument("--mesh-file", "-m", type=str, default=None)
    parser.add_argument("--output", "-o", type=str, default=None)
    parser.add_argument("--gradient-step", type=float, default=DEFAULT_GRADIENT_STEP)
    parser.add_argument("--svd-threshold", type=float, default=DEFAULT_SVD_THRESHOLD)
    parser.add_argument(
        "--area-threshold", type=float, default=DEFAULT_AREA_THRESHOLD
    )
    parser.add_argument(
        "--log-level",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        default="INFO",
    )
    return parser.parse_args(argv)


def run(argv=None):
    args = parse_args(argv)
    configure_logging(level=getattr(logging, args.log_level))
    return main(
        shape=args.shape,
        resolution=args.resolution,
        bounds=tuple(args.bounds),
        mesh_file=args.mesh_file,
        output=args.output,
        gradient_step=args.gradient_step,
        svd_threshold=args.svd_threshold,
        area_threshold=args.area_threshold,
    )


if __name__ == "__main__":
    raise SystemExit(run())
