"""
SDFContour - Dual Contouring of Signed Distance Functions
=========================================================

SDFContour turns a scalar field over 3D space (negative inside a solid,
positive outside, zero on the surface) into a triangle mesh of its zero
level-set using dual contouring on a uniform grid.

Key Components
--------------

Scalar Fields
    - ``SDFContour.SDF``: Abstract base class, gradient estimation and the
      mesh-backed field ``SDFfromMesh``
    - ``SDFContour.sdf_primitives``: Closed-form shapes (sphere, box, torus, ...)

Extraction Pipeline
    - ``SDFContour.grid``: Corner lattice sampling and flat lattice indexing
    - ``SDFContour.qef``: Quadric error function solver for vertex placement
    - ``SDFContour.dual_contouring``: Cell vertex pass, quad emission and
      the full pipeline
    - ``SDFContour.mesh``: Surface mesh container, cleanup and export

Utilities
    - ``SDFContour.utils``: Logging configuration

Examples
--------
Extract a sphere::

    from SDFContour.sdf_primitives import SphereSDF
    from SDFContour.dual_contouring import create_3D_mesh

    sphere = SphereSDF(center=[0, 0, 0], radius=0.75)
    mesh = create_3D_mesh(sphere, resolution=32, bounds=(-1.0, 1.0))

Extract a polygon file::

    from SDFContour.SDF import SDFfromMesh

    teapot = SDFfromMesh().load("teapot.obj")
    mesh = create_3D_mesh(teapot, resolution=64)
    teapot.release()
"""

import SDFContour.utils

SDFContour.utils.configure_logging()

__version__ = "0.1.0"
