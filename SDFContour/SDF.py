"""
Scalar Field Representations
============================

This module provides the base class for the scalar fields consumed by the
dual contouring pipeline, the finite-difference gradient used to derive
surface normals, and a field backed by a polygon mesh.

Classes
-------
SDFBase
    Abstract base class for signed distance functions. Subclasses implement
    ``_compute`` and inherit input validation.
SDFfromMesh
    Signed distance to a triangle mesh with a pseudonormal sign test. The
    loaded geometry and its precomputed normals are an explicitly owned
    resource with a load / query / release lifecycle.

Functions
---------
finite_difference_gradient
    Central-difference gradient of any scalar field at a batch of points.
estimate_normals
    Normalized gradient with a fixed fallback axis for flat regions.
normalize_mesh_to_unit_cube
    Center a mesh at the origin and scale it uniformly into a cube.

Convention: f < 0 inside, f > 0 outside, f = 0 on the surface.
"""

from abc import ABC, abstractmethod
import logging
import os

import gustaf
import igl
import numpy as np
import torch
import trimesh

import SDFContour

logger = logging.getLogger(SDFContour.__name__)

#: Finite-difference step used for gradients
DEFAULT_GRADIENT_STEP = 1e-4
#: Below this gradient magnitude the fallback axis is used as normal
NORMAL_EPS = 1e-6
#: Substitute normal where the field is flat
FALLBACK_AXIS = (1.0, 0.0, 0.0)


class SDFBase(ABC):
    """Abstract base class for Signed Distance Functions.

    Negative values indicate points inside the geometry, positive values
    outside, and zero indicates points on the surface. Evaluation is batched:
    a call receives all query points at once.

    Notes
    -----
    Subclasses must implement ``_compute(queries)``, which calculates the SDF
    values for the query points.

    Examples
    --------
    >>> from SDFContour.sdf_primitives import SphereSDF
    >>> import torch
    >>>
    >>> sphere = SphereSDF(center=[0, 0, 0], radius=1.0)
    >>> points = torch.tensor([[0.0, 0.0, 0.0], [2.0, 0.0, 0.0]])
    >>> distances = sphere(points)
    >>> print(distances)  # [-1.0, 1.0] (inside, outside)
    """

    def __call__(self, queries: torch.Tensor) -> torch.Tensor:
        """Evaluate the SDF at given query points.

        Parameters
        ----------
        queries : torch.Tensor
            Query points of shape (N, 3).

        Returns
        -------
        torch.Tensor
            Signed distance values of shape (N, 1).

        Raises
        ------
        ValueError
            If queries have invalid shape.
        RuntimeError
            If SDF computation returns invalid output.
        """
        self._validate_input(queries)
        sdf_values = self._compute(queries)
        if sdf_values is None:
            raise RuntimeError("Invalid SDF output")
        return sdf_values

    def _validate_input(self, queries: torch.Tensor):
        if queries.ndim != 2 or queries.shape[1] != 3:
            raise ValueError(f"Expected input of shape (N, 3), got {queries.shape}")

    @abstractmethod
    def _compute(self, queries: torch.Tensor) -> torch.Tensor:
        """Compute SDF values for query points.

        Parameters
        ----------
        queries : torch.Tensor
            Query points of shape (N, 3).

        Returns
        -------
        torch.Tensor
            Signed distance values of shape (N, 1).
        """
        pass

    def gradient(self, queries: torch.Tensor, step=DEFAULT_GRADIENT_STEP):
        return finite_difference_gradient(self, queries, step=step)


def _evaluate(sdf, queries: torch.Tensor) -> torch.Tensor:
    values = sdf(queries)
    if values is None:
        raise RuntimeError("Invalid SDF output")
    return torch.as_tensor(values, device=queries.device).reshape(-1).to(queries.dtype)


def finite_difference_gradient(
    sdf, points: torch.Tensor, step: float = DEFAULT_GRADIENT_STEP
) -> torch.Tensor:
    """
    Central-difference gradient of ``sdf`` at ``points``.

    All 6 * N offset queries are evaluated in a single call, so any callable
    mapping (M, 3) points to M values works, including ``SDFBase`` instances.

    Args:
        sdf: scalar field, (M, 3) -> (M,) or (M, 1)
        points (torch.Tensor): (N, 3) evaluation points
        step (float): finite-difference step

    Returns:
        torch.Tensor: (N, 3) gradient, not normalized
    """
    if points.shape[0] == 0:
        return torch.zeros_like(points)
    offsets = torch.eye(3, dtype=points.dtype, device=points.device) * step
    # rows: +x, +y, +z, -x, -y, -z for every point
    shifted = torch.cat([offsets, -offsets], dim=0)
    queries = (points.unsqueeze(1) + shifted.unsqueeze(0)).reshape(-1, 3)
    values = _evaluate(sdf, queries).reshape(-1, 6)
    return (values[:, :3] - values[:, 3:]) / (2.0 * step)


def estimate_normals(
    sdf,
    points: torch.Tensor,
    step: float = DEFAULT_GRADIENT_STEP,
    eps: float = NORMAL_EPS,
) -> torch.Tensor:
    """Unit surface normals from the field gradient.

    Where the gradient magnitude is below ``eps`` or not finite the normal
    is ``FALLBACK_AXIS``.
    """
    grad = finite_difference_gradient(sdf, points, step=step)
    length = torch.linalg.norm(grad, dim=1, keepdim=True)
    fallback = torch.tensor(FALLBACK_AXIS, dtype=grad.dtype, device=grad.device)
    flat = ~torch.isfinite(length.squeeze(1)) | (length.squeeze(1) <= eps)
    normals = grad / torch.where(flat.unsqueeze(1), torch.ones_like(length), length)
    normals[flat] = fallback
    if flat.any():
        logger.debug(f"{int(flat.sum())} samples with vanishing gradient")
    return normals


def normalize_mesh_to_unit_cube(mesh: trimesh.Trimesh, extent: float = 1.0):
    """
    Transform mesh coordinates uniformly to [-extent, extent] along the
    largest axis. Keeps aspect ratio of original mesh.
    """
    logger.debug(f"Scaling mesh from {mesh.bounds.flatten()}")
    bbox_min = mesh.bounds[0]
    bbox_max = mesh.bounds[1]

    center = (bbox_max + bbox_min) / 2.0
    scale = np.max(bbox_max - bbox_min) / (2.0 * extent)

    matrix = np.eye(4)
    matrix[:3, 3] = -center
    mesh.apply_transform(matrix)

    scale_matrix = np.eye(4)
    scale_matrix[:3, :3] *= 1.0 / scale
    mesh.apply_transform(scale_matrix)
    logger.debug(f"to {mesh.bounds.flatten()}")
    return mesh


# edge of a face (v0v1, v1v2, v2v0) that lies opposite to local vertex 0, 1, 2
_OPPOSITE_EDGE = np.array([1, 2, 0])


class SDFfromMesh(SDFBase):
    """Signed distance to a triangle mesh with a pseudonormal sign test.

    The unsigned distance is the distance to the closest point on the
    surface (libigl AABB query). The sign comes from the angle-weighted
    pseudonormal of the closest feature: the face normal for face interiors,
    the mean of the adjacent face normals for edges and the angle-weighted
    vertex normal for vertices. This is exact for closed, consistently
    oriented meshes.

    The instance owns the normalized geometry and the precomputed normals.
    It has to be loaded before use; querying an unloaded instance logs an
    error and reports every point as outside.

    Parameters
    ----------
    mesh : str, os.PathLike, trimesh.Trimesh or gustaf.faces.Faces, optional
        If given, the mesh is loaded immediately.
    scale : bool, default True
        If True, normalizes the mesh into [-extent, extent]^3.
    extent : float, default 0.9
        Half-size of the normalization cube.
    dtype : numpy dtype, default np.float64
        Data type for distance calculations.

    Examples
    --------
    >>> import trimesh
    >>> from SDFContour.SDF import SDFfromMesh
    >>>
    >>> sdf = SDFfromMesh().load(trimesh.creation.icosphere())
    >>> distances = sdf(torch.tensor([[0.0, 0.0, 0.0], [2.0, 0.0, 0.0]]))
    >>> sdf.release()
    """

    #: value reported for every query while no mesh is loaded
    UNLOADED_VALUE = 1.0

    def __init__(self, mesh=None, scale=True, extent=0.9, dtype=np.float64):
        super().__init__()
        self.scale = scale
        self.extent = extent
        self.dtype = dtype
        self.release()
        if mesh is not None:
            self.load(mesh)

    @property
    def is_loaded(self) -> bool:
        return self.mesh is not None

    def load(self, mesh):
        """Load geometry and precompute everything the queries need.

        Polygon faces are fan-triangulated by the trimesh loaders.

        Raises
        ------
        ValueError
            If the mesh has no faces.
        """
        if isinstance(mesh, (str, os.PathLike)):
            logger.info(f"Loading mesh from {mesh}")
            mesh = trimesh.load(mesh, force="mesh")
        elif type(mesh) is gustaf.faces.Faces:
            mesh = trimesh.Trimesh(mesh.vertices, mesh.faces)
        else:
            mesh = mesh.copy()

        if len(mesh.faces) == 0:
            raise ValueError("Mesh does not contain any faces")

        if self.scale:
            mesh = normalize_mesh_to_unit_cube(mesh, extent=self.extent)

        face_normals = np.asarray(mesh.face_normals, dtype=np.float64)
        vertex_normals = trimesh.geometry.weighted_vertex_normals(
            vertex_count=len(mesh.vertices),
            faces=mesh.faces,
            face_normals=face_normals,
            face_angles=mesh.face_angles,
        )
        face_edges = np.asarray(mesh.faces_unique_edges)
        edge_normals = np.zeros((len(mesh.edges_unique), 3))
        np.add.at(edge_normals, face_edges.ravel(), np.repeat(face_normals, 3, axis=0))
        edge_normals /= np.maximum(
            np.linalg.norm(edge_normals, axis=1, keepdims=True), 1e-12
        )

        self.mesh = mesh
        self._vertices = np.asarray(mesh.vertices, dtype=np.float64)
        self._faces = np.array(mesh.faces, dtype=np.int32)
        self._face_normals = face_normals
        self._vertex_normals = np.asarray(vertex_normals, dtype=np.float64)
        self._edge_normals = edge_normals
        self._face_edges = face_edges
        logger.debug(
            f"Loaded mesh SDF with {len(self._vertices)} vertices, "
            f"{len(self._faces)} faces"
        )
        return self

    def release(self):
        """Drop the loaded geometry. Later queries behave as before ``load``."""
        self.mesh = None
        self._vertices = None
        self._faces = None
        self._face_normals = None
        self._vertex_normals = None
        self._edge_normals = None
        self._face_edges = None

    def _pseudonormals(self, face_index, closest, tol=1e-6):
        triangles = self._vertices[self._faces[face_index]]
        bary = trimesh.triangles.points_to_barycentric(triangles, closest)
        normals = self._face_normals[face_index].copy()

        on_edge = bary < tol
        edge_hit = on_edge.any(axis=1)
        local = np.argmax(on_edge, axis=1)[edge_hit]
        edges = self._face_edges[face_index[edge_hit], _OPPOSITE_EDGE[local]]
        normals[edge_hit] = self._edge_normals[edges]

        at_vertex = bary > 1.0 - tol
        vertex_hit = at_vertex.any(axis=1)
        local = np.argmax(at_vertex, axis=1)[vertex_hit]
        vertices = self._faces[face_index[vertex_hit], local]
        normals[vertex_hit] = self._vertex_normals[vertices]
        return normals

    def _compute(self, queries: torch.Tensor | np.ndarray):
        is_tensor = isinstance(queries, torch.Tensor)
        if is_tensor:
            orig_device = queries.device
            orig_dtype = queries.dtype
            queries_np = queries.detach().cpu().numpy().astype(np.float64)
        else:
            queries_np = np.asarray(queries, dtype=np.float64)

        if not self.is_loaded:
            logger.error(
                "SDFfromMesh queried before a mesh was loaded, "
                "reporting all points as outside"
            )
            result = np.full((queries_np.shape[0], 1), self.UNLOADED_VALUE)
        else:
            squared_distance, face_index, closest = igl.point_mesh_squared_distance(
                queries_np, self._vertices, self._faces
            )
            face_index = np.asarray(face_index, dtype=np.int64).reshape(-1)
            closest = np.asarray(closest, dtype=np.float64)
            normals = self._pseudonormals(face_index, closest)

            squared_distance = np.asarray(squared_distance).reshape(-1)
            distances = np.sqrt(np.maximum(squared_distance, 0.0))
            inside = np.einsum("ij,ij->i", queries_np - closest, normals) < 0
            distances[inside] *= -1.0
            result = distances.reshape(-1, 1)

        result = result.astype(self.dtype)
        if is_tensor:
            return torch.tensor(result, device=orig_device, dtype=orig_dtype)
        else:
            return result
