import logging
import os
import pathlib

import gustaf as gus
import torch
import trimesh

import SDFContour

logger = logging.getLogger(SDFContour.__name__)

#: Triangles whose squared face normal length is below this are dropped
DEFAULT_AREA_THRESHOLD = 1e-12


class torchSurfMesh:
    """Triangle mesh as returned by the dual contouring pipeline.

    Vertices that no triangle references are allowed; they appear when a
    cell found samples but none of its quads could be emitted.
    """

    def __init__(self, vertices: torch.Tensor, faces: torch.Tensor):
        self.vertices = vertices
        self.faces = faces

    def __len__(self):
        return self.faces.shape[0]

    def is_empty(self) -> bool:
        return self.faces.shape[0] == 0

    def face_normals(self) -> torch.Tensor:
        return triangle_normals(self.vertices, self.faces)

    def volume(self) -> float:
        return signed_volume(self.vertices, self.faces)

    def to_gus(self):
        return gus.Faces(
            self.vertices.detach().cpu().numpy(), self.faces.detach().cpu().numpy()
        )

    def to_trimesh(self):
        return trimesh.Trimesh(
            vertices=self.vertices.detach().cpu().numpy(),
            faces=self.faces.detach().cpu().numpy(),
            process=False,
        )


def triangle_normals(vertices: torch.Tensor, triangles: torch.Tensor) -> torch.Tensor:
    """Unnormalized face normals (b - a) x (c - a), length = 2 * area."""
    corners = vertices[triangles]
    return torch.linalg.cross(
        corners[:, 1] - corners[:, 0], corners[:, 2] - corners[:, 0], dim=1
    )


def remove_degenerate_triangles(
    vertices: torch.Tensor,
    triangles: torch.Tensor,
    threshold: float = DEFAULT_AREA_THRESHOLD,
) -> torch.Tensor:
    """
    Drops triangles with (numerically) zero area.

    Such triangles appear when the QEF solutions of neighboring cells
    coincide. Vertices are left untouched.
    """
    if triangles.shape[0] == 0:
        return triangles
    squared_norm = (triangle_normals(vertices, triangles) ** 2).sum(dim=1)
    keep = squared_norm >= threshold
    removed = int((~keep).sum())
    if removed > 0:
        logger.debug(f"Removed {removed} degenerate triangles")
    return triangles[keep]


def signed_volume(vertices: torch.Tensor, triangles: torch.Tensor) -> float:
    """
    Enclosed volume by the divergence theorem: sum of signed tetrahedra
    spanned by the origin and each triangle. Positive for outward winding.
    """
    corners = vertices[triangles].to(torch.float64)
    det = (
        corners[:, 0] * torch.linalg.cross(corners[:, 1], corners[:, 2], dim=1)
    ).sum(dim=1)
    return float(det.sum() / 6.0)


def export_surface_mesh(
    filename: str | bytes | os.PathLike[str] | os.PathLike[bytes],
    mesh: gus.Faces | torchSurfMesh,
):
    """
    Writes a surface mesh with gustaf's meshio bridge. The format follows
    the file extension (.stl, .obj, .vtk, .ply, ...).
    """
    filepath = pathlib.Path(filename)
    if not os.path.isdir(filepath.parent):
        os.makedirs(filepath.parent)
    if isinstance(mesh, torchSurfMesh):
        mesh = mesh.to_gus()
    logger.debug(
        f"Exporting mesh with {len(mesh.faces)} faces, "
        f"{len(mesh.vertices)} vertices to {filepath}"
    )
    gus.io.meshio.export(str(filepath), mesh)
