"""
Mesh data model.

A :class:`Mesh` is the finished product of the pipeline: a triangle list
with one position and one normal per vertex.  Buffers are stored as NumPy
arrays with explicit data types (``float32`` vertices and normals,
``uint32`` indices) which is also the layout GPU upload code expects.

Meshes are treated as values.  Every transform in the pipeline returns a
new :class:`Mesh` built from copies of the buffers, so a caller holding an
earlier mesh never observes changes made by a later stage.

:class:`RawGeometry` is the pre-assembly pair of positions and indices as
produced by a triangulation backend.  It is permissive about
its inputs (flat lists, nested lists, arrays of any integer width); the
assembler in :mod:`stepmesh.services.assembly` is responsible for
normalising and validating it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Tuple

import numpy as np

from .errors import ParseFailure


@dataclass
class RawGeometry:
    """Positions and triangle indices exactly as a backend produced them."""

    positions: Any
    indices: Any
    skipped_faces: int = 0

    @property
    def index_count(self) -> int:
        return int(np.asarray(self.indices).size)


@dataclass(eq=False)
class Mesh:
    """Triangle-list mesh with per-vertex normals.

    Attributes:
        positions: ``(N, 3)`` float32 array of vertex positions.
        indices: ``(M,)`` uint32 array, three entries per triangle.
        normals: ``(N, 3)`` float32 array, one normal per vertex.
        skipped_faces: Number of source faces the backend could not
            triangulate and left out of the mesh.
    """

    positions: np.ndarray
    indices: np.ndarray
    normals: np.ndarray
    skipped_faces: int = 0

    @property
    def vertex_count(self) -> int:
        return int(self.positions.shape[0])

    @property
    def triangle_count(self) -> int:
        return int(self.indices.size // 3)

    def triangles(self) -> np.ndarray:
        """Return the index buffer viewed as ``(T, 3)`` triangles."""
        return self.indices.reshape(-1, 3)

    def copy(self) -> "Mesh":
        """Return an independent deep copy of this mesh."""
        return Mesh(
            positions=self.positions.copy(),
            indices=self.indices.copy(),
            normals=self.normals.copy(),
            skipped_faces=self.skipped_faces,
        )

    def with_indices(self, indices: np.ndarray) -> "Mesh":
        """Return a new mesh sharing no buffers with this one, using ``indices``."""
        return Mesh(
            positions=self.positions.copy(),
            indices=np.ascontiguousarray(indices, dtype=np.uint32).reshape(-1),
            normals=self.normals.copy(),
            skipped_faces=self.skipped_faces,
        )

    def validate(self) -> None:
        """Check the buffer invariants, raising :class:`ParseFailure` on violation."""
        if self.positions.ndim != 2 or self.positions.shape[1] != 3:
            raise ParseFailure("Expected Float32x3 positions")
        if self.indices.ndim != 1:
            raise ParseFailure("Index buffer must be one-dimensional")
        if self.indices.size % 3 != 0:
            raise ParseFailure(
                f"Index count {self.indices.size} is not a multiple of 3"
            )
        if self.indices.size and int(self.indices.max()) >= self.vertex_count:
            raise ParseFailure(
                f"Index {int(self.indices.max())} out of range for "
                f"{self.vertex_count} vertices"
            )
        if self.normals.shape != self.positions.shape:
            raise ParseFailure(
                f"Normal count {len(self.normals)} does not match "
                f"vertex count {self.vertex_count}"
            )

    def bounding_box(self) -> Tuple[list, list]:
        """Compute the axis-aligned bounding box of all positions.

        Returns:
            ``(min_xyz, max_xyz)`` as plain Python lists.  An empty mesh
            yields two zero vectors.
        """
        if self.vertex_count == 0:
            return [0.0, 0.0, 0.0], [0.0, 0.0, 0.0]
        return (
            self.positions.min(axis=0).astype(float).tolist(),
            self.positions.max(axis=0).astype(float).tolist(),
        )

    def stats(self) -> Dict[str, int]:
        return {
            "vertices": self.vertex_count,
            "triangles": self.triangle_count,
            "indices": int(self.indices.size),
        }
