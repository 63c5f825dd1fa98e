"""
Mesh assembly: turn raw backend output into a :class:`Mesh`.

Positions and indices are copied verbatim (indices are widened to
``uint32`` whatever width the backend used) and smooth per-vertex normals
are computed.  The normal of a vertex is the normalised sum of the unit
face normals of every triangle that references it; faces are not weighted
by area or angle.  Degenerate triangles contribute nothing and vertices
that no triangle references receive a zero normal.
"""

from __future__ import annotations

import logging

import numpy as np

from .errors import ParseFailure
from .mesh import Mesh, RawGeometry

logger = logging.getLogger(__name__)


def _coerce_positions(raw_positions) -> np.ndarray:
    try:
        positions = np.array(raw_positions, dtype=np.float32)
    except (TypeError, ValueError) as exc:
        raise ParseFailure(f"Positions are not numeric: {exc}") from exc
    if positions.ndim == 1:
        if positions.size % 3 != 0:
            raise ParseFailure(
                f"Flat position buffer of length {positions.size} is not a multiple of 3"
            )
        positions = positions.reshape(-1, 3)
    if positions.ndim != 2 or positions.shape[1] != 3:
        raise ParseFailure("Expected Float32x3 positions")
    if not np.all(np.isfinite(positions)):
        raise ParseFailure("Positions contain non-finite values")
    return positions


def _coerce_indices(raw_indices, vertex_count: int) -> np.ndarray:
    try:
        indices = np.asarray(raw_indices)
    except (TypeError, ValueError) as exc:
        raise ParseFailure(f"Indices are not numeric: {exc}") from exc
    if indices.size == 0:
        return np.zeros(0, dtype=np.uint32)
    if not np.issubdtype(indices.dtype, np.integer):
        raise ParseFailure(f"Indices must be integers, got {indices.dtype}")
    indices = indices.reshape(-1)
    if indices.size % 3 != 0:
        raise ParseFailure(f"Index count {indices.size} is not a multiple of 3")
    if int(indices.min()) < 0:
        raise ParseFailure("Negative vertex index")
    if int(indices.max()) >= vertex_count:
        raise ParseFailure(
            f"Index {int(indices.max())} references a vertex beyond {vertex_count}"
        )
    return indices.astype(np.uint32)


def compute_vertex_normals(positions: np.ndarray, indices: np.ndarray) -> np.ndarray:
    """Compute unweighted smooth vertex normals.

    Args:
        positions: ``(N, 3)`` vertex positions.
        indices: flat triangle-list index buffer.

    Returns:
        ``(N, 3)`` float32 array of unit normals (zero for vertices with no
        non-degenerate incident triangle).
    """
    normals = np.zeros((len(positions), 3), dtype=np.float64)
    if indices.size == 0:
        return normals.astype(np.float32)
    tris = indices.reshape(-1, 3).astype(np.int64)
    pts = positions.astype(np.float64)
    face_normals = np.cross(pts[tris[:, 1]] - pts[tris[:, 0]], pts[tris[:, 2]] - pts[tris[:, 0]])
    lengths = np.linalg.norm(face_normals, axis=1)
    valid = lengths > 0.0
    face_normals[valid] /= lengths[valid, None]
    face_normals[~valid] = 0.0
    for corner in range(3):
        np.add.at(normals, tris[:, corner], face_normals)
    lengths = np.linalg.norm(normals, axis=1)
    valid = lengths > 0.0
    normals[valid] /= lengths[valid, None]
    return normals.astype(np.float32)


def assemble(raw: RawGeometry) -> Mesh:
    """Build a validated :class:`Mesh` from ``raw``.

    Raises:
        ParseFailure: If the index count is not divisible by three, an
            index references a missing vertex or a buffer cannot be read
            as numbers.
    """
    positions = _coerce_positions(raw.positions)
    indices = _coerce_indices(raw.indices, len(positions))
    normals = compute_vertex_normals(positions, indices)
    mesh = Mesh(positions=positions, indices=indices, normals=normals, skipped_faces=int(raw.skipped_faces))
    logger.debug(
        "assemble: %d vertices, %d triangles", mesh.vertex_count, mesh.triangle_count
    )
    return mesh
