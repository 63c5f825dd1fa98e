"""
Vertex-cache optimisation of triangle index buffers.

Reordering is delegated to meshoptimizer's ``optimize_vertex_cache``.
Triangles are emitted whole and keep their vertex order, so winding and
the triangle multiset are unchanged; only the order of triangles in the
index buffer moves.
"""

from __future__ import annotations

import logging
from collections import deque

import meshoptimizer
import numpy as np

from .mesh import Mesh

logger = logging.getLogger(__name__)


def optimize_vertex_cache(indices: np.ndarray, vertex_count: int) -> np.ndarray:
    """Return ``indices`` with triangles reordered for post-transform cache reuse."""
    source = np.ascontiguousarray(indices, dtype=np.uint32).reshape(-1)
    if source.size == 0:
        return np.zeros(0, dtype=np.uint32)
    destination = np.zeros_like(source)
    meshoptimizer.optimize_vertex_cache(destination, source, source.size, vertex_count)
    return destination


def average_cache_miss_ratio(indices: np.ndarray, vertex_count: int, cache_size: int = 16) -> float:
    """Vertex transforms per triangle for a FIFO cache of ``cache_size`` entries.

    Lower is better; 0.5 is the practical optimum for large regular meshes
    and 3.0 means no reuse at all.
    """
    flat = np.asarray(indices).reshape(-1)
    if flat.size == 0:
        return 0.0
    fifo: deque = deque()
    resident = set()
    misses = 0
    for v in flat.tolist():
        if v in resident:
            continue
        misses += 1
        fifo.append(v)
        resident.add(v)
        if len(fifo) > cache_size:
            resident.discard(fifo.popleft())
    return misses / (flat.size // 3)


class CacheOptimizer:
    """Cache-optimisation capability attached to a pipeline."""

    def optimize(self, mesh: Mesh) -> Mesh:
        """Return a copy of ``mesh`` with a cache-friendly index order."""
        reordered = mesh.with_indices(optimize_vertex_cache(mesh.indices, mesh.vertex_count))
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "Vertex cache optimised: ACMR %.3f -> %.3f over %d triangles",
                average_cache_miss_ratio(mesh.indices, mesh.vertex_count),
                average_cache_miss_ratio(reordered.indices, reordered.vertex_count),
                reordered.triangle_count,
            )
        return reordered
