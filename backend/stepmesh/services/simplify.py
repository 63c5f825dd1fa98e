"""
Error-bounded mesh decimation.

Decimation is delegated to meshoptimizer's ``simplify``, an edge-collapse
simplifier driven by quadric error metrics.  It only ever merges a vertex
into an existing neighbour, so the position and normal buffers of the
input are carried over unchanged and only the index buffer shrinks.

The simplifier runs with the lock-border option: vertices on an open
border are never moved, so open or seamed models do not crack.  Collapses
are taken until the index count reaches the target or the next one would
exceed the error threshold.  Errors are relative to the extent of the
mesh, so a threshold of ``0.01`` means one percent of the model size.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import meshoptimizer
import numpy as np

from .errors import ParseFailure
from .mesh import Mesh

logger = logging.getLogger(__name__)

# meshopt_SimplifyLockBorder
SIMPLIFY_LOCK_BORDER = 1


@dataclass(frozen=True)
class SimplificationRequest:
    """Target ratio of the original index count and the allowed error."""

    ratio: float
    error_threshold: float

    def __post_init__(self) -> None:
        if not 0.0 < self.ratio <= 1.0:
            raise ValueError(f"ratio must be in (0, 1], got {self.ratio}")
        if not self.error_threshold >= 0.0:
            raise ValueError(f"error_threshold must be >= 0, got {self.error_threshold}")

    def target_index_count(self, index_count: int) -> int:
        return int(round(index_count * self.ratio))


@dataclass
class SimplificationResult:
    """Outcome of a decimation run.

    ``reached_target`` is ``False`` when the error threshold (or the
    locked borders) stopped the decimation before the requested index
    count was reached.  That is a quality shortfall, not a failure.
    """

    mesh: Mesh
    target_index_count: int
    achieved_error: float
    reached_target: bool


def _require_attributes(mesh: Mesh) -> None:
    if mesh.positions is None:
        raise ParseFailure("No position attribute found")
    if mesh.indices is None or np.asarray(mesh.indices).size == 0:
        raise ParseFailure("No indices found")
    mesh.validate()


class Simplifier:
    """Decimation capability attached to a pipeline."""

    def simplify(self, mesh: Mesh, request: SimplificationRequest) -> SimplificationResult:
        """Return a reduced copy of ``mesh``; ``mesh`` itself is left untouched.

        Raises:
            ParseFailure: If the mesh has no usable positions or indices.
        """
        _require_attributes(mesh)
        start_time = time.perf_counter()
        original_count = int(mesh.indices.size)
        target = request.target_index_count(original_count)

        destination = np.zeros(original_count, dtype=np.uint32)
        result_error = np.zeros(1, dtype=np.float32)
        result_count = meshoptimizer.simplify(
            destination=destination,
            indices=np.ascontiguousarray(mesh.indices, dtype=np.uint32),
            vertex_positions=np.ascontiguousarray(mesh.positions, dtype=np.float32),
            target_index_count=target,
            target_error=request.error_threshold,
            options=SIMPLIFY_LOCK_BORDER,
            result_error=result_error,
        )
        achieved = float(result_error[0])
        result = SimplificationResult(
            mesh=mesh.with_indices(destination[:result_count]),
            target_index_count=target,
            achieved_error=achieved,
            reached_target=False,
        )
        result.reached_target = int(result.mesh.indices.size) <= target
        logger.info(
            "Mesh simplified: %d -> %d indices (target %d, error: %.6g) in %.2f s",
            original_count,
            result.mesh.indices.size,
            target,
            achieved,
            time.perf_counter() - start_time,
        )
        if not result.reached_target:
            logger.info(
                "Simplification stopped short of target %d indices at error threshold %g",
                target,
                request.error_threshold,
            )
        return result
