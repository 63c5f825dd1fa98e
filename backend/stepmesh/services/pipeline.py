"""
STEP-to-mesh pipeline.

``raw bytes -> backend -> RawGeometry -> assembly -> [optimise on load]``
produces a :class:`Mesh`; simplification and cache optimisation are then
available as separate operations on an existing mesh.

The pipeline is the dispatcher boundary: whatever the backend raises is
converted into the taxonomy of :mod:`stepmesh.services.errors` here, so
callers only ever see :class:`StepMeshError` subclasses.  There are no
retries; the first failure ends the call.

Optional capabilities are objects that are either present on a pipeline
instance or not.  Calling an absent capability raises
:class:`CapabilityUnavailable` rather than silently returning the input.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import PurePath
from typing import Optional

from ..config import PipelineSettings
from .assembly import assemble
from .backends import create_backend
from .cache_optimize import CacheOptimizer
from .errors import BackendFailure, CapabilityUnavailable, IoFailure, StepMeshError
from .kernel import KernelContext, TriangulationBackend
from .mesh import Mesh
from .simplify import SimplificationRequest, SimplificationResult, Simplifier

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = ("step", "stp")


def has_step_extension(filename: str) -> bool:
    """Return ``True`` if ``filename`` ends in a recognised STEP extension."""
    suffix = PurePath(filename or "").suffix.lower().lstrip(".")
    return suffix in SUPPORTED_EXTENSIONS


class StepPipeline:
    """Converts STEP bytes into meshes using one configured backend."""

    def __init__(
        self,
        backend: TriangulationBackend,
        context: Optional[KernelContext] = None,
        simplifier: Optional[Simplifier] = None,
        optimizer: Optional[CacheOptimizer] = None,
        optimize_on_load: bool = False,
    ) -> None:
        self.backend = backend
        self.context = context or KernelContext()
        self.simplifier = simplifier
        self.optimizer = optimizer
        self.optimize_on_load = optimize_on_load

    @property
    def backend_name(self) -> str:
        return getattr(self.backend, "name", type(self.backend).__name__)

    def _run_backend(self, data: bytes):
        try:
            return self.backend.triangulate(data, self.context)
        except StepMeshError:
            raise
        except OSError as exc:
            raise IoFailure(f"I/O error during triangulation: {exc}") from exc
        except Exception as exc:
            logger.exception("Backend %s failed", self.backend_name)
            raise BackendFailure(f"{self.backend_name} backend failed: {exc!r}") from exc

    def triangulate(self, data: bytes) -> Mesh:
        """Triangulate a STEP file held in memory.

        Args:
            data: Contents of an ISO 10303-21 file.

        Returns:
            A freshly assembled mesh, cache-optimised when the pipeline is
            configured to optimise on load.

        Raises:
            ParseFailure: If the data or the resulting geometry is malformed.
            BackendFailure: If the backend fails or produces no triangles.
            IoFailure: If reading or writing a scratch file fails.
            CapabilityUnavailable: If the backend's library is missing.
        """
        start_time = time.perf_counter()
        raw = self._run_backend(data)
        if raw.index_count == 0:
            raise BackendFailure("Triangulation produced no triangles")
        mesh = assemble(raw)
        if self.optimize_on_load and self.optimizer is not None:
            mesh = self.optimizer.optimize(mesh)
        logger.info(
            "Triangulated %d bytes with %s: %d vertices, %d triangles in %.2f s",
            len(data),
            self.backend_name,
            mesh.vertex_count,
            mesh.triangle_count,
            time.perf_counter() - start_time,
        )
        if mesh.skipped_faces:
            logger.warning("%s left out %d unsupported faces", self.backend_name, mesh.skipped_faces)
        return mesh

    async def triangulate_async(self, data: bytes) -> Mesh:
        """Run :meth:`triangulate` on a worker thread."""
        return await asyncio.to_thread(self.triangulate, data)

    def simplify(self, mesh: Mesh, ratio: float, error_threshold: float) -> SimplificationResult:
        """Decimate ``mesh`` towards ``ratio`` of its index count.

        Raises:
            CapabilityUnavailable: If simplification is disabled.
            ParseFailure: If the mesh has no usable positions or indices.
            ValueError: If ``ratio`` or ``error_threshold`` is out of range.
        """
        if self.simplifier is None:
            raise CapabilityUnavailable("Mesh simplification is not enabled in this deployment")
        request = SimplificationRequest(ratio=ratio, error_threshold=error_threshold)
        return self.simplifier.simplify(mesh, request)

    def optimize(self, mesh: Mesh) -> Mesh:
        """Return a vertex-cache optimised copy of ``mesh``.

        Raises:
            CapabilityUnavailable: If cache optimisation is disabled.
        """
        if self.optimizer is None:
            raise CapabilityUnavailable("Vertex cache optimisation is not enabled in this deployment")
        mesh.validate()
        return self.optimizer.optimize(mesh)


def build_pipeline(settings: Optional[PipelineSettings] = None) -> StepPipeline:
    """Construct a pipeline from ``settings`` (environment defaults when omitted).

    Raises:
        ValueError: If the settings name an unknown backend.
    """
    settings = settings or PipelineSettings.from_env()
    pipeline = StepPipeline(
        backend=create_backend(settings.backend),
        context=KernelContext(
            linear_deflection=settings.linear_deflection,
            angular_deflection=settings.angular_deflection,
            scratch_dir=settings.scratch_dir,
        ),
        simplifier=Simplifier() if settings.enable_simplify else None,
        optimizer=CacheOptimizer() if settings.enable_optimize else None,
        optimize_on_load=settings.optimize_on_load,
    )
    logger.info(
        "Pipeline ready: backend=%s simplify=%s optimize=%s optimize_on_load=%s",
        pipeline.backend_name,
        pipeline.simplifier is not None,
        pipeline.optimizer is not None,
        pipeline.optimize_on_load and pipeline.optimizer is not None,
    )
    return pipeline
