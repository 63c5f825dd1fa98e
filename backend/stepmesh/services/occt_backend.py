"""
OpenCascade triangulation backend (``occt``).

This backend drives the OpenCascade kernel through CadQuery.  The kernel
only reads STEP data from disk, so each call writes the incoming bytes to
its own scratch file, imports it with ``cadquery.importers.importStep``,
tessellates every imported shape as a single compound and removes the
scratch file again.  Scratch files are created with :func:`tempfile.mkstemp`
which guarantees a fresh name per call, so concurrent conversions never
collide, and they are deleted on every exit path including failures.

When CadQuery cannot be imported the backend stays registered but every
call raises :class:`CapabilityUnavailable`.
"""

from __future__ import annotations

import logging
import os
import tempfile
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import numpy as np

from .errors import BackendFailure, CapabilityUnavailable, IoFailure, ParseFailure
from .kernel import KernelContext
from .mesh import RawGeometry

logger = logging.getLogger(__name__)

try:
    import cadquery as cq

    CADQUERY_AVAILABLE = True
except Exception as exc:
    cq = None  # type: ignore[assignment]
    CADQUERY_AVAILABLE = False
    logger.info("CadQuery not available; the occt backend is disabled. Reason: %r", exc)

SCRATCH_PREFIX = "stepmesh-"
SCRATCH_SUFFIX = ".step"


@contextmanager
def scratch_step_file(data: bytes, directory: Optional[Path] = None) -> Iterator[Path]:
    """Write ``data`` to a uniquely named scratch file and yield its path.

    The file is removed when the context exits, whether or not the body
    raised.

    Raises:
        IoFailure: If the file cannot be created or written.
    """
    try:
        fd, name = tempfile.mkstemp(
            prefix=SCRATCH_PREFIX,
            suffix=SCRATCH_SUFFIX,
            dir=str(directory) if directory is not None else None,
        )
    except OSError as exc:
        raise IoFailure(f"Could not create scratch file: {exc}") from exc
    path = Path(name)
    try:
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
        except OSError as exc:
            raise IoFailure(f"Could not write scratch file {path}: {exc}") from exc
        yield path
    finally:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Failed to remove scratch file %s: %r", path, exc)


def _import_step(path: Path):
    try:
        workplane = cq.importers.importStep(str(path))
    except Exception as exc:
        raise BackendFailure(f"OCCT failed to read STEP file: {exc!r}") from exc
    shapes = [v for v in workplane.vals() if isinstance(v, cq.Shape)]
    if not shapes:
        raise BackendFailure("OCCT imported no shapes from the STEP file")
    if len(shapes) == 1:
        return shapes[0]
    return cq.Compound.makeCompound(shapes)


def _tessellate(shape, context: KernelContext) -> RawGeometry:
    try:
        try:
            vertices_data, triangles_data = shape.tessellate(
                context.linear_deflection, context.angular_deflection
            )
        except TypeError:
            # Older CadQuery releases only accept a single tolerance
            vertices_data, triangles_data = shape.tessellate(context.linear_deflection)
    except Exception as exc:
        raise BackendFailure(f"OCCT tessellation failed: {exc!r}") from exc
    positions = np.array([v.toTuple() for v in vertices_data], dtype=np.float64).reshape(-1, 3)
    indices = np.array([tuple(tri) for tri in triangles_data], dtype=np.int64).reshape(-1)
    return RawGeometry(positions=positions, indices=indices)


class OcctBackend:
    """Industrial-grade kernel reached through a per-call scratch file."""

    name = "occt"

    def triangulate(self, data: bytes, context: KernelContext) -> RawGeometry:
        if not CADQUERY_AVAILABLE:
            raise CapabilityUnavailable("The occt backend requires cadquery, which is not installed")
        if not data:
            raise ParseFailure("Empty STEP buffer")
        start_time = time.perf_counter()
        with scratch_step_file(data, context.scratch_dir) as path:
            logger.debug("occt: importing %d bytes via %s", len(data), path)
            shape = _import_step(path)
        raw = _tessellate(shape, context)
        logger.info(
            "occt: tessellated into %d vertices / %d triangles in %.2f s",
            len(raw.positions),
            raw.index_count // 3,
            time.perf_counter() - start_time,
        )
        return raw
