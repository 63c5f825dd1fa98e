"""
Routes for converting uploaded STEP files into meshes.

The upload is read into memory and handed to the pipeline on a worker
thread; nothing is stored between requests.  Pipeline errors are mapped
to HTTP status codes in one place, :func:`_http_error`.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.concurrency import run_in_threadpool

from .models import CapabilitiesResponse, MeshBBox, MeshResponse, SimplificationInfo
from ..services.errors import (
    BackendFailure,
    CapabilityUnavailable,
    IoFailure,
    ParseFailure,
    StepMeshError,
)
from ..services.mesh import Mesh
from ..services.pipeline import SUPPORTED_EXTENSIONS, StepPipeline, build_pipeline, has_step_extension

logger = logging.getLogger(__name__)

router = APIRouter()

_STATUS_BY_ERROR = (
    (ParseFailure, 422),
    (BackendFailure, 422),
    (CapabilityUnavailable, 501),
    (IoFailure, 500),
)


@lru_cache(maxsize=1)
def get_pipeline() -> StepPipeline:
    """Return the process-wide pipeline, built from the environment on first use."""
    return build_pipeline()


def _http_error(exc: StepMeshError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            break
    else:
        status_code = 500
    logger.warning("Mesh request failed with %d: %s", status_code, exc)
    return HTTPException(status_code=status_code, detail=str(exc))


def _to_response(
    mesh: Mesh,
    backend: str,
    optimized: bool,
    simplification: Optional[SimplificationInfo] = None,
) -> MeshResponse:
    bbox_min, bbox_max = mesh.bounding_box()
    return MeshResponse(
        vertices=mesh.positions.reshape(-1).tolist(),
        indices=mesh.indices.tolist(),
        normals=mesh.normals.reshape(-1).tolist(),
        bbox=MeshBBox(min=bbox_min, max=bbox_max),
        vertexCount=mesh.vertex_count,
        triangleCount=mesh.triangle_count,
        backend=backend,
        simplification=simplification,
        optimized=optimized,
        skippedFaces=mesh.skipped_faces,
    )


@router.get("/capabilities", response_model=CapabilitiesResponse)
async def capabilities(pipeline: StepPipeline = Depends(get_pipeline)) -> CapabilitiesResponse:
    """Describe the backend and optional capabilities of this deployment."""
    return CapabilitiesResponse(
        backend=pipeline.backend_name,
        simplify=pipeline.simplifier is not None,
        optimize=pipeline.optimizer is not None,
        optimizeOnLoad=pipeline.optimize_on_load and pipeline.optimizer is not None,
        extensions=list(SUPPORTED_EXTENSIONS),
    )


@router.post("/meshes", response_model=MeshResponse)
async def convert_step(
    file: UploadFile = File(...),
    simplifyRatio: Optional[float] = Query(default=None, gt=0.0, le=1.0),
    errorThreshold: float = Query(default=0.01, ge=0.0),
    optimize: bool = Query(default=False),
    pipeline: StepPipeline = Depends(get_pipeline),
) -> MeshResponse:
    """Triangulate an uploaded STEP file.

    Args:
        file: The ``.step``/``.stp`` upload.
        simplifyRatio: When given, decimate towards this fraction of the
            original index count.
        errorThreshold: Maximum simplification error relative to the
            model size.
        optimize: Reorder the index buffer for vertex-cache reuse.

    Returns:
        MeshResponse: Flat buffers plus metadata about what was applied.

    Raises:
        HTTPException: 415 for a non-STEP filename, otherwise the status
        mapped from the pipeline error.
    """
    if not has_step_extension(file.filename or ""):
        raise HTTPException(
            status_code=415,
            detail=f"Expected a file ending in one of: {', '.join(SUPPORTED_EXTENSIONS)}",
        )
    data = await file.read()
    logger.info("Converting %s (%d bytes)", file.filename, len(data))

    try:
        mesh = await pipeline.triangulate_async(data)
        optimized = pipeline.optimize_on_load and pipeline.optimizer is not None
        simplification = None
        if simplifyRatio is not None:
            original_count = int(mesh.indices.size)
            result = await run_in_threadpool(pipeline.simplify, mesh, simplifyRatio, errorThreshold)
            mesh = result.mesh
            simplification = SimplificationInfo(
                ratio=simplifyRatio,
                errorThreshold=errorThreshold,
                originalIndexCount=original_count,
                targetIndexCount=result.target_index_count,
                achievedError=result.achieved_error,
                reachedTarget=result.reached_target,
            )
            # Simplified index order is not cache-optimised
            optimized = False
        if optimize:
            mesh = await run_in_threadpool(pipeline.optimize, mesh)
            optimized = True
    except StepMeshError as exc:
        raise _http_error(exc) from exc

    return _to_response(mesh, pipeline.backend_name, optimized, simplification)
