"""
Pydantic data models for the STEP mesh API.

Buffers are returned as flat lists so a WebGL client can hand them to
``Float32Array``/``Uint32Array`` without reshaping.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class MeshBBox(BaseModel):
    """Axis-aligned bounding box for a mesh."""

    min: List[float] = Field(..., description="Minimum x, y, z coordinates of the mesh")
    max: List[float] = Field(..., description="Maximum x, y, z coordinates of the mesh")


class SimplificationInfo(BaseModel):
    """How a simplification request was honoured."""

    ratio: float = Field(..., description="Requested fraction of the original index count")
    errorThreshold: float = Field(..., description="Maximum error relative to the model size")
    originalIndexCount: int = Field(..., description="Index count before simplification")
    targetIndexCount: int = Field(..., description="Index count the simplifier aimed for")
    achievedError: float = Field(..., description="Largest error introduced by a collapse")
    reachedTarget: bool = Field(
        ..., description="False when the error threshold stopped decimation before the target"
    )


class MeshResponse(BaseModel):
    """Response returned after converting a STEP upload."""

    vertices: List[float] = Field(..., description="Flat list of vertex positions (x, y, z ...)")
    indices: List[int] = Field(..., description="Index buffer defining the mesh triangles")
    normals: List[float] = Field(..., description="Flat list of vertex normals (x, y, z ...)")
    bbox: MeshBBox = Field(..., description="Bounding box around the mesh")
    vertexCount: int = Field(..., description="Number of vertices")
    triangleCount: int = Field(..., description="Number of triangles")
    backend: str = Field(..., description="Triangulation backend that produced the mesh")
    simplification: Optional[SimplificationInfo] = Field(
        default=None, description="Present when simplification was requested"
    )
    optimized: bool = Field(default=False, description="Whether the index order is cache-optimised")
    skippedFaces: int = Field(default=0, ge=0, description="Source faces left out because their geometry is unsupported")


class CapabilitiesResponse(BaseModel):
    """Features available in this deployment."""

    backend: str
    simplify: bool
    optimize: bool
    optimizeOnLoad: bool
    extensions: List[str]
