"""
Triangulation backend contract.

A backend turns the raw bytes of a STEP file into a :class:`RawGeometry`.
Exactly one backend is active per pipeline.  Kernel settings travel in an
explicit :class:`KernelContext` handed to every call, so a backend holds no
per-process mutable state of its own.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from .mesh import RawGeometry


@dataclass(frozen=True)
class KernelContext:
    """Per-call kernel parameters.

    Attributes:
        linear_deflection: Maximum chordal deviation of the tessellation
            from the exact surface, in model units.
        angular_deflection: Maximum angle in radians between adjacent
            segments when sampling curved edges.
        scratch_dir: Directory for file-based kernels; ``None`` uses the
            system temporary directory.
    """

    linear_deflection: float = 0.1
    angular_deflection: float = 0.5
    scratch_dir: Optional[Path] = None


class TriangulationBackend(Protocol):
    name: str

    def triangulate(self, data: bytes, context: KernelContext) -> RawGeometry:
        ...
