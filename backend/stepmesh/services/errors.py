"""
Error taxonomy for the STEP meshing pipeline.

Every failure raised by the pipeline is one of the classes below.  The
triangulation backends are heterogeneous (a native kernel driven through
scratch files and an in-process text reader), so anything they raise is
converted into this taxonomy at the dispatcher boundary in
:mod:`stepmesh.services.pipeline`.  Callers therefore only ever need to
catch :class:`StepMeshError`.
"""

from __future__ import annotations


class StepMeshError(Exception):
    """Base class for all pipeline failures."""

    kind = "Pipeline"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.kind} error: {self.message}"


class IoFailure(StepMeshError):
    """Reading the input or a scratch file failed."""

    kind = "IO"


class BackendFailure(StepMeshError):
    """The triangulation backend rejected or failed to process the geometry."""

    kind = "Backend"


class ParseFailure(StepMeshError):
    """A structural invariant on the input or the geometry was violated."""

    kind = "Parse"


class CapabilityUnavailable(StepMeshError):
    """An optional capability is not present in this deployment.

    Raised when simplification or cache optimisation has been disabled on
    the pipeline, or when the configured backend's library is missing.
    """

    kind = "Capability"
