"""
Runtime configuration for the meshing service.

Settings are read from environment variables once, when a pipeline is
built.  Backend selection in particular is a deployment decision: a
running service never switches backends between requests.

Recognised variables:

- ``STEPMESH_BACKEND``: ``facet`` (default) or ``occt``.
- ``STEPMESH_LINEAR_DEFLECTION``: chordal tolerance for tessellation.
- ``STEPMESH_ANGULAR_DEFLECTION``: angular tolerance in radians.
- ``STEPMESH_SCRATCH_DIR``: where the ``occt`` backend writes its
  per-call scratch files.  Defaults to the system temporary directory.
- ``STEPMESH_ENABLE_SIMPLIFY`` / ``STEPMESH_ENABLE_OPTIMIZE``: whether
  the optional capabilities exist on the pipeline.
- ``STEPMESH_OPTIMIZE_ON_LOAD``: cache-optimise every new mesh when the
  optimiser is enabled.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

DEFAULT_BACKEND = "facet"
DEFAULT_LINEAR_DEFLECTION = 0.1
DEFAULT_ANGULAR_DEFLECTION = 0.5

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _parse_bool(name: str, raw: Optional[str], default: bool) -> bool:
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def _parse_positive_float(name: str, raw: Optional[str], default: float) -> float:
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
    if not value > 0.0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


@dataclass(frozen=True)
class PipelineSettings:
    """Deployment-time choices for a :class:`~stepmesh.services.pipeline.StepPipeline`."""

    backend: str = DEFAULT_BACKEND
    linear_deflection: float = DEFAULT_LINEAR_DEFLECTION
    angular_deflection: float = DEFAULT_ANGULAR_DEFLECTION
    scratch_dir: Optional[Path] = None
    enable_simplify: bool = True
    enable_optimize: bool = True
    optimize_on_load: bool = True

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PipelineSettings":
        """Build settings from ``environ`` (defaults to ``os.environ``).

        Raises:
            ValueError: If a variable holds a value that cannot be parsed.
        """
        env = os.environ if environ is None else environ
        backend = (env.get("STEPMESH_BACKEND") or DEFAULT_BACKEND).strip().lower()
        scratch = env.get("STEPMESH_SCRATCH_DIR")
        return cls(
            backend=backend,
            linear_deflection=_parse_positive_float(
                "STEPMESH_LINEAR_DEFLECTION",
                env.get("STEPMESH_LINEAR_DEFLECTION"),
                DEFAULT_LINEAR_DEFLECTION,
            ),
            angular_deflection=_parse_positive_float(
                "STEPMESH_ANGULAR_DEFLECTION",
                env.get("STEPMESH_ANGULAR_DEFLECTION"),
                DEFAULT_ANGULAR_DEFLECTION,
            ),
            scratch_dir=Path(scratch) if scratch else None,
            enable_simplify=_parse_bool(
                "STEPMESH_ENABLE_SIMPLIFY", env.get("STEPMESH_ENABLE_SIMPLIFY"), True
            ),
            enable_optimize=_parse_bool(
                "STEPMESH_ENABLE_OPTIMIZE", env.get("STEPMESH_ENABLE_OPTIMIZE"), True
            ),
            optimize_on_load=_parse_bool(
                "STEPMESH_OPTIMIZE_ON_LOAD", env.get("STEPMESH_OPTIMIZE_ON_LOAD"), True
            ),
        )
