"""Registry of triangulation backends selectable by name."""

from __future__ import annotations

from typing import Callable, Dict

from .facet_backend import FacetBackend
from .kernel import TriangulationBackend
from .occt_backend import OcctBackend

BACKENDS: Dict[str, Callable[[], TriangulationBackend]] = {
    FacetBackend.name: FacetBackend,
    OcctBackend.name: OcctBackend,
}


def create_backend(name: str) -> TriangulationBackend:
    """Instantiate the backend registered under ``name``.

    Raises:
        ValueError: If no backend has that name.
    """
    key = (name or "").strip().lower()
    try:
        factory = BACKENDS[key]
    except KeyError:
        known = ", ".join(sorted(BACKENDS))
        raise ValueError(f"Unknown triangulation backend {name!r} (known: {known})") from None
    return factory()
