"""
In-process triangulation backend (``facet``).

The STEP text is parsed in memory by :mod:`stepmesh.services.step_text`
and every face of the boundary representation is triangulated on its
own.  Planar face loops are projected onto the plane of the face and
handed to ``mapbox_earcut``, which handles inner bounds (holes)
directly.  Faces on surfaces of revolution are tessellated in their
parameter space by :mod:`stepmesh.services.surfaces`.

Supported geometry:

- faces: ``ADVANCED_FACE`` and ``FACE_SURFACE`` on a ``PLANE``,
  ``CYLINDRICAL_SURFACE``, ``CONICAL_SURFACE``, ``SPHERICAL_SURFACE``
  or ``TOROIDAL_SURFACE``, plus surface-less ``FACE`` entities (faceted
  BReps) whose plane is derived from the outer loop with Newell's method;
- loops: ``EDGE_LOOP`` and ``POLY_LOOP``;
- edge curves: ``LINE``, ``POLYLINE`` and ``CIRCLE``.  Any other curve
  type is replaced by the chord between its end vertices.

Faces on other surface types are skipped with a warning and counted in
:attr:`RawGeometry.skipped_faces`.  Vertices are not shared between
faces, as with the OpenCascade tessellator, and assembly placements are
not applied.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Dict, List, Tuple

import mapbox_earcut
import numpy as np

from .errors import BackendFailure, ParseFailure
from .kernel import KernelContext
from .mesh import RawGeometry
from .step_text import StepEntity, StepFile, flatten_refs, parse_step
from .surfaces import (
    Cone,
    Cylinder,
    RevolvedSurface,
    Sphere,
    Torus,
    UnsupportedGeometry,
    angular_step,
    counter_clockwise,
    tessellate_face,
)

logger = logging.getLogger(__name__)

FACE_TYPES = ("ADVANCED_FACE", "FACE_SURFACE", "FACE")
REVOLVED_SURFACES = ("CYLINDRICAL_SURFACE", "CONICAL_SURFACE", "SPHERICAL_SURFACE", "TOROIDAL_SURFACE")
_WRAPPED_CURVES = ("SURFACE_CURVE", "SEAM_CURVE", "TRIMMED_CURVE")
_MAX_ARC_SEGMENTS = 1024
_DUPLICATE_TOLERANCE = 1e-9


def _describe(entity: StepEntity) -> str:
    return "complex" if entity.is_complex else entity.name


def _angle_factor(step: StepFile) -> float:
    """Radians per plane angle unit of the file (degrees when a conversion unit says so)."""
    for entity in step.entities.values():
        if entity.is_complex and "PLANE_ANGLE_UNIT" in entity.parts and "CONVERSION_BASED_UNIT" in entity.parts:
            return math.pi / 180.0
    return 1.0


def _unit(vec: np.ndarray) -> np.ndarray:
    length = float(np.linalg.norm(vec))
    if length == 0.0:
        raise UnsupportedGeometry("zero-length direction")
    return vec / length


def _perpendicular(axis: np.ndarray) -> np.ndarray:
    helper = np.eye(3)[int(np.argmin(np.abs(axis)))]
    return _unit(helper - axis * float(np.dot(helper, axis)))


def _newell_normal(points: np.ndarray) -> np.ndarray:
    nxt = np.roll(points, -1, axis=0)
    normal = np.array(
        [
            np.sum((points[:, 1] - nxt[:, 1]) * (points[:, 2] + nxt[:, 2])),
            np.sum((points[:, 2] - nxt[:, 2]) * (points[:, 0] + nxt[:, 0])),
            np.sum((points[:, 0] - nxt[:, 0]) * (points[:, 1] + nxt[:, 1])),
        ]
    )
    return _unit(normal)


def _signed_area_2d(uv: np.ndarray) -> float:
    x, y = uv[:, 0], uv[:, 1]
    return 0.5 * float(np.sum(x * np.roll(y, -1) - np.roll(x, -1) * y))


class _FaceReader:
    """Resolves the entity graph of one STEP file into face triangles."""

    def __init__(self, step: StepFile, context: KernelContext) -> None:
        self.step = step
        self.context = context
        self._points: Dict[int, np.ndarray] = {}
        self.angle_factor = _angle_factor(step)

    # -- primitive entities -------------------------------------------------

    def point(self, ref) -> np.ndarray:
        key = int(ref)
        cached = self._points.get(key)
        if cached is None:
            entity = self.step.get(ref)
            if entity.name != "CARTESIAN_POINT":
                raise ParseFailure(f"#{key} is {_describe(entity)}, expected CARTESIAN_POINT")
            coords = [float(c) for c in entity.params[1]]
            cached = np.array((coords + [0.0, 0.0, 0.0])[:3], dtype=np.float64)
            self._points[key] = cached
        return cached

    def vertex(self, ref) -> np.ndarray:
        entity = self.step.get(ref)
        if entity.name != "VERTEX_POINT":
            raise UnsupportedGeometry(f"vertex type {_describe(entity)}")
        return self.point(entity.params[1])

    def direction(self, ref) -> np.ndarray:
        entity = self.step.get(ref)
        ratios = [float(c) for c in entity.params[1]]
        return _unit(np.array((ratios + [0.0, 0.0, 0.0])[:3], dtype=np.float64))

    def placement(self, ref) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return ``(origin, z_axis, x_axis)`` of an ``AXIS2_PLACEMENT_3D``."""
        entity = self.step.get(ref)
        params = entity.params
        origin = self.point(params[1])
        z_axis = self.direction(params[2]) if len(params) > 2 and params[2] is not None else np.array([0.0, 0.0, 1.0])
        if len(params) > 3 and params[3] is not None:
            x_axis = self.direction(params[3])
            x_axis = x_axis - z_axis * float(np.dot(x_axis, z_axis))
            x_axis = _unit(x_axis) if np.linalg.norm(x_axis) > 1e-12 else _perpendicular(z_axis)
        else:
            x_axis = _perpendicular(z_axis)
        return origin, z_axis, x_axis

    def revolved_surface(self, entity: StepEntity) -> RevolvedSurface:
        if entity.name not in REVOLVED_SURFACES:
            raise UnsupportedGeometry(f"surface type {_describe(entity)}")
        params = entity.params
        origin, z_axis, x_axis = self.placement(params[1])
        if entity.name == "CYLINDRICAL_SURFACE":
            return Cylinder(origin, z_axis, x_axis, float(params[2]))
        if entity.name == "CONICAL_SURFACE":
            return Cone(origin, z_axis, x_axis, float(params[2]), float(params[3]) * self.angle_factor)
        if entity.name == "SPHERICAL_SURFACE":
            return Sphere(origin, z_axis, x_axis, float(params[2]))
        return Torus(origin, z_axis, x_axis, float(params[2]), float(params[3]))

    # -- edges and loops ----------------------------------------------------

    def _arc_segments(self, radius: float, sweep: float, full: bool) -> int:
        step = angular_step(radius, self.context)
        count = int(math.ceil(abs(sweep) / step)) if step > 0 else 1
        return max(3 if full else 1, min(count, _MAX_ARC_SEGMENTS))

    def _arc(self, circle: StepEntity, start: np.ndarray, end: np.ndarray, same_sense: bool) -> List[np.ndarray]:
        centre, z_axis, x_axis = self.placement(circle.params[1])
        radius = float(circle.params[2])
        y_axis = np.cross(z_axis, x_axis)

        def angle(p: np.ndarray) -> float:
            d = p - centre
            return math.atan2(float(np.dot(d, y_axis)), float(np.dot(d, x_axis)))

        a0, a1 = angle(start), angle(end)
        if same_sense:
            sweep = (a1 - a0) % (2.0 * math.pi)
        else:
            sweep = -((a0 - a1) % (2.0 * math.pi))
        full = abs(sweep) < 1e-9 or np.linalg.norm(end - start) <= _DUPLICATE_TOLERANCE
        if full:
            sweep = 2.0 * math.pi if same_sense else -2.0 * math.pi
        count = self._arc_segments(radius, sweep, full)
        points = [start]
        for i in range(1, count):
            t = a0 + sweep * i / count
            points.append(centre + radius * (math.cos(t) * x_axis + math.sin(t) * y_axis))
        points.append(end)
        return points

    def edge_polyline(self, edge: StepEntity) -> List[np.ndarray]:
        """Sample an ``EDGE_CURVE`` from its start vertex to its end vertex."""
        if edge.name != "EDGE_CURVE":
            raise UnsupportedGeometry(f"edge type {_describe(edge)}")
        start = self.vertex(edge.params[1])
        end = self.vertex(edge.params[2])
        same_sense = edge.params[4] is not False
        curve = self.step.get(edge.params[3])
        while curve.name in _WRAPPED_CURVES:
            curve = self.step.get(curve.params[1])
        if curve.name == "CIRCLE":
            return self._arc(curve, start, end, same_sense)
        if curve.name == "POLYLINE":
            inner = [self.point(r) for r in curve.params[1]]
            if not same_sense:
                inner.reverse()
            return [start] + inner[1:-1] + [end]
        if curve.name != "LINE":
            logger.debug("facet: using chord for %s edge #%d", _describe(curve), edge.id)
        return [start, end]

    def loop_points(self, loop: StepEntity) -> np.ndarray:
        points: List[np.ndarray] = []
        if loop.name == "POLY_LOOP":
            points = [self.point(r) for r in loop.params[1]]
        elif loop.name == "EDGE_LOOP":
            for ref in flatten_refs(loop.params[1]):
                oriented = self.step.get(ref)
                if oriented.name != "ORIENTED_EDGE":
                    raise UnsupportedGeometry(f"loop member {_describe(oriented)}")
                polyline = self.edge_polyline(self.step.get(oriented.params[3]))
                if oriented.params[4] is False:
                    polyline = polyline[::-1]
                points.extend(polyline[:-1])
        elif loop.name == "VERTEX_LOOP":
            return np.zeros((0, 3))
        else:
            raise UnsupportedGeometry(f"loop type {_describe(loop)}")

        cleaned: List[np.ndarray] = []
        for p in points:
            if cleaned and np.linalg.norm(p - cleaned[-1]) <= _DUPLICATE_TOLERANCE:
                continue
            cleaned.append(p)
        while len(cleaned) > 1 and np.linalg.norm(cleaned[0] - cleaned[-1]) <= _DUPLICATE_TOLERANCE:
            cleaned.pop()
        return np.array(cleaned, dtype=np.float64).reshape(-1, 3)

    # -- faces --------------------------------------------------------------

    def triangulate_face(self, face: StepEntity) -> Tuple[np.ndarray, np.ndarray]:
        try:
            return self._triangulate_face(face)
        except (IndexError, TypeError, ValueError, AttributeError) as exc:
            raise ParseFailure(f"Malformed face #{face.id}: {exc}") from exc

    def _triangulate_face(self, face: StepEntity) -> Tuple[np.ndarray, np.ndarray]:
        if face.name == "FACE":
            bounds, surface_ref, same_sense = face.params[1], None, True
        else:
            bounds, surface_ref, same_sense = face.params[1], face.params[2], face.params[3] is not False

        loops: List[np.ndarray] = []
        outer_index = -1
        for ref in flatten_refs(bounds):
            bound = self.step.get(ref)
            if bound.name not in ("FACE_BOUND", "FACE_OUTER_BOUND"):
                raise UnsupportedGeometry(f"bound type {_describe(bound)}")
            points = self.loop_points(self.step.get(bound.params[1]))
            if bound.params[2] is False:
                points = points[::-1]
            if len(points) < 3:
                continue
            if bound.name == "FACE_OUTER_BOUND":
                outer_index = len(loops)
            loops.append(points)
        if not loops:
            raise UnsupportedGeometry("no usable bounds")

        if surface_ref is None:
            reference = loops[outer_index] if outer_index >= 0 else max(loops, key=len)
            normal = _newell_normal(reference)
            origin, x_axis = reference[0], _perpendicular(normal)
        else:
            surface = self.step.get(surface_ref)
            if surface.name != "PLANE":
                return tessellate_face(self.revolved_surface(surface), loops, outer_index, same_sense, self.context)
            origin, z_axis, x_axis = self.placement(surface.params[1])
            normal = z_axis if same_sense else -z_axis
        u_axis = _unit(x_axis - normal * float(np.dot(x_axis, normal)))
        v_axis = np.cross(normal, u_axis)

        rings = [np.column_stack(((p - origin) @ u_axis, (p - origin) @ v_axis)) for p in loops]
        if outer_index < 0:
            outer_index = int(np.argmax([abs(_signed_area_2d(r)) for r in rings]))
        order = [outer_index] + [i for i in range(len(rings)) if i != outer_index]
        uv = np.vstack([rings[i] for i in order])
        positions = np.vstack([loops[i] for i in order])
        ends = np.cumsum([len(rings[i]) for i in order]).astype(np.uint32)

        triangles = np.asarray(mapbox_earcut.triangulate_float64(uv, ends), dtype=np.int64).reshape(-1, 3)
        if triangles.size == 0:
            raise UnsupportedGeometry("degenerate outline")
        return positions, counter_clockwise(uv, triangles)


class FacetBackend:
    """Pure-software STEP reader and face triangulator."""

    name = "facet"

    def triangulate(self, data: bytes, context: KernelContext) -> RawGeometry:
        start_time = time.perf_counter()
        step = parse_step(data)
        faces = step.by_type(*FACE_TYPES)
        if not faces:
            raise BackendFailure("STEP data contains no faces to triangulate")
        logger.debug(
            "facet: %d entities, %d faces (schema=%s)",
            len(step.entities),
            len(faces),
            ",".join(step.schema) or "?",
        )

        reader = _FaceReader(step, context)
        all_positions: List[np.ndarray] = []
        all_indices: List[np.ndarray] = []
        offset = 0
        skipped = 0
        for face in faces:
            try:
                positions, triangles = reader.triangulate_face(face)
            except UnsupportedGeometry as exc:
                skipped += 1
                logger.warning("facet: skipping face #%d: %s", face.id, exc)
                continue
            all_positions.append(positions)
            all_indices.append(triangles.reshape(-1) + offset)
            offset += len(positions)

        if not all_indices:
            raise BackendFailure(f"None of the {len(faces)} faces could be triangulated")
        indices = np.concatenate(all_indices).astype(np.uint32)
        logger.info(
            "facet: triangulated %d/%d faces into %d triangles in %.2f s",
            len(faces) - skipped,
            len(faces),
            indices.size // 3,
            time.perf_counter() - start_time,
        )
        return RawGeometry(positions=np.vstack(all_positions), indices=indices, skipped_faces=skipped)
