"""
Parametric tessellation of analytic surfaces for the ``facet`` backend.

Cylinders, cones, spheres and tori are surfaces of revolution about the z
axis of their placement.  Each is parameterised by the angle ``u`` around
that axis and a second coordinate ``v``: the height along the axis for
cylinders and cones, the latitude for spheres and the minor angle for
tori.  A face on such a surface is tessellated in ``(u, v)`` space:

1. each boundary loop is mapped to ``(u, v)`` with ``u`` unwrapped
   continuously, so a loop that goes once around the axis ends a full
   turn away from where it started;
2. a loop that goes around the axis is closed into a polygon, either
   against a second such loop (a band, like the wall of a drilled hole)
   or against the pole or apex enclosed by the face;
3. polygon edges are split to the angular step allowed by the kernel
   deflections, the polygon is triangulated with earcut and the result
   is flipped to a Delaunay triangulation in arc-length units, so no
   triangle fans across the face;
4. every triangle is split uniformly until no edge spans more than the
   angular step, and the parameter-space vertices are mapped back onto
   the surface.

The parameterisations are oriented so that triangles which are
counter-clockwise in ``(u, v)`` face along the outward surface normal.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import mapbox_earcut
import numpy as np

from .kernel import KernelContext

TWO_PI = 2.0 * math.pi
_AXIS_TOLERANCE = 1e-9
_MAX_SUBDIVISION = 64


class UnsupportedGeometry(Exception):
    """Raised for faces the facet backend cannot triangulate."""


def angular_step(radius: float, context: KernelContext) -> float:
    """Largest angle one segment may span on a circle of ``radius``."""
    step = context.angular_deflection
    if radius > context.linear_deflection:
        step = min(step, 2.0 * math.acos(1.0 - context.linear_deflection / radius))
    return step


def counter_clockwise(uv: np.ndarray, triangles: np.ndarray) -> np.ndarray:
    """Flip triangles of ``triangles`` that are clockwise in the 2D coordinates ``uv``."""
    a, b, c = uv[triangles[:, 0]], uv[triangles[:, 1]], uv[triangles[:, 2]]
    cross = (b[:, 0] - a[:, 0]) * (c[:, 1] - a[:, 1]) - (b[:, 1] - a[:, 1]) * (c[:, 0] - a[:, 0])
    flipped = cross < 0.0
    triangles = triangles.copy()
    triangles[flipped] = triangles[flipped][:, [0, 2, 1]]
    return triangles


def _wrap(angle):
    return (angle + math.pi) % TWO_PI - math.pi


class RevolvedSurface:
    """Surface of revolution about the z axis of an ``AXIS2_PLACEMENT_3D``."""

    v_periodic = False

    def __init__(self, origin: np.ndarray, z_axis: np.ndarray, x_axis: np.ndarray) -> None:
        self.origin = origin
        self.z_axis = z_axis
        self.x_axis = x_axis
        self.y_axis = np.cross(z_axis, x_axis)

    def _cylindrical(self, points: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        d = np.asarray(points, dtype=np.float64) - self.origin
        lx, ly = d @ self.x_axis, d @ self.y_axis
        return np.arctan2(ly, lx), np.hypot(lx, ly), d @ self.z_axis

    def _radial(self, u: np.ndarray) -> np.ndarray:
        return np.outer(np.cos(u), self.x_axis) + np.outer(np.sin(u), self.y_axis)

    def parameters(self, points: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return ``(u, v, on_axis)`` for each of ``points``."""
        raise NotImplementedError

    def points(self, uv: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def u_radius(self, uv: np.ndarray) -> float:
        raise NotImplementedError

    def v_radius(self) -> Optional[float]:
        """Radius of the circles traced along ``v``; ``None`` when ``v`` is a length."""
        return None

    def pole(self, side: int, v: np.ndarray) -> Optional[float]:
        """``v`` of the singular point on ``side`` of a loop around the axis, if any."""
        return None


class Cylinder(RevolvedSurface):
    def __init__(self, origin, z_axis, x_axis, radius: float) -> None:
        super().__init__(origin, z_axis, x_axis)
        self.radius = radius

    def parameters(self, points):
        u, rho, height = self._cylindrical(points)
        return u, height, rho <= _AXIS_TOLERANCE

    def points(self, uv):
        return self.origin + self.radius * self._radial(uv[:, 0]) + np.outer(uv[:, 1], self.z_axis)

    def u_radius(self, uv):
        return self.radius


class Cone(RevolvedSurface):
    """``CONICAL_SURFACE``: the radius grows by ``tan(semi_angle)`` per unit height."""

    def __init__(self, origin, z_axis, x_axis, radius: float, semi_angle: float) -> None:
        super().__init__(origin, z_axis, x_axis)
        self.radius = radius
        self.slope = math.tan(semi_angle)

    def _rho(self, v: np.ndarray) -> np.ndarray:
        return self.radius + v * self.slope

    def parameters(self, points):
        u, rho, height = self._cylindrical(points)
        return u, height, rho <= _AXIS_TOLERANCE

    def points(self, uv):
        v = uv[:, 1]
        return self.origin + self._rho(v)[:, None] * self._radial(uv[:, 0]) + np.outer(v, self.z_axis)

    def u_radius(self, uv):
        return float(np.max(np.abs(self._rho(uv[:, 1]))))

    def pole(self, side, v):
        if self.slope == 0.0:
            return None
        apex = -self.radius / self.slope
        return apex if (apex - float(np.mean(v))) * side > 0.0 else None


class Sphere(RevolvedSurface):
    def __init__(self, origin, z_axis, x_axis, radius: float) -> None:
        super().__init__(origin, z_axis, x_axis)
        self.radius = radius

    def parameters(self, points):
        u, rho, height = self._cylindrical(points)
        v = np.arcsin(np.clip(height / self.radius, -1.0, 1.0))
        return u, v, rho <= _AXIS_TOLERANCE * max(1.0, self.radius)

    def points(self, uv):
        v = uv[:, 1]
        return self.origin + self.radius * (
            np.cos(v)[:, None] * self._radial(uv[:, 0]) + np.outer(np.sin(v), self.z_axis)
        )

    def u_radius(self, uv):
        return self.radius

    def v_radius(self):
        return self.radius

    def pole(self, side, v):
        return side * 0.5 * math.pi


class Torus(RevolvedSurface):
    v_periodic = True

    def __init__(self, origin, z_axis, x_axis, major_radius: float, minor_radius: float) -> None:
        super().__init__(origin, z_axis, x_axis)
        self.major_radius = major_radius
        self.minor_radius = minor_radius

    def parameters(self, points):
        u, rho, height = self._cylindrical(points)
        return u, np.arctan2(height, rho - self.major_radius), rho <= _AXIS_TOLERANCE

    def points(self, uv):
        v = uv[:, 1]
        ring = self.major_radius + self.minor_radius * np.cos(v)
        return (
            self.origin
            + ring[:, None] * self._radial(uv[:, 0])
            + np.outer(self.minor_radius * np.sin(v), self.z_axis)
        )

    def u_radius(self, uv):
        return self.major_radius + self.minor_radius

    def v_radius(self):
        return self.minor_radius


@dataclass
class _Ring:
    uv: np.ndarray
    turns: int


def _continuous(values: np.ndarray) -> np.ndarray:
    steps = _wrap(np.diff(values))
    return values[0] + np.concatenate(([0.0], np.cumsum(steps)))


def _unwrap(surface: RevolvedSurface, points: np.ndarray) -> _Ring:
    u, v, on_axis = surface.parameters(points)
    if on_axis.all():
        raise UnsupportedGeometry("loop lies on the surface axis")
    if surface.v_periodic:
        v = _continuous(v)
        if abs(v[-1] + _wrap(v[0] - v[-1]) - v[0]) > math.pi:
            raise UnsupportedGeometry("loop winds around the minor circle")

    start = int(np.argmax(~on_axis))
    order = list(range(start, len(u))) + list(range(start))
    defined = [i for i in order if not on_axis[i]]
    unwrapped: Dict[int, float] = {}
    current = previous = float(u[defined[0]])
    for i in defined:
        current += _wrap(float(u[i]) - previous)
        previous = float(u[i])
        unwrapped[i] = current
    closing = current + _wrap(float(u[defined[0]]) - previous)
    turns = int(round((closing - unwrapped[defined[0]]) / TWO_PI))

    uv: List[Tuple[float, float]] = []
    last = unwrapped[defined[0]]
    for position, i in enumerate(order):
        if not on_axis[i]:
            last = unwrapped[i]
            uv.append((last, float(v[i])))
            continue
        # u is undefined on the axis: span from the previous to the next angle
        following = next((unwrapped[j] for j in order[position + 1:] if not on_axis[j]), closing)
        uv.append((last, float(v[i])))
        if abs(following - last) > 1e-12:
            uv.append((following, float(v[i])))
    return _Ring(np.array(uv, dtype=np.float64), turns)


def _closed(ring: _Ring) -> np.ndarray:
    return np.vstack([ring.uv, ring.uv[:1] + (TWO_PI * ring.turns, 0.0)])


def _reversed(ring: _Ring) -> _Ring:
    return _Ring(ring.uv[::-1].copy(), -ring.turns)


def _rotated(ring: _Ring, angle: float) -> _Ring:
    """Restart ``ring`` at its point nearest ``angle`` and shift it next to ``angle``."""
    index = int(np.argmin(np.abs(_wrap(ring.uv[:, 0] - angle))))
    uv = np.vstack([ring.uv[index:], ring.uv[:index] + (TWO_PI * ring.turns, 0.0)])
    uv[:, 0] += TWO_PI * round((angle - uv[0, 0]) / TWO_PI)
    return _Ring(uv, ring.turns)


def _cap(surface: RevolvedSurface, ring: _Ring, same_sense: bool) -> np.ndarray:
    # Loops run counter-clockwise about the face normal, so the face lies to the left
    side = 1 if (ring.turns > 0) == same_sense else -1
    pole = surface.pole(side, ring.uv[:, 1])
    if pole is None:
        raise UnsupportedGeometry("loop around the axis does not bound the face")
    outline = _closed(ring)
    return np.vstack([outline, [(outline[-1, 0], pole), (outline[0, 0], pole)]])


def _band(first: _Ring, second: _Ring) -> np.ndarray:
    if (first.turns > 0) == (second.turns > 0):
        second = _reversed(second)
    second = _rotated(second, first.uv[0, 0] + TWO_PI * first.turns)
    return np.vstack([_closed(first), _closed(second)])


def _steps(span_u: float, span_v: float, u_step: float, v_step: Optional[float]) -> int:
    count = span_u / u_step
    if v_step is not None:
        count = max(count, span_v / v_step)
    return int(min(max(math.ceil(count - 1e-9), 1), _MAX_SUBDIVISION))


def _densify(outline: np.ndarray, u_step: float, v_step: Optional[float]) -> np.ndarray:
    """Split the edges of the closed polygon ``outline`` to at most one step each."""
    points: List[np.ndarray] = []
    for p, q in zip(outline, np.roll(outline, -1, axis=0)):
        d = q - p
        count = _steps(abs(d[0]), abs(d[1]), u_step, v_step)
        points.extend(p + d * (k / count) for k in range(count))
    return np.array(points, dtype=np.float64)


def _cross(p, q, r) -> float:
    return (q[0] - p[0]) * (r[1] - p[1]) - (q[1] - p[1]) * (r[0] - p[0])


def _in_circle(a, b, c, d) -> bool:
    """Whether ``d`` lies strictly inside the circumcircle of counter-clockwise ``abc``."""
    adx, ady = a[0] - d[0], a[1] - d[1]
    bdx, bdy = b[0] - d[0], b[1] - d[1]
    cdx, cdy = c[0] - d[0], c[1] - d[1]
    ad, bd, cd = adx * adx + ady * ady, bdx * bdx + bdy * bdy, cdx * cdx + cdy * cdy
    det = ad * (bdx * cdy - cdx * bdy) - bd * (adx * cdy - cdx * ady) + cd * (adx * bdy - bdx * ady)
    return det > 1e-10 * (ad + bd + cd) ** 2


def _flip_to_delaunay(points: np.ndarray, triangles: np.ndarray) -> np.ndarray:
    """Lawson edge flips until every interior edge is locally Delaunay.

    Boundary edges belong to one triangle only and are never flipped, so
    the outline and holes are kept.
    """
    pts = points.tolist()
    tris = triangles.tolist()
    owner: Dict[Tuple[int, int], int] = {}
    for t, (a, b, c) in enumerate(tris):
        owner[a, b] = owner[b, c] = owner[c, a] = t
    pending = [(a, b) for a, b in owner if a < b and (b, a) in owner]
    budget = 100 * len(tris)
    while pending and budget > 0:
        a, b = pending.pop()
        t1, t2 = owner.get((a, b)), owner.get((b, a))
        if t1 is None or t2 is None:
            continue
        c = next(v for v in tris[t1] if v != a and v != b)
        d = next(v for v in tris[t2] if v != a and v != b)
        if not _in_circle(pts[a], pts[b], pts[c], pts[d]):
            continue
        if _cross(pts[a], pts[d], pts[c]) <= 0.0 or _cross(pts[d], pts[b], pts[c]) <= 0.0:
            continue
        for edge in ((a, b), (b, c), (c, a), (b, a), (a, d), (d, b)):
            del owner[edge]
        tris[t1], tris[t2] = [a, d, c], [d, b, c]
        owner[a, d] = owner[d, c] = owner[c, a] = t1
        owner[d, b] = owner[b, c] = owner[c, d] = t2
        pending.extend(((a, d), (d, b), (b, c), (c, a)))
        budget -= 1
    return np.array(tris, dtype=np.int64)


def _subdivision_count(uv: np.ndarray, triangles: np.ndarray, u_step: float, v_step: Optional[float]) -> int:
    corners = uv[triangles]
    spans = np.abs(corners - np.roll(corners, 1, axis=1)).max(axis=(0, 1))
    return _steps(float(spans[0]), float(spans[1]), u_step, v_step)


def _subdivide(uv: np.ndarray, triangles: np.ndarray, count: int) -> Tuple[np.ndarray, np.ndarray]:
    """Split every triangle into ``count**2`` with shared points on shared edges."""
    if count <= 1:
        return uv, triangles
    index: Dict[tuple, int] = {}
    points: List[np.ndarray] = []

    def vertex(weights: Sequence[Tuple[int, int]]) -> int:
        key = tuple(sorted((corner, w) for corner, w in weights if w))
        found = index.get(key)
        if found is None:
            found = index[key] = len(points)
            points.append(sum(uv[corner] * (w / count) for corner, w in key))
        return found

    result: List[Tuple[int, int, int]] = []
    for a, b, c in triangles.tolist():
        grid = {
            (i, j): vertex(((a, count - i - j), (b, i), (c, j)))
            for i in range(count + 1)
            for j in range(count + 1 - i)
        }
        for i in range(count):
            for j in range(count - i):
                result.append((grid[i, j], grid[i + 1, j], grid[i, j + 1]))
                if i + j < count - 1:
                    result.append((grid[i + 1, j], grid[i + 1, j + 1], grid[i, j + 1]))
    return np.array(points, dtype=np.float64), np.array(result, dtype=np.int64)


def _signed_area(uv: np.ndarray) -> float:
    x, y = uv[:, 0], uv[:, 1]
    return 0.5 * float(np.sum(x * np.roll(y, -1) - np.roll(x, -1) * y))


def tessellate_face(
    surface: RevolvedSurface,
    loops: Sequence[np.ndarray],
    outer_index: int,
    same_sense: bool,
    context: KernelContext,
) -> Tuple[np.ndarray, np.ndarray]:
    """Triangulate one face bounded by ``loops`` on ``surface``.

    Args:
        surface: The face geometry.
        loops: Boundary loops as ``(K, 3)`` points, each already oriented
            as its bound specifies.
        outer_index: Index of the ``FACE_OUTER_BOUND`` loop, or ``-1``.
        same_sense: Whether the face normal agrees with the surface normal.
        context: Supplies the deflections that bound the triangle size.

    Returns:
        ``(positions, triangles)`` with triangles wound about the face normal.

    Raises:
        UnsupportedGeometry: If the loops do not describe a face this
            tessellator understands.
    """
    rings = [_unwrap(surface, np.asarray(points)) for points in loops]
    if any(abs(r.turns) > 1 for r in rings):
        raise UnsupportedGeometry("loop winds around the axis more than once")
    turning = [r for r in rings if r.turns]
    holes = [r.uv for r in rings if not r.turns]

    if not turning:
        if not 0 <= outer_index < len(rings):
            outer_index = int(np.argmax([abs(_signed_area(r.uv)) for r in rings]))
        outer = rings[outer_index].uv
        holes = [r.uv for i, r in enumerate(rings) if i != outer_index]
    elif len(turning) == 1:
        outer = _cap(surface, turning[0], same_sense)
    elif len(turning) == 2:
        outer = _band(turning[0], turning[1])
    else:
        raise UnsupportedGeometry(f"{len(turning)} loops go around the axis")

    centre = 0.5 * (outer[:, 0].min() + outer[:, 0].max())
    holes = [h + (TWO_PI * round((centre - h[:, 0].mean()) / TWO_PI), 0.0) for h in holes]

    u_radius = surface.u_radius(np.vstack([outer, *holes]))
    v_radius = surface.v_radius()
    u_step = angular_step(u_radius, context)
    v_step = angular_step(v_radius, context) if v_radius is not None else None
    outer = _densify(outer, u_step, v_step)
    holes = [_densify(h, u_step, v_step) for h in holes]

    uv = np.vstack([outer, *holes])
    ends = np.cumsum([len(outer)] + [len(h) for h in holes]).astype(np.uint32)
    triangles = np.asarray(mapbox_earcut.triangulate_float64(uv, ends), dtype=np.int64).reshape(-1, 3)
    if triangles.size == 0:
        raise UnsupportedGeometry("degenerate outline")
    triangles = counter_clockwise(uv, triangles)
    arc_length = uv * (u_radius or 1.0, v_radius or 1.0)
    triangles = _flip_to_delaunay(arc_length, triangles)
    uv, triangles = _subdivide(uv, triangles, _subdivision_count(uv, triangles, u_step, v_step))
    if not same_sense:
        triangles = triangles[:, [0, 2, 1]]
    return surface.points(uv), triangles
