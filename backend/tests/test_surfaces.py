"""
Tests for parameter-space tessellation of surfaces of revolution.
"""

from __future__ import annotations

import math
import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from stepmesh.services.kernel import KernelContext
from stepmesh.services.surfaces import (
    Cylinder,
    Torus,
    UnsupportedGeometry,
    _flip_to_delaunay,
    angular_step,
    tessellate_face,
)

ORIGIN = np.zeros(3)
Z_AXIS = np.array([0.0, 0.0, 1.0])
X_AXIS = np.array([1.0, 0.0, 0.0])


def _loop(surface, corners) -> np.ndarray:
    return surface.points(np.array(corners, dtype=np.float64))


def test_angular_step_respects_both_deflections() -> None:
    context = KernelContext(linear_deflection=0.1, angular_deflection=0.5)
    assert angular_step(0.05, context) == 0.5
    assert angular_step(100.0, context) == pytest.approx(2.0 * math.acos(1.0 - 0.001))


def test_torus_patch_lies_on_the_torus() -> None:
    torus = Torus(ORIGIN, Z_AXIS, X_AXIS, major_radius=3.0, minor_radius=1.0)
    corners = [(0.0, 0.0), (0.5 * math.pi, 0.0), (0.5 * math.pi, 0.5 * math.pi), (0.0, 0.5 * math.pi)]
    positions, triangles = tessellate_face(torus, [_loop(torus, corners)], 0, True, KernelContext())
    ring = np.hypot(positions[:, 0], positions[:, 1]) - 3.0
    np.testing.assert_allclose(np.hypot(ring, positions[:, 2]), 1.0, atol=1e-9)
    assert len(triangles) > 2
    a, b, c = (positions[triangles[:, k]] for k in range(3))
    normals = np.cross(b - a, c - a)
    centroids = (a + b + c) / 3.0
    tube_centres = 3.0 * centroids * [1.0, 1.0, 0.0] / np.hypot(centroids[:, 0], centroids[:, 1])[:, None]
    assert np.all(np.einsum("ij,ij->i", normals, centroids - tube_centres) > 0.0)


def test_reversed_sense_flips_winding() -> None:
    cylinder = Cylinder(ORIGIN, Z_AXIS, X_AXIS, radius=2.0)
    loop = _loop(cylinder, [(0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0)])
    _, forward = tessellate_face(cylinder, [loop], 0, True, KernelContext())
    _, backward = tessellate_face(cylinder, [loop], 0, False, KernelContext())
    np.testing.assert_array_equal(backward, forward[:, [0, 2, 1]])


def test_patch_across_the_seam_is_unwrapped() -> None:
    cylinder = Cylinder(ORIGIN, Z_AXIS, X_AXIS, radius=1.0)
    loop = _loop(cylinder, [(-0.4, 0.0), (0.4, 0.0), (0.4, 1.0), (-0.4, 1.0)])
    positions, _ = tessellate_face(cylinder, [loop], 0, True, KernelContext())
    # Every vertex stays on the narrow patch around angle 0, not the long way round
    assert positions[:, 0].min() > math.cos(0.4) - 1e-9


def test_loop_around_a_cylinder_alone_is_unsupported() -> None:
    cylinder = Cylinder(ORIGIN, Z_AXIS, X_AXIS, radius=1.0)
    angles = np.linspace(0.0, 2.0 * math.pi, 12, endpoint=False)
    loop = _loop(cylinder, [(a, 0.0) for a in angles])
    with pytest.raises(UnsupportedGeometry):
        tessellate_face(cylinder, [loop], 0, True, KernelContext())


def test_long_diagonal_is_flipped_to_the_short_one() -> None:
    points = np.array([(0.0, 0.0), (4.0, -1.0), (8.0, 0.0), (4.0, 1.0)])
    triangles = np.array([(0, 1, 2), (0, 2, 3)])
    flipped = _flip_to_delaunay(points, triangles)
    assert sorted(map(tuple, flipped.tolist())) == [(0, 1, 3), (1, 2, 3)]


def test_long_cylinder_wall_keeps_every_triangle_within_one_step() -> None:
    cylinder = Cylinder(ORIGIN, Z_AXIS, X_AXIS, radius=1.0)
    loop = _loop(cylinder, [(0.0, 0.0), (3.0, 0.0), (3.0, 1.0), (0.0, 1.0)])
    context = KernelContext()
    positions, triangles = tessellate_face(cylinder, [loop], 0, True, context)
    angles = np.arctan2(positions[:, 1], positions[:, 0])[triangles]
    spans = np.abs(angles - np.roll(angles, 1, axis=1)).max(axis=1)
    assert spans.max() <= angular_step(1.0, context) + 1e-9
