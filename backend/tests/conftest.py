"""
Shared fixtures: small STEP files generated as text.

The models are built entity by entity so each test file can state exactly
what geometry it expects back: a unit box of planar ``ADVANCED_FACE``
entities, a faceted tetrahedron made of ``POLY_LOOP`` faces, a square
plate with a circular hole, faces on surfaces of revolution (cylinder,
cone, sphere) and a face on a swept surface the facet backend cannot
tessellate.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import List, Sequence

import pytest

# Add the backend directory to sys.path so we can import stepmesh
sys.path.append(str(Path(__file__).resolve().parents[1]))


def _num(value: float) -> str:
    return repr(float(value))


def _triple(values: Sequence[float]) -> str:
    return "(" + ",".join(_num(v) for v in values) + ")"


class StepBuilder:
    """Accumulates entity instances and renders an exchange file."""

    def __init__(self, degrees: bool = False) -> None:
        self.lines: List[str] = []
        # Units context as most CAD exporters write it, including a complex instance
        length = self.add("(LENGTH_UNIT() NAMED_UNIT(*) SI_UNIT(.MILLI.,.METRE.))")
        radian = self.add("(NAMED_UNIT(*) PLANE_ANGLE_UNIT() SI_UNIT($,.RADIAN.))")
        if degrees:
            measure = self.add(f"PLANE_ANGLE_MEASURE_WITH_UNIT(PLANE_ANGLE_MEASURE(0.0174532925199),#{radian})")
            dimensions = self.add("DIMENSIONAL_EXPONENTS(0.,0.,0.,0.,0.,0.,0.)")
            self.add(f"(CONVERSION_BASED_UNIT('DEGREE',#{measure}) NAMED_UNIT(#{dimensions}) PLANE_ANGLE_UNIT())")
        self.add(f"UNCERTAINTY_MEASURE_WITH_UNIT(LENGTH_MEASURE(1.E-07),#{length},'distance_accuracy_value','confusion accuracy')")
        self.add("/* unit context */ DIMENSIONAL_EXPONENTS(1.,0.,0.,0.,0.,0.,0.)")

    def add(self, body: str) -> int:
        entity_id = len(self.lines) + 1
        self.lines.append(f"#{entity_id}={body};")
        return entity_id

    def point(self, xyz: Sequence[float]) -> int:
        return self.add(f"CARTESIAN_POINT('',{_triple(xyz)})")

    def direction(self, xyz: Sequence[float]) -> int:
        return self.add(f"DIRECTION('',{_triple(xyz)})")

    def placement(self, origin: Sequence[float], z: Sequence[float], x: Sequence[float]) -> int:
        return self.add(
            f"AXIS2_PLACEMENT_3D('',#{self.point(origin)},#{self.direction(z)},#{self.direction(x)})"
        )

    def vertex(self, xyz: Sequence[float]) -> int:
        return self.add(f"VERTEX_POINT('',#{self.point(xyz)})")

    def line_edge(self, a: Sequence[float], b: Sequence[float]) -> int:
        d = [b[i] - a[i] for i in range(3)]
        vector = self.add(f"VECTOR('',#{self.direction(d)},1.)")
        line = self.add(f"LINE('',#{self.point(a)},#{vector})")
        return self.add(f"EDGE_CURVE('',#{self.vertex(a)},#{self.vertex(b)},#{line},.T.)")

    def edge_loop(self, corners: Sequence[Sequence[float]]) -> int:
        oriented = []
        for i, a in enumerate(corners):
            b = corners[(i + 1) % len(corners)]
            oriented.append(self.add(f"ORIENTED_EDGE('',*,*,#{self.line_edge(a, b)},.T.)"))
        return self.add("EDGE_LOOP('',(" + ",".join(f"#{o}" for o in oriented) + "))")

    def circle_loop(self, centre: Sequence[float], radius: float, forward: bool = True) -> int:
        """Full circle about +z through the point at angle 0, traversed counter-clockwise when ``forward``."""
        circle = self.add(f"CIRCLE('',#{self.placement(centre, (0, 0, 1), (1, 0, 0))},{_num(radius)})")
        start = self.vertex((centre[0] + radius, centre[1], centre[2]))
        edge = self.add(f"EDGE_CURVE('',#{start},#{start},#{circle},.T.)")
        oriented = self.add(f"ORIENTED_EDGE('',*,*,#{edge},{'.T.' if forward else '.F.'})")
        return self.add(f"EDGE_LOOP('',(#{oriented}))")

    def plane(self, origin, z, x) -> int:
        return self.add(f"PLANE('',#{self.placement(origin, z, x)})")

    def planar_face(self, corners, normal, x_axis, inner_bounds: Sequence[int] = ()) -> int:
        outer = self.add(f"FACE_OUTER_BOUND('',#{self.edge_loop(corners)},.T.)")
        bounds = ",".join(f"#{b}" for b in [outer, *inner_bounds])
        surface = self.plane(corners[0], normal, x_axis)
        return self.add(f"ADVANCED_FACE('',({bounds}),#{surface},.T.)")

    def shell(self, faces: Sequence[int]) -> int:
        shell = self.add("CLOSED_SHELL('',(" + ",".join(f"#{f}" for f in faces) + "))")
        return self.add(f"MANIFOLD_SOLID_BREP('solid',#{shell})")

    def render(self) -> bytes:
        header = (
            "ISO-10303-21;\n"
            "HEADER;\n"
            "FILE_DESCRIPTION(('generated fixture'),'2;1');\n"
            "FILE_NAME('fixture.step','2024-01-01T00:00:00',('tests'),(''),'stepmesh','stepmesh','');\n"
            "FILE_SCHEMA(('AUTOMOTIVE_DESIGN { 1 0 10303 214 1 1 1 1 }'));\n"
            "ENDSEC;\n"
            "DATA;\n"
        )
        return (header + "\n".join(self.lines) + "\nENDSEC;\nEND-ISO-10303-21;\n").encode("latin-1")


BOX_FACES = (
    # (corners, outward normal, in-plane x axis)
    (((0, 0, 0), (0, 1, 0), (1, 1, 0), (1, 0, 0)), (0, 0, -1), (1, 0, 0)),
    (((0, 0, 1), (1, 0, 1), (1, 1, 1), (0, 1, 1)), (0, 0, 1), (1, 0, 0)),
    (((0, 0, 0), (1, 0, 0), (1, 0, 1), (0, 0, 1)), (0, -1, 0), (1, 0, 0)),
    (((0, 1, 0), (0, 1, 1), (1, 1, 1), (1, 1, 0)), (0, 1, 0), (1, 0, 0)),
    (((0, 0, 0), (0, 0, 1), (0, 1, 1), (0, 1, 0)), (-1, 0, 0), (0, 1, 0)),
    (((1, 0, 0), (1, 1, 0), (1, 1, 1), (1, 0, 1)), (1, 0, 0), (0, 1, 0)),
)


def build_box(builder: StepBuilder) -> List[int]:
    return [builder.planar_face(corners, normal, x) for corners, normal, x in BOX_FACES]


def cylinder_face(builder: StepBuilder) -> int:
    """A quarter of the wall of the unit-radius cylinder about +z, from z = 0 to z = 1."""
    axis = builder.placement((0, 0, 0), (0, 0, 1), (1, 0, 0))
    surface = builder.add(f"CYLINDRICAL_SURFACE('',#{axis},1.)")
    loop = builder.edge_loop(((1, 0, 0), (0, 1, 0), (0, 1, 1), (1, 0, 1)))
    bound = builder.add(f"FACE_OUTER_BOUND('',#{loop},.T.)")
    return builder.add(f"ADVANCED_FACE('',(#{bound}),#{surface},.T.)")



def swept_face(builder: StepBuilder) -> int:
    """A face on a SURFACE_OF_LINEAR_EXTRUSION, which the facet backend does not tessellate."""
    profile = builder.add(f"VECTOR('',#{builder.direction((1, 0, 0))},1.)")
    curve = builder.add(f"LINE('',#{builder.point((0, 0, 2))},#{profile})")
    sweep = builder.add(f"VECTOR('',#{builder.direction((0, 1, 0))},1.)")
    surface = builder.add(f"SURFACE_OF_LINEAR_EXTRUSION('',#{curve},#{sweep})")
    loop = builder.edge_loop(((0, 0, 2), (1, 0, 2), (1, 1, 2), (0, 1, 2)))
    bound = builder.add(f"FACE_OUTER_BOUND('',#{loop},.T.)")
    return builder.add(f"ADVANCED_FACE('',(#{bound}),#{surface},.T.)")

@pytest.fixture
def box_step() -> bytes:
    """Unit cube [0, 1]^3 as six planar faces."""
    builder = StepBuilder()
    builder.shell(build_box(builder))
    return builder.render()


@pytest.fixture
def tetra_step() -> bytes:
    """Faceted tetrahedron: four surface-less FACE entities bounded by POLY_LOOPs."""
    builder = StepBuilder()
    corners = [(0, 0, 0), (1, 0, 0), (0, 1, 0), (0, 0, 1)]
    points = [builder.point(c) for c in corners]
    faces = []
    for a, b, c in ((0, 2, 1), (0, 1, 3), (0, 3, 2), (1, 2, 3)):
        loop = builder.add(f"POLY_LOOP('',(#{points[a]},#{points[b]},#{points[c]}))")
        bound = builder.add(f"FACE_OUTER_BOUND('',#{loop},.T.)")
        faces.append(builder.add(f"FACE('',(#{bound}))"))
    shell = builder.add("CLOSED_SHELL('',(" + ",".join(f"#{f}" for f in faces) + "))")
    builder.add(f"FACETED_BREP('',#{shell})")
    return builder.render()


@pytest.fixture
def plate_with_hole_step() -> bytes:
    """Square [-2, 2]^2 at z = 0 with a unit-radius circular hole at the origin."""
    builder = StepBuilder()
    circle = builder.add(f"CIRCLE('',#{builder.placement((0, 0, 0), (0, 0, 1), (1, 0, 0))},1.)")
    start = builder.vertex((1, 0, 0))
    edge = builder.add(f"EDGE_CURVE('',#{start},#{start},#{circle},.T.)")
    oriented = builder.add(f"ORIENTED_EDGE('',*,*,#{edge},.F.)")
    hole_loop = builder.add(f"EDGE_LOOP('',(#{oriented}))")
    hole = builder.add(f"FACE_BOUND('',#{hole_loop},.T.)")
    corners = ((-2, -2, 0), (2, -2, 0), (2, 2, 0), (-2, 2, 0))
    builder.planar_face(corners, (0, 0, 1), (1, 0, 0), inner_bounds=[hole])
    return builder.render()


@pytest.fixture
def cylinder_only_step() -> bytes:
    builder = StepBuilder()
    cylinder_face(builder)
    return builder.render()


@pytest.fixture
def swept_only_step() -> bytes:
    builder = StepBuilder()
    swept_face(builder)
    return builder.render()


@pytest.fixture
def box_with_cylinder_step() -> bytes:
    builder = StepBuilder()
    faces = build_box(builder)
    faces.append(cylinder_face(builder))
    builder.shell(faces)
    return builder.render()


@pytest.fixture
def box_with_swept_face_step() -> bytes:
    builder = StepBuilder()
    faces = build_box(builder)
    faces.append(swept_face(builder))
    builder.shell(faces)
    return builder.render()


@pytest.fixture
def tube_step() -> bytes:
    """Wall of a unit-radius cylinder from z = 0 to z = 2, bounded by two full circles."""
    builder = StepBuilder()
    surface = builder.add(f"CYLINDRICAL_SURFACE('',#{builder.placement((0, 0, 0), (0, 0, 1), (1, 0, 0))},1.)")
    bottom = builder.add(f"FACE_OUTER_BOUND('',#{builder.circle_loop((0, 0, 0), 1.0)},.T.)")
    top = builder.add(f"FACE_BOUND('',#{builder.circle_loop((0, 0, 2), 1.0, forward=False)},.T.)")
    builder.add(f"ADVANCED_FACE('',(#{bottom},#{top}),#{surface},.T.)")
    return builder.render()


@pytest.fixture
def hemisphere_step() -> bytes:
    """Northern half of the unit sphere, bounded by the equator."""
    builder = StepBuilder()
    surface = builder.add(f"SPHERICAL_SURFACE('',#{builder.placement((0, 0, 0), (0, 0, 1), (1, 0, 0))},1.)")
    bound = builder.add(f"FACE_OUTER_BOUND('',#{builder.circle_loop((0, 0, 0), 1.0)},.T.)")
    builder.add(f"ADVANCED_FACE('',(#{bound}),#{surface},.T.)")
    return builder.render()


@pytest.fixture(params=["radians", "degrees"])
def cone_step(request) -> bytes:
    """45 degree cone with its apex at (0, 0, -1), bounded by the unit circle at z = 0."""
    degrees = request.param == "degrees"
    builder = StepBuilder(degrees=degrees)
    semi_angle = "45." if degrees else _num(0.7853981633974483)
    axis = builder.placement((0, 0, 0), (0, 0, 1), (1, 0, 0))
    surface = builder.add(f"CONICAL_SURFACE('',#{axis},1.,{semi_angle})")
    bound = builder.add(f"FACE_OUTER_BOUND('',#{builder.circle_loop((0, 0, 0), 1.0, forward=False)},.T.)")
    builder.add(f"ADVANCED_FACE('',(#{bound}),#{surface},.T.)")
    return builder.render()
