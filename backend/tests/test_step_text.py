"""
Tests for the in-memory ISO 10303-21 reader.

The reader only has to produce an entity table, so these tests check the
value mapping (references, enumerations, typed values, unset and derived
markers), complex instances and the failure modes that must surface as
``ParseFailure`` rather than as raw Python errors.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from stepmesh.services.errors import ParseFailure
from stepmesh.services.step_text import (
    DERIVED,
    Enumeration,
    Ref,
    TypedValue,
    flatten_refs,
    parse_step,
)


def _wrap(data_lines: str) -> bytes:
    return (
        "ISO-10303-21;\nHEADER;\n"
        "FILE_SCHEMA(('CONFIG_CONTROL_DESIGN'));\n"
        "ENDSEC;\nDATA;\n" + data_lines + "\nENDSEC;\nEND-ISO-10303-21;\n"
    ).encode("latin-1")


def test_parses_generated_box(box_step: bytes) -> None:
    step = parse_step(box_step)
    assert step.schema == ["AUTOMOTIVE_DESIGN { 1 0 10303 214 1 1 1 1 }"]
    assert len(step.by_type("ADVANCED_FACE")) == 6
    assert len(step.by_type("PLANE")) == 6
    # by_type returns entities in id order
    ids = [e.id for e in step.by_type("CARTESIAN_POINT")]
    assert ids == sorted(ids)


def test_value_mapping() -> None:
    step = parse_step(
        _wrap(
            "#1=CARTESIAN_POINT('it''s',(1.5,-2,3.E1));\n"
            "#2=ORIENTED_EDGE('',*,*,#1,.F.);\n"
            "#3=MEASURE_WITH_UNIT(LENGTH_MEASURE(2.5),$);\n"
            "#4=SI_UNIT(.MILLI.,.METRE.);"
        )
    )
    point = step.get(1)
    assert point.name == "CARTESIAN_POINT"
    assert point.params[0] == "it's"
    assert point.params[1] == [1.5, -2, 30.0]
    assert isinstance(point.params[1][1], int)

    edge = step.get(2)
    assert edge.params[1] is DERIVED
    assert isinstance(edge.params[3], Ref) and edge.params[3] == 1
    assert edge.params[4] is False

    measure = step.get(3)
    assert measure.params[0] == TypedValue("LENGTH_MEASURE", 2.5)
    assert measure.params[1] is None

    unit = step.get(4)
    assert unit.params == [Enumeration("MILLI"), Enumeration("METRE")]


def test_complex_instance_keeps_parts() -> None:
    step = parse_step(_wrap("#7=(LENGTH_UNIT() NAMED_UNIT(*) SI_UNIT(.MILLI.,.METRE.));"))
    entity = step.get(7)
    assert entity.is_complex
    assert entity.name == ""
    assert set(entity.parts) == {"LENGTH_UNIT", "NAMED_UNIT", "SI_UNIT"}
    assert entity.parts["SI_UNIT"] == ["MILLI", "METRE"]


def test_comments_and_lowercase_keywords_are_accepted() -> None:
    step = parse_step(_wrap("/* a comment; with a semicolon */\n#1=cartesian_point('',(0.,0.,0.));"))
    assert step.get(1).name == "CARTESIAN_POINT"


def test_flatten_refs_ignores_non_references() -> None:
    assert flatten_refs([Ref(3), "x", 4, Ref(9)]) == [Ref(3), Ref(9)]


@pytest.mark.parametrize(
    "data, message",
    [
        (b"", "Empty STEP buffer"),
        (b"solid cube\nendsolid cube\n", "Missing ISO-10303-21 header"),
        (b"ISO-10303-21;\nHEADER;\nENDSEC;\nEND-ISO-10303-21;\n", "no DATA section"),
    ],
)
def test_rejects_non_step_input(data: bytes, message: str) -> None:
    with pytest.raises(ParseFailure) as excinfo:
        parse_step(data)
    assert message in str(excinfo.value)


def test_rejects_truncated_file(box_step: bytes) -> None:
    with pytest.raises(ParseFailure):
        parse_step(box_step[: len(box_step) // 2])


def test_rejects_duplicate_instances() -> None:
    with pytest.raises(ParseFailure, match="Duplicate"):
        parse_step(_wrap("#1=DIRECTION('',(0.,0.,1.));\n#1=DIRECTION('',(1.,0.,0.));"))


def test_dangling_reference_is_a_parse_failure() -> None:
    step = parse_step(_wrap("#1=VERTEX_POINT('',#99);"))
    with pytest.raises(ParseFailure, match="#99"):
        step.get(step.get(1).params[1])


def test_error_message_names_the_kind() -> None:
    with pytest.raises(ParseFailure) as excinfo:
        parse_step(b"")
    assert str(excinfo.value) == "Parse error: Empty STEP buffer"
