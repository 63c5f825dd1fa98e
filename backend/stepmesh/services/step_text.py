"""
In-memory reader for ISO 10303-21 (STEP physical file) text.

This is the parsing half of the ``facet`` backend.  It understands the
exchange-structure syntax well enough to build an entity table that the
face triangulator can walk: simple and complex entity instances,
references, strings, numbers, enumerations, typed parameters and nested
lists.  It performs no schema validation and knows nothing about what the
entities mean.

The whole buffer is processed in memory; nothing touches the file system.
Every syntax problem is reported as :class:`ParseFailure` so that invalid
input never escapes as a bare ``IndexError`` or ``ValueError``.
"""

from __future__ import annotations

import re
from collections import namedtuple
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from .errors import ParseFailure

MAGIC = "ISO-10303-21"

TypedValue = namedtuple("TypedValue", "name value")
Token = namedtuple("Token", "kind value offset")


class Ref(int):
    """Reference to another entity instance (``#123``)."""

    def __repr__(self) -> str:
        return f"#{int(self)}"


class Enumeration(str):
    """Enumeration literal such as ``.MILLI.`` (stored without dots)."""


class _Derived:
    def __repr__(self) -> str:
        return "*"


# Placeholder for attributes redeclared as derived (``*``).
DERIVED = _Derived()


@dataclass
class StepEntity:
    """One entity instance from the DATA section.

    Simple instances carry ``name`` and ``params``.  Complex instances
    (``#5=(A() B(1.0));``) have an empty ``name`` and keep each partial
    entity's parameters in ``parts``.
    """

    id: int
    name: str
    params: List[Any] = field(default_factory=list)
    parts: Dict[str, List[Any]] = field(default_factory=dict)

    @property
    def is_complex(self) -> bool:
        return bool(self.parts)


@dataclass
class StepFile:
    header: Dict[str, List[Any]]
    entities: Dict[int, StepEntity]

    def get(self, ref: int) -> StepEntity:
        try:
            return self.entities[int(ref)]
        except (KeyError, TypeError, ValueError):
            raise ParseFailure(f"Dangling reference #{ref}") from None

    def by_type(self, *names: str) -> List[StepEntity]:
        wanted = {n.upper() for n in names}
        return [e for _, e in sorted(self.entities.items()) if e.name in wanted]

    @property
    def schema(self) -> List[str]:
        entry = self.header.get("FILE_SCHEMA") or [[]]
        return [s for s in entry[0] if isinstance(s, str)] if entry else []


_TOKEN_RE = re.compile(
    r"""
      (?P<space>\s+)
    | (?P<comment>/\*.*?\*/)
    | (?P<string>'(?:[^']|'')*')
    | (?P<ref>\#\d+)
    | (?P<enum>\.[A-Za-z_][A-Za-z0-9_]*\.)
    | (?P<binary>"[0-9A-Fa-f]*")
    | (?P<number>[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[Ee][+-]?\d+)?)
    | (?P<keyword>!?[A-Za-z_][A-Za-z0-9_\-]*)
    | (?P<punct>[(),=;$*])
    """,
    re.VERBOSE | re.DOTALL,
)


def tokenize(text: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    length = len(text)
    while pos < length:
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise ParseFailure(f"Unexpected character {text[pos]!r} at offset {pos}")
        kind = match.lastgroup
        value = match.group()
        if kind == "keyword":
            value = value.upper()
        if kind not in ("space", "comment"):
            tokens.append(Token(kind, value, pos))
        pos = match.end()
    return tokens


class _Parser:
    def __init__(self, tokens: List[Token]) -> None:
        self.tokens = tokens
        self.pos = 0

    def peek(self) -> Token | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def next(self) -> Token:
        tok = self.peek()
        if tok is None:
            raise ParseFailure("Unexpected end of STEP data")
        self.pos += 1
        return tok

    def expect(self, kind: str, value: str | None = None) -> Token:
        tok = self.next()
        if tok.kind != kind or (value is not None and tok.value != value):
            wanted = value or kind
            raise ParseFailure(
                f"Expected {wanted!r} at offset {tok.offset}, found {tok.value!r}"
            )
        return tok

    def at(self, kind: str, value: str | None = None) -> bool:
        tok = self.peek()
        return tok is not None and tok.kind == kind and (value is None or tok.value == value)

    def parse_list(self) -> List[Any]:
        self.expect("punct", "(")
        items: List[Any] = []
        if self.at("punct", ")"):
            self.next()
            return items
        while True:
            items.append(self.parse_value())
            tok = self.next()
            if tok.kind == "punct" and tok.value == ")":
                return items
            if not (tok.kind == "punct" and tok.value == ","):
                raise ParseFailure(f"Expected ',' or ')' at offset {tok.offset}, found {tok.value!r}")

    def parse_value(self) -> Any:
        tok = self.peek()
        if tok is None:
            raise ParseFailure("Unexpected end of STEP data")
        if tok.kind == "punct" and tok.value == "(":
            return self.parse_list()
        self.next()
        if tok.kind == "string":
            return tok.value[1:-1].replace("''", "'")
        if tok.kind == "ref":
            return Ref(int(tok.value[1:]))
        if tok.kind == "number":
            text = tok.value
            if "." in text or "e" in text or "E" in text:
                return float(text)
            return int(text)
        if tok.kind == "enum":
            literal = tok.value[1:-1].upper()
            if literal == "T":
                return True
            if literal == "F":
                return False
            return Enumeration(literal)
        if tok.kind == "binary":
            return tok.value[1:-1]
        if tok.kind == "keyword":
            inner = self.parse_list()
            return TypedValue(tok.value, inner[0] if len(inner) == 1 else inner)
        if tok.kind == "punct" and tok.value == "$":
            return None
        if tok.kind == "punct" and tok.value == "*":
            return DERIVED
        raise ParseFailure(f"Unexpected token {tok.value!r} at offset {tok.offset}")

    def parse_instance(self) -> StepEntity:
        ref = self.expect("ref")
        entity_id = int(ref.value[1:])
        self.expect("punct", "=")
        if self.at("punct", "("):
            self.next()
            parts: Dict[str, List[Any]] = {}
            while not self.at("punct", ")"):
                name = self.expect("keyword").value
                parts[name] = self.parse_list()
            self.next()
            if not parts:
                raise ParseFailure(f"Empty complex instance #{entity_id}")
            entity = StepEntity(id=entity_id, name="", parts=parts)
        else:
            name = self.expect("keyword").value
            entity = StepEntity(id=entity_id, name=name, params=self.parse_list())
        self.expect("punct", ";")
        return entity

    def parse_file(self) -> StepFile:
        self.expect("keyword", MAGIC)
        self.expect("punct", ";")
        self.expect("keyword", "HEADER")
        self.expect("punct", ";")
        header: Dict[str, List[Any]] = {}
        while not self.at("keyword", "ENDSEC"):
            name = self.expect("keyword").value
            header[name] = self.parse_list()
            self.expect("punct", ";")
        self.next()
        self.expect("punct", ";")

        entities: Dict[int, StepEntity] = {}
        sections = 0
        while self.at("keyword", "DATA"):
            self.next()
            if self.at("punct", "("):
                self.parse_list()
            self.expect("punct", ";")
            while not self.at("keyword", "ENDSEC"):
                entity = self.parse_instance()
                if entity.id in entities:
                    raise ParseFailure(f"Duplicate entity instance #{entity.id}")
                entities[entity.id] = entity
            self.next()
            self.expect("punct", ";")
            sections += 1
        if sections == 0:
            raise ParseFailure("STEP data has no DATA section")
        self.expect("keyword", "END-" + MAGIC)
        self.expect("punct", ";")
        return StepFile(header=header, entities=entities)


def parse_step(data: bytes) -> StepFile:
    """Parse a STEP exchange file held in memory.

    Args:
        data: Raw file contents.

    Returns:
        The parsed :class:`StepFile`.

    Raises:
        ParseFailure: If the buffer is empty or is not a well-formed
            ISO 10303-21 exchange structure.
    """
    if not data:
        raise ParseFailure("Empty STEP buffer")
    text = bytes(data).decode("latin-1")
    if not text.lstrip().upper().startswith(MAGIC):
        raise ParseFailure(f"Missing {MAGIC} header")
    return _Parser(tokenize(text)).parse_file()


def flatten_refs(values: Iterable[Any]) -> List[Ref]:
    """Return the references contained in ``values`` (one level deep)."""
    return [v for v in values if isinstance(v, Ref)]
