"""Patch builder: turn a simplified node/connection description into the IR.

Example
-------
>>> from pdrack.api import PatchSpec, build_patch_text
>>> spec = PatchSpec.from_dict({
...     "nodes": [{"name": "osc~", "args": [440]}, {"name": "dac~"}],
...     "connections": [{"from": 0, "to": 1}],
... })
>>> text = build_patch_text(spec)
"""

import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .ast import (
    Atom,
    Canvas,
    Connection,
    PdFloatAtom,
    PdMsg,
    PdNode,
    PdObj,
    PdPatch,
    PdSymbolAtom,
    PdText,
    Position,
    coerce_atom,
    serialize,
)

# Layout constants (pixels)
START_X = 50
START_Y = 50
SPACING_Y = 40
TITLE_Y = 10
CANVAS_WIDTH = 800
CANVAS_HEIGHT = 600
FONT_SIZE = 12

NODE_TYPES = ("obj", "msg", "floatatom", "symbolatom", "text")


class PdConnectionError(ValueError):
    """Raised when connection arguments are invalid."""

    pass


class NodeNotFoundError(ValueError):
    """Raised when a connection references a node that is not in the spec."""

    pass


class InvalidSpecError(ValueError):
    """Raised when a node or patch description has a bad field."""

    pass


def _check_atom(value: Any, where: str) -> Atom:
    """Accept a str, int or finite float; bools and inf/nan do not round-trip."""
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise InvalidSpecError(f"{where}: expected a string or number, got {value!r}")
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidSpecError(f"{where}: non-finite number {value!r} is not a valid atom")
    return value


def _check_index(data: Dict[str, Any], key: str, default: Optional[int] = None) -> int:
    value = data.get(key, default)
    if value is None:
        raise PdConnectionError(f"Connection field {key!r} is required")
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise PdConnectionError(f"Connection field {key!r} must be a non-negative integer, got {value!r}")
    return value


def _check_optional(data: Dict[str, Any], key: str, types: tuple, where: str) -> Any:
    value = data.get(key)
    if value is not None and (isinstance(value, bool) or not isinstance(value, types)):
        raise InvalidSpecError(f"{where}: field {key!r} has invalid value {value!r}")
    return value


def escape(text: str) -> str:
    """Escape semicolons, commas and dollar arguments for PureData format.

    Characters that are already escaped are left alone, so escaping twice is
    harmless. Separators become standalone atoms, as PureData writes them.
    """
    save = re.sub(r"(?<!\\);", r" \; ", text)
    save = re.sub(r"(?<!\\),", r" \, ", save)
    save = re.sub(r"(?<!\\)\$(?=[0-9])", r"\$", save)
    return save


def unescape(text: str) -> str:
    """Unescape PureData format back to display text.

    Reverses ``escape()``: escaped semicolons become newlines, escaped commas
    become commas and escaped dollar signs become plain dollar signs.
    """
    disp = re.sub(r" ?(?<!\\)\\; ?", "\n", text)
    disp = re.sub(r" ?(?<!\\)\\,", ",", disp)
    disp = re.sub(r"(?<!\\)\\\$", "$", disp)
    lines = [line.strip() for line in disp.split("\n")]
    return "\n".join(lines)


def _escape_atoms(args: List[Atom]) -> tuple:
    """Escape string atoms, splitting off any separators they contain."""
    atoms: List[Atom] = []
    for arg in args:
        if isinstance(arg, str):
            atoms.extend(coerce_atom(t) for t in escape(arg).split())
        else:
            atoms.append(arg)
    return tuple(atoms)


@dataclass
class NodeSpec:
    """Simplified description of one node.

    Parameters
    ----------
    name : str, optional
        Object class name (``osc~``, ``metro``...). Only used for ``obj``.
    type : str
        One of ``obj``, ``msg``, ``floatatom``, ``symbolatom``, ``text``
    args : list
        Arguments (strings or numbers)
    x, y : int, optional
        Explicit position; omitted coordinates are auto-laid-out
    """

    name: Optional[str] = None
    type: str = "obj"
    args: List[Atom] = field(default_factory=list)
    x: Optional[int] = None
    y: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], index: int = 0) -> "NodeSpec":
        """Build from a node dict, checking every field.

        Raises
        ------
        InvalidSpecError
            If a field has the wrong type or ``type`` is not a node type
        """
        where = f"Node {index}"
        node_type = data.get("type", "obj")
        if node_type not in NODE_TYPES:
            raise InvalidSpecError(
                f"{where}: unknown node type {node_type!r}, expected one of {', '.join(NODE_TYPES)}"
            )
        args = data.get("args", [])
        if not isinstance(args, (list, tuple)):
            raise InvalidSpecError(f"{where}: field 'args' must be a list, got {args!r}")
        return cls(
            name=_check_optional(data, "name", (str,), where),
            type=node_type,
            args=[_check_atom(a, f"{where} argument {i}") for i, a in enumerate(args)],
            x=_check_optional(data, "x", (int, float), where),
            y=_check_optional(data, "y", (int, float), where),
        )


@dataclass
class ConnectionSpec:
    """A connection between two node indices of a spec."""

    source: int
    outlet: int
    sink: int
    inlet: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConnectionSpec":
        """Build from the ``{"from", "outlet", "to", "inlet"}`` wire shape.

        Raises
        ------
        PdConnectionError
            If a field is missing or not a non-negative integer
        """
        return cls(
            source=_check_index(data, "from"),
            outlet=_check_index(data, "outlet", 0),
            sink=_check_index(data, "to"),
            inlet=_check_index(data, "inlet", 0),
        )


@dataclass
class PatchSpec:
    """A simplified patch: nodes, connections and an optional title comment."""

    nodes: List[NodeSpec] = field(default_factory=list)
    connections: List[ConnectionSpec] = field(default_factory=list)
    title: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PatchSpec":
        """Build from a patch dict; at least one node is required."""
        nodes = data.get("nodes") or []
        if not isinstance(nodes, (list, tuple)) or not nodes:
            raise InvalidSpecError("Patch field 'nodes' must be a non-empty list")
        return cls(
            nodes=[NodeSpec.from_dict(n, i) for i, n in enumerate(nodes)],
            connections=[ConnectionSpec.from_dict(c) for c in data.get("connections") or []],
            title=_check_optional(data, "title", (str,), "Patch"),
        )


def _build_node(spec: NodeSpec, position: Position, index: int) -> PdNode:
    for i, arg in enumerate(spec.args):
        _check_atom(arg, f"Node {index} argument {i}")
    if spec.type == "obj":
        if spec.name is None:
            return PdObj(position, args=tuple(spec.args))
        return PdObj(position, spec.name, tuple(spec.args))
    elif spec.type == "msg":
        return PdMsg(position, _escape_atoms(spec.args))
    elif spec.type == "floatatom":
        return PdFloatAtom(position, tuple(spec.args))
    elif spec.type == "symbolatom":
        return PdSymbolAtom(position, tuple(spec.args))
    elif spec.type == "text":
        return PdText(position, _escape_atoms(spec.args))
    raise ValueError(f"Unknown node type {spec.type!r}, expected one of {', '.join(NODE_TYPES)}")


def build_patch(spec: PatchSpec) -> PdPatch:
    """Build a patch IR from a simplified spec.

    Nodes without an explicit position are stacked vertically. When the spec
    has a title, a comment is inserted at index 0 and every node and
    connection index of the spec is shifted by one.

    Parameters
    ----------
    spec : PatchSpec
        The simplified patch description

    Returns
    -------
    PdPatch
        A single-canvas patch

    Raises
    ------
    NodeNotFoundError
        If a connection references a node index outside the spec
    PdConnectionError
        If an outlet or inlet number is negative
    InvalidSpecError
        If an argument is not a string, an int or a finite float
    """
    nodes: List[PdNode] = []
    if spec.title:
        nodes.append(PdText(Position(START_X, TITLE_Y), _escape_atoms([spec.title])))
    offset = len(nodes)

    for idx, node_spec in enumerate(spec.nodes):
        x = node_spec.x if node_spec.x is not None else START_X
        y = node_spec.y if node_spec.y is not None else START_Y + idx * SPACING_Y
        nodes.append(_build_node(node_spec, Position(x, y), idx))

    connections: List[Connection] = []
    for conn in spec.connections:
        for index in (conn.source, conn.sink):
            if not 0 <= index < len(spec.nodes):
                raise NodeNotFoundError(
                    f"Connection {conn.source}->{conn.sink} references node {index}, "
                    f"but the spec has {len(spec.nodes)} nodes"
                )
        if conn.outlet < 0 or conn.inlet < 0:
            raise PdConnectionError(
                f"Outlet and inlet must be non-negative, got {conn.outlet} and {conn.inlet}"
            )
        connections.append(Connection(conn.source + offset, conn.outlet, conn.sink + offset, conn.inlet))

    root = Canvas(
        x=0,
        y=50,
        width=CANVAS_WIDTH,
        height=CANVAS_HEIGHT,
        font_size=FONT_SIZE,
        nodes=nodes,
        connections=connections,
    )
    return PdPatch(root)


def build_patch_text(spec: PatchSpec) -> str:
    """Build a patch from a simplified spec and serialize it."""
    return serialize(build_patch(spec))
