"""
Intermediate representation for PureData patches.

This module provides:
- Immutable node classes, one per element kind
- Canvas and patch containers whose node lists are index-addressed
- A parser reading .pd text into the IR
- A serializer writing the IR back to .pd text
- A structural equality check used for round-trip comparisons

A node's identity is its 0-based position in its owning canvas. Connections
refer to nodes only by that index, so node lists are append-only: nothing in
this package removes or reorders a node once it has been created.

Example usage:
    >>> from pdrack.ast import parse, serialize
    >>> patch = parse('#N canvas 0 50 800 600 12;\\n#X obj 50 50 osc~ 440;')
    >>> patch.root.nodes[0].name
    'osc~'
    >>> text = serialize(patch)
"""

import re
import warnings
from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple, Union

# An argument atom: symbols stay strings, numeric tokens become numbers
Atom = Union[str, int, float]

_NUMBER_RE = re.compile(r"^[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?$")
_INT_RE = re.compile(r"^[-+]?\d+$")
_WIDTH_RE = re.compile(r"(?<!\\),\s*f\s+\d+\s*$")

# Statement kinds after #X that own a slot in the node index space
INDEXED_KINDS = frozenset({"obj", "msg", "floatatom", "symbolatom", "text", "array"})

# Defaults applied when a canvas header field is missing or zero
DEFAULT_CANVAS_WIDTH = 800
DEFAULT_CANVAS_HEIGHT = 600
DEFAULT_FONT_SIZE = 12


class ParseError(ValueError):
    """Raised when parsing a PureData patch fails."""

    pass


class ParseWarning(UserWarning):
    """Warning raised for statements the parser tolerates but drops."""

    pass


def _format_args(args: Tuple[Atom, ...]) -> str:
    return " ".join(str(a) for a in args)


def _line(*parts: object) -> str:
    """Join statement parts with single spaces, skipping empty ones."""
    return " ".join(str(p) for p in parts if p != "" and p is not None)


# IR node types


@dataclass(frozen=True)
class Position:
    """2D position in the patch canvas."""

    x: int
    y: int

    def __str__(self) -> str:
        return f"{self.x} {self.y}"


@dataclass(frozen=True)
class PdObj:
    """An object box (#X obj), e.g. ``osc~ 440``.

    Subpatch placeholders are objects named ``pd`` with ``is_subpatch`` set.
    Their ``raw`` text is the ``#X restore`` statement that closed the
    subpatch. A plain ``#X obj x y pd foo`` box is not a placeholder.
    """

    position: Position
    name: Optional[str] = None
    args: Tuple[Atom, ...] = field(default_factory=tuple)
    raw: Optional[str] = None
    is_subpatch: bool = False

    kind = "obj"

    @property
    def text(self) -> str:
        if self.name is None:
            return _format_args(self.args)
        if self.args:
            return f"{self.name} {_format_args(self.args)}"
        return self.name

    def render(self) -> str:
        return _line("#X obj", self.position, self.text)


@dataclass(frozen=True)
class PdMsg:
    """A message box (#X msg)."""

    position: Position
    args: Tuple[Atom, ...] = field(default_factory=tuple)
    raw: Optional[str] = None

    kind = "msg"
    name = None

    @property
    def content(self) -> str:
        return _format_args(self.args)

    def render(self) -> str:
        return _line("#X msg", self.position, self.content)


@dataclass(frozen=True)
class PdFloatAtom:
    """A number box (#X floatatom); ``args`` holds its positional params."""

    position: Position
    args: Tuple[Atom, ...] = field(default_factory=tuple)
    raw: Optional[str] = None

    kind = "floatatom"
    name = None

    def render(self) -> str:
        return _line("#X floatatom", self.position, _format_args(self.args))


@dataclass(frozen=True)
class PdSymbolAtom:
    """A symbol box (#X symbolatom)."""

    position: Position
    args: Tuple[Atom, ...] = field(default_factory=tuple)
    raw: Optional[str] = None

    kind = "symbolatom"
    name = None

    def render(self) -> str:
        return _line("#X symbolatom", self.position, _format_args(self.args))


@dataclass(frozen=True)
class PdText:
    """A comment (#X text)."""

    position: Position
    args: Tuple[Atom, ...] = field(default_factory=tuple)
    raw: Optional[str] = None

    kind = "text"
    name = None

    @property
    def content(self) -> str:
        """Human-readable comment text with escapes removed."""
        from .api import unescape

        return unescape(_format_args(self.args))

    def render(self) -> str:
        return _line("#X text", self.position, _format_args(self.args))


@dataclass(frozen=True)
class PdArray:
    """An array declaration (#X array) plus any #A bulk data."""

    name: str
    size: int
    dtype: str = "float"
    flags: int = 0
    data: Tuple[Atom, ...] = field(default_factory=tuple)
    raw: Optional[str] = None

    kind = "array"

    @property
    def args(self) -> Tuple[Atom, ...]:
        return (self.size, self.dtype, self.flags)

    def render(self) -> str:
        line = f"#X array {self.name} {self.size} {self.dtype} {self.flags}"
        if self.data:
            line += f";\n#A 0 {_format_args(self.data)}"
        return line


@dataclass(frozen=True)
class PdOther:
    """An unrecognized #X element, kept so it still occupies its index."""

    kind: str
    position: Position
    args: Tuple[Atom, ...] = field(default_factory=tuple)
    raw: Optional[str] = None

    name = None

    def render(self) -> str:
        return _line(f"#X {self.kind}", self.position, _format_args(self.args))


PdNode = Union[PdObj, PdMsg, PdFloatAtom, PdSymbolAtom, PdText, PdArray, PdOther]


@dataclass(frozen=True)
class Connection:
    """A patch cord from ``source``'s outlet to ``sink``'s inlet (#X connect)."""

    source: int
    outlet: int
    sink: int
    inlet: int

    def __str__(self) -> str:
        return f"#X connect {self.source} {self.outlet} {self.sink} {self.inlet};"


@dataclass
class Canvas:
    """A root canvas or subpatch window.

    ``nodes`` is append-only: a node's index in it is the node's identity and
    the only way ``connections`` refer to it. ``subpatches`` are listed in the
    same order as their ``pd`` placeholder nodes.
    """

    x: int = 0
    y: int = 50
    width: int = DEFAULT_CANVAS_WIDTH
    height: int = DEFAULT_CANVAS_HEIGHT
    font_size: int = DEFAULT_FONT_SIZE
    name: Optional[str] = None
    open_on_load: int = 0
    is_subpatch: bool = False
    nodes: List[PdNode] = field(default_factory=list)
    connections: List[Connection] = field(default_factory=list)
    subpatches: List["Canvas"] = field(default_factory=list)
    raw: Optional[str] = None
    declarations: List[str] = field(default_factory=list)
    coords: Optional[str] = None

    def header(self) -> str:
        if self.raw is not None:
            return self.raw
        if self.is_subpatch:
            return (
                f"#N canvas {self.x} {self.y} {self.width} {self.height} "
                f"{self.name or 'subpatch'} {self.open_on_load}"
            )
        return f"#N canvas {self.x} {self.y} {self.width} {self.height} {self.font_size}"

    def add_node(self, node: PdNode) -> int:
        """Append a node and return its index."""
        self.nodes.append(node)
        return len(self.nodes) - 1

    def signature(self) -> tuple:
        """Structural fingerprint ignoring positions and raw text."""
        return (
            tuple((n.kind, n.name, tuple(n.args)) for n in self.nodes),
            tuple((c.source, c.outlet, c.sink, c.inlet) for c in self.connections),
            tuple((sub.name, sub.signature()) for sub in self.subpatches),
        )


@dataclass
class PdPatch:
    """A complete patch: one root canvas owning everything transitively."""

    root: Canvas

    def __str__(self) -> str:
        return serialize(self)


def structurally_equal(a: PdPatch, b: PdPatch) -> bool:
    """Compare two patches by node kinds/names/args, connections and nesting.

    Cosmetic fields (positions, window geometry, original source text) are
    ignored, which makes this the equality used for round-trip checks.
    """
    return a.root.signature() == b.root.signature()


# Parser


def coerce_atom(token: str) -> Atom:
    """Turn a numeric-looking token into a number, else keep the string."""
    if _NUMBER_RE.match(token):
        return int(token) if _INT_RE.match(token) else float(token)
    return token


def _parse_int(s: Optional[str], default: int = 0) -> int:
    """Parse an integer, returning default on failure."""
    if s is None:
        return default
    try:
        return int(s)
    except ValueError:
        pass
    try:
        return int(float(s))
    except (ValueError, OverflowError):
        return default


def _tokenize(text: str) -> List[str]:
    """Tokenize a statement on whitespace, keeping escaped characters intact."""
    tokens = []
    current: List[str] = []
    i = 0
    while i < len(text):
        char = text[i]
        if char == "\\" and i + 1 < len(text):
            current.append(char)
            current.append(text[i + 1])
            i += 2
        elif char in " \t\n":
            if current:
                tokens.append("".join(current))
                current = []
            i += 1
        else:
            current.append(char)
            i += 1
    if current:
        tokens.append("".join(current))
    return tokens


def _preprocess(content: str) -> str:
    """Normalize line endings and join backslash line continuations."""
    content = content.replace("\r\n", "\n").replace("\r", "\n")
    return content.replace("\\\n", "")


def _split_statements(content: str) -> List[str]:
    """Split content into statements on unescaped semicolons.

    The terminating semicolon is not part of the returned statement; an
    escaped one (``\\;``) is kept verbatim. Whitespace-only statements are
    dropped.
    """
    statements = []
    current: List[str] = []
    i = 0

    while i < len(content):
        char = content[i]
        if char == "\\" and i + 1 < len(content):
            current.append(char)
            current.append(content[i + 1])
            i += 2
        elif char == ";":
            stmt = "".join(current).strip()
            if stmt:
                statements.append(stmt)
            current = []
            i += 1
        else:
            current.append(char)
            i += 1

    remaining = "".join(current).strip()
    if remaining:
        statements.append(remaining)

    return statements


class _ParseContext:
    """Parser state: the patch root and the stack of open canvases."""

    def __init__(self) -> None:
        self.root: Optional[Canvas] = None
        self.stack: List[Canvas] = []

    @property
    def current(self) -> Optional[Canvas]:
        return self.stack[-1] if self.stack else None

    def push(self, canvas: Canvas) -> None:
        if self.stack:
            self.stack[-1].subpatches.append(canvas)
        else:
            self.root = canvas
        self.stack.append(canvas)

    def pop(self) -> Canvas:
        return self.stack.pop()


def _parse_canvas(tokens: List[str], raw: str, is_subpatch: bool) -> Canvas:
    """Parse a #N canvas header.

    Root:     ``#N canvas X Y W H FONTSIZE``
    Subpatch: ``#N canvas X Y W H NAME VIS``

    Which reading applies is decided by context (a root already exists) and
    by whether the sixth field looks numeric. A subpatch whose name is purely
    numeric is therefore read as a font size.
    """
    if len(tokens) < 6:
        raise ParseError(f"Invalid canvas header: {raw}")

    x = _parse_int(tokens[2])
    y = _parse_int(tokens[3])
    width = _parse_int(tokens[4]) or DEFAULT_CANVAS_WIDTH
    height = _parse_int(tokens[5]) or DEFAULT_CANVAS_HEIGHT
    font_or_name = tokens[6] if len(tokens) > 6 else None
    extra = tokens[7] if len(tokens) > 7 else None

    font_size = DEFAULT_FONT_SIZE
    name = None
    open_on_load = 0
    if not is_subpatch:
        font_size = _parse_int(font_or_name, DEFAULT_FONT_SIZE) or DEFAULT_FONT_SIZE
    elif font_or_name is not None and not _NUMBER_RE.match(font_or_name):
        name = font_or_name
        open_on_load = _parse_int(extra, 0)
    else:
        font_size = _parse_int(font_or_name, DEFAULT_FONT_SIZE) or DEFAULT_FONT_SIZE
        name = extra

    return Canvas(
        x=x,
        y=y,
        width=width,
        height=height,
        font_size=font_size,
        name=name,
        open_on_load=open_on_load,
        is_subpatch=is_subpatch,
        raw=raw,
    )


def _parse_position(tokens: List[str], raw: str) -> Position:
    if len(tokens) < 4:
        raise ParseError(f"Invalid {tokens[1]} statement: {raw}")
    return Position(_parse_int(tokens[2]), _parse_int(tokens[3]))


def _parse_node(kind: str, tokens: List[str], raw: str) -> PdNode:
    """Parse an indexed element statement into its node type."""
    if kind == "array":
        # #X array name size dtype flags
        if len(tokens) < 4:
            raise ParseError(f"Invalid array statement: {raw}")
        return PdArray(
            name=tokens[2],
            size=_parse_int(tokens[3]),
            dtype=tokens[4] if len(tokens) > 4 else "float",
            flags=_parse_int(tokens[5] if len(tokens) > 5 else None, 0),
            raw=raw,
        )

    pos = _parse_position(tokens, raw)
    args = tuple(coerce_atom(t) for t in tokens[4:])

    if kind == "obj":
        if len(tokens) < 5:
            return PdObj(pos, raw=raw)
        return PdObj(pos, tokens[4], args[1:], raw)
    elif kind == "msg":
        return PdMsg(pos, args, raw)
    elif kind == "floatatom":
        return PdFloatAtom(pos, args, raw)
    elif kind == "symbolatom":
        return PdSymbolAtom(pos, args, raw)
    elif kind == "text":
        return PdText(pos, args, raw)
    return PdOther(kind, pos, args, raw)


def _parse_connect(tokens: List[str], raw: str) -> Connection:
    """Parse #X connect source outlet sink inlet."""
    if len(tokens) < 6:
        raise ParseError(f"Invalid connect statement: {raw}")
    try:
        source, outlet, sink, inlet = (int(t) for t in tokens[2:6])
    except ValueError:
        raise ParseError(f"Invalid connect statement: {raw}") from None
    return Connection(source, outlet, sink, inlet)


def _parse_restore(tokens: List[str], raw: str, ctx: _ParseContext) -> None:
    """Close the current subpatch and add its placeholder to the parent."""
    # #X restore x y pd name
    if len(ctx.stack) < 2:
        raise ParseError(f"Restore without matching subpatch canvas: {raw}")
    pos = _parse_position(tokens, raw)
    subpatch = ctx.pop()

    rest = tokens[4:]
    name_tokens = rest[rest.index("pd") + 1 :] if "pd" in rest else []
    sub_name = " ".join(name_tokens)
    if sub_name and not subpatch.name:
        subpatch.name = sub_name

    parent = ctx.stack[-1]
    args = tuple(coerce_atom(t) for t in name_tokens)
    parent.add_node(PdObj(pos, "pd", args, raw, is_subpatch=True))


def _attach_array_data(tokens: List[str], raw: str, canvas: Canvas) -> None:
    """Attach #A values to the most recently declared array."""
    # #A offset v1 v2 ...
    for i in range(len(canvas.nodes) - 1, -1, -1):
        node = canvas.nodes[i]
        if isinstance(node, PdArray):
            values = tuple(coerce_atom(t) for t in tokens[2:])
            canvas.nodes[i] = replace(
                node,
                data=node.data + values,
                raw=f"{node.raw if node.raw is not None else node.render()};\n{raw}",
            )
            return
    warnings.warn(f"Array data without a preceding array: {raw}", ParseWarning)


def _parse_statement(stmt: str, ctx: _ParseContext) -> None:
    raw = re.sub(r"[\r\n\t]+", " ", stmt)
    tokens = _tokenize(raw)
    directive = tokens[0]
    kind = tokens[1] if len(tokens) > 1 else ""

    if directive == "#N":
        if kind == "canvas":
            ctx.push(_parse_canvas(tokens, raw, is_subpatch=ctx.root is not None))
        return

    if directive not in ("#X", "#A"):
        return

    canvas = ctx.current
    if canvas is None:
        if directive == "#A":
            warnings.warn(f"Array data outside canvas: {raw}", ParseWarning)
            return
        raise ParseError(f"Element outside canvas: {raw}")

    if directive == "#A":
        _attach_array_data(tokens, raw, canvas)
    elif kind == "connect":
        canvas.connections.append(_parse_connect(tokens, raw))
    elif kind == "restore":
        _parse_restore(tokens, raw, ctx)
    elif kind == "coords":
        canvas.coords = raw
    elif kind == "declare":
        canvas.declarations.append(raw)
    elif kind == "pop":
        # Older files close subpatches with #X pop
        _parse_restore(tokens[:2] + ["0", "0", "pd"], raw, ctx)
    else:
        # A trailing ", f <width>" is a box width hint, not content
        body = _WIDTH_RE.sub("", raw)
        canvas.add_node(_parse_node(kind, _tokenize(body), raw))


def parse(content: str) -> PdPatch:
    """Parse PureData patch content into the IR.

    Parameters
    ----------
    content : str
        The text of a .pd file

    Returns
    -------
    PdPatch
        The parsed patch

    Raises
    ------
    ParseError
        If no root canvas is found, an element appears before any canvas,
        or a statement is structurally malformed
    """
    ctx = _ParseContext()
    for stmt in _split_statements(_preprocess(content)):
        _parse_statement(stmt, ctx)

    if ctx.root is None:
        raise ParseError("Invalid patch: no root canvas (#N canvas) found")

    return PdPatch(ctx.root)


# Serializer


def serialize(patch: PdPatch) -> str:
    """Serialize a patch to PureData text.

    Nodes that carry their original source text are written verbatim; nodes
    built programmatically are rendered from their fields. Each subpatch body
    is written just before the ``#X restore`` line of its placeholder.

    Parameters
    ----------
    patch : PdPatch
        The patch to serialize

    Returns
    -------
    str
        The PureData file content
    """
    lines: List[str] = []
    _serialize_canvas(patch.root, lines)
    return "\n".join(lines) + "\n"


def _is_placeholder(node: PdNode) -> bool:
    return isinstance(node, PdObj) and node.is_subpatch


def _serialize_canvas(canvas: Canvas, lines: List[str]) -> None:
    lines.append(f"{canvas.header()};")
    for declaration in canvas.declarations:
        lines.append(f"{declaration};")

    pending = iter(canvas.subpatches)
    for node in canvas.nodes:
        sub = next(pending, None) if _is_placeholder(node) else None
        if sub is not None:
            _serialize_canvas(sub, lines)
            if node.raw is None:
                lines.append(f"#X restore {node.position} {node.text};")
                continue
        lines.append(f"{node.raw if node.raw is not None else node.render()};")

    for conn in canvas.connections:
        lines.append(str(conn))

    if canvas.coords is not None:
        lines.append(f"{canvas.coords};")
