"""Port metadata for wiring modules together in a rack.

Each linkable module exposes named ports. The linker realizes a wire between
two ports with a ``throw~``/``catch~`` pair (audio) or a ``send``/``receive``
pair (control), so a port only needs to say which node it taps or feeds and,
optionally, which local terminal node must be disconnected once it is wired.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from .api import PatchSpec


class SignalType(str, Enum):
    """Signal class of a port; wires never cross classes."""

    AUDIO = "audio"
    CONTROL = "control"


class PortDirection(str, Enum):
    """Whether a port consumes or produces a signal."""

    INPUT = "input"
    OUTPUT = "output"


class PortError(ValueError):
    """Raised when a module's port list does not match its node list."""

    pass


@dataclass
class PortInfo:
    """A single named port on a module.

    Parameters
    ----------
    name : str
        Port name, unique among the module's ports of the same direction
    type : SignalType
        ``audio`` ports use throw~/catch~ buses, ``control`` ports send/receive
    direction : PortDirection
        Input or output
    node_index : int
        Index into the module's own nodes of the node to tap or feed
    port : int
        Outlet (for outputs) or inlet (for inputs) number on that node
    io_node_index : int, optional
        Terminal node to disconnect when the port is wired: for outputs a
        local sink such as ``dac~`` (connections into it are removed), for
        inputs a local source such as ``adc~`` or ``metro`` (connections
        out of it are redirected)
    """

    name: str
    type: SignalType
    direction: PortDirection
    node_index: int
    port: int = 0
    io_node_index: Optional[int] = None

    def __post_init__(self) -> None:
        self.type = SignalType(self.type)
        self.direction = PortDirection(self.direction)


@dataclass
class RackableSpec:
    """A module's patch spec together with its port metadata."""

    spec: PatchSpec
    ports: List[PortInfo] = field(default_factory=list)


def find_port(ports: Sequence[PortInfo], name: str, direction: PortDirection) -> Optional[PortInfo]:
    """Return the port with this name and direction, or None."""
    for port in ports:
        if port.name == name and port.direction == direction:
            return port
    return None


def port_names(ports: Sequence[PortInfo], direction: PortDirection) -> List[str]:
    """Names of all ports with the given direction, in declaration order."""
    return [p.name for p in ports if p.direction == direction]


def check_ports(spec: PatchSpec, ports: Sequence[PortInfo]) -> None:
    """Check that a port list is consistent with the spec it describes.

    Raises
    ------
    PortError
        If a port's node or terminal node index is outside the spec's node
        list, or a name repeats among ports of the same direction
    """
    count = len(spec.nodes)
    seen = set()
    for port in ports:
        key = (port.name, port.direction)
        if key in seen:
            raise PortError(f"Duplicate {port.direction.value} port {port.name!r}")
        seen.add(key)
        if not 0 <= port.node_index < count:
            raise PortError(
                f"Port {port.name!r} references node {port.node_index}, "
                f"but the module has {count} nodes"
            )
        if port.io_node_index is not None and not 0 <= port.io_node_index < count:
            raise PortError(
                f"Port {port.name!r} references terminal node {port.io_node_index}, "
                f"but the module has {count} nodes"
            )
