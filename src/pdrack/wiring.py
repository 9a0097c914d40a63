"""Wire modules together inside a combined rack patch.

Audio wires use ``throw~``/``catch~`` buses (signal rate); control wires use
``send``/``receive`` (message rate). Relay nodes are only ever appended and
no node is ever removed, since removing one would shift the index of every
node after it. Wiring is expressed purely by adding, removing and
redirecting connection entries.

Wiring runs in two phases. Every wire is validated first; only when the
whole batch is valid are the node and connection lists mutated, so a bad
wire never leaves a half-wired patch behind.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set

from .api import ConnectionSpec, NodeSpec
from .ports import PortDirection, PortInfo, SignalType, find_port, port_names

logger = logging.getLogger(__name__)

# Where relay nodes are drawn in the combined canvas
RELAY_X = 50
RELAY_SEND_Y = 10
RELAY_RECEIVE_Y = 40


class WiringError(ValueError):
    """Base class for errors raised while validating a wiring batch."""

    pass


class DuplicateModuleError(WiringError):
    """Raised when two modules in one rack share an id."""

    pass


class UnknownModuleError(WiringError):
    """Raised when a wire names a module that is not in the rack."""

    pass


class SelfWiringError(WiringError):
    """Raised when a wire connects a module to itself."""

    pass


class UnknownPortError(WiringError):
    """Raised when a wire names a port the module does not have.

    ``available`` lists the module's port names for the wanted direction.
    """

    def __init__(self, message: str, available: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.available = list(available)


class SignalTypeMismatchError(WiringError):
    """Raised when a wire joins an audio port to a control port."""

    pass


class DuplicateInputError(WiringError):
    """Raised when two wires target the same module input."""

    pass


@dataclass
class WireSpec:
    """A wire from ``source``'s output port to ``target``'s input port."""

    source: str
    output: str
    target: str
    input: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WireSpec":
        """Build from the ``{"from", "output", "to", "input"}`` shape.

        Raises
        ------
        WiringError
            If a field is missing or is not a non-empty string
        """
        values = []
        for key in ("from", "output", "to", "input"):
            value = data.get(key)
            if not isinstance(value, str) or not value:
                raise WiringError(f"Wiring error: field {key!r} must be a non-empty string, got {value!r}")
            values.append(value)
        return cls(*values)

    def __str__(self) -> str:
        return f"{self.source}.{self.output} -> {self.target}.{self.input}"


@dataclass
class WiringModule:
    """A module placed in the combined patch, starting at ``node_offset``."""

    id: str
    ports: List[PortInfo] = field(default_factory=list)
    node_offset: int = 0


@dataclass
class _ResolvedWire:
    wire: WireSpec
    src: WiringModule
    dst: WiringModule
    src_port: PortInfo
    dst_port: PortInfo

    @property
    def bus_name(self) -> str:
        return f"{self.wire.source}__{self.wire.output}"


# Connection helpers


def remove_connections_to(conns: List[ConnectionSpec], node_idx: int) -> None:
    """Remove every connection whose sink is ``node_idx`` (in place)."""
    conns[:] = [c for c in conns if c.sink != node_idx]


def remove_connections_between(conns: List[ConnectionSpec], from_idx: int, to_idx: int) -> None:
    """Remove every connection from ``from_idx`` to ``to_idx`` (in place)."""
    conns[:] = [c for c in conns if not (c.source == from_idx and c.sink == to_idx)]


def redirect_connections_from(conns: List[ConnectionSpec], old_from: int, new_from: int) -> None:
    """Make every connection leaving ``old_from`` leave ``new_from`` instead.

    Outlet, sink and inlet numbers are kept.
    """
    for conn in conns:
        if conn.source == old_from:
            conn.source = new_from


# Validation


def _available(names: List[str]) -> str:
    return ", ".join(names) or "(none)"


def validate_wiring(modules: Sequence[WiringModule], wiring: Sequence[WireSpec]) -> List[_ResolvedWire]:
    """Check a wiring batch without touching any patch data.

    Returns the wires resolved to their modules and ports, in order.

    Raises
    ------
    WiringError
        On the first invalid module or wire; the batch as a whole is rejected
    """
    module_map: Dict[str, WiringModule] = {}
    for mod in modules:
        if mod.id in module_map:
            raise DuplicateModuleError(f'Duplicate module ID "{mod.id}" in rack.')
        module_map[mod.id] = mod

    ids = ", ".join(module_map)
    claimed_inputs: Set[tuple] = set()
    resolved = []

    for wire in wiring:
        src = module_map.get(wire.source)
        if src is None:
            raise UnknownModuleError(
                f'Wiring error: source module "{wire.source}" not found. Available: {ids}'
            )
        dst = module_map.get(wire.target)
        if dst is None:
            raise UnknownModuleError(
                f'Wiring error: destination module "{wire.target}" not found. Available: {ids}'
            )
        if wire.source == wire.target:
            raise SelfWiringError(f'Wiring error: module "{wire.source}" cannot be wired to itself.')

        src_port = find_port(src.ports, wire.output, PortDirection.OUTPUT)
        if src_port is None:
            available = port_names(src.ports, PortDirection.OUTPUT)
            raise UnknownPortError(
                f'Wiring error: output port "{wire.output}" not found on module '
                f'"{wire.source}". Available outputs: {_available(available)}',
                available,
            )
        dst_port = find_port(dst.ports, wire.input, PortDirection.INPUT)
        if dst_port is None:
            available = port_names(dst.ports, PortDirection.INPUT)
            raise UnknownPortError(
                f'Wiring error: input port "{wire.input}" not found on module '
                f'"{wire.target}". Available inputs: {_available(available)}',
                available,
            )

        if src_port.type != dst_port.type:
            raise SignalTypeMismatchError(
                f'Wiring error: type mismatch: "{wire.source}.{wire.output}" is '
                f'{src_port.type.value} but "{wire.target}.{wire.input}" is {dst_port.type.value}.'
            )

        key = (wire.target, wire.input)
        if key in claimed_inputs:
            raise DuplicateInputError(
                f'Wiring error: duplicate input: "{wire.target}.{wire.input}" is already wired.'
            )
        claimed_inputs.add(key)

        resolved.append(_ResolvedWire(wire, src, dst, src_port, dst_port))

    return resolved


# Apply


def _absolute(index: Optional[int], mod: WiringModule) -> Optional[int]:
    return None if index is None else index + mod.node_offset


def _append_relay(nodes: List[NodeSpec], name: str, bus: str, y: int) -> int:
    nodes.append(NodeSpec(name=name, args=[bus], x=RELAY_X, y=y))
    return len(nodes) - 1


def apply_wiring(
    nodes: List[NodeSpec],
    connections: List[ConnectionSpec],
    modules: Sequence[WiringModule],
    wiring: Sequence[WireSpec],
) -> None:
    """Apply inter-module wiring to a combined rack patch.

    ``nodes`` and ``connections`` hold every module's nodes already
    concatenated and every connection already offset by its module's
    ``node_offset``. Both lists are mutated in place:

    - relay node pairs are appended (throw~/catch~ or send/receive, named
      ``<module>__<output port>``)
    - connections into a wired output's terminal node are removed
    - connections out of a wired input's terminal node are redirected

    A second audio wire from the same output reuses that output's catch~,
    so one bus feeds any number of inputs. Control wires get a fresh
    send/receive pair each time.

    Raises
    ------
    WiringError
        If any wire is invalid, before either list is modified
    """
    if not wiring:
        return

    plan = validate_wiring(modules, wiring)

    # bus name -> catch~ index, for audio fan-out
    audio_buses: Dict[str, int] = {}
    # terminal nodes whose incoming connections are already severed
    disconnected: Set[int] = set()

    for item in plan:
        src_port, dst_port = item.src_port, item.dst_port
        from_abs = src_port.node_index + item.src.node_offset
        to_abs = dst_port.node_index + item.dst.node_offset
        io_from = _absolute(src_port.io_node_index, item.src)
        io_to = _absolute(dst_port.io_node_index, item.dst)
        bus = item.bus_name

        if src_port.type == SignalType.AUDIO:
            catch_idx = audio_buses.get(bus)
            if catch_idx is None:
                if io_from is not None and io_from not in disconnected:
                    remove_connections_to(connections, io_from)
                    disconnected.add(io_from)
                throw_idx = _append_relay(nodes, "throw~", bus, RELAY_SEND_Y)
                connections.append(ConnectionSpec(from_abs, src_port.port, throw_idx, 0))
                catch_idx = _append_relay(nodes, "catch~", bus, RELAY_RECEIVE_Y)
                audio_buses[bus] = catch_idx
                logger.debug("created audio bus %s (throw~ %d, catch~ %d)", bus, throw_idx, catch_idx)

            if io_to is not None:
                redirect_connections_from(connections, io_to, catch_idx)
            else:
                connections.append(ConnectionSpec(catch_idx, 0, to_abs, dst_port.port))
        else:
            if io_from is not None and io_from not in disconnected:
                remove_connections_to(connections, io_from)
                disconnected.add(io_from)
            send_idx = _append_relay(nodes, "send", bus, RELAY_SEND_Y)
            connections.append(ConnectionSpec(from_abs, src_port.port, send_idx, 0))
            receive_idx = _append_relay(nodes, "receive", bus, RELAY_RECEIVE_Y)
            logger.debug("created control bus %s (send %d, receive %d)", bus, send_idx, receive_idx)

            if io_to is not None:
                remove_connections_between(connections, io_to, to_abs)
            connections.append(ConnectionSpec(receive_idx, 0, to_abs, dst_port.port))

        logger.debug("wired %s", item.wire)
