"""Assemble several module specs into one combined rack patch.

Each module is laid out in its own column. Its nodes are appended after a
section label, its connections are shifted by its node offset, and the
resulting offsets are handed to the linker together with the wire list.

Example
-------
>>> from pdrack import RackModule, WireSpec, build_rack
>>> text = build_rack([RackModule("synth", synth_spec, synth_ports),
...                    RackModule("fx", fx_spec, fx_ports)],
...                   [WireSpec("synth", "audio", "fx", "audio_in")])
"""

import logging
from dataclasses import dataclass, field, replace
from typing import List, Optional, Sequence

from .api import ConnectionSpec, NodeSpec, PatchSpec, START_X, START_Y, SPACING_Y, TITLE_Y, build_patch_text
from .ports import PortInfo, check_ports
from .wiring import WireSpec, WiringModule, apply_wiring

logger = logging.getLogger(__name__)

COLUMN_WIDTH = 400
SECTION_Y = 30
RACK_TITLE = "=== RACK ==="

# Objects whose first argument names a table
TABLE_OBJECTS = frozenset({"table", "tabread", "tabwrite", "tabread~", "tabwrite~", "tabread4~"})


@dataclass
class RackModule:
    """One module of a rack: an id, its spec and its ports."""

    id: str
    spec: PatchSpec
    ports: List[PortInfo] = field(default_factory=list)
    label: Optional[str] = None


def deduplicate_table_names(spec: PatchSpec, module_index: int) -> PatchSpec:
    """Suffix the tables a module defines with ``_<module_index>``.

    Table names are global in PureData, so two copies of one module would
    otherwise share storage. References from tabread/tabwrite objects to the
    renamed tables are renamed too. The input spec is not modified.
    """
    tables = {
        str(node.args[0]) for node in spec.nodes if node.name == "table" and node.args
    }
    if not tables:
        return spec

    nodes = []
    for node in spec.nodes:
        if node.name in TABLE_OBJECTS and node.args and str(node.args[0]) in tables:
            args = list(node.args)
            args[0] = f"{args[0]}_{module_index}"
            node = replace(node, args=args)
        nodes.append(node)
    return replace(spec, nodes=nodes)


def assemble_rack(modules: Sequence[RackModule], wiring: Optional[Sequence[WireSpec]] = None) -> PatchSpec:
    """Combine module specs into one spec and apply the wiring.

    The rack title comment is node 0, so the returned spec has no title of
    its own and the builder will not shift its indices again.

    Raises
    ------
    PortError
        If a module's ports do not match its nodes
    WiringError
        If the wiring is invalid
    """
    nodes: List[NodeSpec] = [NodeSpec(type="text", args=[RACK_TITLE], x=START_X, y=TITLE_Y)]
    connections: List[ConnectionSpec] = []
    placed: List[WiringModule] = []

    for i, module in enumerate(modules):
        x_offset = i * COLUMN_WIDTH
        spec = deduplicate_table_names(module.spec, i)
        check_ports(spec, module.ports)

        label = (module.label or module.id).upper()
        nodes.append(NodeSpec(type="text", args=[f"=== {label} ==="], x=START_X + x_offset, y=SECTION_Y))
        offset = len(nodes)
        placed.append(WiringModule(module.id, list(module.ports), offset))
        logger.debug("placed module %s at node offset %d", module.id, offset)

        # Auto-layout uses the index within the module, not the combined index
        for j, node in enumerate(spec.nodes):
            nodes.append(
                replace(
                    node,
                    args=list(node.args),
                    x=(node.x if node.x is not None else START_X) + x_offset,
                    y=node.y if node.y is not None else START_Y + j * SPACING_Y,
                )
            )

        for conn in spec.connections:
            connections.append(
                ConnectionSpec(conn.source + offset, conn.outlet, conn.sink + offset, conn.inlet)
            )

    if wiring:
        apply_wiring(nodes, connections, placed, wiring)

    return PatchSpec(nodes=nodes, connections=connections, title=None)


def build_rack(modules: Sequence[RackModule], wiring: Optional[Sequence[WireSpec]] = None) -> str:
    """Assemble a rack and serialize the combined patch."""
    return build_patch_text(assemble_rack(modules, wiring))
