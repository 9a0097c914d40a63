"""
pdrack - PureData patch IR and module linker
=============================================

Parse, build and serialize PureData patches, and link independently built
modules into one rack patch through named ports.

Round-trip example:
  >>> from pdrack import parse, serialize, structurally_equal
  >>> patch = parse(open('input.pd').read())
  >>> assert structurally_equal(parse(serialize(patch)), patch)

Builder example:
  >>> from pdrack import PatchSpec, build_patch_text
  >>> text = build_patch_text(PatchSpec.from_dict({
  ...     'nodes': [{'name': 'osc~', 'args': [440]}, {'name': 'dac~'}],
  ...     'connections': [{'from': 0, 'to': 1}],
  ... }))

Rack example:
  >>> from pdrack import RackModule, WireSpec, build_rack
  >>> text = build_rack(
  ...     [RackModule('synth', synth_spec, synth_ports), RackModule('fx', fx_spec, fx_ports)],
  ...     [WireSpec('synth', 'audio', 'fx', 'audio_in')],
  ... )
"""

# IR, parser and serializer
from .ast import (
    Atom as Atom,
    Canvas as Canvas,
    Connection as Connection,
    PdArray as PdArray,
    PdFloatAtom as PdFloatAtom,
    PdMsg as PdMsg,
    PdNode as PdNode,
    PdObj as PdObj,
    PdOther as PdOther,
    PdPatch as PdPatch,
    PdSymbolAtom as PdSymbolAtom,
    PdText as PdText,
    Position as Position,
    ParseError as ParseError,
    ParseWarning as ParseWarning,
    parse as parse,
    serialize as serialize,
    structurally_equal as structurally_equal,
)

# Builder API
from .api import (
    NodeSpec as NodeSpec,
    ConnectionSpec as ConnectionSpec,
    PatchSpec as PatchSpec,
    build_patch as build_patch,
    build_patch_text as build_patch_text,
    escape as escape,
    unescape as unescape,
    PdConnectionError as PdConnectionError,
    NodeNotFoundError as NodeNotFoundError,
    InvalidSpecError as InvalidSpecError,
)

# Ports and wiring
from .ports import (
    SignalType as SignalType,
    PortDirection as PortDirection,
    PortInfo as PortInfo,
    PortError as PortError,
    RackableSpec as RackableSpec,
    check_ports as check_ports,
)
from .wiring import (
    WireSpec as WireSpec,
    WiringModule as WiringModule,
    apply_wiring as apply_wiring,
    validate_wiring as validate_wiring,
    WiringError as WiringError,
    DuplicateModuleError as DuplicateModuleError,
    UnknownModuleError as UnknownModuleError,
    SelfWiringError as SelfWiringError,
    UnknownPortError as UnknownPortError,
    SignalTypeMismatchError as SignalTypeMismatchError,
    DuplicateInputError as DuplicateInputError,
)
from .rack import (
    RackModule as RackModule,
    assemble_rack as assemble_rack,
    build_rack as build_rack,
    deduplicate_table_names as deduplicate_table_names,
)
