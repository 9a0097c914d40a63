"""Tests for pdrack.wiring module."""

import copy
import logging

import pytest

from pdrack import (
    ConnectionSpec,
    DuplicateInputError,
    DuplicateModuleError,
    NodeSpec,
    PatchSpec,
    SelfWiringError,
    SignalTypeMismatchError,
    UnknownModuleError,
    UnknownPortError,
    WireSpec,
    WiringError,
    WiringModule,
    apply_wiring,
    validate_wiring,
)
from pdrack.ports import PortDirection, PortInfo, SignalType
from pdrack.wiring import (
    redirect_connections_from,
    remove_connections_between,
    remove_connections_to,
)

AUDIO = SignalType.AUDIO
CONTROL = SignalType.CONTROL
IN = PortDirection.INPUT
OUT = PortDirection.OUTPUT


# Module fragments, each 0-indexed relative to itself


def gain():
    spec = PatchSpec([NodeSpec("*~", args=[0.5])])
    ports = [PortInfo("in", AUDIO, IN, 0), PortInfo("out", AUDIO, OUT, 0)]
    return spec, ports


def synth():
    spec = PatchSpec(
        [NodeSpec("osc~", args=[440]), NodeSpec("*~", args=[0.1]), NodeSpec("dac~")],
        [ConnectionSpec(0, 0, 1, 0), ConnectionSpec(1, 0, 2, 0), ConnectionSpec(1, 0, 2, 1)],
    )
    ports = [PortInfo("audio", AUDIO, OUT, 1, io_node_index=2)]
    return spec, ports


def reverb():
    # adc~ feeds both the wet path and the dry path
    spec = PatchSpec(
        [NodeSpec("adc~"), NodeSpec("lop~", args=[2000]), NodeSpec("*~", args=[0.3]), NodeSpec("dac~")],
        [
            ConnectionSpec(0, 0, 1, 0),
            ConnectionSpec(0, 0, 2, 0),
            ConnectionSpec(1, 0, 3, 0),
            ConnectionSpec(2, 0, 3, 1),
        ],
    )
    ports = [
        PortInfo("audio_in", AUDIO, IN, 1, io_node_index=0),
        PortInfo("audio", AUDIO, OUT, 1, io_node_index=3),
    ]
    return spec, ports


def mixer():
    spec = PatchSpec(
        [NodeSpec("inlet~"), NodeSpec("inlet~"), NodeSpec("+~"), NodeSpec("dac~")],
        [
            ConnectionSpec(0, 0, 2, 0),
            ConnectionSpec(1, 0, 2, 1),
            ConnectionSpec(2, 0, 3, 0),
            ConnectionSpec(2, 0, 3, 1),
        ],
    )
    ports = [
        PortInfo("ch1", AUDIO, IN, 0, io_node_index=0),
        PortInfo("ch2", AUDIO, IN, 1, io_node_index=1),
        PortInfo("mix", AUDIO, OUT, 2, io_node_index=3),
    ]
    return spec, ports


def clock():
    spec = PatchSpec(
        [NodeSpec("loadbang"), NodeSpec("metro", args=[500]), NodeSpec("print", args=["tick"])],
        [ConnectionSpec(0, 0, 1, 0), ConnectionSpec(1, 0, 2, 0)],
    )
    ports = [PortInfo("beat", CONTROL, OUT, 1, io_node_index=2)]
    return spec, ports


def sequencer():
    spec = PatchSpec(
        [
            NodeSpec("loadbang"),
            NodeSpec("metro", args=[250]),
            NodeSpec("f"),
            NodeSpec("+", args=[1]),
            NodeSpec("noteout"),
        ],
        [
            ConnectionSpec(0, 0, 1, 0),
            ConnectionSpec(1, 0, 2, 0),
            ConnectionSpec(2, 0, 3, 0),
            ConnectionSpec(3, 0, 2, 1),
            ConnectionSpec(2, 0, 4, 0),
        ],
    )
    ports = [
        PortInfo("clock_in", CONTROL, IN, 2, io_node_index=1),
        PortInfo("note", CONTROL, OUT, 2, io_node_index=4),
    ]
    return spec, ports


def combine(*entries):
    """Concatenate module fragments the way the assembly layer does."""
    nodes, conns, modules = [], [], []
    for module_id, (spec, ports) in entries:
        offset = len(nodes)
        nodes.extend(spec.nodes)
        conns.extend(
            ConnectionSpec(c.source + offset, c.outlet, c.sink + offset, c.inlet) for c in spec.connections
        )
        modules.append(WiringModule(module_id, ports, offset))
    return nodes, conns, modules


def as_tuples(conns):
    return [(c.source, c.outlet, c.sink, c.inlet) for c in conns]


class TestConnectionHelpers:
    """Tests for in-place connection helpers."""

    def test_remove_connections_to(self):
        conns = [ConnectionSpec(0, 0, 1, 0), ConnectionSpec(1, 0, 2, 0), ConnectionSpec(3, 0, 1, 1)]
        original = conns
        remove_connections_to(conns, 1)
        assert conns is original
        assert as_tuples(conns) == [(1, 0, 2, 0)]

    def test_remove_connections_between(self):
        conns = [ConnectionSpec(0, 0, 1, 0), ConnectionSpec(0, 0, 2, 0), ConnectionSpec(1, 0, 2, 0)]
        remove_connections_between(conns, 0, 1)
        assert as_tuples(conns) == [(0, 0, 2, 0), (1, 0, 2, 0)]

    def test_redirect_connections_from(self):
        conns = [ConnectionSpec(5, 0, 6, 0), ConnectionSpec(5, 1, 7, 1), ConnectionSpec(8, 0, 9, 0)]
        redirect_connections_from(conns, 5, 99)
        assert as_tuples(conns) == [(99, 0, 6, 0), (99, 1, 7, 1), (8, 0, 9, 0)]


class TestWireSpec:
    """Tests for WireSpec."""

    def test_from_dict(self):
        wire = WireSpec.from_dict({"from": "a", "output": "out", "to": "b", "input": "in"})
        assert wire == WireSpec("a", "out", "b", "in")

    def test_str(self):
        assert str(WireSpec("a", "out", "b", "in")) == "a.out -> b.in"

    @pytest.mark.parametrize(
        "data",
        [
            {"from": 1, "output": "out", "to": "b", "input": "in"},
            {"from": "a", "output": "", "to": "b", "input": "in"},
            {"from": "a", "output": "out", "to": "b"},
        ],
    )
    def test_from_dict_rejects_bad_fields(self, data):
        with pytest.raises(WiringError, match="field"):
            WireSpec.from_dict(data)


class TestApplyAudio:
    """Tests for audio buses."""

    def test_empty_wiring_is_noop(self):
        nodes, conns, modules = combine(("a", gain()))
        apply_wiring(nodes, conns, modules, [])
        assert len(nodes) == 1
        assert conns == []

    def test_simple_audio_wire(self):
        nodes, conns, modules = combine(("a", gain()), ("b", gain()))
        before = copy.deepcopy(nodes)

        apply_wiring(nodes, conns, modules, [WireSpec("a", "out", "b", "in")])

        assert len(nodes) == len(before) + 2
        assert nodes[: len(before)] == before
        assert nodes[2] == NodeSpec("throw~", args=["a__out"], x=50, y=10)
        assert nodes[3] == NodeSpec("catch~", args=["a__out"], x=50, y=40)
        assert as_tuples(conns) == [(0, 0, 2, 0), (3, 0, 1, 0)]

    def test_fan_out_shares_one_bus(self):
        nodes, conns, modules = combine(("a", gain()), ("b", gain()), ("c", gain()))

        apply_wiring(
            nodes,
            conns,
            modules,
            [WireSpec("a", "out", "b", "in"), WireSpec("a", "out", "c", "in")],
        )

        names = [n.name for n in nodes]
        assert names.count("throw~") == 1
        assert names.count("catch~") == 1
        assert len(nodes) == 5
        catch_idx = names.index("catch~")
        assert (catch_idx, 0, 1, 0) in as_tuples(conns)
        assert (catch_idx, 0, 2, 0) in as_tuples(conns)

    def test_output_terminal_disconnected(self):
        nodes, conns, modules = combine(("synth", synth()), ("fx", gain()))

        apply_wiring(nodes, conns, modules, [WireSpec("synth", "audio", "fx", "in")])

        # synth's dac~ (node 2) no longer receives anything
        assert all(c.sink != 2 for c in conns)
        assert (0, 0, 1, 0) in as_tuples(conns)
        assert (1, 0, 4, 0) in as_tuples(conns)

    def test_input_terminal_redirected_to_all_targets(self):
        nodes, conns, modules = combine(("synth", synth()), ("reverb", reverb()))
        adc = 3
        targets_before = sorted((c.outlet, c.sink, c.inlet) for c in conns if c.source == adc)
        assert len(targets_before) == 2

        apply_wiring(nodes, conns, modules, [WireSpec("synth", "audio", "reverb", "audio_in")])

        catch_idx = next(i for i, n in enumerate(nodes) if n.name == "catch~")
        assert all(c.source != adc for c in conns)
        targets_after = sorted((c.outlet, c.sink, c.inlet) for c in conns if c.source == catch_idx)
        assert targets_after == targets_before

    def test_mixer_inlet_redirect(self):
        nodes, conns, modules = combine(("synth", synth()), ("mixer", mixer()))
        inlet_abs = 3

        apply_wiring(nodes, conns, modules, [WireSpec("synth", "audio", "mixer", "ch1")])

        catch_idx = len(nodes) - 1
        assert nodes[catch_idx].name == "catch~"
        assert (catch_idx, 0, 5, 0) in as_tuples(conns)
        assert all(c.source != inlet_abs for c in conns)

    def test_fan_out_with_terminals(self):
        nodes, conns, modules = combine(("synth", synth()), ("reverb", reverb()), ("mixer", mixer()))
        count_before = len(conns)

        apply_wiring(
            nodes,
            conns,
            modules,
            [
                WireSpec("synth", "audio", "reverb", "audio_in"),
                WireSpec("synth", "audio", "mixer", "ch1"),
            ],
        )

        assert [n.name for n in nodes[-2:]] == ["throw~", "catch~"]
        catch_idx = len(nodes) - 1
        # dac~ feed removed twice over (2 cords), throw~ feed added once
        assert len(conns) == count_before - 2 + 1
        assert sum(1 for c in conns if c.source == catch_idx) == 3

    def test_unwired_modules_untouched(self):
        nodes, conns, modules = combine(("a", gain()), ("b", gain()), ("synth", synth()))

        apply_wiring(nodes, conns, modules, [WireSpec("a", "out", "b", "in")])

        assert (3, 0, 4, 0) in as_tuples(conns)
        assert (3, 0, 4, 1) in as_tuples(conns)

    def test_logs_bus_creation(self, caplog):
        nodes, conns, modules = combine(("a", gain()), ("b", gain()))
        with caplog.at_level(logging.DEBUG, logger="pdrack.wiring"):
            apply_wiring(nodes, conns, modules, [WireSpec("a", "out", "b", "in")])
        assert "created audio bus a__out" in caplog.text


class TestApplyControl:
    """Tests for control buses."""

    def test_clock_to_sequencer(self):
        nodes, conns, modules = combine(("clock", clock()), ("seq", sequencer()))
        metro_abs, float_abs = 1 + 3, 2 + 3
        assert (metro_abs, 0, float_abs, 0) in as_tuples(conns)

        apply_wiring(nodes, conns, modules, [WireSpec("clock", "beat", "seq", "clock_in")])

        send_idx, receive_idx = len(nodes) - 2, len(nodes) - 1
        assert nodes[send_idx] == NodeSpec("send", args=["clock__beat"], x=50, y=10)
        assert nodes[receive_idx] == NodeSpec("receive", args=["clock__beat"], x=50, y=40)
        tuples = as_tuples(conns)
        assert (metro_abs, 0, float_abs, 0) not in tuples
        assert (receive_idx, 0, float_abs, 0) in tuples
        assert (1, 0, send_idx, 0) in tuples
        # the clock's local print no longer receives ticks
        assert all(c.sink != 2 for c in conns)
        # loadbang -> metro inside the sequencer is left alone
        assert (3, 0, metro_abs, 0) in tuples

    def test_control_wires_do_not_share_bus(self):
        nodes, conns, modules = combine(("clock", clock()), ("seq1", sequencer()), ("seq2", sequencer()))
        before = len(nodes)

        apply_wiring(
            nodes,
            conns,
            modules,
            [WireSpec("clock", "beat", "seq1", "clock_in"), WireSpec("clock", "beat", "seq2", "clock_in")],
        )

        assert [n.name for n in nodes[before:]] == ["send", "receive", "send", "receive"]
        assert all(n.args == ["clock__beat"] for n in nodes[before:])

    def test_control_without_terminals(self):
        keys = (PatchSpec([NodeSpec("notein")]), [PortInfo("note", CONTROL, OUT, 0)])
        voice = (PatchSpec([NodeSpec("mtof")]), [PortInfo("note", CONTROL, IN, 0, port=0)])
        nodes, conns, modules = combine(("keys", keys), ("voice", voice))

        apply_wiring(nodes, conns, modules, [WireSpec("keys", "note", "voice", "note")])

        assert as_tuples(conns) == [(0, 0, 2, 0), (3, 0, 1, 0)]


class TestValidation:
    """Tests for the validation phase."""

    def assert_untouched(self, entries, wiring, error):
        nodes, conns, modules = combine(*entries)
        nodes_before = copy.deepcopy(nodes)
        conns_before = copy.deepcopy(conns)
        with pytest.raises(error) as excinfo:
            apply_wiring(nodes, conns, modules, wiring)
        assert nodes == nodes_before
        assert conns == conns_before
        return excinfo.value

    def test_unknown_module(self):
        err = self.assert_untouched(
            [("a", gain()), ("b", gain())],
            [WireSpec("a", "out", "nope", "in")],
            UnknownModuleError,
        )
        assert '"nope"' in str(err)
        assert "Available: a, b" in str(err)

    def test_unknown_source_module(self):
        self.assert_untouched([("a", gain())], [WireSpec("ghost", "out", "a", "in")], UnknownModuleError)

    def test_type_mismatch(self):
        err = self.assert_untouched(
            [("synth", synth()), ("seq", sequencer())],
            [WireSpec("synth", "audio", "seq", "clock_in")],
            SignalTypeMismatchError,
        )
        assert "audio" in str(err)
        assert "control" in str(err)

    def test_one_bad_wire_rejects_batch(self):
        self.assert_untouched(
            [("a", gain()), ("b", gain()), ("c", gain())],
            [
                WireSpec("a", "out", "b", "in"),
                WireSpec("b", "out", "c", "in"),
                WireSpec("c", "out", "missing", "in"),
            ],
            UnknownModuleError,
        )

    def test_duplicate_input(self):
        err = self.assert_untouched(
            [("a", gain()), ("b", gain()), ("c", gain())],
            [WireSpec("a", "out", "c", "in"), WireSpec("b", "out", "c", "in")],
            DuplicateInputError,
        )
        assert "c.in" in str(err)

    def test_self_wiring(self):
        self.assert_untouched([("a", gain())], [WireSpec("a", "out", "a", "in")], SelfWiringError)

    def test_unknown_output_port(self):
        err = self.assert_untouched(
            [("a", gain()), ("b", gain())],
            [WireSpec("a", "sound", "b", "in")],
            UnknownPortError,
        )
        assert err.available == ["out"]
        assert "Available outputs: out" in str(err)

    def test_unknown_input_port(self):
        err = self.assert_untouched(
            [("a", gain()), ("mixer", mixer())],
            [WireSpec("a", "out", "mixer", "ch9")],
            UnknownPortError,
        )
        assert err.available == ["ch1", "ch2"]

    def test_input_name_used_as_output(self):
        # "in" exists on b, but only as an input
        self.assert_untouched(
            [("a", gain()), ("b", gain())],
            [WireSpec("b", "in", "a", "in")],
            UnknownPortError,
        )

    def test_no_outputs_listed_as_none(self):
        empty = (PatchSpec([NodeSpec("bang")]), [])
        err = self.assert_untouched(
            [("empty", empty), ("b", gain())],
            [WireSpec("empty", "out", "b", "in")],
            UnknownPortError,
        )
        assert "(none)" in str(err)

    def test_duplicate_module_id(self):
        nodes, conns, _ = combine(("a", gain()), ("b", gain()))
        modules = [WiringModule("a", gain()[1], 0), WiringModule("a", gain()[1], 1)]
        with pytest.raises(DuplicateModuleError):
            apply_wiring(nodes, conns, modules, [WireSpec("a", "out", "a", "in")])
        assert len(nodes) == 2

    def test_errors_share_base_class(self):
        for error in (
            DuplicateModuleError,
            UnknownModuleError,
            SelfWiringError,
            UnknownPortError,
            SignalTypeMismatchError,
            DuplicateInputError,
        ):
            assert issubclass(error, WiringError)
        assert issubclass(WiringError, ValueError)

    def test_validate_wiring_resolves_ports(self):
        _, _, modules = combine(("synth", synth()), ("reverb", reverb()))
        plan = validate_wiring(modules, [WireSpec("synth", "audio", "reverb", "audio_in")])
        assert len(plan) == 1
        assert plan[0].src_port.name == "audio"
        assert plan[0].dst_port.io_node_index == 0
        assert plan[0].bus_name == "synth__audio"
