"""Tests for DynamicCastResolver — call-site signatures for __dynamic_cast."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from classrecon.bridge import (
    Function,
    FunctionPrototype,
    InMemoryProgram,
    Instruction,
    Parameter,
    RefType,
)
from classrecon.core.cancel import CancellationToken
from classrecon.core.dyncast import DynamicCastResolver, is_direct_call
from classrecon.core.errors import AbiMismatchError, AnalysisCancelled, UnsupportedAbiError
from classrecon.core.types.config import DynamicCastConfig
from classrecon.core.types.results import DataTypeRef

ENTRY = 0x9500
CALLER = 0xA000
SITE = 0xA010


def _prototype(third_register="RDX", params=None):
    if params is None:
        params = (
            Parameter("src_ptr", "void *", "RDI"),
            Parameter("src_type", "__class_type_info *", "RSI"),
            Parameter("dst_type", "__class_type_info *", third_register),
            Parameter("src2dst", "ptrdiff_t", "RCX"),
        )
    return FunctionPrototype(return_type="void *", parameters=tuple(params))


@pytest.fixture()
def cast_program():
    prog = InMemoryProgram(pointer_size=8)
    prog.add_function(Function(address=ENTRY, name="__dynamic_cast", size=0x40, prototype=_prototype()))
    prog.add_function(Function(address=CALLER, name="FUN_0000a000", size=0x100))
    prog.add_reference(SITE, ENTRY, RefType.CALL)
    prog.set_register_constant(SITE, "RSI", 0x100)
    prog.set_register_constant(SITE, "RDX", 0x300)
    return prog


def _resolver(store, prog, **kwargs):
    return DynamicCastResolver(store, prog, prog, prog, **kwargs)


class TestOverrides:
    def test_override_emitted(self, mi_store, cast_program):
        result = _resolver(mi_store, cast_program).run()

        assert result.entry_point == ENTRY
        assert len(result.overrides) == 1
        record = result.overrides[0]
        assert (record.function, record.call_address) == (CALLER, SITE)
        assert (record.source, record.destination) == (0x100, 0x300)

        signature = record.signature
        assert signature.name == "tmpname"
        assert signature.parameters[0].data_type == DataTypeRef(name="A", pointer_depth=1)
        assert str(signature.parameters[1].data_type) == "__class_type_info *"
        assert str(signature.parameters[2].data_type) == "__class_type_info *"
        assert signature.parameters[3].name == "src2dst"
        assert str(signature.parameters[3].data_type) == "ptrdiff_t"
        assert signature.return_type == DataTypeRef(name="C", pointer_depth=1)

        stored = cast_program.override_at(SITE)
        assert stored.signature == signature
        assert stored.name_root == "prt"
        assert stored.category == "/auto_proto"

    def test_signature_text(self, mi_store, cast_program):
        record = _resolver(mi_store, cast_program).run().overrides[0]
        assert record.signature.format() == (
            "C * tmpname(A *, __class_type_info *, __class_type_info *, ptrdiff_t src2dst)"
        )

    def test_unresolved_operand_is_skipped_silently(self, mi_store, cast_program):
        cast_program.set_register_constant(SITE, "RDX", 0xDEAD)
        result = _resolver(mi_store, cast_program).run()
        assert result.overrides == []
        assert [s.call_address for s in result.skipped] == [SITE]
        assert cast_program.overrides == {}

    def test_missing_constant_is_skipped(self, mi_store):
        prog = InMemoryProgram(pointer_size=8)
        prog.add_function(Function(address=ENTRY, name="__dynamic_cast", size=0x40, prototype=_prototype()))
        prog.add_function(Function(address=CALLER, name="FUN_0000a000", size=0x100))
        prog.add_reference(SITE, ENTRY, RefType.CALL)
        prog.set_register_constant(SITE, "RSI", 0x100)
        result = _resolver(mi_store, prog).run()
        assert result.overrides == []
        assert len(result.skipped) == 1

    def test_existing_override_skipped(self, mi_store, cast_program):
        cast_program.mark_manual_override(SITE)
        result = _resolver(mi_store, cast_program).run()
        assert result.overrides == []
        assert "override" in result.skipped[0].reason

    def test_computed_calls_ignored(self, mi_store, cast_program):
        cast_program.add_reference(0xA020, ENTRY, RefType.COMPUTED_CALL)
        cast_program.add_reference(0xA030, ENTRY, RefType.DATA)
        result = _resolver(mi_store, cast_program).run()
        assert [r.call_address for r in result.overrides] == [SITE]
        assert result.skipped == []

    def test_delay_slot_retry(self, mi_store):
        prog = InMemoryProgram(pointer_size=4)
        prog.add_function(Function(address=ENTRY, name="__dynamic_cast", size=0x40, prototype=_prototype("a2")))
        prog.add_function(Function(address=CALLER, name="FUN_0000a000", size=0x100))
        prog.add_reference(SITE, ENTRY, RefType.CALL)
        prog.add_instruction(Instruction(address=SITE, delay_slot_depth=1))
        prog.add_instruction(Instruction(address=SITE + 4))
        prog.add_instruction(Instruction(address=SITE + 8))
        prog.set_register_constant(SITE + 8, "RSI", 0x100)
        prog.set_register_constant(SITE + 8, "a2", 0x300)

        resolver = _resolver(mi_store, prog)
        result = resolver.run()

        assert resolver.delay_address(SITE) == SITE + 8
        assert [r.call_address for r in result.overrides] == [SITE]

    def test_no_delay_slot_means_no_retry(self, mi_store, cast_program):
        cast_program.add_instruction(Instruction(address=SITE))
        assert _resolver(mi_store, cast_program).delay_address(SITE) == SITE

    def test_failed_transaction_rolls_back(self, mi_store, cast_program):
        with patch.object(
            DynamicCastResolver, "signature_for", side_effect=RuntimeError("type manager refused")
        ):
            result = _resolver(mi_store, cast_program).run()
        assert result.overrides == []
        assert [f.call_address for f in result.failed] == [SITE]
        assert cast_program.overrides == {}

    def test_cancellation_checked_per_site(self, mi_store, cast_program):
        cast_program.add_reference(0xA040, ENTRY, RefType.CALL)
        token = CancellationToken()
        token.cancel()
        resolver = _resolver(mi_store, cast_program)
        with pytest.raises(AnalysisCancelled):
            resolver.run(token)
        assert len(resolver.result.overrides) == 1


class TestEntryPoint:
    def test_missing_entry_point_returns_empty(self, mi_store):
        prog = InMemoryProgram(pointer_size=8)
        result = _resolver(mi_store, prog).run()
        assert result.entry_point is None
        assert result.overrides == []

    def test_duplicate_entry_points(self, mi_store, cast_program):
        cast_program.add_function(Function(address=0x9600, name="__dynamic_cast", prototype=_prototype()))
        with pytest.raises(AbiMismatchError, match="More than one"):
            _resolver(mi_store, cast_program).run()

    def test_signature_mismatch(self, mi_store, cast_program):
        params = (
            Parameter("obj", "void *", "RDI"),
            Parameter("src_type", "__class_type_info *", "RSI"),
            Parameter("dst_type", "__class_type_info *", "RDX"),
            Parameter("src2dst", "ptrdiff_t", "RCX"),
        )
        cast_program.add_function(
            Function(address=ENTRY, name="__dynamic_cast", size=0x40, prototype=_prototype(params=params))
        )
        with pytest.raises(AbiMismatchError, match="cxxabi"):
            _resolver(mi_store, cast_program).run()

    def test_parameter_count(self, mi_store, cast_program):
        params = (
            Parameter("src_ptr", "void *", "RDI"),
            Parameter("src_type", "__class_type_info *", "RSI"),
            Parameter("dst_type", "__class_type_info *", "RDX"),
        )
        proto = _prototype(params=params)
        cast_program.add_function(
            Function(address=ENTRY, name="__dynamic_cast", size=0x40, prototype=proto)
        )
        config = DynamicCastConfig(formal_signature=proto.format("__dynamic_cast"))
        with pytest.raises(AbiMismatchError, match="number"):
            _resolver(mi_store, cast_program, config=config).run()

    def test_stack_passed_parameter_unsupported(self, mi_store, cast_program):
        cast_program.add_function(
            Function(address=ENTRY, name="__dynamic_cast", size=0x40, prototype=_prototype(third_register=None))
        )
        with pytest.raises(UnsupportedAbiError, match="registers"):
            _resolver(mi_store, cast_program).run()

    def test_is_direct_call(self):
        from classrecon.bridge import Reference

        assert is_direct_call(Reference(1, 2, RefType.CALL))
        assert not is_direct_call(Reference(1, 2, RefType.INDIRECT_CALL))
        assert not is_direct_call(Reference(1, 2, RefType.DATA))
