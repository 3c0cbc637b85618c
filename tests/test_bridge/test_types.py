"""Tests for bridge-level types."""

from __future__ import annotations

import dataclasses

import pytest

from classrecon.bridge.types import (
    CallArgument,
    CallSite,
    DataBlock,
    Function,
    FunctionPrototype,
    HighFunction,
    HighParam,
    Parameter,
    RefType,
)


class TestRefType:
    @pytest.mark.parametrize("ref_type", [RefType.DATA, RefType.READ, RefType.WRITE])
    def test_data(self, ref_type):
        assert ref_type.is_data
        assert not ref_type.is_call

    def test_calls(self):
        assert RefType.CALL.is_call
        assert not RefType.CALL.is_computed
        assert RefType.COMPUTED_CALL.is_computed
        assert RefType.INDIRECT_CALL.is_indirect
        assert not RefType.JUMP.is_call


class TestFunction:
    def test_range(self):
        func = Function(address=0x100, name="f", size=0x10)
        assert func.end == 0x110
        assert func.contains(0x10F)
        assert not func.contains(0x110)

    def test_thunk(self):
        assert Function(address=0x100, name="t", thunk_target=0x200).is_thunk
        assert not Function(address=0x100, name="f").is_thunk

    def test_prototype_string(self):
        proto = FunctionPrototype(
            return_type="void *",
            parameters=(
                Parameter(name="src_ptr", type_name="void *", register="RDI"),
                Parameter(name="src2dst", type_name="ptrdiff_t"),
            ),
        )
        func = Function(address=0x100, name="__dynamic_cast", prototype=proto)
        assert func.prototype_string == "void * __dynamic_cast(void * src_ptr, ptrdiff_t src2dst)"
        assert proto.parameters[0].is_register_variable
        assert not proto.parameters[1].is_register_variable
        assert Function(address=0x100, name="f").prototype_string == ""

    def test_frozen(self):
        func = Function(address=0x100, name="f")
        with pytest.raises(dataclasses.FrozenInstanceError):
            func.name = "g"


class TestDataBlock:
    def test_contains(self):
        block = DataBlock(address=0x10, length=8)
        assert block.contains(0x10)
        assert block.contains(0x17)
        assert not block.contains(0x18)


class TestCallSites:
    def test_effective_offset(self):
        assert CallArgument(offset=8).effective_offset == 8
        assert CallArgument(offset=8, field_offset=8).effective_offset == 16

    def test_this_argument(self):
        arg = CallArgument(origin="this_1")
        assert CallSite(address=0x10, target=0x20, arguments=(arg,)).this_argument is arg
        assert CallSite(address=0x10, target=0x20).this_argument is None

    def test_this_origin(self):
        high = HighFunction(function=0x10, parameters=(HighParam(name="this", origin="v1"),))
        assert high.this_origin == "v1"
        assert HighFunction(function=0x10).this_origin is None
