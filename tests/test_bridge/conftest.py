"""Bridge test fixtures — a mock image reader and a small populated program."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from classrecon.bridge import DataBlock, Function, InMemoryProgram, Instruction


def _byte_reader(blob: bytes, base: int = 0x1000):
    """``read_memory`` side effect serving *blob* mapped at *base*."""

    def read(address, size):
        start = address - base
        if start < 0 or start + size > len(blob):
            raise ValueError(f"Unmapped address 0x{address:x}")
        return blob[start:start + size]

    return read


@pytest.fixture()
def mock_memory():
    memory = MagicMock()
    memory.pointer_size = 8
    memory.read_memory = MagicMock()
    return memory


@pytest.fixture()
def byte_reader():
    return _byte_reader


@pytest.fixture()
def populated_program():
    """Two functions, a data block and a delay-slot instruction run."""
    prog = InMemoryProgram(pointer_size=8)
    prog.add_function(Function(address=0x1000, name="FUN_00001000", size=0x40))
    prog.add_function(Function(address=0x2000, name="main", size=0x20, is_default_name=False))
    prog.add_data(DataBlock(address=0x5000, length=0x18, name="vtable"))
    prog.add_instruction(Instruction(address=0x1010, delay_slot_depth=1))
    prog.add_instruction(Instruction(address=0x1014))
    prog.add_instruction(Instruction(address=0x1018))
    return prog
