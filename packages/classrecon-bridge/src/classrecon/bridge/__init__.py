"""classrecon.bridge -- host program contracts and an in-memory host.

This package defines what the class-model engine needs from a
disassembler/decompiler (listing, memory, decompiled call sites, constant
propagation, signature overrides) as plain protocols, plus
:class:`InMemoryProgram`, a dictionary-backed implementation of all of them.

Example::

    from classrecon.bridge import Function, InMemoryProgram

    program = InMemoryProgram(pointer_size=8)
    program.add_function(Function(address=0x1000, name="FUN_00001000", size=0x40))
    program.function_containing(0x1010)
"""

from __future__ import annotations

from .host import (
    DataflowResolver,
    DecompilerReader,
    Listing,
    MemoryReader,
    OverrideWriter,
    SignatureSink,
    TypeDescriptorReader,
)
from .memory import (
    pack_int32,
    pack_pointer,
    pack_uint32,
    read_int32,
    read_pointer,
    read_pointers,
    read_signed_pointer,
    read_string,
    read_uint8,
    read_uint16,
    read_uint32,
    read_uint64,
)
from .program import InMemoryProgram, StoredOverride
from .types import (
    CallArgument,
    CallSite,
    DataBlock,
    Function,
    FunctionPrototype,
    HighFunction,
    HighParam,
    Instruction,
    Parameter,
    Reference,
    RefType,
    Symbol,
)

__all__ = [
    # Host
    "InMemoryProgram",
    "StoredOverride",
    # Protocols
    "MemoryReader",
    "Listing",
    "TypeDescriptorReader",
    "DecompilerReader",
    "DataflowResolver",
    "SignatureSink",
    "OverrideWriter",
    # Types
    "RefType",
    "Reference",
    "Parameter",
    "FunctionPrototype",
    "Function",
    "DataBlock",
    "Instruction",
    "Symbol",
    "CallArgument",
    "CallSite",
    "HighParam",
    "HighFunction",
    # Memory utilities
    "read_string",
    "read_pointer",
    "read_signed_pointer",
    "read_pointers",
    "read_uint8",
    "read_uint16",
    "read_uint32",
    "read_int32",
    "read_uint64",
    "pack_pointer",
    "pack_uint32",
    "pack_int32",
]
