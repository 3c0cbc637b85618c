"""Collaborator contracts the analysis engine consumes.

The engine never talks to a live disassembler directly; every query goes
through one of these protocols.  :class:`~classrecon.bridge.program.InMemoryProgram`
implements all of them.
"""

from __future__ import annotations

from typing import (
    Any,
    ContextManager,
    List,
    Optional,
    Protocol,
    runtime_checkable,
)

from .types import (
    DataBlock,
    Function,
    HighFunction,
    Instruction,
    Reference,
    Symbol,
)


@runtime_checkable
class MemoryReader(Protocol):
    """Raw byte access to the loaded program image."""

    @property
    def pointer_size(self) -> int:
        ...

    def read_memory(self, address: int, size: int) -> bytes:
        """Read *size* bytes at *address*; raise ``ValueError`` if unmapped."""
        ...


@runtime_checkable
class Listing(Protocol):
    """Functions, data, references, instructions and symbols of a program."""

    def function_at(self, address: int) -> Optional[Function]:
        ...

    def function_containing(self, address: int) -> Optional[Function]:
        ...

    def functions_named(self, name: str) -> List[Function]:
        ...

    def data_containing(self, address: int) -> Optional[DataBlock]:
        ...

    def references_to(self, address: int) -> List[Reference]:
        ...

    def instruction_at(self, address: int) -> Optional[Instruction]:
        ...

    def instruction_after(self, address: int) -> Optional[Instruction]:
        ...

    def symbol_at(self, address: int) -> Optional[Symbol]:
        ...

    def address_of(self, name: str) -> Optional[int]:
        ...


@runtime_checkable
class TypeDescriptorReader(Protocol):
    """Answers whether an address holds a runtime type descriptor."""

    def is_type_descriptor_at(self, address: int) -> bool:
        ...

    def type_at(self, address: int) -> Any:
        ...


@runtime_checkable
class DecompilerReader(Protocol):
    """Produces the decompiled view of a function."""

    def high_function_of(self, function: Function) -> HighFunction:
        ...


@runtime_checkable
class DataflowResolver(Protocol):
    """Constant propagation: the compile-time value held by a register."""

    def constant_in_register_at(self, address: int, register: str) -> Optional[int]:
        ...


@runtime_checkable
class OverrideWriter(Protocol):
    """Handle yielded by :meth:`SignatureSink.transaction`."""

    def write_override(
        self,
        function: Function,
        call_address: int,
        signature: Any,
        name_root: str,
        category: str,
    ) -> None:
        ...


@runtime_checkable
class SignatureSink(Protocol):
    """Accepts call-site scoped signature overrides, all-or-nothing."""

    def has_override(self, call_address: int) -> bool:
        ...

    def transaction(self, description: str) -> ContextManager[OverrideWriter]:
        ...
