"""In-memory program host.

:class:`InMemoryProgram` implements every collaborator protocol of
:mod:`classrecon.bridge.host` over plain Python containers.  It is what the
test-suite analyses, and what callers use when they export a program
database from a disassembler rather than driving one live.
"""

from __future__ import annotations

import bisect
import contextlib
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from .memory import pack_pointer
from .types import (
    DataBlock,
    Function,
    HighFunction,
    Instruction,
    Reference,
    RefType,
    Symbol,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredOverride:
    """A committed call-site signature override."""

    function: int
    call_address: int
    signature: Any
    name_root: str
    category: str


class _OverrideTransaction:
    """Collects overrides; they only land in the program on commit."""

    def __init__(self, program: InMemoryProgram, description: str) -> None:
        self.program = program
        self.description = description
        self.staged: List[StoredOverride] = []

    def write_override(
        self,
        function: Function,
        call_address: int,
        signature: Any,
        name_root: str,
        category: str,
    ) -> None:
        self.staged.append(
            StoredOverride(
                function=function.address,
                call_address=call_address,
                signature=signature,
                name_root=name_root,
                category=category,
            )
        )


class InMemoryProgram:
    """A complete program host backed by dictionaries.

    Memory is sparse: only written bytes are mapped, and reading an
    unmapped byte raises ``ValueError`` just as a real image read would.
    """

    def __init__(self, pointer_size: int = 8) -> None:
        if pointer_size not in (4, 8):
            raise ValueError(f"Unsupported pointer size: {pointer_size}")
        self._pointer_size = pointer_size
        self._bytes: Dict[int, int] = {}
        self._functions: Dict[int, Function] = {}
        self._function_starts: List[int] = []
        self._data: Dict[int, DataBlock] = {}
        self._data_starts: List[int] = []
        self._refs_to: Dict[int, List[Reference]] = {}
        self._instructions: Dict[int, Instruction] = {}
        self._instruction_starts: List[int] = []
        self._symbols_by_addr: Dict[int, Symbol] = {}
        self._symbols_by_name: Dict[str, int] = {}
        self._high: Dict[int, Union[HighFunction, Exception]] = {}
        self._constants: Dict[Tuple[int, str], int] = {}
        self._overrides: Dict[int, StoredOverride] = {}
        self._manual_overrides: set[int] = set()

    # -- memory ------------------------------------------------------------

    @property
    def pointer_size(self) -> int:
        return self._pointer_size

    def write_bytes(self, address: int, data: bytes) -> None:
        for i, b in enumerate(data):
            self._bytes[address + i] = b

    def write_pointer(self, address: int, value: int) -> None:
        self.write_bytes(address, pack_pointer(value, self._pointer_size))

    def write_string(self, address: int, text: str) -> None:
        self.write_bytes(address, text.encode("utf-8") + b"\x00")

    def read_memory(self, address: int, size: int) -> bytes:
        out = bytearray()
        for a in range(address, address + size):
            try:
                out.append(self._bytes[a])
            except KeyError:
                raise ValueError(f"Unmapped address 0x{a:x}") from None
        return bytes(out)

    # -- functions ---------------------------------------------------------

    def add_function(self, function: Function) -> Function:
        if function.address not in self._functions:
            bisect.insort(self._function_starts, function.address)
        self._functions[function.address] = function
        return function

    def function_at(self, address: int) -> Optional[Function]:
        return self._functions.get(address)

    def function_containing(self, address: int) -> Optional[Function]:
        idx = bisect.bisect_right(self._function_starts, address) - 1
        if idx < 0:
            return None
        func = self._functions[self._function_starts[idx]]
        return func if func.contains(address) else None

    def functions_named(self, name: str) -> List[Function]:
        return [f for f in self._functions.values() if f.name == name]

    @property
    def functions(self) -> List[Function]:
        return [self._functions[a] for a in self._function_starts]

    # -- data --------------------------------------------------------------

    def add_data(self, block: DataBlock) -> DataBlock:
        if block.address not in self._data:
            bisect.insort(self._data_starts, block.address)
        self._data[block.address] = block
        return block

    def remove_data(self, address: int) -> None:
        if self._data.pop(address, None) is not None:
            self._data_starts.remove(address)

    def data_containing(self, address: int) -> Optional[DataBlock]:
        idx = bisect.bisect_right(self._data_starts, address) - 1
        if idx < 0:
            return None
        block = self._data[self._data_starts[idx]]
        return block if block.contains(address) else None

    # -- references --------------------------------------------------------

    def add_reference(
        self, from_address: int, to_address: int, ref_type: RefType = RefType.DATA
    ) -> Reference:
        ref = Reference(from_address=from_address, to_address=to_address, ref_type=ref_type)
        self._refs_to.setdefault(to_address, []).append(ref)
        return ref

    def references_to(self, address: int) -> List[Reference]:
        return list(self._refs_to.get(address, ()))

    # -- instructions ------------------------------------------------------

    def add_instruction(self, instruction: Instruction) -> Instruction:
        if instruction.address not in self._instructions:
            bisect.insort(self._instruction_starts, instruction.address)
        self._instructions[instruction.address] = instruction
        return instruction

    def instruction_at(self, address: int) -> Optional[Instruction]:
        return self._instructions.get(address)

    def instruction_after(self, address: int) -> Optional[Instruction]:
        idx = bisect.bisect_right(self._instruction_starts, address)
        if idx >= len(self._instruction_starts):
            return None
        return self._instructions[self._instruction_starts[idx]]

    # -- symbols -----------------------------------------------------------

    def add_symbol(self, name: str, address: int) -> Symbol:
        sym = Symbol(name=name, address=address)
        self._symbols_by_addr[address] = sym
        self._symbols_by_name[name] = address
        return sym

    def symbol_at(self, address: int) -> Optional[Symbol]:
        return self._symbols_by_addr.get(address)

    def address_of(self, name: str) -> Optional[int]:
        return self._symbols_by_name.get(name)

    # -- decompiler --------------------------------------------------------

    def set_high_function(
        self, function: int, high: Union[HighFunction, Exception]
    ) -> None:
        """Register the decompiled view of *function*, or the error it raises."""
        self._high[function] = high

    def high_function_of(self, function: Function) -> HighFunction:
        high = self._high.get(function.address)
        if high is None:
            raise LookupError(f"No decompilation for {function.name} at 0x{function.address:x}")
        if isinstance(high, Exception):
            raise high
        return high

    # -- dataflow ----------------------------------------------------------

    def set_register_constant(self, address: int, register: str, value: int) -> None:
        self._constants[(address, register)] = value

    def constant_in_register_at(self, address: int, register: str) -> Optional[int]:
        return self._constants.get((address, register))

    # -- signature overrides -----------------------------------------------

    def mark_manual_override(self, call_address: int) -> None:
        """Flag a call site as carrying a user-supplied override."""
        self._manual_overrides.add(call_address)

    def has_override(self, call_address: int) -> bool:
        return call_address in self._manual_overrides or call_address in self._overrides

    def override_at(self, call_address: int) -> Optional[StoredOverride]:
        return self._overrides.get(call_address)

    @property
    def overrides(self) -> Dict[int, StoredOverride]:
        return dict(self._overrides)

    @contextlib.contextmanager
    def transaction(self, description: str) -> Iterator[_OverrideTransaction]:
        """Stage overrides; commit them only if the block exits cleanly."""
        tx = _OverrideTransaction(self, description)
        try:
            yield tx
        except BaseException:
            logger.debug("Rolling back transaction %r (%d staged)", description, len(tx.staged))
            raise
        for record in tx.staged:
            self._overrides[record.call_address] = record
