"""Bridge-level types for the host program wrapper.

Provides enums and dataclasses that map disassembler/decompiler concepts
(functions, references, instructions, decompiled call sites) to clean
Python types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Optional, Tuple


class RefType(Enum):
    """Kind of a cross reference between two addresses."""

    DATA = auto()
    READ = auto()
    WRITE = auto()
    CALL = auto()
    COMPUTED_CALL = auto()
    INDIRECT_CALL = auto()
    JUMP = auto()

    @property
    def is_data(self) -> bool:
        return self in (RefType.DATA, RefType.READ, RefType.WRITE)

    @property
    def is_call(self) -> bool:
        return self in (RefType.CALL, RefType.COMPUTED_CALL, RefType.INDIRECT_CALL)

    @property
    def is_computed(self) -> bool:
        return self is RefType.COMPUTED_CALL

    @property
    def is_indirect(self) -> bool:
        return self is RefType.INDIRECT_CALL


@dataclass(frozen=True)
class Reference:
    """A cross reference ``from_address -> to_address``."""

    from_address: int
    to_address: int
    ref_type: RefType = RefType.DATA


@dataclass(frozen=True)
class Parameter:
    """A formal parameter of a function prototype.

    ``register`` is set when the parameter is passed in a register; stack
    parameters leave it ``None``.
    """

    name: str
    type_name: str
    register: Optional[str] = None

    @property
    def is_register_variable(self) -> bool:
        return self.register is not None


@dataclass(frozen=True)
class FunctionPrototype:
    """A recovered function prototype."""

    return_type: str
    parameters: Tuple[Parameter, ...] = ()

    def format(self, name: str) -> str:
        """Render as ``ret name(type name, ...)``."""
        params = ", ".join(f"{p.type_name} {p.name}" for p in self.parameters)
        return f"{self.return_type} {name}({params})"


@dataclass(frozen=True)
class Function:
    """A function known to the host program.

    ``thunk_target`` is the entry point of the function a thunk forwards
    to. ``is_default_name`` is true while the function still carries an
    auto-generated name (``FUN_xxx`` / ``sub_xxx``).
    """

    address: int
    name: str
    size: int = 1
    thunk_target: Optional[int] = None
    is_default_name: bool = True
    prototype: Optional[FunctionPrototype] = None

    @property
    def is_thunk(self) -> bool:
        return self.thunk_target is not None

    @property
    def end(self) -> int:
        return self.address + self.size

    def contains(self, address: int) -> bool:
        return self.address <= address < self.end

    @property
    def prototype_string(self) -> str:
        if self.prototype is None:
            return ""
        return self.prototype.format(self.name)


@dataclass(frozen=True)
class DataBlock:
    """A defined data item (e.g. a vtable array) in the listing."""

    address: int
    length: int
    name: Optional[str] = None

    @property
    def end(self) -> int:
        return self.address + self.length

    def contains(self, address: int) -> bool:
        return self.address <= address < self.end


@dataclass(frozen=True)
class Instruction:
    """A decoded instruction; ``delay_slot_depth`` > 0 on delay-slot ISAs."""

    address: int
    length: int = 4
    delay_slot_depth: int = 0


@dataclass(frozen=True)
class Symbol:
    """A named address."""

    name: str
    address: int


@dataclass(frozen=True)
class CallArgument:
    """One argument as seen at a decompiled call site.

    ``origin`` is the symbolic identity of the value (the decompiler's high
    variable), ``offset`` the pointer adjustment applied to it and
    ``field_offset`` an additional offset when the argument was formed
    through a field access.
    """

    origin: Optional[str] = None
    value: Optional[int] = None
    offset: int = 0
    field_offset: Optional[int] = None

    @property
    def effective_offset(self) -> int:
        if self.field_offset is not None:
            return self.offset + self.field_offset
        return self.offset


@dataclass(frozen=True)
class CallSite:
    """A single call inside a decompiled function body."""

    address: int
    target: int
    arguments: Tuple[CallArgument, ...] = ()

    @property
    def this_argument(self) -> Optional[CallArgument]:
        return self.arguments[0] if self.arguments else None


@dataclass(frozen=True)
class HighParam:
    """A formal parameter in the decompiler's high representation."""

    name: str
    origin: str


@dataclass(frozen=True)
class HighFunction:
    """Decompiler view of a function: its parameters and ordered calls."""

    function: int
    parameters: Tuple[HighParam, ...] = ()
    call_sites: Tuple[CallSite, ...] = field(default_factory=tuple)

    @property
    def first_parameter(self) -> Optional[HighParam]:
        return self.parameters[0] if self.parameters else None

    @property
    def this_origin(self) -> Optional[str]:
        param = self.first_parameter
        return param.origin if param is not None else None
