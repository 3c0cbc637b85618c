"""Itanium C++ ABI ``type_info`` graph parser.

A class ``type_info`` is one of three ``__cxxabiv1`` records, told apart by
the vtable its vptr points into::

    __class_type_info      { vptr, name }
    __si_class_type_info   { vptr, name, base_type }
    __vmi_class_type_info  { vptr, name, flags:u32, base_count:u32,
                             { base_type, offset_flags:long }[base_count] }

``offset_flags`` packs the virtual bit (0x1), the public bit (0x2) and,
above bit 8, the base offset (or, for virtual bases, the vtable offset of
the virtual-base displacement).
"""

from __future__ import annotations

import logging
from typing import List, Optional

from classrecon.bridge.host import Listing, MemoryReader
from classrecon.bridge.memory import (
    read_pointer,
    read_signed_pointer,
    read_string,
    read_uint32,
)
from classrecon.core.errors import StructuralError
from classrecon.core.rtti.names import demangle_itanium_type, itanium_vtable_symbol
from classrecon.core.types.model import BaseSpec, ClassType, InheritanceKind, Vtable

logger = logging.getLogger(__name__)

CLASS_TYPE_INFO = "__class_type_info"
SI_CLASS_TYPE_INFO = "__si_class_type_info"
VMI_CLASS_TYPE_INFO = "__vmi_class_type_info"

TYPE_INFO_VTABLES = {
    "_ZTVN10__cxxabiv117__class_type_infoE": CLASS_TYPE_INFO,
    "_ZTVN10__cxxabiv120__si_class_type_infoE": SI_CLASS_TYPE_INFO,
    "_ZTVN10__cxxabiv121__vmi_class_type_infoE": VMI_CLASS_TYPE_INFO,
}

VIRTUAL_MASK = 0x1
PUBLIC_MASK = 0x2
OFFSET_SHIFT = 8

# Sanity bound on vmi base_count.
MAX_BASES = 512


class ItaniumRttiParser:
    """Parses Itanium ``type_info`` records into :class:`ClassType` values."""

    def __init__(self, memory: MemoryReader, listing: Listing, pointer_size: Optional[int] = None):
        self.memory = memory
        self.listing = listing
        self.pointer_size = pointer_size or memory.pointer_size

    # -- recognition ---------------------------------------------------------

    def kind_at(self, address: int) -> Optional[str]:
        """The ``__cxxabiv1`` record kind at *address*, or ``None``."""
        try:
            vptr = read_pointer(self.memory, address)
        except ValueError:
            return None
        sym = self.listing.symbol_at(vptr - 2 * self.pointer_size)
        if sym is None:
            return None
        return TYPE_INFO_VTABLES.get(sym.name)

    def is_type_descriptor_at(self, address: int) -> bool:
        return self.kind_at(address) is not None

    # -- parsing -------------------------------------------------------------

    def mangled_name(self, address: int) -> str:
        name_ptr = read_pointer(self.memory, address + self.pointer_size)
        return read_string(self.memory, name_ptr, max_length=1024)

    def parse(self, address: int) -> ClassType:
        kind = self.kind_at(address)
        if kind is None:
            raise StructuralError(f"No type_info at 0x{address:x}")
        try:
            mangled = self.mangled_name(address)
            if kind == SI_CLASS_TYPE_INFO:
                bases = [self._si_base(address)]
            elif kind == VMI_CLASS_TYPE_INFO:
                bases = self._vmi_bases(address)
            else:
                bases = []
            vtable = self.find_vtable(address, mangled)
        except ValueError as exc:
            raise StructuralError(f"Malformed {kind} at 0x{address:x}: {exc}") from exc
        return ClassType(
            key=address,
            name=demangle_itanium_type(mangled),
            bases=bases,
            vtable=vtable,
            descriptor_type=kind,
        )

    parse_root = parse

    def _si_base(self, address: int) -> BaseSpec:
        base = read_pointer(self.memory, address + 2 * self.pointer_size)
        return BaseSpec(key=base, kind=InheritanceKind.NON_VIRTUAL, offset=0)

    def _vmi_bases(self, address: int) -> List[BaseSpec]:
        p = self.pointer_size
        count = read_uint32(self.memory, address + 2 * p + 4)
        if count > MAX_BASES:
            raise StructuralError(f"Implausible base count {count} at 0x{address:x}")
        array = address + 2 * p + 8
        bases: List[BaseSpec] = []
        for i in range(count):
            entry = array + i * 2 * p
            base = read_pointer(self.memory, entry)
            offset_flags = read_signed_pointer(self.memory, entry + p)
            virtual = bool(offset_flags & VIRTUAL_MASK)
            bases.append(
                BaseSpec(
                    key=base,
                    kind=InheritanceKind.VIRTUAL if virtual else InheritanceKind.NON_VIRTUAL,
                    offset=None if virtual else offset_flags >> OFFSET_SHIFT,
                    public=bool(offset_flags & PUBLIC_MASK),
                )
            )
        return bases

    # -- vtables -------------------------------------------------------------

    def find_vtable(self, address: int, mangled: str) -> Optional[Vtable]:
        """Locate the class's primary vtable through its ``_ZTV`` symbol."""
        vtable_addr = self.listing.address_of(itanium_vtable_symbol(mangled))
        if vtable_addr is None:
            return None
        p = self.pointer_size
        try:
            if read_pointer(self.memory, vtable_addr + p) != address:
                logger.debug("Vtable at 0x%x does not point back to 0x%x", vtable_addr, address)
                return None
        except ValueError:
            return None
        first = vtable_addr + 2 * p
        slots = self.read_slots(first)
        data = self.listing.data_containing(vtable_addr)
        return Vtable(
            owner=address,
            address=first,
            slots=slots,
            valid=True,
            data_address=data.address if data else vtable_addr,
            data_length=data.length if data else 2 * p + len(slots) * p,
        )

    def read_slots(self, first: int) -> List[int]:
        slots: List[int] = []
        addr = first
        while True:
            try:
                target = read_pointer(self.memory, addr)
            except ValueError:
                break
            if self.listing.function_at(target) is None:
                break
            slots.append(target)
            addr += self.pointer_size
        return slots
