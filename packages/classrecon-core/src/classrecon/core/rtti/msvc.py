"""MSVC RTTI parser.

The object model is reached from a vftable: the pointer just before the
first slot is the Complete Object Locator (COL)::

    COL  { signature, offset, cdOffset, pTypeDescriptor, pClassDescriptor[, pSelf] }
    CHD  { signature, attributes, numBaseClasses, pBaseClassArray }
    BCA  pBaseClassDescriptor[numBaseClasses]      -- [0] is the class itself
    BCD  { pTypeDescriptor, numContainedBases, mdisp, pdisp, vdisp,
           attributes, pClassDescriptor }
    TD   { pVFTable, spare, name[] }

On x64 every ``p*`` field inside COL/CHD/BCA/BCD is a 32-bit RVA from the
image base; on x86 it is an absolute address.  The base class array lists
the whole hierarchy in pre-order, so direct bases are found by skipping
each entry's ``numContainedBases`` descendants.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from classrecon.bridge.host import Listing, MemoryReader
from classrecon.bridge.memory import read_int32, read_pointer, read_string, read_uint32
from classrecon.core.errors import StructuralError
from classrecon.core.rtti.names import MSVC_TYPE_PREFIXES, demangle_msvc_type
from classrecon.core.types.model import BaseSpec, ClassType, InheritanceKind, Vtable

logger = logging.getLogger(__name__)

TYPE_DESCRIPTOR = "TypeDescriptor"
COL_SIGNATURE_X86 = 0
COL_SIGNATURE_X64 = 1

BCD_NOTVISIBLE = 0x01
BCD_PRIVORPROTBASE = 0x04

MAX_BASES = 1024


class MsvcRttiParser:
    """Parses MSVC RTTI into :class:`ClassType` values.

    Type descriptors carry no hierarchy of their own; a descriptor becomes
    parseable once a locator (or a base class descriptor) naming its
    hierarchy has been read.
    """

    def __init__(
        self,
        memory: MemoryReader,
        listing: Listing,
        pointer_size: Optional[int] = None,
        image_base: int = 0,
    ):
        self.memory = memory
        self.listing = listing
        self.pointer_size = pointer_size or memory.pointer_size
        self.image_base = image_base
        self._hierarchies: Dict[int, int] = {}
        self._vftables: Dict[int, int] = {}

    # -- address helpers -----------------------------------------------------

    def _ref(self, address: int) -> int:
        """Read a COL/CHD/BCD reference field (RVA on x64)."""
        value = read_uint32(self.memory, address)
        if self.pointer_size == 8:
            return self.image_base + value
        return value

    # -- recognition ---------------------------------------------------------

    def type_name(self, address: int) -> Optional[str]:
        try:
            name = read_string(self.memory, address + 2 * self.pointer_size, max_length=1024)
        except ValueError:
            return None
        return name if name.startswith(MSVC_TYPE_PREFIXES) else None

    def is_type_descriptor_at(self, address: int) -> bool:
        return address in self._hierarchies and self.type_name(address) is not None

    # -- parsing -------------------------------------------------------------

    def parse_vftable(self, vftable: int) -> ClassType:
        """Parse the class owning the vftable at *vftable*."""
        try:
            col = read_pointer(self.memory, vftable - self.pointer_size)
        except ValueError as exc:
            raise StructuralError(f"No locator before vftable 0x{vftable:x}: {exc}") from exc
        return self.parse_locator(col, vftable=vftable)

    parse_root = parse_vftable

    def parse_locator(self, col: int, vftable: Optional[int] = None) -> ClassType:
        """Parse the class described by the Complete Object Locator at *col*."""
        try:
            signature = read_uint32(self.memory, col)
            expected = COL_SIGNATURE_X64 if self.pointer_size == 8 else COL_SIGNATURE_X86
            if signature != expected:
                raise StructuralError(f"Bad locator signature {signature} at 0x{col:x}")
            td = self._ref(col + 12)
            chd = self._ref(col + 16)
        except ValueError as exc:
            raise StructuralError(f"Unreadable locator at 0x{col:x}: {exc}") from exc
        if self.type_name(td) is None:
            raise StructuralError(f"Locator 0x{col:x} does not reference a type descriptor")
        self._hierarchies[td] = chd
        if vftable is not None:
            self._vftables[td] = vftable
        return self.parse(td)

    def parse(self, address: int) -> ClassType:
        chd = self._hierarchies.get(address)
        name = self.type_name(address)
        if chd is None or name is None:
            raise StructuralError(f"No class hierarchy known for type descriptor 0x{address:x}")
        try:
            bases = self._direct_bases(address, chd)
            vtable = self._vtable(address)
        except ValueError as exc:
            raise StructuralError(f"Malformed hierarchy at 0x{chd:x}: {exc}") from exc
        return ClassType(
            key=address,
            name=demangle_msvc_type(name),
            bases=bases,
            vtable=vtable,
            descriptor_type=TYPE_DESCRIPTOR,
        )

    def _direct_bases(self, td: int, chd: int) -> List[BaseSpec]:
        count = read_uint32(self.memory, chd + 8)
        if count == 0 or count > MAX_BASES:
            raise StructuralError(f"Implausible base class count {count} at 0x{chd:x}")
        array = self._ref(chd + 12)
        bcds = [self._ref(array + 4 * i) for i in range(count)]
        if self._ref(bcds[0]) != td:
            raise StructuralError(f"Base class array at 0x{array:x} does not start with its class")

        bases: List[BaseSpec] = []
        i = 1
        while i < count:
            bcd = bcds[i]
            base_td = self._ref(bcd)
            contained = read_uint32(self.memory, bcd + 4)
            mdisp = read_int32(self.memory, bcd + 8)
            pdisp = read_int32(self.memory, bcd + 12)
            attributes = read_uint32(self.memory, bcd + 20)
            base_chd = self._ref(bcd + 24)
            self._hierarchies.setdefault(base_td, base_chd)
            virtual = pdisp != -1
            bases.append(
                BaseSpec(
                    key=base_td,
                    kind=InheritanceKind.VIRTUAL if virtual else InheritanceKind.NON_VIRTUAL,
                    offset=None if virtual else mdisp,
                    public=not attributes & (BCD_NOTVISIBLE | BCD_PRIVORPROTBASE),
                )
            )
            i += contained + 1
        if i != count:
            raise StructuralError(f"Base class array at 0x{array:x} overruns its count")
        return bases

    def _vtable(self, td: int) -> Optional[Vtable]:
        vftable = self._vftables.get(td)
        if vftable is None:
            return None
        p = self.pointer_size
        slots: List[int] = []
        addr = vftable
        while True:
            try:
                target = read_pointer(self.memory, addr)
            except ValueError:
                break
            if self.listing.function_at(target) is None:
                break
            slots.append(target)
            addr += p
        data = self.listing.data_containing(vftable)
        return Vtable(
            owner=td,
            address=vftable,
            slots=slots,
            valid=bool(slots),
            data_address=data.address if data else vftable - p,
            data_length=data.length if data else p + len(slots) * p,
        )
