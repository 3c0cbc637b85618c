"""Core test fixtures — synthetic RTTI images for both vendors."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from classrecon.bridge import DataBlock, Function, InMemoryProgram
from classrecon.bridge.memory import pack_int32, pack_uint32


# ---------------------------------------------------------------------------
# Itanium (x86-64)
# ---------------------------------------------------------------------------

CLASS_TI_VTABLE = 0x1000
SI_TI_VTABLE = 0x1100
VMI_TI_VTABLE = 0x1200


def _type_info(prog, address, vtable, name_address, mangled):
    prog.write_pointer(address, vtable + 16)
    prog.write_pointer(address + 8, name_address)
    prog.write_string(name_address, mangled)


@pytest.fixture()
def itanium_image():
    """Type infos for ``A``, ``B``, ``C : A`` (si), ``D : A, B`` (vmi), ``E : virtual A``.

    ``C`` has a vtable with two slots.
    """
    prog = InMemoryProgram(pointer_size=8)
    prog.add_symbol("_ZTVN10__cxxabiv117__class_type_infoE", CLASS_TI_VTABLE)
    prog.add_symbol("_ZTVN10__cxxabiv120__si_class_type_infoE", SI_TI_VTABLE)
    prog.add_symbol("_ZTVN10__cxxabiv121__vmi_class_type_infoE", VMI_TI_VTABLE)

    a, b, c, d, e = 0x2000, 0x2100, 0x2200, 0x2300, 0x2400
    _type_info(prog, a, CLASS_TI_VTABLE, 0x3000, "1A")
    _type_info(prog, b, CLASS_TI_VTABLE, 0x3010, "1B")

    _type_info(prog, c, SI_TI_VTABLE, 0x3020, "1C")
    prog.write_pointer(c + 16, a)

    _type_info(prog, d, VMI_TI_VTABLE, 0x3030, "N2ns1DE")
    prog.write_bytes(d + 16, pack_uint32(0))  # flags
    prog.write_bytes(d + 20, pack_uint32(2))  # base_count
    prog.write_pointer(d + 24, a)
    prog.write_pointer(d + 32, (0 << 8) | 0x2)
    prog.write_pointer(d + 40, b)
    prog.write_pointer(d + 48, (16 << 8) | 0x2)

    _type_info(prog, e, VMI_TI_VTABLE, 0x3040, "1E")
    prog.write_bytes(e + 16, pack_uint32(0))
    prog.write_bytes(e + 20, pack_uint32(1))
    prog.write_pointer(e + 24, a)
    prog.write_pointer(e + 32, (-24 << 8) | 0x3)

    # vtable for C: offset-to-top, type_info, two slots, terminator
    prog.add_symbol("_ZTV1C", 0x4000)
    prog.write_pointer(0x4000, 0)
    prog.write_pointer(0x4008, c)
    prog.write_pointer(0x4010, 0x6000)
    prog.write_pointer(0x4018, 0x6100)
    prog.write_pointer(0x4020, 0)
    prog.add_data(DataBlock(address=0x4000, length=0x20, name="_ZTV1C"))
    prog.add_function(Function(address=0x6000, name="FUN_00006000", size=0x80))
    prog.add_function(Function(address=0x6100, name="FUN_00006100", size=0x80))

    return SimpleNamespace(program=prog, a=a, b=b, c=c, d=d, e=e, vtable=0x4000)


# ---------------------------------------------------------------------------
# MSVC (x64, RVAs from the image base)
# ---------------------------------------------------------------------------

IMAGE_BASE = 0x140000000


def _rva(address):
    return pack_uint32(address - IMAGE_BASE)


def _type_descriptor(prog, address, name):
    prog.write_pointer(address, 0)
    prog.write_pointer(address + 8, 0)
    prog.write_string(address + 16, name)


def _bcd(prog, address, td, contained, mdisp, pdisp, chd, attributes=0):
    prog.write_bytes(address, _rva(td))
    prog.write_bytes(address + 4, pack_uint32(contained))
    prog.write_bytes(address + 8, pack_int32(mdisp))
    prog.write_bytes(address + 12, pack_int32(pdisp))
    prog.write_bytes(address + 16, pack_int32(0))
    prog.write_bytes(address + 20, pack_uint32(attributes))
    prog.write_bytes(address + 24, _rva(chd))


def _chd(prog, address, bcds, array):
    prog.write_bytes(address, pack_uint32(0))
    prog.write_bytes(address + 4, pack_uint32(1 if len(bcds) > 1 else 0))
    prog.write_bytes(address + 8, pack_uint32(len(bcds)))
    prog.write_bytes(address + 12, _rva(array))
    for i, bcd in enumerate(bcds):
        prog.write_bytes(array + 4 * i, _rva(bcd))


@pytest.fixture()
def msvc_image():
    """``C : A, B`` with ``B`` at offset 16, reachable from C's vftable."""
    prog = InMemoryProgram(pointer_size=8)
    ib = IMAGE_BASE
    td_a, td_b, td_c = ib + 0x3000, ib + 0x3040, ib + 0x3080
    _type_descriptor(prog, td_a, ".?AVA@@")
    _type_descriptor(prog, td_b, ".?AVB@@")
    _type_descriptor(prog, td_c, ".?AVC@ns@@")

    bcd_c, bcd_a, bcd_b = ib + 0x4000, ib + 0x4020, ib + 0x4040
    chd_c, chd_a, chd_b = ib + 0x4100, ib + 0x4140, ib + 0x4180
    _bcd(prog, bcd_c, td_c, 2, 0, -1, chd_c)
    _bcd(prog, bcd_a, td_a, 0, 0, -1, chd_a)
    _bcd(prog, bcd_b, td_b, 0, 16, -1, chd_b)
    _chd(prog, chd_c, [bcd_c, bcd_a, bcd_b], ib + 0x4200)
    _chd(prog, chd_a, [bcd_a], ib + 0x4220)
    _chd(prog, chd_b, [bcd_b], ib + 0x4230)

    col = ib + 0x5000
    prog.write_bytes(col, pack_uint32(1))
    prog.write_bytes(col + 4, pack_uint32(0))
    prog.write_bytes(col + 8, pack_uint32(0))
    prog.write_bytes(col + 12, _rva(td_c))
    prog.write_bytes(col + 16, _rva(chd_c))
    prog.write_bytes(col + 20, _rva(col))

    vftable = ib + 0x6008
    prog.write_pointer(vftable - 8, col)
    prog.write_pointer(vftable, ib + 0x7000)
    prog.write_pointer(vftable + 8, ib + 0x7100)
    prog.write_pointer(vftable + 16, 0)
    prog.add_data(DataBlock(address=vftable - 8, length=0x18, name="??_7C@ns@@6B@"))
    prog.add_function(Function(address=ib + 0x7000, name="FUN_140007000", size=0x80))
    prog.add_function(Function(address=ib + 0x7100, name="FUN_140007100", size=0x80))

    return SimpleNamespace(
        program=prog,
        image_base=ib,
        td_a=td_a,
        td_b=td_b,
        td_c=td_c,
        bcd_b=bcd_b,
        bcd_c=bcd_c,
        col=col,
        vftable=vftable,
    )
