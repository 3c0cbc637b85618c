"""Root conftest — shared fixtures for the entire test suite."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from classrecon.bridge import (
    CallArgument,
    CallSite,
    DataBlock,
    Function,
    HighFunction,
    HighParam,
    InMemoryProgram,
    RefType,
)
from classrecon.core.store import ClassModelStore
from classrecon.core.types.model import BaseSpec, ClassType, InheritanceKind, Vtable


# ---------------------------------------------------------------------------
# Class factories
# ---------------------------------------------------------------------------

def _make_class(
    key,
    name,
    bases=(),
    *,
    virtual=(),
    polymorphic=True,
    data_size=0,
    size=None,
    slots=(),
    vtable_address=None,
):
    specs = [
        BaseSpec(
            key=b,
            kind=InheritanceKind.VIRTUAL if b in virtual else InheritanceKind.NON_VIRTUAL,
        )
        for b in bases
    ]
    vtable = None
    if polymorphic:
        address = vtable_address if vtable_address is not None else key + 0x10000
        vtable = Vtable(
            owner=key,
            address=address,
            slots=list(slots),
            data_address=address - 0x10,
            data_length=0x10 + 8 * len(slots),
        )
    return ClassType(
        key=key,
        name=name,
        bases=specs,
        vtable=vtable,
        data_size=data_size,
        size=size,
    )


@pytest.fixture()
def make_class():
    """Factory building a :class:`ClassType` with an optional vtable."""
    return _make_class


@pytest.fixture()
def program():
    return InMemoryProgram(pointer_size=8)


@pytest.fixture()
def store():
    return ClassModelStore(pointer_size=8)


# ---------------------------------------------------------------------------
# Hierarchies
# ---------------------------------------------------------------------------

@pytest.fixture()
def mi_store():
    """``C : A, B`` — two polymorphic bases, 16 bytes each (vptr + 8)."""
    s = ClassModelStore(pointer_size=8)
    s.add(_make_class(0x100, "A", data_size=8))
    s.add(_make_class(0x200, "B", data_size=8))
    s.add(
        _make_class(
            0x300,
            "C",
            bases=[0x100, 0x200],
            data_size=4,
            slots=[0x7000, 0x7100],
            vtable_address=0x5010,
        )
    )
    return s


@pytest.fixture()
def diamond_store():
    """``D : L, R`` with ``L : virtual V`` and ``R : virtual V``."""
    s = ClassModelStore(pointer_size=8)
    s.add(_make_class(0x10, "V", data_size=4))
    s.add(_make_class(0x20, "L", bases=[0x10], virtual=[0x10], data_size=4))
    s.add(_make_class(0x30, "R", bases=[0x10], virtual=[0x10], data_size=4))
    s.add(_make_class(0x40, "D", bases=[0x20, 0x30], data_size=4))
    return s


@pytest.fixture()
def repeated_store():
    """``D : B, C`` with ``B : A`` and ``C : A`` (non-virtual, A repeated)."""
    s = ClassModelStore(pointer_size=8)
    s.add(_make_class(0x1, "A", polymorphic=False, data_size=4))
    s.add(_make_class(0x2, "B", bases=[0x1], polymorphic=False, data_size=4))
    s.add(_make_class(0x3, "C", bases=[0x1], polymorphic=False, data_size=4))
    s.add(_make_class(0x4, "D", bases=[0x2, 0x3], polymorphic=False))
    return s


# ---------------------------------------------------------------------------
# Attribution program for C : A, B
# ---------------------------------------------------------------------------

CTOR = 0x6000
DTOR = 0x7000
A_CTOR = 0x8000
B_CTOR = 0x8100
A_DTOR = 0x8200
B_DTOR = 0x8300
UNRELATED = 0x9000
OPERATOR_DELETE = 0x9100


def _call(address, target, origin="this_1", offset=0):
    return CallSite(
        address=address,
        target=target,
        arguments=(CallArgument(origin=origin, offset=offset),),
    )


def _high(function, calls):
    return HighFunction(
        function=function,
        parameters=(HighParam(name="this", origin="this_1"),),
        call_sites=tuple(calls),
    )


@pytest.fixture()
def attribution_scenario(mi_store):
    """A program holding C's constructor and destructor.

    The constructor calls ``A()`` on ``this`` and ``B()`` on ``this + 16``
    before anything else; the destructor calls an unrelated function, then
    ``~B()`` and ``~A()`` and finally ``operator delete``.
    """
    prog = InMemoryProgram(pointer_size=8)
    prog.add_data(DataBlock(address=0x5000, length=0x20, name="vtable_C"))
    for address, name in [
        (CTOR, "FUN_00006000"),
        (DTOR, "FUN_00007000"),
        (A_CTOR, "FUN_00008000"),
        (B_CTOR, "FUN_00008100"),
        (A_DTOR, "FUN_00008200"),
        (B_DTOR, "FUN_00008300"),
        (UNRELATED, "FUN_00009000"),
        (OPERATOR_DELETE, "operator.delete"),
    ]:
        prog.add_function(Function(address=address, name=name, size=0x100))
    prog.add_reference(CTOR + 0x10, 0x5010, RefType.WRITE)
    prog.add_reference(DTOR + 0x10, 0x5010, RefType.WRITE)

    prog.set_high_function(
        CTOR,
        _high(
            CTOR,
            [
                _call(CTOR + 0x04, A_CTOR, offset=0),
                _call(CTOR + 0x08, B_CTOR, offset=16),
                _call(CTOR + 0x20, UNRELATED, origin="local_2"),
            ],
        ),
    )
    prog.set_high_function(
        DTOR,
        _high(
            DTOR,
            [
                _call(DTOR + 0x04, UNRELATED, origin="local_2"),
                _call(DTOR + 0x08, B_DTOR, offset=16),
                _call(DTOR + 0x0C, A_DTOR, offset=0),
                _call(DTOR + 0x20, OPERATOR_DELETE),
            ],
        ),
    )
    return SimpleNamespace(
        program=prog,
        store=mi_store,
        cls=mi_store.get(0x300),
        ctor=CTOR,
        dtor=DTOR,
        a_ctor=A_CTOR,
        b_ctor=B_CTOR,
        a_dtor=A_DTOR,
        b_dtor=B_DTOR,
        unrelated=UNRELATED,
        call=_call,
        high=_high,
    )
