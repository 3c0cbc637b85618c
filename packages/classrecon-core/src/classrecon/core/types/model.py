"""Class-model types: runtime type descriptors and virtual tables."""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class RttiVendor(str, Enum):
    """Runtime-type-information encodings the parsers understand."""

    ITANIUM = "itanium"
    MSVC = "msvc"


class InheritanceKind(str, Enum):
    NON_VIRTUAL = "non-virtual"
    VIRTUAL = "virtual"


class BaseSpec(BaseModel):
    """One direct base of a class, as declared in its type descriptor.

    ``offset`` is the displacement encoded by the ABI when the descriptor
    carries one for a non-virtual base; it is ``None`` otherwise.
    """

    model_config = {"frozen": True}

    key: int
    kind: InheritanceKind = InheritanceKind.NON_VIRTUAL
    offset: Optional[int] = None
    public: bool = True

    @property
    def is_virtual(self) -> bool:
        return self.kind is InheritanceKind.VIRTUAL


class Vtable(BaseModel):
    """A class's own virtual function table.

    ``address`` is the first function slot; ``data_address`` and
    ``data_length`` describe the backing storage including the RTTI header
    that precedes the slots.
    """

    model_config = {"frozen": True}

    owner: int
    address: int
    slots: List[int] = []
    valid: bool = True
    data_address: Optional[int] = None
    data_length: Optional[int] = None

    @staticmethod
    def is_valid(vtable: Optional[Vtable]) -> bool:
        return vtable is not None and vtable.valid

    @property
    def table_addresses(self) -> List[int]:
        return [self.address]

    def contains_function(self, address: int) -> bool:
        """True if this table directly declares or overrides *address*."""
        return address in self.slots


class ClassType(BaseModel):
    """A class recovered from one runtime type descriptor.

    Bases are referenced by key into the owning
    :class:`~classrecon.core.store.ClassModelStore`, never by object, so
    the inheritance DAG (including repeated ancestors) is just data.
    """

    model_config = {"frozen": True}

    key: int
    name: str
    bases: List[BaseSpec] = []
    vtable: Optional[Vtable] = None
    data_size: int = 0
    size: Optional[int] = None
    descriptor_type: str = "__class_type_info"

    @property
    def is_polymorphic(self) -> bool:
        return Vtable.is_valid(self.vtable)

    @property
    def has_parent(self) -> bool:
        return bool(self.bases)

    @property
    def has_virtual_bases(self) -> bool:
        return any(b.is_virtual for b in self.bases)

    @property
    def virtual_parents(self) -> List[BaseSpec]:
        return [b for b in self.bases if b.is_virtual]

    @property
    def layout_name(self) -> str:
        return self.name

    def with_vtable(self, vtable: Optional[Vtable]) -> ClassType:
        return self.model_copy(update={"vtable": vtable})
