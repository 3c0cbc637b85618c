"""Layout builder: synthesizes the memory layout of a class."""

from __future__ import annotations

import logging
from typing import Dict, Optional, Set

from classrecon.core.errors import StructuralError
from classrecon.core.store import ClassModelStore
from classrecon.core.types.config import LayoutConfig
from classrecon.core.types.layout import Field, FieldKind, Layout
from classrecon.core.types.model import ClassType
from classrecon.core.types.results import BaseOffsetEntry

logger = logging.getLogger(__name__)


class LayoutBuilder:
    """Builds class layouts bottom-up and registers them in the store.

    A class's layout starts from whatever the store already holds for it,
    so a rebuild preserves inherited ``super_*`` fields and produces the
    same result as the first build.
    """

    def __init__(self, store: ClassModelStore, config: Optional[LayoutConfig] = None):
        self.store = store
        self.config = config or LayoutConfig()
        self.resolver = store.resolver
        self.pointer_size = store.pointer_size
        self._built: Dict[int, Layout] = {}

    def build(self, cls: ClassType) -> Layout:
        """Build (or rebuild) the layout of *cls*; bases built earlier are reused.

        Raises :class:`StructuralError` when the class's base offsets cannot
        be resolved.  Nothing is registered for *cls* in that case.
        """
        return self._build(cls, set()).model_copy(deep=True)

    def base_field_name(self, base: ClassType) -> str:
        return f"{self.config.super_prefix}{base.name}"

    # -- internals -----------------------------------------------------------

    def _build(self, cls: ClassType, visiting: Set[int]) -> Layout:
        if cls.key in visiting:
            raise StructuralError(f"Cyclic inheritance through {cls.name}")
        table = self.store.get_base_offset_table(cls)
        if not table.ok:
            raise StructuralError(table.error or f"Unresolved base offsets for {cls.name}")

        visiting.add(cls.key)
        try:
            for entry in table.entries:
                if entry.base not in self._built:
                    self._build(self._base(cls, entry), visiting)
        finally:
            visiting.discard(cls.key)

        layout = self._start_layout(cls)
        self._add_pointers(cls, layout)
        for entry in table.entries:
            self._add_base(layout, self._base(cls, entry), entry)

        self.store.register_layout(cls, layout)
        self._built[cls.key] = layout
        logger.debug("Built layout for %s (%d bytes, %d fields)", cls.name, layout.size, len(layout.fields))
        return layout

    def _base(self, cls: ClassType, entry: BaseOffsetEntry) -> ClassType:
        base = self.store.get(entry.base)
        if base is None:
            raise StructuralError(f"Base 0x{entry.base:x} of {cls.name} is not a known class")
        return base

    def _start_layout(self, cls: ClassType) -> Layout:
        layout = self.store.layout_of(cls)
        if layout is None:
            layout = Layout(name=cls.layout_name)
        layout.grow_to(self.resolver.total_size(cls))
        return layout

    def _may_replace(self, layout: Layout, offset: int) -> bool:
        comp = layout.component_at(offset)
        if comp is None or comp.is_undefined:
            return True
        return not layout.is_inherited(comp, self.config.super_prefix)

    def _add_pointers(self, cls: ClassType, layout: Layout) -> None:
        offset = 0
        if cls.is_polymorphic:
            self._add_vfptr(cls, layout, offset)
            offset = self.pointer_size
        if cls.has_virtual_bases:
            self._add_vbptr(layout, offset)

    def _add_vfptr(self, cls: ClassType, layout: Layout, offset: int) -> None:
        if not self._may_replace(layout, offset):
            return
        layout.replace_field(
            Field(
                offset=offset,
                size=self.pointer_size,
                name=self.config.vfptr_name,
                kind=FieldKind.POINTER,
                type_name=f"{cls.name}_vtable *",
            )
        )

    def _add_vbptr(self, layout: Layout, offset: int) -> None:
        if not self._may_replace(layout, offset):
            return
        layout.replace_field(
            Field(
                offset=offset,
                size=self.pointer_size,
                name=self.config.vbptr_name,
                kind=FieldKind.POINTER,
                type_name="int *",
            )
        )

    def _is_hidden_pointer(self, field: Field) -> bool:
        return field.kind is FieldKind.POINTER and field.name in (
            self.config.vfptr_name,
            self.config.vbptr_name,
        )

    def _add_base(self, layout: Layout, base: ClassType, entry: BaseOffsetEntry) -> None:
        size = self.resolver.non_virtual_size(base)
        base_layout = self._built.get(base.key)
        if base_layout is not None and not base_layout.fields:
            # An empty base sharing storage with our own vfptr/vbptr never displaces it.
            if any(
                self._is_hidden_pointer(f) and f.overlaps(entry.offset, size)
                for f in layout.fields
            ):
                logger.debug(
                    "Empty base %s at %#x overlaps a hidden pointer; not embedded",
                    base.name,
                    entry.offset,
                )
                return
        layout.replace_field(
            Field(
                offset=entry.offset,
                size=size,
                name=self.base_field_name(base),
                kind=FieldKind.BASE,
                type_name=base.layout_name,
                base_key=base.key,
            )
        )
