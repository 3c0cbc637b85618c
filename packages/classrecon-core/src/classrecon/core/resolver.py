"""Base-offset resolution: where each base sub-object sits in a class."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Set, Tuple

from classrecon.core.errors import StructuralError
from classrecon.core.types.model import BaseSpec, ClassType
from classrecon.core.types.results import (
    BaseOccurrence,
    BaseOffsetEntry,
    BaseOffsetTable,
)

if TYPE_CHECKING:
    from classrecon.core.store import ClassModelStore

logger = logging.getLogger(__name__)


@dataclass
class _Shape:
    header_size: int
    nv_size: int
    total_size: int
    entries: List[BaseOffsetEntry] = field(default_factory=list)
    virtual_bases: List[int] = field(default_factory=list)


class BaseOffsetResolver:
    """Computes :class:`BaseOffsetTable` values and class sizes.

    Non-virtual bases are laid out in declaration order from a running
    cursor (an offset encoded in the descriptor wins over the cursor).
    Virtual bases are collected across the whole graph in depth-first
    post-order, deduplicated, and appended after the non-virtual part.

    Everything is memoized per class key, failures included.
    """

    def __init__(self, store: ClassModelStore, pointer_size: int = 8):
        self.store = store
        self.pointer_size = pointer_size
        self._shapes: Dict[int, _Shape] = {}
        self._tables: Dict[int, BaseOffsetTable] = {}

    def invalidate(self) -> None:
        self._shapes.clear()
        self._tables.clear()

    # -- public API --------------------------------------------------------

    def resolve(self, cls: ClassType) -> BaseOffsetTable:
        """Return the base-offset table of *cls*; fails closed on bad graphs."""
        table = self._tables.get(cls.key)
        if table is not None:
            return table
        try:
            shape = self._shape(cls, set())
            table = BaseOffsetTable(owner=cls.key, entries=list(shape.entries))
        except StructuralError as exc:
            logger.warning("Cannot resolve base offsets of %s: %s", cls.name, exc)
            table = BaseOffsetTable(owner=cls.key, error=str(exc))
        self._tables[cls.key] = table
        return table

    def header_size(self, cls: ClassType) -> int:
        """Bytes taken by the class's own vfptr/vbptr fields."""
        size = 0
        if cls.is_polymorphic:
            size += self.pointer_size
        if cls.has_virtual_bases:
            size += self.pointer_size
        return size

    def non_virtual_size(self, cls: ClassType) -> int:
        """Size of *cls* as a base sub-object (its virtual bases excluded)."""
        return self._shape(cls, set()).nv_size

    def total_size(self, cls: ClassType) -> int:
        """Size of a complete *cls* object."""
        return self._shape(cls, set()).total_size

    def virtual_bases(self, cls: ClassType) -> List[int]:
        return list(self._shape(cls, set()).virtual_bases)

    def occurrences(self, cls: ClassType) -> List[BaseOccurrence]:
        """Every path-qualified base occurrence inside a complete *cls*.

        Repeated non-virtual ancestors get one occurrence per path, each with
        its own offset.  A shared virtual base gets the same offset on every
        path.
        """
        table = self.resolve(cls)
        if not table.ok:
            return []
        vbase_offsets = {e.base: e.offset for e in table.entries if e.virtual}
        out: List[BaseOccurrence] = []

        def walk(owner: ClassType, owner_offset: int, path: Tuple[int, ...]) -> None:
            for entry in self._shape(owner, set()).entries:
                if entry.virtual:
                    offset = vbase_offsets[entry.base]
                else:
                    offset = owner_offset + entry.offset
                sub_path = path + (entry.base,)
                out.append(
                    BaseOccurrence(
                        path=sub_path, base=entry.base, offset=offset, virtual=entry.virtual
                    )
                )
                walk(self._require(owner, entry.base), offset, sub_path)

        walk(cls, 0, ())
        return out

    # -- internals -----------------------------------------------------------

    def _require(self, owner: ClassType, key: int) -> ClassType:
        base = self.store.get(key)
        if base is None:
            raise StructuralError(f"Base 0x{key:x} of {owner.name} is not a known class")
        return base

    def _placement(self, cls: ClassType, spec: BaseSpec, cursor: int) -> int:
        if spec.offset is None:
            return cursor
        if spec.offset < 0:
            raise StructuralError(
                f"Negative offset {spec.offset} for base 0x{spec.key:x} of {cls.name}"
            )
        return spec.offset

    def _shape(self, cls: ClassType, in_progress: Set[int]) -> _Shape:
        shape = self._shapes.get(cls.key)
        if shape is not None:
            return shape
        if cls.key in in_progress:
            raise StructuralError(f"Cyclic inheritance through {cls.name}")
        in_progress.add(cls.key)
        try:
            shape = self._compute(cls, in_progress)
        finally:
            in_progress.discard(cls.key)
        self._shapes[cls.key] = shape
        return shape

    def _compute(self, cls: ClassType, in_progress: Set[int]) -> _Shape:
        header = self.header_size(cls)
        cursor = header if cls.has_virtual_bases else 0
        entries: List[BaseOffsetEntry] = []
        vbases: List[int] = []

        for spec in cls.bases:
            base = self._require(cls, spec.key)
            base_shape = self._shape(base, in_progress)
            for vb in base_shape.virtual_bases:
                if vb not in vbases:
                    vbases.append(vb)
            if spec.is_virtual:
                if base.key not in vbases:
                    vbases.append(base.key)
                continue
            offset = self._placement(cls, spec, cursor)
            entries.append(BaseOffsetEntry(base=base.key, offset=offset))
            cursor = max(cursor, offset + base_shape.nv_size)

        # A complete object is never smaller than one byte.
        nv_size = max(max(cursor, header) + cls.data_size, 1)

        end = nv_size
        for vb in vbases:
            entries.append(BaseOffsetEntry(base=vb, offset=end, virtual=True))
            end += self._shapes[vb].nv_size

        total = max(end, cls.size or 0)
        return _Shape(
            header_size=header,
            nv_size=nv_size,
            total_size=total,
            entries=entries,
            virtual_bases=vbases,
        )
