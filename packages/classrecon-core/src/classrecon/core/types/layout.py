"""Synthesized memory layouts (structures)."""

from __future__ import annotations

import bisect
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class FieldKind(str, Enum):
    UNDEFINED = "undefined"
    POINTER = "pointer"
    BASE = "base"
    DATA = "data"


class Field(BaseModel):
    """One component of a layout, positioned by byte offset."""

    model_config = {"frozen": True}

    offset: int
    size: int
    name: Optional[str] = None
    kind: FieldKind = FieldKind.UNDEFINED
    type_name: str = "undefined"
    base_key: Optional[int] = None

    @property
    def end(self) -> int:
        return self.offset + self.size

    @property
    def is_undefined(self) -> bool:
        return self.kind is FieldKind.UNDEFINED

    def overlaps(self, offset: int, size: int) -> bool:
        return self.offset < offset + size and offset < self.end


class Layout(BaseModel):
    """An ordered, non-overlapping set of fields.

    Bytes not covered by any field are implicitly undefined.
    """

    name: str
    size: int = 0
    fields: List[Field] = []

    def component_at(self, offset: int) -> Optional[Field]:
        """Return the field covering byte *offset*, if any."""
        for f in self.fields:
            if f.offset <= offset < f.end:
                return f
        return None

    def is_inherited(self, field: Field, prefix: str = "super_") -> bool:
        """True when *field* embeds a base sub-object."""
        return field.name is not None and field.name.startswith(prefix)

    def field_named(self, name: str) -> Optional[Field]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def replace_field(self, field: Field) -> None:
        """Insert *field*, removing every field overlapping its byte range.

        This is the only way a layout is mutated.  The layout grows when the
        new field ends past its current size.
        """
        if field.size <= 0:
            raise ValueError(f"Field {field.name!r} has non-positive size {field.size}")
        if field.offset < 0:
            raise ValueError(f"Field {field.name!r} has negative offset {field.offset}")
        kept = [f for f in self.fields if not f.overlaps(field.offset, field.size)]
        offsets = [f.offset for f in kept]
        kept.insert(bisect.bisect_left(offsets, field.offset), field)
        self.fields = kept
        self.size = max(self.size, field.end)

    def grow_to(self, size: int) -> None:
        self.size = max(self.size, size)

    def fingerprint(self) -> str:
        """Stable serialization; two layouts are byte-identical iff equal."""
        return self.model_dump_json()
