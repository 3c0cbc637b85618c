"""Vendor-specific runtime type information parsers."""

from __future__ import annotations

import logging
from typing import Iterable, List, Union

from classrecon.bridge.host import Listing, MemoryReader
from classrecon.core.errors import StructuralError
from classrecon.core.rtti.itanium import ItaniumRttiParser
from classrecon.core.rtti.msvc import MsvcRttiParser
from classrecon.core.rtti.names import demangle_itanium_type, demangle_msvc_type
from classrecon.core.store import ClassModelStore
from classrecon.core.types.model import ClassType, RttiVendor

logger = logging.getLogger(__name__)

RttiParserType = Union[ItaniumRttiParser, MsvcRttiParser]


def create_parser(
    vendor: RttiVendor,
    memory: MemoryReader,
    listing: Listing,
    pointer_size: int = 8,
    image_base: int = 0,
) -> RttiParserType:
    """Return the parser for *vendor*; chosen once per run."""
    if vendor is RttiVendor.ITANIUM:
        return ItaniumRttiParser(memory, listing, pointer_size=pointer_size)
    if vendor is RttiVendor.MSVC:
        return MsvcRttiParser(memory, listing, pointer_size=pointer_size, image_base=image_base)
    raise ValueError(f"Unsupported RTTI vendor: {vendor!r}")


def load_classes(
    store: ClassModelStore, parser: RttiParserType, roots: Iterable[int]
) -> List[ClassType]:
    """Parse each root (a ``type_info`` or a vftable address) into *store*.

    Bases are loaded through the store.  A malformed root is logged and
    skipped; the others still load.
    """
    loaded: List[ClassType] = []
    for root in roots:
        try:
            cls = store.add(parser.parse_root(root))
            for spec in cls.bases:
                if spec.key not in store and store.is_type_descriptor_at(spec.key):
                    store.type_at(spec.key)
        except StructuralError as exc:
            logger.warning("Skipping RTTI root 0x%x: %s", root, exc)
            continue
        loaded.append(cls)
    return loaded


__all__ = [
    "ItaniumRttiParser",
    "MsvcRttiParser",
    "RttiParserType",
    "create_parser",
    "demangle_itanium_type",
    "demangle_msvc_type",
    "load_classes",
]
