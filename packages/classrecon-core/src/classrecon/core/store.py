"""Class-model store: an arena of class types keyed by descriptor address."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, Iterator, List, Optional, Protocol, Set, Union

from classrecon.core.errors import StructuralError
from classrecon.core.types.layout import Layout
from classrecon.core.types.model import ClassType
from classrecon.core.types.results import (
    AnalysisState,
    AttributedFunction,
    BaseOffsetTable,
)

if TYPE_CHECKING:
    from classrecon.core.resolver import BaseOffsetResolver

logger = logging.getLogger(__name__)

ClassRef = Union[ClassType, int]


class RttiParser(Protocol):
    """What the store needs from a vendor-specific descriptor parser."""

    def is_type_descriptor_at(self, address: int) -> bool:
        ...

    def parse(self, address: int) -> ClassType:
        ...


def _key(ref: ClassRef) -> int:
    return ref.key if isinstance(ref, ClassType) else ref


class ClassModelStore:
    """Arena of :class:`ClassType` plus memoized derived data.

    Class types are immutable; offsets, layouts, attributed functions and
    analysis states live in side tables keyed by class key.  Replacing a
    class with a different descriptor drops the memoized offsets.
    """

    def __init__(self, parser: Optional[RttiParser] = None, pointer_size: int = 8):
        self.parser = parser
        self.pointer_size = pointer_size
        self._classes: Dict[int, ClassType] = {}
        self._layouts: Dict[int, Layout] = {}
        self._attributed: Dict[int, List[AttributedFunction]] = {}
        self._states: Dict[int, AnalysisState] = {}
        self._resolver: Optional[BaseOffsetResolver] = None

    # -- arena -------------------------------------------------------------

    def add(self, cls: ClassType) -> ClassType:
        existing = self._classes.get(cls.key)
        if existing is not None and existing != cls and self._resolver is not None:
            logger.debug("Descriptor of %s changed; dropping memoized offsets", cls.name)
            self._resolver.invalidate()
        self._classes[cls.key] = cls
        return cls

    def get(self, key: int) -> Optional[ClassType]:
        return self._classes.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self._classes

    def __len__(self) -> int:
        return len(self._classes)

    def __iter__(self) -> Iterator[ClassType]:
        return iter(list(self._classes.values()))

    def classes(self) -> List[ClassType]:
        return list(self._classes.values())

    def find_by_name(self, name: str) -> Optional[ClassType]:
        for cls in self._classes.values():
            if cls.name == name:
                return cls
        return None

    def parent_models(self, cls: ClassType) -> List[ClassType]:
        """Distinct base class types of *cls* that the store knows about."""
        seen: Set[int] = set()
        models: List[ClassType] = []
        for spec in cls.bases:
            if spec.key in seen:
                continue
            parent = self._classes.get(spec.key)
            if parent is not None:
                seen.add(spec.key)
                models.append(parent)
        return models

    # -- type descriptor reader ----------------------------------------------

    def is_type_descriptor_at(self, address: int) -> bool:
        if address in self._classes:
            return True
        if self.parser is None:
            return False
        return self.parser.is_type_descriptor_at(address)

    def type_at(self, address: int) -> ClassType:
        """Return the class at *address*, parsing and loading it if needed."""
        cls = self._classes.get(address)
        if cls is not None:
            return cls
        if self.parser is None or not self.parser.is_type_descriptor_at(address):
            raise LookupError(f"No type descriptor at 0x{address:x}")
        return self._load(address, set())

    def _load(self, address: int, loading: Set[int]) -> ClassType:
        if address in self._classes:
            return self._classes[address]
        if address in loading:
            raise StructuralError(f"Cyclic type descriptor graph at 0x{address:x}")
        assert self.parser is not None
        cls = self.parser.parse(address)
        loading.add(address)
        try:
            for spec in cls.bases:
                if self.parser.is_type_descriptor_at(spec.key):
                    self._load(spec.key, loading)
                else:
                    logger.warning(
                        "Base 0x%x of %s is not a type descriptor; leaving it unresolved",
                        spec.key,
                        cls.name,
                    )
        finally:
            loading.discard(address)
        return self.add(cls)

    # -- base offsets ------------------------------------------------------

    @property
    def resolver(self) -> BaseOffsetResolver:
        if self._resolver is None:
            from classrecon.core.resolver import BaseOffsetResolver

            self._resolver = BaseOffsetResolver(self, pointer_size=self.pointer_size)
        return self._resolver

    def get_base_offset_table(self, cls: ClassType) -> BaseOffsetTable:
        return self.resolver.resolve(cls)

    # -- layouts -----------------------------------------------------------

    def register_layout(self, cls: ClassRef, layout: Layout) -> None:
        self._layouts[_key(cls)] = layout.model_copy(deep=True)

    def layout_of(self, cls: ClassRef) -> Optional[Layout]:
        layout = self._layouts.get(_key(cls))
        return layout.model_copy(deep=True) if layout is not None else None

    # -- attributed functions ------------------------------------------------

    def set_attributed_function(
        self, base: ClassRef, function: int, is_destructor: bool
    ) -> None:
        key = _key(base)
        record = AttributedFunction(class_key=key, function=function, is_destructor=is_destructor)
        records = self._attributed.setdefault(key, [])
        if record not in records:
            records.append(record)
            logger.debug(
                "0x%x committed as %s of class 0x%x",
                function,
                "destructor" if is_destructor else "constructor",
                key,
            )

    def attributed_functions(self, cls: ClassRef) -> List[AttributedFunction]:
        return list(self._attributed.get(_key(cls), ()))

    def constructors_of(self, cls: ClassRef) -> List[int]:
        return [r.function for r in self.attributed_functions(cls) if not r.is_destructor]

    def destructors_of(self, cls: ClassRef) -> List[int]:
        return [r.function for r in self.attributed_functions(cls) if r.is_destructor]

    # -- analysis state ------------------------------------------------------

    def state_of(self, cls: ClassRef) -> AnalysisState:
        return self._states.get(_key(cls), AnalysisState.NOT_ANALYZED)

    def set_state(self, cls: ClassRef, state: AnalysisState) -> None:
        self._states[_key(cls)] = state

    def states(self) -> Dict[int, AnalysisState]:
        return {key: self.state_of(key) for key in self._classes}
