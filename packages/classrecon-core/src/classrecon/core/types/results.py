"""Result types produced by the resolver, attributor and cast resolver."""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel


# ---------------------------------------------------------------------------
# Base offsets
# ---------------------------------------------------------------------------

class BaseOffsetEntry(BaseModel):
    """A base sub-object placed directly by the owning class."""

    model_config = {"frozen": True}

    base: int
    offset: int
    virtual: bool = False


class BaseOffsetTable(BaseModel):
    """Base class -> byte offset within one derived class.

    Holds every direct non-virtual base plus every virtual base reachable
    in the inheritance graph (each virtual base once).  A table with
    ``error`` set failed closed and has no entries.
    """

    owner: int
    entries: List[BaseOffsetEntry] = []
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def bases(self) -> List[int]:
        return [e.base for e in self.entries]

    def offset_of(self, base: int) -> Optional[int]:
        for e in self.entries:
            if e.base == base:
                return e.offset
        return None

    def base_at(self, offset: int) -> Optional[BaseOffsetEntry]:
        """Exact lookup: the entry placed at *offset*, or ``None``."""
        for e in self.entries:
            if e.offset == offset:
                return e
        return None

    def as_dict(self) -> Dict[int, int]:
        return {e.base: e.offset for e in self.entries}


class BaseOccurrence(BaseModel):
    """One path-qualified occurrence of a base anywhere in a class."""

    model_config = {"frozen": True}

    path: Tuple[int, ...]
    base: int
    offset: int
    virtual: bool = False


# ---------------------------------------------------------------------------
# Attribution
# ---------------------------------------------------------------------------

class AnalysisState(str, Enum):
    NOT_ANALYZED = "not-analyzed"
    ANALYZING = "analyzing"
    ATTRIBUTED_OK = "attributed-ok"
    REJECTED = "rejected"


class RejectReason(str, Enum):
    AMBIGUOUS_PARENTS = "ambiguous-parents"
    CALL_COUNT_MISMATCH = "call-count-mismatch"
    NO_THIS_ARGUMENT = "no-this-argument"
    THIS_MISMATCH = "this-mismatch"
    OFFSET_NOT_FOUND = "offset-not-found"
    DUPLICATE_OFFSET = "duplicate-offset"
    STRUCTURAL = "structural"
    EXTERNAL_FAILURE = "external-failure"


class BaseMatch(BaseModel):
    """A call attributed to one base's constructor or destructor."""

    model_config = {"frozen": True}

    base: int
    function: int
    call_address: int
    offset: int


class AttributionResult(BaseModel):
    """Outcome of matching one candidate function.

    Either every expected call matched (``accepted``) or nothing did.
    """

    class_key: int
    function: int
    is_destructor: bool = False
    accepted: bool = False
    reason: Optional[RejectReason] = None
    detail: str = ""
    matches: List[BaseMatch] = []

    @classmethod
    def accept(
        cls, class_key: int, function: int, is_destructor: bool, matches: List[BaseMatch]
    ) -> AttributionResult:
        return cls(
            class_key=class_key,
            function=function,
            is_destructor=is_destructor,
            accepted=True,
            matches=matches,
        )

    @classmethod
    def reject(
        cls,
        class_key: int,
        function: int,
        is_destructor: bool,
        reason: RejectReason,
        detail: str = "",
    ) -> AttributionResult:
        return cls(
            class_key=class_key,
            function=function,
            is_destructor=is_destructor,
            accepted=False,
            reason=reason,
            detail=detail,
        )


class ClassAttribution(BaseModel):
    """Every candidate result for one class plus its final state."""

    class_key: int
    state: AnalysisState = AnalysisState.NOT_ANALYZED
    results: List[AttributionResult] = []

    @property
    def committed(self) -> List[AttributionResult]:
        return [r for r in self.results if r.accepted]


class AttributedFunction(BaseModel):
    """A function committed as a class's constructor or destructor."""

    model_config = {"frozen": True}

    class_key: int
    function: int
    is_destructor: bool = False


# ---------------------------------------------------------------------------
# Dynamic cast
# ---------------------------------------------------------------------------

class DataTypeRef(BaseModel):
    """A named data type, optionally behind one or more pointers."""

    model_config = {"frozen": True}

    name: str
    pointer_depth: int = 0

    def pointer_to(self) -> DataTypeRef:
        return DataTypeRef(name=self.name, pointer_depth=self.pointer_depth + 1)

    def __str__(self) -> str:
        if not self.pointer_depth:
            return self.name
        return f"{self.name} {'*' * self.pointer_depth}"


class ParameterDefinition(BaseModel):
    model_config = {"frozen": True}

    data_type: DataTypeRef
    name: Optional[str] = None


class FunctionSignature(BaseModel):
    """A function definition usable as a call-site override."""

    name: str
    return_type: DataTypeRef
    parameters: List[ParameterDefinition] = []

    def format(self) -> str:
        params = ", ".join(
            f"{p.data_type} {p.name}" if p.name else str(p.data_type)
            for p in self.parameters
        )
        return f"{self.return_type} {self.name}({params})"


class OverrideRecord(BaseModel):
    """A call-site signature override emitted by the cast resolver."""

    function: int
    call_address: int
    source: int
    destination: int
    signature: FunctionSignature


class SkippedCallSite(BaseModel):
    call_address: int
    reason: str


class DynamicCastResult(BaseModel):
    entry_point: Optional[int] = None
    overrides: List[OverrideRecord] = []
    skipped: List[SkippedCallSite] = []
    failed: List[SkippedCallSite] = []


# ---------------------------------------------------------------------------
# Session report
# ---------------------------------------------------------------------------

class LayoutOutcome(BaseModel):
    class_key: int
    name: str
    built: bool
    size: int = 0
    error: Optional[str] = None


class AnalysisReport(BaseModel):
    """Everything one session run produced."""

    layouts: List[LayoutOutcome] = []
    attributions: List[ClassAttribution] = []
    states: Dict[int, AnalysisState] = {}
    dynamic_cast: Optional[DynamicCastResult] = None
    cancelled: bool = False

    @property
    def committed_functions(self) -> int:
        return sum(len(a.committed) for a in self.attributions)
