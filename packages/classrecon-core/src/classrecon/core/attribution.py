"""Constructor/destructor call attribution.

An in-charge constructor starts by calling every direct base's
constructor on ``this + offset``; an in-charge destructor ends by calling
every direct base's destructor, in reverse, right before it returns.
Matching those calls against the base-offset table tells which function
is which base's constructor or destructor.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence, Set

from classrecon.bridge.host import DecompilerReader, Listing
from classrecon.bridge.types import CallSite, Function
from classrecon.core.cancel import CancellationToken
from classrecon.core.errors import AnalysisCancelled, StructuralError
from classrecon.core.events import (
    AnalysisEvent,
    AnalysisEventCallback,
    AnalysisEventType,
    emit,
)
from classrecon.core.store import ClassModelStore
from classrecon.core.types.config import AttributionConfig
from classrecon.core.types.model import ClassType, Vtable
from classrecon.core.types.results import (
    AnalysisState,
    AttributionResult,
    BaseMatch,
    ClassAttribution,
    RejectReason,
)

logger = logging.getLogger(__name__)

# Longest thunk chain followed before giving up.
MAX_THUNK_DEPTH = 16


def resolve_thunk(listing: Listing, function: Function) -> Function:
    """Follow a thunk chain to the function doing the real work."""
    seen: Set[int] = set()
    current = function
    while current.is_thunk:
        if current.address in seen or len(seen) >= MAX_THUNK_DEPTH:
            raise StructuralError(f"Thunk loop at {function.name}")
        seen.add(current.address)
        target = listing.function_at(current.thunk_target)  # type: ignore[arg-type]
        if target is None:
            break
        current = target
    return current


@dataclass(frozen=True)
class CandidateFunction:
    """A function referencing a class's vtable.

    Every such function writes the vptr, so it is either a constructor or
    (if the vtable also lists it) a destructor.
    """

    function: Function
    is_destructor: bool


class CallAttributor:
    """Attributes constructor/destructor calls to base classes."""

    def __init__(
        self,
        store: ClassModelStore,
        listing: Listing,
        decompiler: DecompilerReader,
        config: Optional[AttributionConfig] = None,
        event_callback: Optional[AnalysisEventCallback] = None,
    ):
        self.store = store
        self.listing = listing
        self.decompiler = decompiler
        self.config = config or AttributionConfig()
        self._event_callback = event_callback

    # -- eligibility & discovery ---------------------------------------------

    @staticmethod
    def eligible(cls: ClassType) -> bool:
        return cls.has_parent and Vtable.is_valid(cls.vtable)

    def candidates(self, cls: ClassType) -> List[CandidateFunction]:
        """Functions with data references into the class's vtable storage."""
        vtable = cls.vtable
        if not Vtable.is_valid(vtable):
            return []
        assert vtable is not None
        if not vtable.table_addresses:
            return []
        data = self.listing.data_containing(vtable.table_addresses[0])
        if data is None:
            raise StructuralError(
                f"Vtable data for {cls.name} at 0x{vtable.address:x} has been deleted"
            )

        found: List[CandidateFunction] = []
        seen: Set[int] = set()
        for address in range(data.address, data.end):
            for ref in self.listing.references_to(address):
                if not ref.ref_type.is_data:
                    continue
                func = self.listing.function_containing(ref.from_address)
                if func is None:
                    continue
                if self.config.require_default_names and not func.is_default_name:
                    continue
                real = resolve_thunk(self.listing, func)
                if real.address in seen:
                    continue
                seen.add(real.address)
                is_dtor = vtable.contains_function(real.address) or vtable.contains_function(
                    func.address
                )
                found.append(CandidateFunction(function=real, is_destructor=is_dtor))
        return found

    # -- matching ------------------------------------------------------------

    def attribute(self, cls: ClassType, candidate: CandidateFunction) -> AttributionResult:
        """Match one candidate against the expected base call order.

        Pure: nothing is committed.  Exceptions from the decompiler
        propagate to the caller.
        """
        func = candidate.function
        is_dtor = candidate.is_destructor
        n = len(cls.bases)

        def reject(reason: RejectReason, detail: str) -> AttributionResult:
            logger.debug("Rejected %s for %s: %s (%s)", func.name, cls.name, reason.value, detail)
            return AttributionResult.reject(cls.key, func.address, is_dtor, reason, detail)

        models = self.store.parent_models(cls)
        if n > len(models):
            return reject(
                RejectReason.AMBIGUOUS_PARENTS,
                f"{n} direct bases but only {len(models)} known parent models",
            )

        table = self.store.get_base_offset_table(cls)
        if not table.ok:
            return reject(RejectReason.STRUCTURAL, table.error or "")

        high = self.decompiler.high_function_of(func)
        calls = list(high.call_sites)
        window = self._window(calls, n, is_dtor)
        if window is None or len(window) != n:
            return reject(
                RejectReason.CALL_COUNT_MISMATCH,
                f"{len(calls)} calls cannot hold {n} base {'destructor' if is_dtor else 'constructor'} calls",
            )

        this_origin = high.this_origin
        matches: List[BaseMatch] = []
        used: Set[int] = set()
        for call in window:
            arg = call.this_argument
            if arg is None:
                return reject(RejectReason.NO_THIS_ARGUMENT, f"call at 0x{call.address:x}")
            if arg.origin is None or this_origin is None or arg.origin != this_origin:
                return reject(
                    RejectReason.THIS_MISMATCH,
                    f"call at 0x{call.address:x} passes {arg.origin!r}, not {this_origin!r}",
                )
            offset = arg.effective_offset
            entry = table.base_at(offset)
            if entry is None:
                return reject(RejectReason.OFFSET_NOT_FOUND, f"no base at offset {offset:#x}")
            if offset in used:
                return reject(RejectReason.DUPLICATE_OFFSET, f"offset {offset:#x} matched twice")
            used.add(offset)
            matches.append(
                BaseMatch(
                    base=entry.base,
                    function=self._callee(call),
                    call_address=call.address,
                    offset=offset,
                )
            )
        return AttributionResult.accept(cls.key, func.address, is_dtor, matches)

    def _window(
        self, calls: Sequence[CallSite], n: int, is_destructor: bool
    ) -> Optional[List[CallSite]]:
        if is_destructor:
            end = len(calls) - self.config.destructor_tail_skip
            start = end - n
            if start < 0 or end > len(calls):
                return None
            return list(calls[start:end])
        return list(calls[:n])

    def _callee(self, call: CallSite) -> int:
        target = self.listing.function_at(call.target)
        if target is None:
            return call.target
        return resolve_thunk(self.listing, target).address

    # -- commit --------------------------------------------------------------

    def commit(self, cls: ClassType, result: AttributionResult) -> None:
        """Record an accepted result in the store; rejected results are ignored."""
        if not result.accepted:
            return
        for match in result.matches:
            self.store.set_attributed_function(match.base, match.function, result.is_destructor)
        self.store.set_attributed_function(cls, result.function, result.is_destructor)

    # -- per-class driver ----------------------------------------------------

    def analyze_class(
        self, cls: ClassType, token: Optional[CancellationToken] = None
    ) -> ClassAttribution:
        """Attribute every candidate of *cls*; each function is all-or-nothing.

        Raises :class:`AnalysisCancelled` (after settling the class state)
        when *token* is cancelled between functions.
        """
        outcome = ClassAttribution(class_key=cls.key)
        if not self.eligible(cls):
            logger.debug("Skipping %s: no parent or no valid vtable", cls.name)
            outcome.state = self.store.state_of(cls)
            return outcome

        self.store.set_state(cls, AnalysisState.ANALYZING)
        emit(self._event_callback, AnalysisEvent(AnalysisEventType.CLASS_START, class_key=cls.key, message=cls.name))
        t0 = time.monotonic()
        try:
            for candidate in self.candidates(cls):
                result = self._run_candidate(cls, candidate)
                outcome.results.append(result)
                if token is not None:
                    token.check()
        except AnalysisCancelled:
            state = AnalysisState.ATTRIBUTED_OK if outcome.committed else AnalysisState.NOT_ANALYZED
            self.store.set_state(cls, state)
            outcome.state = state
            raise
        except StructuralError as exc:
            logger.warning("Attribution of %s rejected: %s", cls.name, exc)
            self.store.set_state(cls, AnalysisState.REJECTED)
            outcome.state = AnalysisState.REJECTED
            return outcome
        except Exception as exc:
            logger.warning("Listing failure while attributing %s: %s", cls.name, exc)
            self.store.set_state(cls, AnalysisState.REJECTED)
            outcome.state = AnalysisState.REJECTED
            return outcome

        state =AnalysisState.ATTRIBUTED_OK if outcome.committed else AnalysisState.REJECTED
        self.store.set_state(cls, state)
        outcome.state = state
        emit(
            self._event_callback,
            AnalysisEvent(
                AnalysisEventType.CLASS_END,
                class_key=cls.key,
                message=cls.name,
                succeeded=state is AnalysisState.ATTRIBUTED_OK,
                duration=time.monotonic() - t0,
                metadata={"committed": len(outcome.committed), "candidates": len(outcome.results)},
            ),
        )
        return outcome

    def _run_candidate(self, cls: ClassType, candidate: CandidateFunction) -> AttributionResult:
        func = candidate.function
        try:
            result = self.attribute(cls, candidate)
        except StructuralError as exc:
            result = AttributionResult.reject(
                cls.key, func.address, candidate.is_destructor, RejectReason.STRUCTURAL, str(exc)
            )
        except Exception as exc:
            logger.warning("Decompiler failure on %s for %s: %s", func.name, cls.name, exc)
            result = AttributionResult.reject(
                cls.key,
                func.address,
                candidate.is_destructor,
                RejectReason.EXTERNAL_FAILURE,
                str(exc),
            )

        if result.accepted:
            self.commit(cls, result)
            event_type = AnalysisEventType.FUNCTION_ATTRIBUTED
        else:
            event_type = AnalysisEventType.FUNCTION_REJECTED
        emit(
            self._event_callback,
            AnalysisEvent(
                event_type,
                class_key=cls.key,
                function=func.address,
                message=result.detail or func.name,
                succeeded=result.accepted,
                metadata={"destructor": candidate.is_destructor},
            ),
        )
        return result
