"""Call-site signatures for ``__dynamic_cast``.

Finds every direct call to the runtime's dynamic-cast entry point, recovers
the constant source/destination type descriptors passed to it, and writes a
call-site override whose parameter and return types are the concrete
classes.  The decompiler's type propagation cannot see through
``__dynamic_cast`` on its own.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from classrecon.bridge.host import DataflowResolver, Listing, SignatureSink
from classrecon.bridge.types import Function, Parameter, Reference
from classrecon.core.cancel import CancellationToken
from classrecon.core.errors import AbiMismatchError, UnsupportedAbiError
from classrecon.core.events import (
    AnalysisEvent,
    AnalysisEventCallback,
    AnalysisEventType,
    emit,
)
from classrecon.core.store import ClassModelStore
from classrecon.core.types.config import DynamicCastConfig
from classrecon.core.types.model import ClassType
from classrecon.core.types.results import (
    DataTypeRef,
    DynamicCastResult,
    FunctionSignature,
    OverrideRecord,
    ParameterDefinition,
    SkippedCallSite,
)

logger = logging.getLogger(__name__)

UNSUPPORTED_MESSAGE = (
    "Currently only processors passing parameters via registers are supported."
)


def is_direct_call(ref: Reference) -> bool:
    ref_type = ref.ref_type
    if ref_type.is_call:
        return not (ref_type.is_computed or ref_type.is_indirect)
    return False


class DynamicCastResolver:
    """Emits call-site signature overrides for ``__dynamic_cast`` calls."""

    def __init__(
        self,
        store: ClassModelStore,
        listing: Listing,
        dataflow: DataflowResolver,
        sink: SignatureSink,
        config: Optional[DynamicCastConfig] = None,
        event_callback: Optional[AnalysisEventCallback] = None,
    ):
        self.store = store
        self.listing = listing
        self.dataflow = dataflow
        self.sink = sink
        self.config = config or DynamicCastConfig()
        self._event_callback = event_callback
        self._entry: Optional[Function] = None
        self._src_reg: Optional[str] = None
        self._dst_reg: Optional[str] = None
        self.result: Optional[DynamicCastResult] = None

    # -- entry point ---------------------------------------------------------

    def find_entry_point(self) -> Optional[Function]:
        functions = self.listing.functions_named(self.config.entry_point)
        if len(functions) > 1:
            raise AbiMismatchError(f"More than one {self.config.entry_point} function found.")
        if not functions:
            logger.info("%s function not found", self.config.entry_point)
            return None
        return functions[0]

    def check_entry_point(self, entry: Function) -> List[Parameter]:
        """Verify *entry* matches the cxxabi prototype; return its parameters."""
        if entry.prototype_string != self.config.formal_signature:
            raise AbiMismatchError(
                f"The function at 0x{entry.address:x} doesnt match the cxxabi defined "
                f"functions signature:\n{self.config.formal_signature}"
            )
        assert entry.prototype is not None
        params = list(entry.prototype.parameters)
        if len(params) != 4:
            raise AbiMismatchError(f"Unexpected number of {self.config.entry_point} parameters")
        if not params[2].is_register_variable:
            raise UnsupportedAbiError(UNSUPPORTED_MESSAGE)
        return params

    # -- driver --------------------------------------------------------------

    def run(self, token: Optional[CancellationToken] = None) -> DynamicCastResult:
        """Process every call site; ABI mismatches abort the whole run."""
        result = DynamicCastResult()
        self.result = result
        entry = self.find_entry_point()
        if entry is None:
            return result
        params = self.check_entry_point(entry)
        self._entry = entry
        self._src_reg = params[1].register
        self._dst_reg = params[2].register
        result.entry_point = entry.address

        addresses = [
            ref.from_address
            for ref in self.listing.references_to(entry.address)
            if is_direct_call(ref)
        ]
        logger.info("Analyzing %d %s calls", len(addresses), self.config.entry_point)
        for address in addresses:
            if self.sink.has_override(address):
                self._skip(result, address, "call site already carries an override")
            else:
                self.process_call(address, result)
            if token is not None:
                token.check()
        return result

    def process_call(self, address: int, result: DynamicCastResult) -> Optional[OverrideRecord]:
        function = self.listing.function_containing(address)
        if function is None:
            self._skip(result, address, "call site is outside any function")
            return None
        try:
            src = self._type_for(address, self._src_reg)
            dst = self._type_for(address, self._dst_reg)
        except Exception as exc:
            logger.warning("Dataflow failure at 0x%x: %s", address, exc)
            result.failed.append(SkippedCallSite(call_address=address, reason=str(exc)))
            return None
        if src is None or dst is None:
            self._skip(result, address, "type descriptor operand not resolved")
            return None
        record = self.override(function, address, src, dst)
        if record is None:
            result.failed.append(
                SkippedCallSite(call_address=address, reason="override transaction failed")
            )
            return None
        result.overrides.append(record)
        emit(
            self._event_callback,
            AnalysisEvent(
                AnalysisEventType.CAST_OVERRIDE,
                class_key=src.key,
                function=function.address,
                message=record.signature.format(),
                succeeded=True,
                metadata={"call_address": address, "destination": dst.key},
            ),
        )
        return record

    def _skip(self, result: DynamicCastResult, address: int, reason: str) -> None:
        logger.debug("Skipping %s call at 0x%x: %s", self.config.entry_point, address, reason)
        result.skipped.append(SkippedCallSite(call_address=address, reason=reason))
        emit(
            self._event_callback,
            AnalysisEvent(
                AnalysisEventType.CAST_SKIPPED,
                message=reason,
                succeeded=False,
                metadata={"call_address": address},
            ),
        )

    # -- operand recovery ----------------------------------------------------

    def delay_address(self, address: int) -> int:
        """Address of the instruction following *address*'s delay slots."""
        inst = self.listing.instruction_at(address)
        if inst is None:
            return address
        depth = inst.delay_slot_depth
        if depth > 0:
            while depth >= 0:
                nxt = self.listing.instruction_after(inst.address)
                if nxt is None:
                    break
                inst = nxt
                depth -= 1
        return inst.address

    def _lookup(self, address: int, register: str) -> Optional[ClassType]:
        value = self.dataflow.constant_in_register_at(address, register)
        if value is not None and self.store.is_type_descriptor_at(value):
            return self.store.type_at(value)
        return None

    def _type_for(self, address: int, register: Optional[str]) -> Optional[ClassType]:
        if register is None:
            return None
        found = self._lookup(address, register)
        if found is not None:
            return found
        retry = self.delay_address(address)
        if retry == address:
            return None
        return self._lookup(retry, register)

    # -- signature -----------------------------------------------------------

    def signature_for(self, src: ClassType, dst: ClassType) -> FunctionSignature:
        assert self._entry is not None and self._entry.prototype is not None
        proto = self._entry.prototype
        params = [
            ParameterDefinition(data_type=_parse_type(p.type_name), name=p.name)
            for p in proto.parameters
        ]
        params[0] = ParameterDefinition(data_type=DataTypeRef(name=src.layout_name).pointer_to())
        params[1] = ParameterDefinition(data_type=DataTypeRef(name=src.descriptor_type).pointer_to())
        params[2] = ParameterDefinition(data_type=DataTypeRef(name=dst.descriptor_type).pointer_to())
        return FunctionSignature(
            name=self.config.override_name,
            return_type=DataTypeRef(name=dst.layout_name).pointer_to(),
            parameters=params,
        )

    def override(
        self, function: Function, address: int, src: ClassType, dst: ClassType
    ) -> Optional[OverrideRecord]:
        """Write the override inside one transaction; ``None`` if it rolled back."""
        try:
            with self.sink.transaction("Override Signature") as tx:
                signature = self.signature_for(src, dst)
                tx.write_override(
                    function,
                    address,
                    signature,
                    self.config.name_root,
                    self.config.category,
                )
        except Exception as exc:
            logger.error("Error overriding signature at 0x%x: %s", address, exc)
            return None
        return OverrideRecord(
            function=function.address,
            call_address=address,
            source=src.key,
            destination=dst.key,
            signature=signature,
        )


def _parse_type(type_name: str) -> DataTypeRef:
    stripped = type_name.rstrip()
    depth = 0
    while stripped.endswith("*"):
        depth += 1
        stripped = stripped[:-1].rstrip()
    return DataTypeRef(name=stripped, pointer_depth=depth)
