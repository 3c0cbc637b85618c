from __future__ import annotations

from classrecon.core.types.config import (
    AnalysisConfig,
    ArchiveConfig,
    AttributionConfig,
    DynamicCastConfig,
    LayoutConfig,
    ReconConfig,
    load_config,
)
from classrecon.core.types.layout import Field, FieldKind, Layout
from classrecon.core.types.model import (
    BaseSpec,
    ClassType,
    InheritanceKind,
    RttiVendor,
    Vtable,
)
from classrecon.core.types.results import (
    AnalysisReport,
    AnalysisState,
    AttributionResult,
    BaseMatch,
    BaseOccurrence,
    BaseOffsetEntry,
    BaseOffsetTable,
    ClassAttribution,
    DataTypeRef,
    DynamicCastResult,
    FunctionSignature,
    LayoutOutcome,
    OverrideRecord,
    ParameterDefinition,
    RejectReason,
)

__all__ = [
    # config
    "AnalysisConfig",
    "ArchiveConfig",
    "AttributionConfig",
    "DynamicCastConfig",
    "LayoutConfig",
    "ReconConfig",
    "load_config",
    # layout
    "Field",
    "FieldKind",
    "Layout",
    # model
    "BaseSpec",
    "ClassType",
    "InheritanceKind",
    "RttiVendor",
    "Vtable",
    # results
    "AnalysisReport",
    "AnalysisState",
    "AttributionResult",
    "BaseMatch",
    "BaseOccurrence",
    "BaseOffsetEntry",
    "BaseOffsetTable",
    "ClassAttribution",
    "DataTypeRef",
    "DynamicCastResult",
    "FunctionSignature",
    "LayoutOutcome",
    "OverrideRecord",
    "ParameterDefinition",
    "RejectReason",
]
