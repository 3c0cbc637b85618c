"""classrecon: C++ class-model reconstruction from RTTI, vtables and decompiled code."""

from __future__ import annotations

from classrecon.core.attribution import CallAttributor
from classrecon.core.cancel import CancellationToken
from classrecon.core.dyncast import DynamicCastResolver
from classrecon.core.errors import (
    AbiMismatchError,
    AnalysisCancelled,
    ClassReconError,
    StructuralError,
    UnsupportedAbiError,
)
from classrecon.core.layout import LayoutBuilder
from classrecon.core.resolver import BaseOffsetResolver
from classrecon.core.session import AnalysisSession
from classrecon.core.store import ClassModelStore
from classrecon.core.types.config import ReconConfig, load_config
from classrecon.core.types.model import BaseSpec, ClassType, Vtable
from classrecon.core.types.results import AnalysisReport, AnalysisState

__all__ = [
    "AnalysisSession",
    "ClassModelStore",
    "BaseOffsetResolver",
    "LayoutBuilder",
    "CallAttributor",
    "DynamicCastResolver",
    "CancellationToken",
    "ReconConfig",
    "load_config",
    "ClassType",
    "BaseSpec",
    "Vtable",
    "AnalysisReport",
    "AnalysisState",
    "ClassReconError",
    "StructuralError",
    "AbiMismatchError",
    "UnsupportedAbiError",
    "AnalysisCancelled",
]
