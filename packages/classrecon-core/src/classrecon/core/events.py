"""Analysis event system for observable reconstruction passes."""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Dict, Optional


class AnalysisEventType(Enum):
    """Types of events emitted while a session runs."""

    CLASS_START = "class_start"
    CLASS_END = "class_end"
    LAYOUT_BUILT = "layout_built"
    LAYOUT_FAILED = "layout_failed"
    FUNCTION_ATTRIBUTED = "function_attributed"
    FUNCTION_REJECTED = "function_rejected"
    CAST_OVERRIDE = "cast_override"
    CAST_SKIPPED = "cast_skipped"
    CANCELLED = "cancelled"


class AnalysisEvent:
    """Lightweight event emitted around each unit of analysis work."""

    __slots__ = (
        "event_type",
        "class_key",
        "function",
        "message",
        "succeeded",
        "duration",
        "metadata",
    )

    def __init__(
        self,
        event_type: AnalysisEventType,
        class_key: Optional[int] = None,
        function: Optional[int] = None,
        message: str = "",
        succeeded: Optional[bool] = None,
        duration: float = 0.0,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        self.event_type = event_type
        self.class_key = class_key
        self.function = function
        self.message = message
        self.succeeded = succeeded
        self.duration = duration
        self.metadata = metadata or {}


AnalysisEventCallback = Callable[[AnalysisEvent], None]


def emit(callback: Optional[AnalysisEventCallback], event: AnalysisEvent) -> None:
    """Deliver *event* if a callback is installed."""
    if callback is not None:
        callback(event)
