"""Tests for analysis events and cancellation tokens."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from classrecon.core.cancel import CancellationToken, CountdownToken
from classrecon.core.errors import AnalysisCancelled
from classrecon.core.events import AnalysisEvent, AnalysisEventType, emit


class TestEvents:
    def test_defaults(self):
        event = AnalysisEvent(AnalysisEventType.CLASS_START)
        assert event.class_key is None
        assert event.function is None
        assert event.message == ""
        assert event.succeeded is None
        assert event.metadata == {}

    def test_emit_delivers(self):
        callback = MagicMock()
        event = AnalysisEvent(AnalysisEventType.CAST_OVERRIDE, function=0x10)
        emit(callback, event)
        callback.assert_called_once_with(event)

    def test_emit_without_callback(self):
        emit(None, AnalysisEvent(AnalysisEventType.CANCELLED))


class TestCancellationToken:
    def test_check_passes_until_cancelled(self):
        token = CancellationToken()
        token.check()
        assert not token.cancelled
        token.cancel("enough")
        assert token.cancelled
        assert token.reason == "enough"
        with pytest.raises(AnalysisCancelled, match="enough"):
            token.check()

    def test_countdown(self):
        token = CountdownToken(2)
        token.check()
        assert not token.cancelled
        token.check()
        assert token.cancelled
        with pytest.raises(AnalysisCancelled):
            token.check()
