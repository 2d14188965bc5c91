"""Shared fixtures for transport and client tests."""

import pytest

from helpers import EventRecorder
from stdio_jsonrpc.logsink import RecordingLogSink


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def sink() -> RecordingLogSink:
    return RecordingLogSink()
