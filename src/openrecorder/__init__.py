"""openrecorder - capture browser network traffic and page snapshots over CDP."""

__version__ = "0.1.0"

from openrecorder.config import CONFIG
from openrecorder.exceptions import CommandTimeoutError, ProtocolError, RecorderError, TransportClosedError
from openrecorder.logging_config import setup_logging
from openrecorder.recorder import (
    CDPConnection,
    CDPTransport,
    MemoryWriter,
    PageInfo,
    PendingRequest,
    RecorderController,
    RecorderProfile,
    RecordingManager,
)
from openrecorder.rewrite import ResponseRewriter

# Recorder alias for a shorter public name
Recorder = RecorderController

__all__ = [
    "CONFIG",
    "CDPConnection",
    "CDPTransport",
    "CommandTimeoutError",
    "MemoryWriter",
    "PageInfo",
    "PendingRequest",
    "ProtocolError",
    "Recorder",
    "RecorderController",
    "RecorderError",
    "RecorderProfile",
    "RecordingManager",
    "ResponseRewriter",
    "TransportClosedError",
    "setup_logging",
]
