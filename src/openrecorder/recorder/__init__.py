"""Recorder module: CDP transport, request tracking and page lifecycle."""

from openrecorder.recorder.controller import RecorderController
from openrecorder.recorder.manager import RecordingManager
from openrecorder.recorder.profile import RecorderProfile
from openrecorder.recorder.router import SessionRouter
from openrecorder.recorder.tracker import RequestTracker
from openrecorder.recorder.lifecycle import PageLifecycle
from openrecorder.recorder.transport import CDPConnection, CDPTransport
from openrecorder.recorder.views import PageInfo, PendingRequest, SessionInfo
from openrecorder.recorder.writer import Indexer, MemoryWriter, NullIndexer, Writer

__all__ = [
    "CDPConnection",
    "CDPTransport",
    "Indexer",
    "MemoryWriter",
    "NullIndexer",
    "PageInfo",
    "PageLifecycle",
    "PendingRequest",
    "RecorderController",
    "RecorderProfile",
    "RecordingManager",
    "RequestTracker",
    "SessionInfo",
    "SessionRouter",
    "Writer",
]
