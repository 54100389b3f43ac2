"""Pytest configuration and fixtures for the openrecorder test suite.

Configuration:
    - Adds src/ directory to Python path for test imports
    - Provides a scripted FakeTransport standing in for a CDP target

FakeTransport:
    Records every command sent to the debuggee and answers from a per-method
    table of replies. A reply may be a dict, an exception instance (raised),
    an awaitable (awaited) or a callable taking the params and returning any
    of those.
"""

import asyncio
import inspect
import json
import sys
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from bubus import EventBus  # noqa: E402

from openrecorder.recorder.writer import MemoryWriter  # noqa: E402


class FakeTransport:
    """In-memory Transport: scripted replies, recorded commands, injectable events."""

    def __init__(self):
        self.sent: list[tuple[str, dict | None]] = []
        self.responses: dict[str, Any] = {}
        self.listener = None
        self.detach_handler = None
        self.attached = False
        self.detach_calls = 0

    async def attach(self) -> str:
        self.attached = True
        return "FAKE-SESSION"

    async def detach(self) -> None:
        self.attached = False
        self.detach_calls += 1

    async def send(self, method: str, params: dict | None = None) -> dict:
        self.sent.append((method, params))
        response = self.responses.get(method, {})
        if callable(response) and not isinstance(response, BaseException):
            response = response(params)
        if inspect.isawaitable(response):
            response = await response
        if isinstance(response, BaseException):
            raise response
        return response

    def add_listener(self, listener) -> None:
        self.listener = listener

    def remove_listener(self) -> None:
        self.listener = None

    def set_detach_handler(self, handler) -> None:
        self.detach_handler = handler

    async def emit(self, method: str, params: dict) -> None:
        """Deliver one top-level protocol event to the registered listener."""
        if self.listener is not None:
            await self.listener(method, params)

    def methods(self) -> list[str]:
        return [method for method, _ in self.sent]

    def params_for(self, method: str) -> list[dict | None]:
        return [params for sent_method, params in self.sent if sent_method == method]


def unwrap_envelopes(params: dict) -> list[dict]:
    """Decode nested Target.sendMessageToTarget envelopes, outermost first.

    Each entry holds the target ``sessionId`` and the decoded ``message``.
    """
    levels = []
    while True:
        message = json.loads(params["message"])
        levels.append({"sessionId": params["sessionId"], "message": message})
        if message["method"] != "Target.sendMessageToTarget":
            return levels
        params = message["params"]


def wrap_reply(sessions: list[str], payload: dict) -> dict:
    """Build the Target.receivedMessageFromTarget params a chain of sessions delivers.

    ``sessions`` is outermost first; ``payload`` is what the innermost session sent.
    """
    message = json.dumps(payload)
    for session_id in reversed(sessions[1:]):
        message = json.dumps({
            "method": "Target.receivedMessageFromTarget",
            "params": {"sessionId": session_id, "message": message},
        })
    return {"sessionId": sessions[0], "message": message}


async def settle_tasks(rounds: int = 5) -> None:
    """Let scheduled tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture()
def transport():
    return FakeTransport()


@pytest.fixture()
def writer():
    return MemoryWriter()


@pytest_asyncio.fixture()
async def event_bus():
    bus = EventBus()
    yield bus
    await bus.stop(clear=True, timeout=5)


@pytest_asyncio.fixture(autouse=True)
async def stop_event_buses():
    """Stop every bus a test started so its run loop does not outlive the test."""
    yield
    for bus in list(EventBus.all_instances):
        await bus.stop(clear=True, timeout=5)
