"""Tests for command routing through nested debugging sessions.

Covers:
    - Direct sends on the root chain
    - One envelope level per session in the chain, deepest first
    - Reply correlation when several commands are outstanding
    - Error replies, envelope-level errors and unknown ids
    - The timeout policy and reject_all on stop
    - Re-dispatch of events unwrapped from a sub-target
"""

import asyncio
import json

import pytest

from conftest import FakeTransport, settle_tasks, unwrap_envelopes, wrap_reply
from openrecorder.exceptions import CommandTimeoutError, ProtocolError
from openrecorder.recorder.router import SessionRouter


def make_router(transport: FakeTransport, timeout: float | None = 5.0, dispatch=None) -> SessionRouter:
    router = SessionRouter(transport=transport, command_timeout=timeout)

    async def default_dispatch(method, params, sessions):
        # mirror the controller: nested wrapped messages unwrap one more level
        if method == "Target.receivedMessageFromTarget":
            await router.receive_message_from_target(params, (*sessions, params["sessionId"]))

    router.dispatch = dispatch or default_dispatch
    return router


class TestRootChain:
    """Commands with an empty chain go straight to the transport."""

    @pytest.mark.asyncio
    async def test_direct_send_returns_result(self):
        transport = FakeTransport()
        transport.responses["Page.getNavigationHistory"] = {"currentIndex": 0, "entries": []}
        router = make_router(transport)

        result = await router.send("Page.getNavigationHistory")

        assert result == {"currentIndex": 0, "entries": []}
        assert transport.sent == [("Page.getNavigationHistory", None)]
        assert router.outstanding == 0

    @pytest.mark.asyncio
    async def test_direct_send_error_propagates(self):
        transport = FakeTransport()
        transport.responses["Fetch.enable"] = ProtocolError("Fetch not found", {"code": -32601})
        router = make_router(transport)

        with pytest.raises(ProtocolError) as exc_info:
            await router.send("Fetch.enable")
        assert exc_info.value.code == -32601

    @pytest.mark.asyncio
    async def test_direct_send_times_out(self):
        transport = FakeTransport()
        transport.responses["DOM.getDocument"] = lambda params: asyncio.sleep(10)
        router = make_router(transport, timeout=0.01)

        with pytest.raises(CommandTimeoutError):
            await router.send("DOM.getDocument")


class TestEnvelopeWrapping:
    """A chain of N sessions produces N envelopes; only the outermost is sent."""

    @pytest.mark.asyncio
    async def test_single_session_wraps_once(self):
        transport = FakeTransport()
        router = make_router(transport)

        task = asyncio.create_task(router.send("Network.enable", None, ("S1",)))
        await settle_tasks()

        assert transport.methods() == ["Target.sendMessageToTarget"]
        levels = unwrap_envelopes(transport.sent[0][1])
        assert len(levels) == 1
        assert levels[0]["sessionId"] == "S1"
        assert levels[0]["message"]["method"] == "Network.enable"
        assert router.outstanding == 1

        await router.receive_message_from_target(
            wrap_reply(["S1"], {"id": levels[0]["message"]["id"], "result": {"ok": True}}), ("S1",)
        )
        assert await task == {"ok": True}
        assert router.outstanding == 0

    @pytest.mark.asyncio
    async def test_three_sessions_wrap_deepest_first(self):
        transport = FakeTransport()
        router = make_router(transport)

        task = asyncio.create_task(
            router.send("DOM.getDocument", {"depth": -1}, ("OUTER", "MIDDLE", "INNER"))
        )
        await settle_tasks()

        assert len(transport.sent) == 1
        levels = unwrap_envelopes(transport.sent[0][1])
        assert [level["sessionId"] for level in levels] == ["OUTER", "MIDDLE", "INNER"]
        assert [level["message"]["method"] for level in levels] == [
            "Target.sendMessageToTarget",
            "Target.sendMessageToTarget",
            "DOM.getDocument",
        ]
        assert levels[-1]["message"]["params"] == {"depth": -1}

        ids = [level["message"]["id"] for level in levels]
        assert len(set(ids)) == 3
        assert router.outstanding == 3

        # envelope acknowledgements do not settle the caller
        await router.receive_message_from_target(
            wrap_reply(["OUTER"], {"id": ids[0], "result": {}}), ("OUTER",)
        )
        assert not task.done()

        await router.receive_message_from_target(
            wrap_reply(["OUTER", "MIDDLE", "INNER"], {"id": ids[2], "result": {"root": {}}}), ("OUTER",)
        )
        assert await task == {"root": {}}
        assert router.outstanding == 0

    @pytest.mark.asyncio
    async def test_caller_chain_is_not_mutated(self):
        transport = FakeTransport()
        router = make_router(transport, timeout=0.01)
        chain = ("A", "B")

        with pytest.raises(CommandTimeoutError):
            await router.send("Network.enable", None, chain)
        assert chain == ("A", "B")


class TestReplyCorrelation:
    """Replies settle only their own correlation id."""

    @pytest.mark.asyncio
    async def test_reply_resolves_only_its_own_id(self):
        transport = FakeTransport()
        router = make_router(transport)

        first = asyncio.create_task(router.send("Network.getResponseBody", {"requestId": "1"}, ("S1",)))
        second = asyncio.create_task(router.send("Network.getResponseBody", {"requestId": "2"}, ("S1",)))
        await settle_tasks()

        first_id = unwrap_envelopes(transport.sent[0][1])[0]["message"]["id"]
        second_id = unwrap_envelopes(transport.sent[1][1])[0]["message"]["id"]
        assert first_id != second_id

        await router.receive_message_from_target(
            wrap_reply(["S1"], {"id": second_id, "result": {"body": "two"}}), ("S1",)
        )
        assert await second == {"body": "two"}
        assert not first.done()
        assert router.has_pending(first_id)
        assert not router.has_pending(second_id)

        await router.receive_message_from_target(
            wrap_reply(["S1"], {"id": first_id, "result": {"body": "one"}}), ("S1",)
        )
        assert await first == {"body": "one"}

    @pytest.mark.asyncio
    async def test_error_reply_rejects_with_protocol_error(self):
        transport = FakeTransport()
        router = make_router(transport)

        task = asyncio.create_task(router.send("Network.getResponseBody", {"requestId": "9"}, ("S1",)))
        await settle_tasks()
        correlation_id = unwrap_envelopes(transport.sent[0][1])[0]["message"]["id"]

        await router.receive_message_from_target(
            wrap_reply(["S1"], {"id": correlation_id, "error": {"code": -32000, "message": "No resource"}}),
            ("S1",),
        )

        with pytest.raises(ProtocolError) as exc_info:
            await task
        assert exc_info.value.code == -32000
        assert exc_info.value.method == "Network.getResponseBody"
        assert router.outstanding == 0

    @pytest.mark.asyncio
    async def test_envelope_error_rejects_caller_early(self):
        transport = FakeTransport()
        router = make_router(transport)

        task = asyncio.create_task(router.send("Network.enable", None, ("A", "B")))
        await settle_tasks()
        outer_id = unwrap_envelopes(transport.sent[0][1])[0]["message"]["id"]

        await router.receive_message_from_target(
            wrap_reply(["A"], {"id": outer_id, "error": {"code": -32602, "message": "No session with given id"}}),
            ("A",),
        )

        with pytest.raises(ProtocolError):
            await task
        assert router.outstanding == 0

    def test_unknown_id_is_silent_noop(self):
        router = make_router(FakeTransport())
        router.settle(12345, result={"ok": True})
        router.settle(12345, error={"message": "boom"})
        assert router.outstanding == 0

    @pytest.mark.asyncio
    async def test_ids_are_never_reused(self):
        transport = FakeTransport()
        router = make_router(transport, timeout=0.01)

        for _ in range(3):
            with pytest.raises(CommandTimeoutError):
                await router.send("Network.enable", None, ("S1",))

        ids = [unwrap_envelopes(params)[0]["message"]["id"] for _, params in transport.sent]
        assert ids == sorted(set(ids))


class TestTimeoutsAndTeardown:
    """Bounded waits and stop-time rejection."""

    @pytest.mark.asyncio
    async def test_timeout_drops_all_allocated_ids(self):
        transport = FakeTransport()
        router = make_router(transport, timeout=0.01)

        with pytest.raises(CommandTimeoutError) as exc_info:
            await router.send("DOM.getDocument", None, ("A", "B"))
        assert exc_info.value.method == "DOM.getDocument"
        assert router.outstanding == 0

    @pytest.mark.asyncio
    async def test_transport_failure_drops_ids(self):
        transport = FakeTransport()
        transport.responses["Target.sendMessageToTarget"] = ProtocolError("Target closed", {"code": -32000})
        router = make_router(transport)

        with pytest.raises(ProtocolError):
            await router.send("Network.enable", None, ("S1",))
        assert router.outstanding == 0

    @pytest.mark.asyncio
    async def test_reject_all_fails_outstanding_commands(self):
        transport = FakeTransport()
        router = make_router(transport, timeout=None)

        task = asyncio.create_task(router.send("Network.enable", None, ("S1",)))
        await settle_tasks()
        assert router.outstanding == 1

        router.reject_all("stopped")

        with pytest.raises(ProtocolError, match="stopped"):
            await task
        assert router.outstanding == 0


class TestIncomingEvents:
    """Wrapped events are re-dispatched with the producing session appended."""

    @pytest.mark.asyncio
    async def test_event_redispatched_with_extended_chain(self):
        received = []

        async def dispatch(method, params, sessions):
            received.append((method, params, sessions))

        router = make_router(FakeTransport(), dispatch=dispatch)
        message = json.dumps({"method": "Network.loadingFinished", "params": {"requestId": "7"}})

        await router.receive_message_from_target({"sessionId": "S2", "message": message}, ("S1", "S2"))

        assert received == [("Network.loadingFinished", {"requestId": "7"}, ("S1", "S2"))]

    @pytest.mark.asyncio
    async def test_undecodable_message_is_dropped(self):
        received = []

        async def dispatch(method, params, sessions):
            received.append(method)

        router = make_router(FakeTransport(), dispatch=dispatch)
        await router.receive_message_from_target({"sessionId": "S1", "message": "{not json"}, ("S1",))

        assert received == []
