"""Tests for the cdp-use backed connection and per-target transport."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from conftest import settle_tasks
from openrecorder.exceptions import ProtocolError, TransportClosedError
from openrecorder.recorder.protocol import ProtocolEvent
from openrecorder.recorder.transport import CDPConnection, CDPTransport


def make_connection(send_result=None) -> CDPConnection:
    connection = CDPConnection(cdp_url="ws://127.0.0.1:9222/devtools/browser/abc")
    client = MagicMock()
    client.send_raw = AsyncMock(return_value=send_result if send_result is not None else {})
    connection._client = client
    return connection


async def attached_transport(connection: CDPConnection, session_id: str = "SESSION-1") -> CDPTransport:
    connection.client.send_raw.return_value = {"sessionId": session_id}
    transport = connection.transport_for("TARGET")
    await transport.attach()
    connection.client.send_raw.return_value = {}
    return transport


class TestCDPTransport:
    """Attach, send and detach on one debuggee session."""

    @pytest.mark.asyncio
    async def test_attach_uses_flat_session(self):
        connection = make_connection()
        transport = await attached_transport(connection)

        connection.client.send_raw.assert_any_await(
            method="Target.attachToTarget", params={"targetId": "TARGET", "flatten": True}, session_id=None
        )
        assert transport.session_id == "SESSION-1"
        assert transport.attached

    @pytest.mark.asyncio
    async def test_send_goes_to_session(self):
        connection = make_connection()
        transport = await attached_transport(connection)

        await transport.send("Network.enable")

        connection.client.send_raw.assert_awaited_with(method="Network.enable", params=None, session_id="SESSION-1")

    @pytest.mark.asyncio
    async def test_send_before_attach_raises(self):
        transport = make_connection().transport_for("TARGET")
        with pytest.raises(TransportClosedError):
            await transport.send("Network.enable")

    @pytest.mark.asyncio
    async def test_detach_stops_routing_first(self):
        connection = make_connection()
        transport = await attached_transport(connection)
        listener = AsyncMock()
        transport.add_listener(listener)

        await transport.detach()
        connection.route_event("Network.loadingFinished", {"requestId": "1"}, "SESSION-1")
        await settle_tasks()

        connection.client.send_raw.assert_awaited_with(
            method="Target.detachFromTarget", params={"sessionId": "SESSION-1"}, session_id=None
        )
        listener.assert_not_awaited()
        assert not transport.attached

    @pytest.mark.asyncio
    async def test_command_failure_wrapped_in_protocol_error(self):
        connection = make_connection()
        transport = await attached_transport(connection)
        connection.client.send_raw.side_effect = RuntimeError("No resource with given identifier found")

        with pytest.raises(ProtocolError) as exc_info:
            await transport.send("Network.getResponseBody", {"requestId": "1"})
        assert exc_info.value.method == "Network.getResponseBody"
        assert "No resource" in exc_info.value.message


class TestEventRouting:
    """Events are fanned out by session id."""

    @pytest.mark.asyncio
    async def test_event_reaches_listener_of_its_session(self):
        connection = make_connection()
        transport = await attached_transport(connection)
        listener = AsyncMock()
        transport.add_listener(listener)

        connection.route_event("Network.requestWillBeSent", {"requestId": "1"}, "SESSION-1")
        connection.route_event("Network.requestWillBeSent", {"requestId": "2"}, "OTHER")
        await settle_tasks()

        listener.assert_awaited_once_with("Network.requestWillBeSent", {"requestId": "1"})

    @pytest.mark.asyncio
    async def test_root_detach_reports_target_closed(self):
        connection = make_connection()
        transport = await attached_transport(connection)
        on_detached = AsyncMock()
        transport.set_detach_handler(on_detached)

        connection.route_event("Target.detachedFromTarget", {"sessionId": "SESSION-1"}, None)
        await settle_tasks()

        on_detached.assert_awaited_once_with("target_closed")
        assert not transport.attached

    @pytest.mark.asyncio
    async def test_inspector_detached_reports_reason(self):
        connection = make_connection()
        transport = await attached_transport(connection)
        on_detached = AsyncMock()
        transport.set_detach_handler(on_detached)

        connection.route_event("Inspector.detached", {"reason": "replaced_with_devtools"}, "SESSION-1")
        await settle_tasks()

        on_detached.assert_awaited_once_with("replaced_with_devtools")

    @pytest.mark.asyncio
    async def test_registered_handlers_route_events(self):
        connection = make_connection()
        transport = await attached_transport(connection)
        listener = AsyncMock()
        transport.add_listener(listener)

        connection._register_events()
        register = connection.client.register
        assert register.Network.loadingFinished.called
        assert register.Fetch.requestPaused.called
        assert register.Inspector.detached.called

        handler = register.Network.loadingFinished.call_args.args[0]
        handler({"requestId": "42"}, "SESSION-1")
        await settle_tasks()

        listener.assert_awaited_once_with("Network.loadingFinished", {"requestId": "42"})

    def test_every_protocol_event_is_registered(self):
        connection = make_connection()
        connection._register_events()
        for event in ProtocolEvent:
            domain, name = event.value.split(".")
            assert getattr(getattr(connection.client.register, domain), name).called, event

    @pytest.mark.asyncio
    async def test_stop_cancels_in_flight_event_tasks(self):
        connection = make_connection()
        connection.client.stop = AsyncMock()
        transport = await attached_transport(connection)
        transport.add_listener(lambda method, params: asyncio.sleep(10))

        connection.route_event("Network.loadingFinished", {"requestId": "1"}, "SESSION-1")
        await connection.stop()

        assert connection._tasks == set()
        assert connection._client is None


class TestConnection:
    """Websocket url resolution and target listing."""

    @pytest.mark.asyncio
    async def test_ws_url_passthrough(self):
        connection = CDPConnection(cdp_url="ws://127.0.0.1:9222/devtools/browser/abc")
        assert await connection.resolve_ws_url() == "ws://127.0.0.1:9222/devtools/browser/abc"

    @pytest.mark.asyncio
    async def test_http_url_resolved_from_version_endpoint(self, monkeypatch):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json={"webSocketDebuggerUrl": "ws://127.0.0.1:9222/devtools/browser/xyz"})

        real_client = httpx.AsyncClient
        monkeypatch.setattr(httpx, "AsyncClient", lambda: real_client(transport=httpx.MockTransport(handler)))

        connection = CDPConnection(cdp_url="http://127.0.0.1:9222/")
        assert await connection.resolve_ws_url() == "ws://127.0.0.1:9222/devtools/browser/xyz"
        assert seen == ["http://127.0.0.1:9222/json/version"]

    @pytest.mark.asyncio
    async def test_page_targets_filtered(self):
        connection = make_connection(
            {
                "targetInfos": [
                    {"targetId": "P1", "type": "page", "url": "https://a.example/"},
                    {"targetId": "W1", "type": "service_worker", "url": "https://a.example/sw.js"},
                ]
            }
        )
        pages = await connection.get_page_targets()
        assert [p["targetId"] for p in pages] == ["P1"]
