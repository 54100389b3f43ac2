"""Chrome DevTools Protocol transport for recorders.

This module binds the recorder to a real browser through cdp-use. A single
websocket connection is shared by every recorded target:

    CDPConnection: Owns the CDPClient, resolves the websocket URL and fans
        protocol events out to the transport of the session they belong to.
    CDPTransport: One attached debuggee target. Commands go out on its flat
        session id; events for that session are forwarded to one listener.

Example:
    >>> connection = CDPConnection(cdp_url='http://localhost:9222')
    >>> await connection.start()
    >>> transport = connection.transport_for(target_id)
    >>> await transport.attach()
    >>> await transport.send('Network.enable')
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from cdp_use import CDPClient
from pydantic import BaseModel, ConfigDict, PrivateAttr

from openrecorder.exceptions import ProtocolError, TransportClosedError
from openrecorder.recorder.protocol import ProtocolEvent

logger = logging.getLogger(__name__)

EventListener = Callable[[str, dict[str, Any]], Awaitable[None]]
DetachListener = Callable[[str | None], Awaitable[None]]

# Browser-level events that end a debuggee session
_TARGET_DETACHED = 'Target.detachedFromTarget'
_INSPECTOR_DETACHED = 'Inspector.detached'


class CDPTransport(BaseModel):
    """A single debuggee target attached over the shared connection.

    Attributes:
        connection: The owning CDPConnection.
        target_id: The page target being recorded.
        session_id: Flat session id once attached, else None.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, revalidate_instances='never')

    connection: Any
    target_id: str
    session_id: str | None = None

    _listener: EventListener | None = PrivateAttr(default=None)
    _on_detached: DetachListener | None = PrivateAttr(default=None)

    @property
    def attached(self) -> bool:
        return self.session_id is not None

    async def attach(self) -> str:
        """Attach to the target and register with the connection for its events."""
        result = await self.connection.send_raw(
            'Target.attachToTarget', {'targetId': self.target_id, 'flatten': True}
        )
        self.session_id = result['sessionId']
        self.connection.register_transport(self)
        logger.debug(f'Attached to target {self.target_id[-4:]} (session {self.session_id[:8]}...)')
        return self.session_id

    async def detach(self) -> None:
        """Detach from the target. The connection stops routing events first."""
        if self.session_id is None:
            return
        session_id = self.session_id
        self.connection.unregister_transport(self)
        self.session_id = None
        await self.connection.send_raw('Target.detachFromTarget', {'sessionId': session_id})

    async def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Send a command on the debuggee session."""
        if self.session_id is None:
            raise TransportClosedError(f'Cannot send {method}: target {self.target_id} is not attached')
        return await self.connection.send_raw(method, params, session_id=self.session_id)

    def add_listener(self, listener: EventListener) -> None:
        self._listener = listener

    def remove_listener(self) -> None:
        self._listener = None

    def set_detach_handler(self, handler: DetachListener | None) -> None:
        self._on_detached = handler

    def emit(self, method: str, params: dict[str, Any]) -> Awaitable[None] | None:
        if self._listener is None:
            return None
        return self._listener(method, params)

    def emit_detached(self, reason: str | None) -> Awaitable[None] | None:
        self.connection.unregister_transport(self)
        self.session_id = None
        if self._on_detached is None:
            return None
        return self._on_detached(reason)


class CDPConnection(BaseModel):
    """Shared CDP websocket connection with per-session event fan-out.

    cdp-use keeps a single handler per event method, so the connection
    registers each consumed event once and routes it by session id.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, revalidate_instances='never')

    cdp_url: str

    _client: CDPClient | None = PrivateAttr(default=None)
    _transports: dict[str, CDPTransport] = PrivateAttr(default_factory=dict)
    _tasks: set[asyncio.Task] = PrivateAttr(default_factory=set)

    @property
    def client(self) -> CDPClient:
        assert self._client is not None, 'CDP client not initialized - call start() first'
        return self._client

    async def resolve_ws_url(self) -> str:
        """Resolve an http://host:port endpoint to the browser websocket URL."""
        if self.cdp_url.startswith('ws'):
            return self.cdp_url

        import httpx

        url = self.cdp_url.rstrip('/')
        if not url.endswith('/json/version'):
            url = url + '/json/version'

        async with httpx.AsyncClient() as client:
            version_info = await client.get(url)
            version_info.raise_for_status()
            return version_info.json()['webSocketDebuggerUrl']

    async def start(self) -> None:
        ws_url = await self.resolve_ws_url()
        logger.debug(f'Connecting to browser via CDP: {ws_url}')
        self._client = CDPClient(ws_url)
        await self._client.start()
        self._register_events()

    async def stop(self) -> None:
        for task in list(self._tasks):
            if not task.done():
                task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self._transports.clear()
        if self._client is not None:
            await self._client.stop()
            self._client = None

    def _register_events(self) -> None:
        methods = [event.value for event in ProtocolEvent] + [_INSPECTOR_DETACHED]
        for method in dict.fromkeys(methods):
            domain_name, event_name = method.split('.', 1)
            domain = getattr(self.client.register, domain_name, None)
            register = getattr(domain, event_name, None) if domain is not None else None
            if register is None:
                logger.warning(f'cdp-use has no registration hook for {method}, event will be missed')
                continue
            register(self._make_handler(method))

    def _make_handler(self, method: str) -> Callable[[Any, str | None], None]:
        def handler(event: Any, session_id: str | None = None) -> None:
            self.route_event(method, dict(event or {}), session_id)

        return handler

    def route_event(self, method: str, params: dict[str, Any], session_id: str | None) -> None:
        """Route one protocol event to the transport owning its session."""
        pending: Awaitable[None] | None = None

        if session_id is None:
            if method == _TARGET_DETACHED:
                transport = self._transports.get(params.get('sessionId', ''))
                if transport is not None:
                    pending = transport.emit_detached('target_closed')
        else:
            transport = self._transports.get(session_id)
            if transport is None:
                return
            if method == _INSPECTOR_DETACHED:
                pending = transport.emit_detached(params.get('reason'))
            else:
                pending = transport.emit(method, params)

        if pending is not None:
            task = asyncio.ensure_future(pending)
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    def register_transport(self, transport: CDPTransport) -> None:
        assert transport.session_id is not None
        self._transports[transport.session_id] = transport

    def unregister_transport(self, transport: CDPTransport) -> None:
        if transport.session_id is not None:
            self._transports.pop(transport.session_id, None)

    def transport_for(self, target_id: str) -> CDPTransport:
        return CDPTransport(connection=self, target_id=target_id)

    async def send_raw(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> dict[str, Any]:
        """Send a raw command, surfacing protocol errors as ProtocolError."""
        try:
            result = await self.client.send_raw(method=method, params=params, session_id=session_id)
        except ProtocolError:
            raise
        except Exception as e:
            raise ProtocolError(str(e), {'message': str(e)}, method=method) from e
        return result or {}

    async def get_page_targets(self) -> list[dict[str, Any]]:
        """List page targets (tabs) known to the browser."""
        targets = await self.send_raw('Target.getTargets')
        return [t for t in targets.get('targetInfos', []) if t.get('type') == 'page']
