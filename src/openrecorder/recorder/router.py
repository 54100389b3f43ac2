"""Command routing and reply correlation across nested debugging sessions.

A sub-target attached without flattening is only reachable by wrapping each
command in ``Target.sendMessageToTarget`` once per level of the session
chain. Replies and events come back wrapped the same way inside
``Target.receivedMessageFromTarget`` and are unwrapped one level per event.
"""

import asyncio
import itertools
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, PrivateAttr

from openrecorder.exceptions import CommandTimeoutError, ProtocolError
from openrecorder.recorder.protocol import ROOT_CHAIN, SEND_MESSAGE_TO_TARGET, SessionChain

logger = logging.getLogger(__name__)

Dispatcher = Callable[[str, dict[str, Any], SessionChain], Awaitable[None]]


@dataclass
class PendingCommand:
    """One correlation id waiting for its reply.

    Envelope entries belong to an outer ``sendMessageToTarget`` level; they share
    the caller's future so a delivery error fails the caller early.
    """

    future: asyncio.Future
    method: str
    envelope: bool = False


class SessionRouter(BaseModel):
    """Sends commands through a session chain and settles their replies.

    Attributes:
        transport: Object with ``async send(method, params) -> dict`` for the debuggee.
        command_timeout: Seconds to wait for a routed reply, None waits forever.
        dispatch: Re-entry point for events unwrapped from a sub-target.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, revalidate_instances='never')

    transport: Any
    command_timeout: float | None = 30.0
    dispatch: Dispatcher | None = None

    _ids: Any = PrivateAttr(default_factory=lambda: itertools.count(1))
    _promises: dict[int, PendingCommand] = PrivateAttr(default_factory=dict)

    @property
    def outstanding(self) -> int:
        return len(self._promises)

    def has_pending(self, correlation_id: int) -> bool:
        return correlation_id in self._promises

    async def send(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        sessions: SessionChain = ROOT_CHAIN,
    ) -> dict[str, Any]:
        """Send ``method`` to the innermost session of ``sessions``.

        The chain is wrapped from the deepest session outward; only the
        outermost envelope reaches the transport.

        Raises:
            ProtocolError: The browser or an inner session answered with an error.
            CommandTimeoutError: No reply arrived within ``command_timeout``.
        """
        if not sessions:
            return await self._with_timeout(self.transport.send(method, params), method)

        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        allocated: list[int] = []
        original_method = method

        for depth, session_id in enumerate(reversed(sessions)):
            correlation_id = next(self._ids)
            allocated.append(correlation_id)
            self._promises[correlation_id] = PendingCommand(
                future=future, method=method, envelope=depth > 0
            )
            message = json.dumps({'id': correlation_id, 'method': method, 'params': params})
            params = {'sessionId': session_id, 'message': message}
            method = SEND_MESSAGE_TO_TARGET

        logger.debug(f'[SessionRouter] SEND {original_method} via {len(sessions)} session(s) ids={allocated}')

        try:
            await self.transport.send(method, params)
            return await self._with_timeout(future, original_method)
        finally:
            self._drop(allocated)

    async def _with_timeout(self, awaitable: Awaitable[dict[str, Any]], method: str) -> dict[str, Any]:
        if self.command_timeout is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, self.command_timeout)
        except asyncio.TimeoutError as e:
            raise CommandTimeoutError(method, self.command_timeout) from e

    def _drop(self, ids: list[int]) -> None:
        for correlation_id in ids:
            self._promises.pop(correlation_id, None)

    async def receive_message_from_target(self, params: dict[str, Any], sessions: SessionChain) -> None:
        """Unwrap one level of ``Target.receivedMessageFromTarget``.

        ``sessions`` already ends with the session that produced the message.
        """
        try:
            nested = json.loads(params.get('message') or '{}')
        except json.JSONDecodeError:
            logger.warning(f'[SessionRouter] Undecodable message from session {params.get("sessionId")}')
            return

        if nested.get('id') is not None:
            self.settle(nested['id'], result=nested.get('result'), error=nested.get('error'))
        elif nested.get('method'):
            if self.dispatch is None:
                return
            await self.dispatch(nested['method'], nested.get('params') or {}, sessions)

    def settle(
        self,
        correlation_id: int,
        result: dict[str, Any] | None = None,
        error: dict[str, Any] | None = None,
    ) -> None:
        """Resolve or reject one correlation id; unknown ids are ignored."""
        pending = self._promises.pop(correlation_id, None)
        if pending is None:
            return

        logger.debug(f'[SessionRouter] RECV {pending.method} id={correlation_id}')
        if pending.future.done():
            return

        if error is not None:
            pending.future.set_exception(
                ProtocolError(error.get('message', 'Protocol error'), error, method=pending.method)
            )
        elif not pending.envelope:
            pending.future.set_result(result or {})

    def reject_all(self, reason: str = 'Recorder stopped') -> None:
        """Fail every outstanding routed command."""
        promises, self._promises = self._promises, {}
        for pending in promises.values():
            if not pending.future.done():
                pending.future.set_exception(ProtocolError(reason, {'message': reason}, method=pending.method))
