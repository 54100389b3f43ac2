"""Top-level recorder for one debuggee target."""

import asyncio
import base64
import logging
from collections.abc import Callable
from typing import Any

from bubus import EventBus
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from openrecorder.exceptions import CommandTimeoutError
from openrecorder.recorder.events import ArchiveSizeEvent, RecordingStartedEvent, RecordingStoppedEvent
from openrecorder.recorder.lifecycle import UNLOAD_HOOK_SOURCE, PageLifecycle
from openrecorder.recorder.profile import RecorderProfile
from openrecorder.recorder.protocol import ROOT_CHAIN, ProtocolEvent, SessionChain, extend_chain
from openrecorder.recorder.router import SessionRouter
from openrecorder.recorder.tracker import RequestTracker
from openrecorder.recorder.views import PageInfo, SessionInfo
from openrecorder.recorder.writer import NullIndexer
from openrecorder.rewrite.service import ResponseRewriter, get_content_type
from openrecorder.utils import format_bytes


class RecorderController(BaseModel):
    """Records all network traffic and page snapshots of one target.

    Protocol events from the transport (and, unwrapped, from nested sub-target
    sessions) are dispatched over :class:`ProtocolEvent` to the request tracker,
    the page lifecycle and the interception flow.

    Attributes:
        target_id: The recorded target.
        transport: CDPTransport (or any object with the same interface).
        writer: Receives finished records and page snapshots.
        indexer: Receives page text for full-text search.
        profile: Recording settings.
        rewriter: Content-type driven response rewriting for intercepted bodies.
        event_bus: Bus for recorder events.
        on_bytes_committed: Called with each committed payload length.
        on_closed: Called with (target_id, reason) when the browser ends the session.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, revalidate_instances='never')

    target_id: str
    transport: Any
    writer: Any
    indexer: Any = Field(default_factory=NullIndexer)
    profile: RecorderProfile = Field(default_factory=RecorderProfile)
    rewriter: ResponseRewriter = Field(default_factory=ResponseRewriter)
    event_bus: EventBus = Field(default_factory=EventBus)
    on_bytes_committed: Callable[[int], None] | None = None
    on_closed: Callable[[str, str | None], None] | None = None

    running: bool = False

    _router: SessionRouter = PrivateAttr()
    _tracker: RequestTracker = PrivateAttr()
    _lifecycle: PageLifecycle = PrivateAttr()
    _sessions: dict[str, SessionInfo] = PrivateAttr(default_factory=dict)
    _update_task: asyncio.Task | None = PrivateAttr(default=None)
    _stopping: bool = PrivateAttr(default=False)
    _owns_event_bus: bool = PrivateAttr(default=False)
    _logger: logging.Logger | None = PrivateAttr(default=None)

    def model_post_init(self, __context) -> None:
        self._owns_event_bus = 'event_bus' not in self.model_fields_set
        self._router = SessionRouter(
            transport=self.transport,
            command_timeout=self.profile.command_timeout,
            dispatch=self.process_message,
        )
        self._lifecycle = PageLifecycle(
            router=self._router,
            writer=self.writer,
            indexer=self.indexer,
            event_bus=self.event_bus,
            target_id=self.target_id,
            on_page_updated=self.update_file_size,
        )
        self._tracker = RequestTracker(
            router=self._router,
            writer=self.writer,
            event_bus=self.event_bus,
            target_id=self.target_id,
            get_page=self._current_page,
            partial_refetch_delay=self.profile.partial_refetch_delay,
            on_bytes_committed=self._bytes_committed,
        )

    @property
    def logger(self) -> logging.Logger:
        if self._logger is None:
            self._logger = logging.getLogger(f'openrecorder.recorder.{self.target_id[-4:]}')
        return self._logger

    @property
    def router(self) -> SessionRouter:
        return self._router

    @property
    def tracker(self) -> RequestTracker:
        return self._tracker

    @property
    def lifecycle(self) -> PageLifecycle:
        return self._lifecycle

    @property
    def sessions(self) -> dict[str, SessionInfo]:
        return self._sessions

    @property
    def page_info(self) -> PageInfo | None:
        return self._lifecycle.page_info

    @property
    def size(self) -> int:
        return self._tracker.size

    def _current_page(self) -> PageInfo:
        if self._lifecycle.page_info is None:
            # requests seen before the first top-level navigation
            self._lifecycle.page_info = PageInfo()
        return self._lifecycle.page_info

    def _bytes_committed(self, length: int) -> None:
        if self.on_bytes_committed is not None:
            self.on_bytes_committed(length)

    def _reset_state(self) -> None:
        self._sessions.clear()
        self._tracker.clear()
        self._lifecycle.reset()

    # ------------------------------------------------------------------
    # Attach / detach
    # ------------------------------------------------------------------

    async def attach(self) -> None:
        """Attach to the target, bootstrap its session and start size reporting."""
        if self.running:
            self.logger.warning(f'[Recorder] Already attached to {self.target_id}')
            return

        self.running = True
        self._stopping = False
        self._reset_state()

        self.transport.add_listener(self._on_event)
        self.transport.set_detach_handler(self._on_detached)

        try:
            await self.transport.attach()
        except Exception:
            self.running = False
            self.transport.remove_listener()
            self.transport.set_detach_handler(None)
            raise

        await self.start()
        self._start_size_timer()

        self.logger.info(f'[Recorder] Recording target {self.target_id}')
        await self.event_bus.dispatch(RecordingStartedEvent(target_id=self.target_id))

    async def start(self) -> None:
        await self.session_init(ROOT_CHAIN)

        if self.profile.reload_on_attach:
            try:
                await self._router.send('Runtime.evaluate', {'expression': 'window.location.reload()'})
            except Exception as e:
                self.logger.warning(f'[Recorder] Reload after attach failed: {e}')

    async def session_init(self, sessions: SessionChain) -> None:
        """Bootstrap a (possibly nested) session for recording."""
        try:
            await self._router.send(
                'Target.setAutoAttach',
                {'autoAttach': True, 'waitForDebuggerOnStart': True, 'flatten': False},
                sessions,
            )

            if self.profile.enable_interception:
                try:
                    await self._router.send(
                        'Fetch.enable', {'patterns': [{'urlPattern': '*', 'requestStage': 'Response'}]}, sessions
                    )
                except Exception as e:
                    self.logger.info(f'[Recorder] Response interception not available: {e}')

            await self._router.send('Network.enable', None, sessions)

            if not sessions:
                await self._router.send('Page.enable')
                await self._router.send(
                    'Page.addScriptToEvaluateOnNewDocument',
                    {'source': f'window.devicePixelRatio = {self.profile.device_pixel_ratio};'},
                )
                await self._router.send('Page.addScriptToEvaluateOnNewDocument', {'source': UNLOAD_HOOK_SOURCE})

            await self._router.send('Network.setCacheDisabled', {'cacheDisabled': True}, sessions)
        except Exception as e:
            self.logger.warning(f'[Recorder] Session init error for chain {list(sessions)}: {e}')

    async def detach(self) -> None:
        """Stop recording: snapshot the final page, tear down and detach. Idempotent."""
        if not self.running or self._stopping:
            return
        self._stopping = True

        dom = await self._lifecycle.get_full_text()

        if self.profile.enable_interception:
            try:
                await self._router.send('Fetch.disable')
            except Exception as e:
                self.logger.debug(f'[Recorder] Fetch.disable failed: {e}')
        await self._lifecycle.disable_unload_capture()

        try:
            await self.transport.detach()
        except Exception as e:
            self.logger.warning(f'[Recorder] Detach failed: {e}')

        await self._stop(dom, reason='detached')

    stop = detach

    async def _stop(self, dom: dict[str, Any] | None = None, reason: str | None = None) -> None:
        if not self.running:
            return
        self.running = False

        self._cancel_size_timer()
        self.transport.remove_listener()
        self.transport.set_detach_handler(None)

        try:
            await self._lifecycle.finalize(dom)
        except Exception as e:
            self.logger.warning(f'[Recorder] Could not commit final page: {e}')

        await self._tracker.close()
        self._router.reject_all(f'Recorder for {self.target_id} stopped')

        size = self._tracker.size
        self._sessions.clear()
        self._tracker.clear()
        self._stopping = False

        self.logger.info(f'[Recorder] Stopped recording {self.target_id} ({reason}), {format_bytes(size)}')
        await self.event_bus.dispatch(RecordingStoppedEvent(target_id=self.target_id, reason=reason, size=size))

        if self._owns_event_bus:
            await self.event_bus.stop(clear=True, timeout=5)
            self._use_event_bus(EventBus())

    def _use_event_bus(self, event_bus: EventBus) -> None:
        self.event_bus = event_bus
        self._lifecycle.event_bus = event_bus
        self._tracker.event_bus = event_bus

    async def _on_detached(self, reason: str | None) -> None:
        """The browser ended the debuggee session; stop without talking to it."""
        self.logger.info(f'[Recorder] Target {self.target_id} detached: {reason}')
        await self._stop(None, reason=reason)
        if self.on_closed is not None:
            self.on_closed(self.target_id, reason)

    # ------------------------------------------------------------------
    # Size reporting
    # ------------------------------------------------------------------

    def _start_size_timer(self) -> None:
        if self._update_task and not self._update_task.done():
            return
        self._update_task = asyncio.create_task(self._size_loop())

    def _cancel_size_timer(self) -> None:
        if self._update_task is not None:
            self._update_task.cancel()
            self._update_task = None

    async def _size_loop(self) -> None:
        while True:
            await asyncio.sleep(self.profile.size_update_interval)
            try:
                await self.update_file_size()
            except Exception as e:
                self.logger.error(f'[Recorder] Error reporting size: {e}')

    async def update_file_size(self) -> None:
        size = self._tracker.size
        self.event_bus.dispatch(ArchiveSizeEvent(target_id=self.target_id, size=size, size_text=format_bytes(size)))

    # ------------------------------------------------------------------
    # Event dispatch
    # ------------------------------------------------------------------

    async def _on_event(self, method: str, params: dict[str, Any]) -> None:
        await self.process_message(method, params, ROOT_CHAIN)

    async def process_message(self, method: str, params: dict[str, Any], sessions: SessionChain = ROOT_CHAIN) -> None:
        """Handle one protocol event produced by the session at the end of ``sessions``.

        Handler failures are logged and never end the recording.
        """
        try:
            await self._dispatch(method, params, sessions)
        except Exception as e:
            self.logger.warning(f'[Recorder] Error handling {method}: {type(e).__name__}: {e}')

    async def _dispatch(self, method: str, params: dict[str, Any], sessions: SessionChain) -> None:
        match ProtocolEvent.parse(method):
            case ProtocolEvent.TARGET_ATTACHED:
                await self._on_target_attached(params, sessions)

            case ProtocolEvent.TARGET_DETACHED:
                self._sessions.pop(params.get('sessionId', ''), None)

            case ProtocolEvent.TARGET_MESSAGE:
                session_id = params.get('sessionId', '')
                if session_id not in self._sessions:
                    self.logger.warning(f'[Recorder] Message from unknown session {session_id}, dropped')
                    return
                await self._router.receive_message_from_target(params, extend_chain(sessions, session_id))

            case ProtocolEvent.REQUEST_WILL_BE_SENT:
                self._tracker.record_request_sent(params)

            case ProtocolEvent.RESPONSE_RECEIVED:
                self._tracker.record_response_received(params)

            case ProtocolEvent.RESPONSE_RECEIVED_EXTRA_INFO:
                self._tracker.record_response_extra_info(params)

            case ProtocolEvent.LOADING_FINISHED:
                await self._tracker.finish(params['requestId'], sessions)

            case ProtocolEvent.REQUEST_PAUSED:
                await self._on_request_paused(params, sessions)

            case ProtocolEvent.FRAME_NAVIGATED if not sessions:
                self._lifecycle.init_page(params)

            case ProtocolEvent.LOAD_EVENT_FIRED if not sessions:
                await self._lifecycle.update_page()

            case ProtocolEvent.NAVIGATED_WITHIN_DOCUMENT if not sessions:
                await self._lifecycle.update_history(sessions)

            case ProtocolEvent.DEBUGGER_PAUSED if not sessions:
                await self._lifecycle.unpause_and_finish(params)

            case _:
                pass

    async def _on_target_attached(self, params: dict[str, Any], sessions: SessionChain) -> None:
        session_id = params['sessionId']
        target_info = params.get('targetInfo') or {}
        chain = extend_chain(sessions, session_id)

        info = SessionInfo(
            session_id=session_id,
            target_type=target_info.get('type', 'other'),
            url=target_info.get('url', ''),
            waiting_for_debugger=bool(params.get('waitingForDebugger')),
        )
        self._sessions[session_id] = info
        self.logger.debug(f'[Recorder] Sub-target attached: {info.target_type} {info.url} depth={len(chain)}')

        await self.session_init(chain)
        if info.waiting_for_debugger:
            await self._router.send('Runtime.runIfWaitingForDebugger', None, chain)

    # ------------------------------------------------------------------
    # Interception
    # ------------------------------------------------------------------

    async def _on_request_paused(self, params: dict[str, Any], sessions: SessionChain) -> None:
        """Every paused response is resolved exactly once: fulfilled or continued."""
        fulfilled = False
        try:
            if params.get('responseStatusCode') or params.get('responseErrorReason'):
                fulfilled = await self.handle_paused(params, sessions)
        except Exception as e:
            self.logger.warning(f'[Recorder] Interception handling failed: {e}')
        finally:
            if not fulfilled:
                await self._router.send('Fetch.continueRequest', {'requestId': params['requestId']}, sessions)

    async def handle_paused(self, params: dict[str, Any], sessions: SessionChain) -> bool:
        """Capture the intercepted body and fulfill with a rewrite if one applies."""
        payload = None
        try:
            payload = await self._tracker.fetch_intercepted_payload(params, sessions)
        except Exception as e:
            self.logger.warning(f'[Recorder] Could not read intercepted body: {e}')

        url = (params.get('request') or {}).get('url', '')
        try:
            return await self.rewrite_response(params, payload, sessions)
        except Exception as e:
            self.logger.error(f'[Recorder] Rewrite failed for {url}: {e}')
        return False

    async def rewrite_response(self, params: dict[str, Any], payload: bytes | None, sessions: SessionChain) -> bool:
        if not payload:
            return False

        url = (params.get('request') or {}).get('url', '')
        content_type = get_content_type(params.get('responseHeaders'))
        new_body = self.rewriter.rewrite(content_type, payload, url)
        if new_body is None:
            return False

        self.logger.debug(f'[Recorder] Rewritten response for {url}')

        try:
            await self._router.send(
                'Fetch.fulfillRequest',
                {
                    'requestId': params['requestId'],
                    'responseCode': params.get('responseStatusCode'),
                    'responseHeaders': params.get('responseHeaders') or [],
                    'body': base64.b64encode(new_body.encode('utf-8')).decode('ascii'),
                },
                sessions,
            )
            return True
        except CommandTimeoutError as e:
            # the fulfill was sent, so the pause counts as resolved
            self.logger.warning(f'[Recorder] Fulfill unanswered for {url}: {e}')
            return True
        except Exception as e:
            self.logger.warning(f'[Recorder] Fulfill failed for {url}: {e}')
        return False
