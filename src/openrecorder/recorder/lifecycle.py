"""Page snapshot state machine for one recorded target.

NoPage -> Open (on top-level navigation) -> snapshots (on load) -> Finalized
(on unload pause or stop). Every commit goes to the writer and the indexer.
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

from bubus import EventBus
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from openrecorder.recorder.events import PageCommittedEvent
from openrecorder.recorder.fulltext import extract_text_from_dom
from openrecorder.recorder.protocol import ROOT_CHAIN, SessionChain
from openrecorder.recorder.views import PageInfo
from openrecorder.recorder.writer import NullIndexer

logger = logging.getLogger(__name__)

UNLOAD_SCRIPT_URL = 'openrecorder://unload-hook.js'

# Registers a beforeunload listener so the DOMDebugger breakpoint pauses inside
# this script; the sourceURL lets the pause be told apart from page listeners.
UNLOAD_HOOK_SOURCE = (
    "window.addEventListener('beforeunload', function () {});\n"
    f'//# sourceURL={UNLOAD_SCRIPT_URL}\n'
)


class PageLifecycle(BaseModel):
    """Tracks the current top-level page and commits its snapshots.

    Attributes:
        router: SessionRouter used for history, DOM and debugger commands.
        writer: Receives ``add_page`` for every commit.
        indexer: Receives ``add_page_text`` for every commit.
        event_bus: Bus for :class:`PageCommittedEvent`.
        text_extractor: DOM snapshot to text.
        on_page_updated: Awaited after each non-final snapshot.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, revalidate_instances='never')

    router: Any
    writer: Any
    indexer: Any = Field(default_factory=NullIndexer)
    event_bus: EventBus
    target_id: str = ''
    text_extractor: Callable[[dict[str, Any] | None], str] = extract_text_from_dom
    on_page_updated: Callable[[], Awaitable[None]] | None = None

    page_info: PageInfo | None = None

    _frame_id: str | None = PrivateAttr(default=None)
    _history_map: dict[int, str] = PrivateAttr(default_factory=dict)
    _page_count: int = PrivateAttr(default=0)
    _unload_capture: bool = PrivateAttr(default=False)

    @property
    def history_map(self) -> dict[int, str]:
        return self._history_map

    @property
    def frame_id(self) -> str | None:
        return self._frame_id

    def reset(self) -> None:
        self.page_info = None
        self._frame_id = None
        self._history_map = {}
        self._page_count = 0
        self._unload_capture = False

    def init_page(self, params: dict[str, Any]) -> PageInfo | None:
        """Page.frameNavigated: start a new page for top-level frames only."""
        frame = params.get('frame') or {}
        if frame.get('parentId'):
            return None

        if self._frame_id != frame.get('id'):
            self._history_map = {}
        self._frame_id = frame.get('id')

        self.page_info = PageInfo(url=frame.get('url', ''))
        logger.debug(f'[PageLifecycle] New page {self.page_info.id[:8]} for {self.page_info.url}')
        return self.page_info

    async def update_page(self) -> None:
        """Page.loadEventFired: refresh title/url and commit a non-final snapshot."""
        if self.page_info is None:
            logger.warning('[PageLifecycle] Load event without page info')
            return

        try:
            history = await self.router.send('Page.getNavigationHistory')
            index = history['currentIndex']
            entry = history['entries'][index]
        except Exception as e:
            logger.warning(f'[PageLifecycle] Could not read navigation history: {e}')
        else:
            self._history_map[index] = entry.get('url', '')
            if entry.get('url'):
                self.page_info.url = entry['url']
            self.page_info.title = entry.get('title') or self.page_info.url

        if not self.page_info.date:
            # main document never finished on the network (served from memory cache)
            self.page_info.date = datetime.now(timezone.utc).isoformat()

        dom = await self.get_full_text()
        await self.commit_page(self.page_info, dom, finished=False)

        # pause-on-unload only for the first page recorded
        if not self._page_count:
            await self.enable_unload_capture()
        self._page_count += 1

        if self.on_page_updated is not None:
            await self.on_page_updated()

    async def update_history(self, sessions: SessionChain = ROOT_CHAIN) -> None:
        """Page.navigatedWithinDocument: track genuinely new history entries."""
        if sessions:
            return

        try:
            history = await self.router.send('Page.getNavigationHistory', None, sessions)
        except Exception as e:
            logger.warning(f'[PageLifecycle] Could not read navigation history: {e}')
            return

        index = history['currentIndex']
        entries = history['entries']
        if index == len(entries) - 1 and self._history_map.get(index) != entries[index].get('url'):
            self._history_map[index] = entries[index].get('url', '')
            logger.debug(f'[PageLifecycle] New history entry {index}: {entries[index].get("url")}')

    async def get_full_text(self) -> dict[str, Any] | None:
        """Snapshot the full DOM, or None when there is nothing committable or it fails."""
        if self.page_info is None or not self.page_info.committable:
            return None

        try:
            return await self.router.send('DOM.getDocument', {'depth': -1, 'pierce': True})
        except Exception as e:
            logger.warning(f'[PageLifecycle] DOM snapshot failed for {self.page_info.url}: {e}')
            return None

    async def enable_unload_capture(self) -> None:
        try:
            await self.router.send('Debugger.enable')
            await self.router.send('DOMDebugger.setEventListenerBreakpoint', {'eventName': 'beforeunload'})
            self._unload_capture = True
        except Exception as e:
            logger.warning(f'[PageLifecycle] Could not enable unload capture: {e}')

    async def disable_unload_capture(self) -> None:
        if not self._unload_capture:
            return
        self._unload_capture = False
        try:
            await self.router.send('DOMDebugger.removeEventListenerBreakpoint', {'eventName': 'beforeunload'})
        except Exception as e:
            logger.debug(f'[PageLifecycle] Could not remove unload breakpoint: {e}')

    async def unpause_and_finish(self, params: dict[str, Any]) -> None:
        """Debugger.paused: finalize the page if the pause came from our unload hook.

        Execution is always resumed, whoever caused the pause.
        """
        call_frames = params.get('callFrames') or []
        ours = bool(call_frames) and call_frames[0].get('url') == UNLOAD_SCRIPT_URL

        dom = await self.get_full_text() if ours else None
        page = self.page_info

        try:
            await self.router.send('Debugger.resume')
        except Exception as e:
            logger.warning(f'[PageLifecycle] Debugger.resume failed: {e}')

        if ours:
            await self.commit_page(page, dom, finished=True)

    async def finalize(self, dom: dict[str, Any] | None) -> None:
        """Commit the current page as finished (stop/detach)."""
        await self.commit_page(self.page_info, dom, finished=True)

    async def commit_page(self, page: PageInfo | None, dom: dict[str, Any] | None, finished: bool) -> bool:
        """Persist a snapshot. No-op without url and date, or once finalized."""
        if page is None or not page.committable or page.finished:
            return False

        if dom:
            page.text = self.text_extractor(dom)
        else:
            logger.warning(f'[PageLifecycle] No full text update for {page.url}')

        page.finished = finished

        await self.writer.add_page(page)
        self.indexer.add_page_text(page)

        event = self.event_bus.dispatch(
            PageCommittedEvent(
                target_id=self.target_id,
                page_id=page.id,
                url=page.url,
                title=page.title,
                finished=finished,
            )
        )
        await event
        return True
