"""Request/response state accumulated from the Network and Fetch domains.

Network events for one request arrive on several channels and in no fixed
order. The tracker merges them into one :class:`PendingRequest` per request
id, retrieves bodies when the request finishes, and hands the finished
record to the writer.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from bubus import EventBus
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from openrecorder.recorder.events import PartialContentRefetchEvent
from openrecorder.recorder.protocol import ROOT_CHAIN, SessionChain
from openrecorder.recorder.views import PageInfo, PendingRequest
from openrecorder.utils import same_document_url

logger = logging.getLogger(__name__)

NETWORK_BODY = 'Network.getResponseBody'
FETCH_BODY = 'Fetch.getResponseBody'


def no_response_for_status(status: int | None) -> bool:
    """204 and redirects carry no body worth retrieving."""
    return status is not None and (status == 204 or 300 <= status < 400)


class RequestTracker(BaseModel):
    """Pending request table plus the payload retrieval policy.

    Attributes:
        router: SessionRouter used for body and post-data retrieval.
        writer: Receives finished records (see ``openrecorder.recorder.writer``).
        event_bus: Bus on which partial-content refetch requests are dispatched.
        get_page: Returns the page currently being recorded.
        target_id: Recorded target, used in emitted events.
        partial_refetch_delay: Seconds to wait before a 206 refetch request.
        on_bytes_committed: Optional hook receiving each committed payload length.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, revalidate_instances='never')

    router: Any
    writer: Any
    event_bus: EventBus
    get_page: Callable[[], PageInfo]
    target_id: str = ''
    partial_refetch_delay: float = 0.5
    on_bytes_committed: Callable[[int], None] | None = None

    size: int = 0

    _pending: dict[str, PendingRequest] = PrivateAttr(default_factory=dict)
    _refetched: set[tuple[str, str]] = PrivateAttr(default_factory=set)
    _tasks: set[asyncio.Task] = PrivateAttr(default_factory=set)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def get(self, request_id: str) -> PendingRequest | None:
        return self._pending.get(request_id)

    def pending(self, request_id: str) -> PendingRequest:
        """Get or create the pending record for ``request_id``."""
        reqresp = self._pending.get(request_id)
        if reqresp is None:
            reqresp = PendingRequest(request_id=request_id)
            self._pending[request_id] = reqresp
        elif reqresp.request_id != request_id:
            logger.error(f'[RequestTracker] Wrong request id {reqresp.request_id} stored under {request_id}')
        return reqresp

    def remove(self, request_id: str) -> PendingRequest | None:
        return self._pending.pop(request_id, None)

    def record_request_sent(self, params: dict[str, Any]) -> None:
        self.pending(params['requestId']).fill_request(params)

    def record_response_received(self, params: dict[str, Any]) -> None:
        if params.get('response'):
            self.pending(params['requestId']).fill_response_received(params)

    def record_response_extra_info(self, params: dict[str, Any]) -> None:
        self.pending(params['requestId']).fill_response_received_extra_info(params)

    def record_intercepted_pause(self, params: dict[str, Any]) -> PendingRequest:
        """Fill a record from a response-stage interception, keyed by its network id."""
        reqresp = self.pending(params.get('networkId') or params['requestId'])
        reqresp.fill_fetch_request_paused(params)
        return reqresp

    async def fetch_intercepted_payload(
        self, params: dict[str, Any], sessions: SessionChain = ROOT_CHAIN
    ) -> bytes | None:
        """Record an interception pause and retrieve its body through the Fetch domain."""
        reqresp = self.record_intercepted_pause(params)
        return await self.fetch_payload(reqresp, params['requestId'], sessions, FETCH_BODY)

    async def finish(self, request_id: str, sessions: SessionChain = ROOT_CHAIN) -> bool:
        """Complete a request: retrieve its body and hand it to the writer.

        Returns:
            True if the writer committed the record. A repeated call for the
            same id finds nothing pending and returns False.
        """
        reqresp = self.remove(request_id)
        if reqresp is None:
            return False

        reqresp.mark_completed()

        payload = reqresp.payload
        if not reqresp.fetch:
            payload = await self.fetch_payload(reqresp, request_id, sessions, NETWORK_BODY)

        page = self.get_page()
        if not page.date and reqresp.completed_at and same_document_url(page.url, reqresp.url):
            page.date = reqresp.completed_at.isoformat()

        committed = await self.writer.process_request_response(reqresp, payload, page)

        # count bytes only for records the writer actually kept
        if committed and payload:
            length = len(payload)
            page.size += length
            self.size += length
            if self.on_bytes_committed is not None:
                self.on_bytes_committed(length)

        return bool(committed)

    async def fetch_payload(
        self,
        reqresp: PendingRequest,
        body_request_id: str,
        sessions: SessionChain,
        method: str,
    ) -> bytes | None:
        """Retrieve a response body according to the capture policy.

        Non-HTTP(S) urls are never captured. A 206 yields no body on this pass
        and schedules an out-of-band refetch instead. 204 and 3xx skip
        retrieval. Retrieval errors are logged and yield no payload.
        """
        if not reqresp.is_http:
            return None

        await self._fetch_post_data(reqresp, sessions)

        if reqresp.status == 206:
            self._schedule_refetch(reqresp)
            return None

        payload = None
        if not no_response_for_status(reqresp.status):
            try:
                result = await self.router.send(method, {'requestId': body_request_id}, sessions)
                payload = PendingRequest.decode_body(result)
            except Exception as e:
                logger.warning(
                    f'[RequestTracker] No buffer for: {reqresp.url} {reqresp.status} {reqresp.request_id}: {e}'
                )
                return None

        reqresp.payload = payload
        return payload

    async def _fetch_post_data(self, reqresp: PendingRequest, sessions: SessionChain) -> None:
        if not reqresp.has_post_data or reqresp.post_data is not None or reqresp.post_data_requested:
            return
        reqresp.post_data_requested = True
        try:
            result = await self.router.send(
                'Network.getRequestPostData', {'requestId': reqresp.request_id}, sessions
            )
            reqresp.post_data = (result.get('postData') or '').encode('utf-8')
        except Exception as e:
            logger.warning(f'[RequestTracker] Error getting POST data for {reqresp.url}: {e}')

    def _schedule_refetch(self, reqresp: PendingRequest) -> None:
        page = self.get_page()
        key = (page.id, reqresp.url)
        if key in self._refetched:
            logger.debug(f'[RequestTracker] Refetch already requested for {reqresp.url}')
            return
        self._refetched.add(key)

        task = asyncio.create_task(self._refetch_later(page.id, reqresp))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _refetch_later(self, page_id: str, reqresp: PendingRequest) -> None:
        await asyncio.sleep(self.partial_refetch_delay)
        logger.debug(f'[RequestTracker] Requesting out-of-band fetch for: {reqresp.url}')
        event = self.event_bus.dispatch(
            PartialContentRefetchEvent(
                target_id=self.target_id,
                page_id=page_id,
                url=reqresp.url,
                method=reqresp.method,
                headers=reqresp.request_headers,
            )
        )
        await event

    def clear(self) -> None:
        self._pending.clear()
        self._refetched.clear()
        self.size = 0

    async def close(self) -> None:
        """Cancel scheduled refetch requests."""
        for task in list(self._tasks):
            if not task.done():
                task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
