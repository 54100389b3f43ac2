"""Data models for recorded pages, requests and attached sessions."""

import base64
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def new_page_id() -> str:
    """Generate a process-unique page id."""
    return uuid4().hex


def headers_to_dict(headers: Any) -> dict[str, str]:
    """Normalise protocol headers (mapping or list of name/value entries) to a dict."""
    if not headers:
        return {}
    if isinstance(headers, dict):
        return {str(k): str(v) for k, v in headers.items()}
    return {str(h.get('name', '')): str(h.get('value', '')) for h in headers if h.get('name')}


class SessionInfo(BaseModel):
    """An attached sub-target (iframe, worker) reached through the session chain."""

    session_id: str
    target_type: str = 'other'
    url: str = ''
    waiting_for_debugger: bool = False


class PageInfo(BaseModel):
    """Point-in-time snapshot of a top-level page being recorded.

    A page is only persisted once both ``url`` and ``date`` are set.
    """

    model_config = ConfigDict(validate_assignment=False)

    id: str = Field(default_factory=new_page_id)
    url: str = ''
    date: str = ''
    title: str = ''
    text: str = ''
    size: int = 0
    finished: bool = False

    @property
    def committable(self) -> bool:
        return bool(self.url and self.date)


class PendingRequest(BaseModel):
    """Request/response metadata merged from several protocol event channels.

    Primary sources (request sent, response received, interception pause) always
    win. Extra-info only fills fields that no primary source has set; its headers
    are kept apart and merged additively into :attr:`response_headers`.
    """

    model_config = ConfigDict(validate_assignment=False)

    request_id: str
    url: str = ''
    method: str = 'GET'
    request_headers: dict[str, str] = Field(default_factory=dict)
    has_post_data: bool = False
    post_data: bytes | None = None
    post_data_requested: bool = False

    status: int | None = None
    status_text: str = ''
    primary_response_headers: dict[str, str] = Field(default_factory=dict)
    extra_response_headers: dict[str, str] = Field(default_factory=dict)
    headers_text: str | None = None
    mime_type: str | None = None
    protocol: str | None = None
    resource_type: str | None = None
    from_service_worker: bool = False

    # True when status/headers/body were captured through response interception
    fetch: bool = False
    payload: bytes | None = None

    completed_at: datetime | None = None

    @property
    def response_headers(self) -> dict[str, str]:
        """Primary headers plus any extra-info header names they lack."""
        merged = dict(self.primary_response_headers)
        present = {name.lower() for name in merged}
        for name, value in self.extra_response_headers.items():
            if name.lower() not in present:
                merged[name] = value
        return merged

    @property
    def is_http(self) -> bool:
        return self.url.startswith('https:') or self.url.startswith('http:')

    def _set_primary(self, field: str, value: Any) -> None:
        if value is None:
            return
        setattr(self, field, value)

    def _fill_gap(self, field: str, value: Any) -> None:
        if value is None or getattr(self, field) is not None:
            return
        setattr(self, field, value)

    def fill_request(self, params: dict[str, Any]) -> None:
        """Network.requestWillBeSent"""
        request = params.get('request') or {}
        self._set_primary('url', request.get('url'))
        self._set_primary('method', request.get('method'))
        self.request_headers = headers_to_dict(request.get('headers'))
        self.has_post_data = bool(request.get('hasPostData') or request.get('postData'))
        if request.get('postData') is not None and self.post_data is None:
            self.post_data = request['postData'].encode('utf-8')
        self._set_primary('resource_type', params.get('type'))

    def fill_response_received(self, params: dict[str, Any]) -> None:
        """Network.responseReceived"""
        response = params.get('response') or {}
        self._set_primary('url', response.get('url'))
        self._set_primary('status', response.get('status'))
        self._set_primary('status_text', response.get('statusText'))
        self._set_primary('mime_type', response.get('mimeType'))
        self._set_primary('protocol', response.get('protocol'))
        if response.get('headersText') is not None:
            self._set_primary('headers_text', response.get('headersText'))
        self.primary_response_headers = headers_to_dict(response.get('headers'))
        self.from_service_worker = bool(response.get('fromServiceWorker'))
        if response.get('requestHeaders'):
            self.request_headers = headers_to_dict(response.get('requestHeaders'))
        self._set_primary('resource_type', params.get('type'))

    def fill_response_received_extra_info(self, params: dict[str, Any]) -> None:
        """Network.responseReceivedExtraInfo, gap-filling only."""
        self._fill_gap('status', params.get('statusCode'))
        self._fill_gap('headers_text', params.get('headersText'))
        self.extra_response_headers = headers_to_dict(params.get('headers'))

    def fill_fetch_request_paused(self, params: dict[str, Any]) -> None:
        """Fetch.requestPaused at the response stage."""
        request = params.get('request') or {}
        self.fetch = True
        self._set_primary('url', request.get('url'))
        self._set_primary('method', request.get('method'))
        if request.get('headers'):
            self.request_headers = headers_to_dict(request.get('headers'))
        if request.get('postData') is not None and self.post_data is None:
            self.has_post_data = True
            self.post_data = request['postData'].encode('utf-8')
        elif request.get('hasPostData'):
            self.has_post_data = True
        self._set_primary('status', params.get('responseStatusCode'))
        self._set_primary('status_text', params.get('responseStatusText'))
        if params.get('responseHeaders') is not None:
            self.primary_response_headers = headers_to_dict(params.get('responseHeaders'))
        self._set_primary('resource_type', params.get('resourceType'))

    def mark_completed(self) -> None:
        self.completed_at = datetime.now(timezone.utc)

    @staticmethod
    def decode_body(result: dict[str, Any]) -> bytes:
        """Decode a getResponseBody result into bytes."""
        body = result.get('body') or ''
        if result.get('base64Encoded'):
            return base64.b64decode(body)
        return body.encode('utf-8')
