"""Collaborator contracts consumed by the recorder.

The archive container and the full-text index live outside this package;
the recorder only needs the two small protocols below. ``MemoryWriter`` keeps
everything in memory and is what the CLI and tests use.
"""

import logging
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field

from openrecorder.recorder.views import PageInfo, PendingRequest

logger = logging.getLogger(__name__)


@runtime_checkable
class Writer(Protocol):
    """Persists finished request/response records and page snapshots."""

    async def add_page(self, page: PageInfo) -> None: ...

    async def process_request_response(
        self, request: PendingRequest, payload: bytes | None, page: PageInfo
    ) -> bool:
        """Store one record; return False when it was declined (duplicate, bad scheme...)."""
        ...


@runtime_checkable
class Indexer(Protocol):
    """Fire-and-forget full-text indexing of page snapshots."""

    def add_page_text(self, page: PageInfo) -> None: ...


class NullIndexer:
    """Indexer that discards everything."""

    def add_page_text(self, page: PageInfo) -> None:
        return None


class StoredResource(BaseModel):
    """One committed record held by :class:`MemoryWriter`."""

    url: str
    method: str
    status: int | None
    page_id: str
    size: int = 0
    mime_type: str | None = None
    fetched_via_interception: bool = False


class MemoryWriter(BaseModel):
    """In-memory writer that de-duplicates resources per page.

    A record is declined when its url is not http(s) or when the same
    (page, method, url) has already been stored.
    """

    pages: dict[str, PageInfo] = Field(default_factory=dict)
    resources: list[StoredResource] = Field(default_factory=list)
    payloads: dict[str, bytes] = Field(default_factory=dict)

    async def add_page(self, page: PageInfo) -> None:
        self.pages[page.id] = page.model_copy()
        logger.debug(f'[MemoryWriter] Page {page.id[:8]} {page.url} finished={page.finished}')

    async def process_request_response(
        self, request: PendingRequest, payload: bytes | None, page: PageInfo
    ) -> bool:
        if not request.is_http:
            return False

        key = (page.id, request.method, request.url)
        if any((r.page_id, r.method, r.url) == key for r in self.resources):
            return False

        self.resources.append(
            StoredResource(
                url=request.url,
                method=request.method,
                status=request.status,
                page_id=page.id,
                size=len(payload) if payload else 0,
                mime_type=request.mime_type,
                fetched_via_interception=request.fetch,
            )
        )
        if payload:
            self.payloads[request.url] = payload
        return True

    @property
    def total_size(self) -> int:
        return sum(r.size for r in self.resources)
