"""Owning table of recorders, one per target."""

import logging
from typing import Any

from bubus import EventBus
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from openrecorder.recorder.controller import RecorderController
from openrecorder.recorder.profile import RecorderProfile
from openrecorder.recorder.writer import NullIndexer

logger = logging.getLogger(__name__)


class RecordingManager(BaseModel):
    """Creates, tracks and tears down the recorders of one browser connection.

    Recorders are inserted on attach and removed only when the browser
    confirms the target closed. The manager owns the archive-wide byte count.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, revalidate_instances='never')

    connection: Any
    profile: RecorderProfile = Field(default_factory=RecorderProfile)
    event_bus: EventBus = Field(default_factory=EventBus)

    archive_size: int = 0

    _recorders: dict[str, RecorderController] = PrivateAttr(default_factory=dict)

    @property
    def recorders(self) -> dict[str, RecorderController]:
        return dict(self._recorders)

    def get(self, target_id: str) -> RecorderController | None:
        return self._recorders.get(target_id)

    async def start_recorder(self, target_id: str, writer: Any, indexer: Any = None) -> RecorderController:
        """Start recording ``target_id``, reusing its recorder if one exists."""
        recorder = self._recorders.get(target_id)
        if recorder is None:
            recorder = RecorderController(
                target_id=target_id,
                transport=self.connection.transport_for(target_id),
                writer=writer,
                indexer=indexer or NullIndexer(),
                profile=self.profile,
                event_bus=self.event_bus,
                on_bytes_committed=self._add_archive_size,
                on_closed=self._on_recorder_closed,
            )
            self._recorders[target_id] = recorder
        elif recorder.running:
            logger.warning(f'[RecordingManager] Target {target_id} is already being recorded')
            return recorder

        await recorder.attach()
        return recorder

    async def stop_recorder(self, target_id: str) -> None:
        recorder = self._recorders.get(target_id)
        if recorder is None:
            logger.debug(f'[RecordingManager] No recorder for {target_id}')
            return
        await recorder.detach()

    async def stop_all(self) -> None:
        for recorder in list(self._recorders.values()):
            try:
                await recorder.detach()
            except Exception as e:
                logger.warning(f'[RecordingManager] Error stopping recorder {recorder.target_id}: {e}')

    async def close(self) -> None:
        """Stop every recorder and shut down the shared event bus."""
        await self.stop_all()
        await self.event_bus.stop(clear=True, timeout=5)

    def _on_recorder_closed(self, target_id: str, reason: str | None) -> None:
        if reason == 'target_closed':
            self._recorders.pop(target_id, None)
            logger.debug(f'[RecordingManager] Removed recorder for closed target {target_id}')

    def _add_archive_size(self, length: int) -> None:
        self.archive_size += length
