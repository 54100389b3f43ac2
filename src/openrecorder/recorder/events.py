"""Event definitions emitted by a recording on its event bus."""

import os
from typing import Any

from bubus import BaseEvent
from pydantic import Field


def _get_timeout(env_var: str, default: float) -> float | None:
    """Safely parse environment variable timeout values with robust error handling.

    Args:
        env_var: Environment variable name (e.g. 'TIMEOUT_PageCommittedEvent')
        default: Default timeout value as float (e.g. 15.0)

    Returns:
        Parsed float value or the default if parsing fails
    """
    env_value = os.getenv(env_var)
    if env_value:
        try:
            parsed = float(env_value)
            if parsed < 0:
                return default
            return parsed
        except (ValueError, TypeError):
            pass

    return default


# ============================================================================
# Recording Lifecycle Events
# ============================================================================


class RecordingStartedEvent(BaseEvent[None]):
    """Recorder attached to a target and bootstrapped its session."""

    target_id: str

    event_timeout: float | None = _get_timeout('TIMEOUT_RecordingStartedEvent', 10.0)


class RecordingStoppedEvent(BaseEvent[None]):
    """Recorder detached from its target."""

    target_id: str
    reason: str | None = None
    size: int = 0

    event_timeout: float | None = _get_timeout('TIMEOUT_RecordingStoppedEvent', 10.0)


class ArchiveSizeEvent(BaseEvent[None]):
    """Periodic report of the bytes committed by this recording."""

    target_id: str
    size: int
    size_text: str

    event_timeout: float | None = _get_timeout('TIMEOUT_ArchiveSizeEvent', 5.0)


# ============================================================================
# Page Events
# ============================================================================


class PageCommittedEvent(BaseEvent[None]):
    """A page snapshot was handed to the writer."""

    target_id: str
    page_id: str
    url: str
    title: str = ''
    finished: bool = False

    event_timeout: float | None = _get_timeout('TIMEOUT_PageCommittedEvent', 10.0)


class PartialContentRefetchEvent(BaseEvent[None]):
    """Ask the page to re-request a partial (206) resource out of band.

    The body of a range response cannot be retrieved reliably through the
    protocol, so whoever drives the page should fetch ``url`` in full.
    """

    target_id: str
    page_id: str
    url: str
    method: str = 'GET'
    headers: dict[str, Any] = Field(default_factory=dict)

    event_timeout: float | None = _get_timeout('TIMEOUT_PartialContentRefetchEvent', 30.0)
